"""Tests for Excel export."""

from datetime import date

from openpyxl import load_workbook
from property_expenses.allocation import AllocationEngine, PropertyAllocation
from property_expenses.export import ExcelExporter
from property_expenses.models import CategorySelection, Expense
from property_expenses.tax import TaxClassifier


def make_expense(expense_id, category_id, description, amount_cents):
    return Expense(
        id=expense_id,
        property_id='prop-1',
        amount_cents=amount_cents,
        description=description,
        expense_date=date(2024, 5, 1),
        category_selection=CategorySelection(category_id),
    )


class TestExcelExporter:
    """Test suite for ExcelExporter."""

    def test_tax_summary(self, tmp_path):
        """Test the tax summary sheet layout."""
        expenses = [
            make_expense('e1', 'utilities', 'Electric bill', 12000),
            make_expense('e2', 'repairs', 'Fix leaking faucet', 8000),
        ]
        summary = TaxClassifier().summarize_expenses('prop-1', 2024, expenses)
        output = tmp_path / 'out' / 'tax.xlsx'

        ExcelExporter(output).export_tax_summary(summary)

        workbook = load_workbook(output)
        assert workbook.sheetnames == ['Tax 2024']
        ws = workbook['Tax 2024']
        assert ws['A1'].value == 'TAX YEAR 2024 - prop-1'
        assert ws['B3'].value == 200.0
        assert ws['A9'].value == 'IRS Category'
        assert ws['A10'].value == 'Utilities'
        assert ws['D10'].value == 120.0

    def test_allocations(self, tmp_path):
        """Test one row per property allocation."""
        engine = AllocationEngine()
        shared = engine.create_shared_expense_allocation(
            make_expense('e1', 'utilities', 'Shared electric', 10000),
            [PropertyAllocation('a', 60, property_name='Maple Court'), PropertyAllocation('b', 40)],
            'percentage', 'owner',
        )
        output = tmp_path / 'allocations.xlsx'

        ExcelExporter(output).export_allocations([shared])

        ws = load_workbook(output)['Allocations']
        assert ws['A3'].value == 'Shared Expense'
        assert ws['E4'].value == 'Maple Court'
        assert ws['E5'].value == 'b'
        assert ws['G4'].value == 60.0
        assert ws.max_row == 5
