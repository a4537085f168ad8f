"""Excel export of tax-year summaries and shared expense allocations."""

import logging
from pathlib import Path
from typing import List, Sequence

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.dataframe import dataframe_to_rows

from .allocation import SharedExpense
from .tax import TaxYearSummary

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="E6E6E6", end_color="E6E6E6", fill_type="solid")


class ExcelExporter:
    """Write engine results to an Excel workbook."""

    def __init__(self, output_path: Path):
        """
        Initialize Excel exporter.

        Args:
            output_path: Path for the output Excel file
        """
        self.output_path = Path(output_path)
        self.workbook = Workbook()

    def _save(self):
        if "Sheet" in self.workbook.sheetnames and len(self.workbook.sheetnames) > 1:
            self.workbook.remove(self.workbook["Sheet"])
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.workbook.save(str(self.output_path))
        logger.info(f"Excel file exported to: {self.output_path}")

    def _write_table(self, ws, df: pd.DataFrame, start_row: int, widths: Sequence[int] = ()) -> int:
        """Write a DataFrame with a styled header row; returns the next free row."""
        row = start_row
        for row_idx, values in enumerate(dataframe_to_rows(df, index=False, header=True)):
            for col, value in enumerate(values, 1):
                cell = ws.cell(row=row, column=col, value=value)
                if row_idx == 0:
                    cell.font = Font(bold=True)
                    cell.fill = HEADER_FILL
                    cell.alignment = Alignment(horizontal="center")
            row += 1

        for i, width in enumerate(widths, 1):
            ws.column_dimensions[get_column_letter(i)].width = width
        return row

    def export_tax_summary(self, summary: TaxYearSummary):
        """
        Export a tax-year summary: totals, IRS category breakdown, notes.

        Args:
            summary: Result of ``TaxClassifier.summarize_year``
        """
        ws = self.workbook.create_sheet(f"Tax {summary.tax_year}")

        ws.cell(row=1, column=1, value=f"TAX YEAR {summary.tax_year} - {summary.property_id}").font = Font(bold=True, size=14)

        totals = [
            ("Total Expenses:", summary.total_expenses / 100),
            ("Total Deductible:", summary.total_deductible / 100),
            ("Total Non-Deductible:", summary.total_non_deductible / 100),
            ("Deductible %:", round(summary.deductible_percentage, 1)),
        ]
        current_row = 3
        for label, value in totals:
            ws.cell(row=current_row, column=1, value=label).font = Font(bold=True)
            ws.cell(row=current_row, column=2, value=value)
            current_row += 1

        current_row += 1
        ws.cell(row=current_row, column=1, value="IRS CATEGORY BREAKDOWN").font = Font(bold=True, size=12)
        current_row += 1

        df = pd.DataFrame([
            {
                'IRS Category': c.irs_category,
                'Description': c.description,
                'Expenses': c.expense_count,
                'Deductible ($)': c.total_amount / 100,
                'Average ($)': round(c.average_amount / 100, 2),
            }
            for c in summary.category_breakdown.values()
        ], columns=['IRS Category', 'Description', 'Expenses', 'Deductible ($)', 'Average ($)'])
        if not df.empty:
            df = df.sort_values('Deductible ($)', ascending=False)
        current_row = self._write_table(ws, df, current_row, widths=[32, 45, 10, 16, 14]) + 1

        for title, lines in (("WARNINGS", summary.warnings), ("RECOMMENDATIONS", summary.recommendations)):
            if not lines:
                continue
            ws.cell(row=current_row, column=1, value=title).font = Font(bold=True, size=12)
            current_row += 1
            for line in lines:
                ws.cell(row=current_row, column=1, value=line)
                current_row += 1
            current_row += 1

        self._save()

    def export_allocations(self, shared_expenses: List[SharedExpense]):
        """
        Export one row per property allocation of each shared expense.

        Args:
            shared_expenses: Shared expenses to list
        """
        ws = self.workbook.create_sheet("Allocations")
        ws.cell(row=1, column=1, value="SHARED EXPENSE ALLOCATIONS").font = Font(bold=True, size=14)

        rows = []
        for shared in shared_expenses:
            for allocation in shared.allocations:
                rows.append({
                    'Shared Expense': shared.id,
                    'Original Expense': shared.original_expense_id,
                    'Date': shared.expense_date.isoformat(),
                    'Category': shared.category_id,
                    'Property': allocation.property_name or allocation.property_id,
                    'Percentage': round(allocation.percentage, 2),
                    'Amount ($)': allocation.amount_cents / 100,
                    'Method': allocation.method,
                    'Status': shared.status,
                    'Remaining (cents)': shared.remaining_amount,
                })

        df = pd.DataFrame(rows, columns=['Shared Expense', 'Original Expense', 'Date', 'Category', 'Property',
                                         'Percentage', 'Amount ($)', 'Method', 'Status', 'Remaining (cents)'])
        self._write_table(ws, df, 3, widths=[34, 20, 12, 15, 20, 12, 12, 15, 12, 18])

        logger.info(f"Exported {len(rows)} allocation rows for {len(shared_expenses)} shared expenses")
        self._save()
