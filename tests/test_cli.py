"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner
from property_expenses.cli import cli

EXPENSES = [
    {
        'id': 'e1',
        'property_id': 'prop-1',
        'amount_cents': 12000,
        'description': 'Electric bill',
        'expense_date': '2024-03-02',
        'category_selection': {'category_id': 'utilities', 'subcategory_id': 'electricity'},
    },
    {
        'id': 'e2',
        'property_id': 'prop-1',
        'amount_cents': 8000,
        'description': 'Fix leaking faucet',
        'expense_date': '2024-04-11',
        'category_selection': {'category_id': 'repairs', 'subcategory_id': 'plumbing'},
    },
]

PROPERTIES = [
    {'property_id': 'a', 'property_name': 'Maple Court', 'square_footage': 1500},
    {'property_id': 'b', 'property_name': 'Oak Villas', 'square_footage': 500},
]

RECEIPT = """ACME PLUMBING SUPPLY
Labor charge  85.00
Total: $105.30
Date: 03/15/2024
"""


@pytest.fixture
def files(tmp_path):
    expenses = tmp_path / 'expenses.json'
    expenses.write_text(json.dumps(EXPENSES))
    properties = tmp_path / 'properties.json'
    properties.write_text(json.dumps(PROPERTIES))
    return tmp_path, expenses, properties


class TestCli:
    """Test suite for CLI commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_suggest(self, files):
        """Test category suggestions from the command line."""
        _, expenses, _ = files

        result = self.runner.invoke(cli, ['suggest', '--expenses', str(expenses), '--property', 'prop-1',
                                          '--merchant', 'PGE', '--description', 'Electric bill'])

        assert result.exit_code == 0
        assert 'utilities/electricity' in result.output

    def test_receipt(self, files):
        """Test single receipt analysis."""
        tmp_path, _, _ = files
        receipt = tmp_path / 'receipt.txt'
        receipt.write_text(RECEIPT)

        result = self.runner.invoke(cli, ['receipt', str(receipt)])

        assert result.exit_code == 0
        assert '"amount_cents": 10530' in result.output
        assert '"merchant_name": "ACME PLUMBING SUPPLY"' in result.output

    def test_receipts_directory(self, files):
        """Test batch analysis of a directory of OCR text files."""
        tmp_path, _, _ = files
        receipts_dir = tmp_path / 'ocr'
        receipts_dir.mkdir()
        (receipts_dir / 'one.txt').write_text(RECEIPT)
        (receipts_dir / 'two.txt').write_text("Electric bill\nTotal 45.00\n04/02/2024")
        output = tmp_path / 'results.json'

        result = self.runner.invoke(cli, ['receipts', '--in', str(receipts_dir), '--out', str(output)])

        assert result.exit_code == 0
        assert 'Successfully analyzed: 2' in result.output
        records = json.loads(output.read_text())
        assert [r['file_name'] for r in records] == ['one.txt', 'two.txt']
        assert records[1]['amount_cents'] == 4500

    def test_allocate(self, files):
        """Test an allocation with an explicit method and Excel output."""
        tmp_path, expenses, properties = files
        output = tmp_path / 'allocation.xlsx'

        result = self.runner.invoke(cli, ['allocate', '--expenses', str(expenses), '--expense-id', 'e2',
                                          '--properties', str(properties), '--method', 'square-footage',
                                          '--out', str(output)])

        assert result.exit_code == 0
        assert 'Maple Court: 75.00% = $60.00' in result.output
        assert output.exists()

    def test_allocate_suggested_method(self, files):
        """Test that the rule table picks the method when none is given."""
        _, expenses, properties = files

        result = self.runner.invoke(cli, ['allocate', '--expenses', str(expenses), '--expense-id', 'e1',
                                          '--properties', str(properties)])

        assert result.exit_code == 0
        assert 'Applied rule: Utilities - Equal Split' in result.output
        assert 'Oak Villas: 50.00% = $60.00' in result.output

    def test_allocate_unknown_expense(self, files):
        """Test the error path for a missing expense."""
        _, expenses, properties = files

        result = self.runner.invoke(cli, ['allocate', '--expenses', str(expenses), '--expense-id', 'nope',
                                          '--properties', str(properties), '--method', 'equal'])

        assert result.exit_code == 1
        assert 'Error: Expense nope not found' in result.output

    def test_tax_summary_json(self, files):
        """Test the tax software export."""
        _, expenses, _ = files

        result = self.runner.invoke(cli, ['tax-summary', '--expenses', str(expenses), '--property', 'prop-1',
                                          '--year', '2024', '--json'])

        assert result.exit_code == 0
        assert '"utilities"' in result.output
        assert '"repairs_and_maintenance"' in result.output

    def test_tax_summary_text(self, files):
        """Test the plain text tax summary."""
        _, expenses, _ = files

        result = self.runner.invoke(cli, ['tax-summary', '--expenses', str(expenses), '--property', 'prop-1',
                                          '--year', '2024'])

        assert result.exit_code == 0
        assert 'Total expenses: $200.00' in result.output

    def test_anomalies_none(self, files):
        """Test anomaly detection output without anomalies."""
        _, expenses, _ = files

        result = self.runner.invoke(cli, ['anomalies', '--expenses', str(expenses), '--property', 'prop-1',
                                          '--as-of', '2024-04-30'])

        assert result.exit_code == 0
        assert 'No anomalies detected' in result.output

    def test_trends(self, files):
        """Test the spending pattern report."""
        _, expenses, _ = files

        result = self.runner.invoke(cli, ['trends', '--expenses', str(expenses), '--property', 'prop-1',
                                          '--months', '6', '--as-of', '2024-04-30'])

        assert result.exit_code == 0
        assert 'utilities:' in result.output
        assert 'repairs:' in result.output
