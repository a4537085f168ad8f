"""Tests for tax classification and tax-year summaries."""

from datetime import date

import pytest
from property_expenses.errors import StorageError, ValidationError
from property_expenses.models import CategorySelection, Expense
from property_expenses.storage import ExpenseRepository, InMemoryExpenseRepository
from property_expenses.tax import TaxClassifier, TaxRule, export_tax_data


def make_expense(expense_id, category_id, description, amount_cents=10000, expense_date=date(2024, 3, 1),
                 receipt_photos=()):
    return Expense(
        id=expense_id,
        property_id='prop-1',
        amount_cents=amount_cents,
        description=description,
        expense_date=expense_date,
        category_selection=CategorySelection(category_id),
        receipt_photos=list(receipt_photos),
    )


class BrokenRepository(ExpenseRepository):
    def get_expenses(self, filters):
        raise StorageError("database unavailable")


class TestTaxClassifier:
    """Test suite for TaxClassifier.classify."""

    def setup_method(self):
        """Set up test fixtures."""
        self.classifier = TaxClassifier()

    def test_category_rule(self):
        """Test classification by category."""
        classification = self.classifier.classify(make_expense('e1', 'utilities', 'Monthly power'))

        assert classification.is_deductible
        assert classification.deduction_percentage == 100
        assert classification.irs_category == 'Utilities'
        assert classification.confidence == 0.8
        assert classification.applied_rule_ids == ('utilities-deductible',)
        assert classification.warnings == ('Utilities - Fully Deductible: Business use portion only',)
        assert 'Utility bills' in classification.required_documentation

    def test_keyword_rule(self):
        """Test classification by description keyword."""
        classification = self.classifier.classify(make_expense('e1', 'misc', 'Attorney consultation'))

        assert classification.irs_category == 'Legal and Professional Services'

    def test_default_classification(self):
        """Test the fallback when no rule applies."""
        classification = self.classifier.classify(make_expense('e1', 'travel', 'Flight ticket'))

        assert classification.is_deductible
        assert classification.irs_category == 'Other Expenses'
        assert classification.confidence == 0.3
        assert classification.applied_rule_ids == ()
        assert classification.required_documentation == ('Receipt', 'Business purpose documentation')
        assert classification.warnings

    def test_partial_deduction(self):
        """Test deductible amounts under a partial rule."""
        rule = TaxRule(id='meals', name='Meals', is_deductible=True, deduction_percentage=50,
                       tax_category='Meals', keywords=('lunch',))
        classifier = TaxClassifier(rules=[rule])

        classification = classifier.classify(make_expense('e1', 'other', 'Team lunch'))

        assert classification.deductible_amount(1001) == 501

    def test_rule_percentage_validated(self):
        """Test that out-of-range percentages are rejected."""
        with pytest.raises(ValidationError):
            TaxRule(id='x', name='X', is_deductible=True, deduction_percentage=150, tax_category='Other')

    def test_category_description(self):
        """Test IRS category description lookup."""
        assert self.classifier.category_description('Utilities') == 'Business utilities'
        assert self.classifier.category_description('Unknown') == 'Unknown'


class TestTaxYearSummary:
    """Test suite for tax-year summaries."""

    def setup_method(self):
        """Set up test fixtures."""
        self.repository = InMemoryExpenseRepository([
            make_expense('e1', 'utilities', 'Electric bill', 10000),
            make_expense('e2', 'travel', 'Flight ticket', 5000, date(2024, 11, 2)),
            make_expense('e3', 'utilities', 'Electric bill', 7000, date(2023, 12, 30)),
        ])
        self.classifier = TaxClassifier(self.repository)

    def test_summarize_year(self):
        """Test totals and category breakdown for one calendar year."""
        summary = self.classifier.summarize_year('prop-1', 2024)

        assert summary.total_expenses == 15000
        assert summary.total_deductible == 15000
        assert summary.total_non_deductible == 0
        assert summary.deductible_percentage == pytest.approx(100)
        assert summary.category_breakdown['Utilities'].total_amount == 10000
        assert summary.category_breakdown['Other Expenses'].expense_count == 1
        assert 'Top expense categories: Utilities, Other Expenses' in summary.recommendations

    def test_low_deductible_ratio(self):
        """Test the review recommendation below 70% deductible."""
        rule = TaxRule(id='none', name='None', is_deductible=False, deduction_percentage=0,
                       tax_category='Personal', keywords=('personal',))
        classifier = TaxClassifier(rules=[rule])

        summary = classifier.summarize_expenses('prop-1', 2024, [make_expense('e1', 'other', 'Personal item')])

        assert summary.total_deductible == 0
        assert summary.total_non_deductible == 10000
        assert summary.recommendations[0] == 'Consider reviewing expense categorization to maximize deductions'

    def test_empty_year(self):
        """Test a year without expenses."""
        summary = self.classifier.summarize_year('prop-1', 2020)

        assert summary.total_expenses == 0
        assert summary.deductible_percentage == 0.0
        assert summary.category_breakdown == {}

    def test_storage_failure_propagates(self):
        """Test that an unreadable store is reported to the caller."""
        with pytest.raises(StorageError):
            TaxClassifier(BrokenRepository()).summarize_year('prop-1', 2024)

    def test_requires_repository(self):
        """Test summary without a repository."""
        with pytest.raises(ValidationError):
            TaxClassifier().summarize_year('prop-1', 2024)

    def test_export(self):
        """Test the tax software layout."""
        data = export_tax_data(self.classifier.summarize_year('prop-1', 2024), 'turbotax')

        assert data['format'] == 'turbotax'
        assert data['business_expenses']['utilities']['amount'] == 100.0
        assert data['business_expenses']['other_expenses']['count'] == 1
        assert data['totals']['total_deductible'] == 150.0

    def test_export_unknown_format(self):
        """Test export format validation."""
        with pytest.raises(ValidationError):
            export_tax_data(self.classifier.summarize_year('prop-1', 2024), 'quickbooks')


class TestDocumentation:
    """Test suite for documentation checks."""

    def test_missing_documents(self):
        """Test that receipts, descriptions and rule documents are requested."""
        classifier = TaxClassifier()
        expense = make_expense('e1', 'utilities', 'Power')

        check = classifier.validate_documentation(expense, classifier.classify(expense))

        assert not check.is_complete
        assert check.missing_documents == [
            'Receipt or invoice',
            'Detailed business purpose description',
            'Utility bills',
            'Property records',
        ]

    def test_default_documents(self):
        """Test that the default receipt requirement is covered by photos."""
        classifier = TaxClassifier()
        expense = make_expense('e1', 'travel', 'Flight to site inspection visit', receipt_photos=['r.jpg'])

        check = classifier.validate_documentation(expense, classifier.classify(expense))

        assert check.missing_documents == ['Business purpose documentation']
