"""Tax deductibility classification and tax-year summaries."""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from . import tables
from .errors import ValidationError
from .models import Expense, round_half_up
from .storage import ExpenseFilters, ExpenseRepository

logger = logging.getLogger(__name__)

DEFAULT_TAX_CATEGORY = 'Other Expenses'
EXPORT_FORMATS = ('turbotax', 'hrblock', 'generic')
LOW_DEDUCTIBLE_RATIO = 70


@dataclass(frozen=True)
class TaxRule:
    """Deductibility treatment for expenses matching categories or keywords."""
    id: str
    name: str
    is_deductible: bool
    deduction_percentage: int
    tax_category: str
    description: str = ''
    category_ids: Tuple[str, ...] = ()
    subcategory_ids: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    irs_code: Optional[str] = None
    requirements: Tuple[str, ...] = ()
    limitations: Tuple[str, ...] = ()
    documentation: Tuple[str, ...] = ()

    def __post_init__(self):
        if not (0 <= self.deduction_percentage <= 100):
            raise ValidationError(f"Rule {self.id} deduction percentage out of range: {self.deduction_percentage}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TaxRule":
        return cls(
            id=data['id'],
            name=data['name'],
            is_deductible=bool(data['is_deductible']),
            deduction_percentage=int(data['deduction_percentage']),
            tax_category=data['tax_category'],
            description=data.get('description', ''),
            category_ids=tuple(data.get('category_ids') or ()),
            subcategory_ids=tuple(data.get('subcategory_ids') or ()),
            keywords=tuple(k.lower() for k in data.get('keywords') or ()),
            irs_code=data.get('irs_code'),
            requirements=tuple(data.get('requirements') or ()),
            limitations=tuple(data.get('limitations') or ()),
            documentation=tuple(data.get('documentation') or ()),
        )

    def applies_to(self, expense: Expense) -> bool:
        if expense.category_id in self.category_ids:
            return True
        if expense.subcategory_id and expense.subcategory_id in self.subcategory_ids:
            return True
        description = expense.description.lower()
        return any(keyword in description for keyword in self.keywords)


@dataclass(frozen=True)
class TaxClassification:
    """How an expense is treated for tax purposes."""
    expense_id: str
    is_deductible: bool
    deduction_percentage: int
    irs_category: str
    tax_category: str
    confidence: float
    applied_rule_ids: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    required_documentation: Tuple[str, ...] = ()

    def __post_init__(self):
        if not (0 <= self.deduction_percentage <= 100):
            raise ValidationError(f"Deduction percentage out of range: {self.deduction_percentage}")

    def deductible_amount(self, amount_cents: int) -> int:
        if not self.is_deductible:
            return 0
        return round_half_up(amount_cents * self.deduction_percentage / 100)


@dataclass
class TaxCategoryTotal:
    irs_category: str
    description: str
    total_amount: int = 0
    expense_count: int = 0
    average_amount: float = 0.0


@dataclass
class TaxYearSummary:
    """Deductible totals of one property for one calendar year."""
    tax_year: int
    property_id: str
    total_expenses: int = 0
    total_deductible: int = 0
    total_non_deductible: int = 0
    deductible_percentage: float = 0.0
    category_breakdown: Dict[str, TaxCategoryTotal] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class DocumentationCheck:
    missing_documents: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_documents


def load_tax_rules(rules_dir: Optional[Path] = None) -> List[TaxRule]:
    return [TaxRule.from_mapping(rule) for rule in tables.tax_rules(rules_dir)]


class TaxClassifier:
    """Apply ordered tax rules to expenses and summarize tax years."""

    MATCH_CONFIDENCE = 0.8
    DEFAULT_CONFIDENCE = 0.3

    def __init__(self, repository: Optional[ExpenseRepository] = None,
                 rules: Optional[Sequence[TaxRule]] = None,
                 rules_dir: Optional[Path] = None):
        self.repository = repository
        self.rules = list(rules) if rules is not None else load_tax_rules(rules_dir)
        self.irs_categories = tables.irs_categories(rules_dir)

    def classify(self, expense: Expense) -> TaxClassification:
        """
        Classify an expense with the first applicable rule.

        Without a matching rule the expense is treated as fully deductible
        under 'Other Expenses' with low confidence and a review warning.

        Args:
            expense: Expense to classify

        Returns:
            TaxClassification for the expense
        """
        for rule in self.rules:
            if not rule.applies_to(expense):
                continue

            warnings = []
            if rule.limitations:
                warnings.append(f"{rule.name}: {', '.join(rule.limitations)}")

            logger.debug(f"Expense {expense.id} matched tax rule {rule.id}")
            return TaxClassification(
                expense_id=expense.id,
                is_deductible=rule.is_deductible,
                deduction_percentage=rule.deduction_percentage,
                irs_category=rule.tax_category,
                tax_category=rule.tax_category,
                confidence=self.MATCH_CONFIDENCE,
                applied_rule_ids=(rule.id,),
                warnings=tuple(warnings),
                required_documentation=tuple(dict.fromkeys(rule.documentation)),
            )

        logger.debug(f"No tax rule for expense {expense.id}, using default classification")
        return TaxClassification(
            expense_id=expense.id,
            is_deductible=True,
            deduction_percentage=100,
            irs_category=DEFAULT_TAX_CATEGORY,
            tax_category=DEFAULT_TAX_CATEGORY,
            confidence=self.DEFAULT_CONFIDENCE,
            warnings=('No specific tax rule found - requires manual review',),
            required_documentation=('Receipt', 'Business purpose documentation'),
        )

    def category_description(self, irs_category: str) -> str:
        for category in self.irs_categories.values():
            if category.get('name') == irs_category:
                return category.get('description', irs_category)
        return irs_category

    def summarize_year(self, property_id: str, tax_year: int) -> TaxYearSummary:
        """
        Classify every expense of a property dated in a calendar year.

        Args:
            property_id: Property to summarize
            tax_year: Calendar year

        Returns:
            TaxYearSummary with totals per IRS category

        Raises:
            StorageError: if the expenses cannot be read
        """
        if self.repository is None:
            raise ValidationError("Tax year summary requires an expense repository")

        expenses = self.repository.get_expenses(ExpenseFilters(
            property_id=property_id,
            date_from=date(tax_year, 1, 1),
            date_to=date(tax_year, 12, 31),
        ))
        return self.summarize_expenses(property_id, tax_year, expenses)

    def summarize_expenses(self, property_id: str, tax_year: int, expenses: Sequence[Expense]) -> TaxYearSummary:
        summary = TaxYearSummary(tax_year=tax_year, property_id=property_id)
        warnings = []

        for expense in expenses:
            classification = self.classify(expense)
            deductible = classification.deductible_amount(expense.amount_cents)

            summary.total_expenses += expense.amount_cents
            summary.total_deductible += deductible
            summary.total_non_deductible += expense.amount_cents - deductible

            category = summary.category_breakdown.get(classification.irs_category)
            if category is None:
                category = TaxCategoryTotal(
                    irs_category=classification.irs_category,
                    description=self.category_description(classification.irs_category),
                )
                summary.category_breakdown[classification.irs_category] = category
            category.total_amount += deductible
            category.expense_count += 1

            warnings.extend(classification.warnings)

        for category in summary.category_breakdown.values():
            category.average_amount = category.total_amount / category.expense_count if category.expense_count else 0.0

        if summary.total_expenses:
            summary.deductible_percentage = summary.total_deductible / summary.total_expenses * 100

        summary.warnings = list(dict.fromkeys(warnings))
        summary.recommendations = self._recommendations(summary)

        logger.info(f"Tax year {tax_year} for property {property_id}: {len(expenses)} expenses, "
                    f"{summary.deductible_percentage:.1f}% deductible")
        return summary

    def _recommendations(self, summary: TaxYearSummary) -> List[str]:
        recommendations = []

        if summary.deductible_percentage < LOW_DEDUCTIBLE_RATIO:
            recommendations.append('Consider reviewing expense categorization to maximize deductions')

        top = sorted(summary.category_breakdown.values(), key=lambda c: c.total_amount, reverse=True)[:3]
        if top:
            recommendations.append(f"Top expense categories: {', '.join(c.irs_category for c in top)}")

        recommendations.append('Ensure all receipts and documentation are properly organized')
        recommendations.append('Consider consulting with a tax professional for complex situations')
        return recommendations

    def validate_documentation(self, expense: Expense, classification: TaxClassification) -> DocumentationCheck:
        """List the documents an expense still needs for its tax treatment."""
        check = DocumentationCheck()

        if not expense.receipt_photos:
            check.missing_documents.append('Receipt or invoice')
            check.recommendations.append('Upload receipt photo for this expense')

        if len(expense.description) < 10:
            check.missing_documents.append('Detailed business purpose description')
            check.recommendations.append('Add more detailed description of business purpose')

        for document in classification.required_documentation:
            # Receipts are covered by the photo check above
            if document == 'Receipt':
                continue
            check.missing_documents.append(document)
            check.recommendations.append(f"Ensure {document.lower()} is available for tax purposes")

        return check


def export_tax_data(summary: TaxYearSummary, format: str = 'generic') -> Dict[str, Any]:
    """
    Lay out a tax-year summary for tax preparation software.

    Amounts are in dollars, keyed by snake-cased IRS category.
    """
    if format not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported tax export format: {format}")

    business_expenses = {}
    for irs_category, total in summary.category_breakdown.items():
        key = re.sub(r'\s+', '_', irs_category.lower())
        business_expenses[key] = {
            'amount': total.total_amount / 100,
            'description': total.description,
            'count': total.expense_count,
        }

    return {
        'tax_year': summary.tax_year,
        'property_id': summary.property_id,
        'format': format,
        'business_expenses': business_expenses,
        'totals': {
            'total_deductible': summary.total_deductible / 100,
            'total_non_deductible': summary.total_non_deductible / 100,
            'deductible_percentage': summary.deductible_percentage,
        },
    }
