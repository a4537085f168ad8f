"""Expense records shared by every component of the engine."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from dateutil.parser import parse as date_parse

from .errors import ValidationError

logger = logging.getLogger(__name__)


def round_half_up(value: Any) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def coerce_date(value: Any) -> date:
    """Turn an ISO string, datetime or date into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date_parse(value).date()
        except (ValueError, OverflowError) as e:
            raise ValidationError(f"Invalid date '{value}': {e}")
    raise ValidationError(f"Invalid date value: {value!r}")


@dataclass(frozen=True)
class CategorySelection:
    """Category chosen for an expense, either by a user or by auto-suggestion."""
    category_id: str
    subcategory_id: Optional[str] = None
    confidence: Optional[float] = None
    is_auto_suggested: bool = False

    def __post_init__(self):
        if not self.category_id:
            raise ValidationError("Category is required")
        if self.confidence is not None and not (0.0 <= self.confidence <= 1.0):
            raise ValidationError(f"Category confidence out of range: {self.confidence}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategorySelection":
        return cls(
            category_id=data.get('category_id', ''),
            subcategory_id=data.get('subcategory_id') or None,
            confidence=data.get('confidence'),
            is_auto_suggested=bool(data.get('is_auto_suggested', False)),
        )


@dataclass
class Expense:
    """A single expense record as supplied by the expense store."""
    id: str
    property_id: str
    amount_cents: int
    description: str
    expense_date: date
    category_selection: Optional[CategorySelection] = None
    category: Optional[str] = None  # legacy free-form category
    receipt_photos: List[str] = field(default_factory=list)
    is_tax_deductible: bool = False
    tax_category: Optional[str] = None
    property_allocation: List[Dict[str, Any]] = field(default_factory=list)
    created_by: Optional[str] = None
    currency: str = 'USD'

    def __post_init__(self):
        if not isinstance(self.amount_cents, int) or isinstance(self.amount_cents, bool):
            raise ValidationError(f"Amount must be integer cents, got {self.amount_cents!r}")

    @property
    def category_id(self) -> str:
        """Effective category: explicit selection, then legacy field, then 'other'."""
        if self.category_selection:
            return self.category_selection.category_id
        if self.category:
            return self.category.lower()
        return 'other'

    @property
    def subcategory_id(self) -> Optional[str]:
        if self.category_selection:
            return self.category_selection.subcategory_id
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Expense":
        """Build an expense from a plain dictionary (e.g. a JSON record)."""
        selection = data.get('category_selection')
        try:
            return cls(
                id=str(data['id']),
                property_id=str(data['property_id']),
                amount_cents=data['amount_cents'],
                description=data.get('description', ''),
                expense_date=coerce_date(data['expense_date']),
                category_selection=CategorySelection.from_dict(selection) if selection else None,
                category=data.get('category'),
                receipt_photos=list(data.get('receipt_photos') or []),
                is_tax_deductible=bool(data.get('is_tax_deductible', False)),
                tax_category=data.get('tax_category'),
                property_allocation=list(data.get('property_allocation') or []),
                created_by=data.get('created_by'),
                currency=data.get('currency', 'USD'),
            )
        except KeyError as e:
            raise ValidationError(f"Expense record missing field {e}")

    def to_dict(self) -> Dict[str, Any]:
        selection = None
        if self.category_selection:
            selection = {
                'category_id': self.category_selection.category_id,
                'subcategory_id': self.category_selection.subcategory_id,
                'confidence': self.category_selection.confidence,
                'is_auto_suggested': self.category_selection.is_auto_suggested,
            }
        return {
            'id': self.id,
            'property_id': self.property_id,
            'amount_cents': self.amount_cents,
            'description': self.description,
            'expense_date': self.expense_date.isoformat(),
            'category_selection': selection,
            'category': self.category,
            'receipt_photos': list(self.receipt_photos),
            'is_tax_deductible': self.is_tax_deductible,
            'tax_category': self.tax_category,
            'property_allocation': list(self.property_allocation),
            'created_by': self.created_by,
            'currency': self.currency,
        }


@dataclass(frozen=True)
class PropertyMetrics:
    """Per-property figures used to weight shared-cost allocations."""
    property_id: str
    property_name: str = ""
    square_footage: Optional[float] = None
    unit_count: Optional[int] = None
    occupancy_rate: Optional[float] = None
    monthly_revenue: Optional[float] = None
    usage_metrics: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PropertyMetrics":
        return cls(
            property_id=str(data['property_id']),
            property_name=data.get('property_name', ''),
            square_footage=data.get('square_footage'),
            unit_count=data.get('unit_count'),
            occupancy_rate=data.get('occupancy_rate'),
            monthly_revenue=data.get('monthly_revenue'),
            usage_metrics=dict(data.get('usage_metrics') or {}),
        )
