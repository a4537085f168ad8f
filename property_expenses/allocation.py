"""Splitting shared expenses across properties."""

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from . import tables
from .errors import ValidationError
from .models import CategorySelection, Expense, PropertyMetrics, round_half_up
from .storage import ExpenseRepository

logger = logging.getLogger(__name__)

ALLOCATION_METHODS = ('percentage', 'fixed', 'usage-based', 'square-footage')
RULE_METHODS = ('equal', 'percentage', 'usage-based', 'square-footage')
STATUSES = ('pending', 'approved', 'allocated', 'rejected')
TERMINAL_STATUSES = ('allocated', 'rejected')
AUDIT_ACTIONS = ('created', 'modified', 'approved', 'rejected', 'allocated')

PERCENTAGE_TOLERANCE = 0.01

# Rule method -> (PropertyMetrics attribute, justification template)
METRIC_ALLOCATIONS = {
    'square-footage': ('square_footage', 'Based on {value:g} sq ft of {total:g} total'),
    'usage-based': ('unit_count', 'Based on {value:g} units of {total:g} total'),
    'percentage': ('monthly_revenue', 'Based on ${value:,.2f} revenue of ${total:,.2f} total'),
}


@dataclass(frozen=True)
class PropertyAllocation:
    """One property's share of a shared expense."""
    property_id: str
    percentage: float
    amount_cents: int = 0
    method: str = 'percentage'
    property_name: str = ''
    justification: Optional[str] = None

    def __post_init__(self):
        if self.method not in ALLOCATION_METHODS:
            raise ValidationError(f"Unknown allocation method: {self.method}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'property_id': self.property_id,
            'property_name': self.property_name,
            'percentage': self.percentage,
            'amount_cents': self.amount_cents,
            'method': self.method,
            'justification': self.justification,
        }


@dataclass(frozen=True)
class AllocationRule:
    """Default splitting method for expenses of certain categories."""
    name: str
    method: str
    description: str = ''
    category_ids: Tuple[str, ...] = ()
    subcategory_ids: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    is_active: bool = True

    def __post_init__(self):
        if self.method not in RULE_METHODS:
            raise ValidationError(f"Unknown allocation rule method: {self.method}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AllocationRule":
        return cls(
            name=data['name'],
            method=data['method'],
            description=data.get('description', ''),
            category_ids=tuple(data.get('category_ids') or ()),
            subcategory_ids=tuple(data.get('subcategory_ids') or ()),
            keywords=tuple(k.lower() for k in data.get('keywords') or ()),
            is_active=bool(data.get('is_active', True)),
        )

    def applies_to(self, expense: Expense) -> bool:
        if expense.category_id in self.category_ids:
            return True
        if expense.subcategory_id and expense.subcategory_id in self.subcategory_ids:
            return True
        description = expense.description.lower()
        return any(keyword in description for keyword in self.keywords)


@dataclass
class SharedExpense:
    """An expense split across properties, tracked until it is allocated."""
    id: str
    original_expense_id: str
    original_amount_cents: int
    description: str
    category_id: str
    subcategory_id: Optional[str]
    expense_date: date
    allocations: List[PropertyAllocation]
    method: str
    total_allocated: int
    remaining_amount: int
    created_by: str
    status: str = 'pending'
    approved_by: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    allocated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.status not in STATUSES:
            raise ValidationError(f"Unknown shared expense status: {self.status}")


@dataclass(frozen=True)
class AllocationSuggestion:
    allocations: Tuple[PropertyAllocation, ...]
    method: str
    confidence: float
    reasoning: str


@dataclass
class AllocationValidation:
    """Advisory check result; never raised."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class BulkAllocationResult:
    successful: List[SharedExpense] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (expense_id, error)


@dataclass(frozen=True)
class AllocationAuditEntry:
    id: str
    shared_expense_id: str
    action: str
    performed_by: str
    performed_at: datetime
    changes: Tuple[Tuple[str, Any, Any], ...] = ()  # (field, old, new)
    notes: Optional[str] = None


class AllocationAuditLog:
    """In-memory audit trail of shared expense changes."""

    def __init__(self):
        self._entries: List[AllocationAuditEntry] = []
        self._lock = threading.Lock()

    def record(self, shared_expense_id: str, action: str, performed_by: str,
               changes: Sequence[Tuple[str, Any, Any]] = (), notes: Optional[str] = None) -> AllocationAuditEntry:
        if action not in AUDIT_ACTIONS:
            raise ValidationError(f"Unknown audit action: {action}")
        entry = AllocationAuditEntry(
            id=uuid.uuid4().hex,
            shared_expense_id=shared_expense_id,
            action=action,
            performed_by=performed_by,
            performed_at=datetime.now(),
            changes=tuple(changes),
            notes=notes,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self, shared_expense_id: Optional[str] = None) -> List[AllocationAuditEntry]:
        with self._lock:
            if shared_expense_id is None:
                return list(self._entries)
            return [e for e in self._entries if e.shared_expense_id == shared_expense_id]


@dataclass(frozen=True)
class CostCenter:
    """Group of properties sharing category costs by fixed percentages."""
    id: str
    name: str
    property_ids: Tuple[str, ...]
    category_percentages: Mapping[str, float]
    description: str = ''


@dataclass
class PropertyAllocationTotals:
    property_name: str = ''
    allocated_amount: int = 0
    expense_count: int = 0
    allocation_percentage: float = 0.0
    category_breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass
class AllocationSummary:
    period_start: date
    period_end: date
    total_shared_expenses: int
    total_allocated_amount: int
    property_breakdown: Dict[str, PropertyAllocationTotals]
    method_breakdown: Dict[str, Dict[str, float]]


def load_allocation_rules(rules_dir: Optional[Path] = None) -> List[AllocationRule]:
    return [AllocationRule.from_mapping(rule) for rule in tables.allocation_rules(rules_dir)]


def generate_default_allocations(method: str, properties: Sequence[PropertyMetrics]) -> List[PropertyAllocation]:
    """
    Split 100% across properties according to a rule method.

    'equal' divides evenly; 'square-footage', 'usage-based' (unit count) and
    'percentage' (monthly revenue) weight each property by its share of the
    metric total.

    Returns:
        Allocations with zero amounts; empty when there are no properties or
        the metric total is zero
    """
    if method not in RULE_METHODS:
        raise ValidationError(f"Unknown allocation rule method: {method}")
    if not properties:
        return []

    if method == 'equal':
        share = 100 / len(properties)
        return [
            PropertyAllocation(
                property_id=p.property_id,
                property_name=p.property_name,
                percentage=share,
                method='percentage',
                justification='Equal split among all properties',
            )
            for p in properties
        ]

    attribute, template = METRIC_ALLOCATIONS[method]
    values = [getattr(p, attribute) or 0 for p in properties]

    total = sum(values)
    if total <= 0:
        logger.warning(f"Cannot allocate by {method}: metric total is zero")
        return []

    return [
        PropertyAllocation(
            property_id=p.property_id,
            property_name=p.property_name,
            percentage=value / total * 100,
            method=method,
            justification=template.format(value=value, total=total),
        )
        for p, value in zip(properties, values)
    ]


def with_amounts(allocations: Sequence[PropertyAllocation], amount_cents: int) -> List[PropertyAllocation]:
    """Fill in each allocation's amount from its percentage, rounding halves up."""
    return [replace(a, amount_cents=round_half_up(amount_cents * a.percentage / 100)) for a in allocations]


def validate_allocation(allocations: Sequence[PropertyAllocation]) -> AllocationValidation:
    """Report problems with an allocation set without raising."""
    result = AllocationValidation()

    total = sum(a.percentage for a in allocations)
    if not math.isfinite(total) or abs(total - 100) > PERCENTAGE_TOLERANCE:
        result.errors.append(f"Total allocation percentage is {total:.2f}%, must equal 100%")

    for a in allocations:
        name = a.property_name or a.property_id
        if a.percentage < 0:
            result.errors.append(f"Property {name} has negative percentage: {a.percentage}%")
        if a.amount_cents < 0:
            result.errors.append(f"Property {name} has negative amount: ${a.amount_cents / 100:.2f}")

    zero = sum(1 for a in allocations if a.percentage == 0)
    if zero:
        result.warnings.append(f"{zero} properties have 0% allocation")

    small = sum(1 for a in allocations if 0 < a.percentage < 1)
    if small:
        result.warnings.append(f"{small} properties have very small allocations (<1%)")

    return result


class AllocationEngine:
    """Create, approve and apply shared expense allocations."""

    def __init__(self, repository: Optional[ExpenseRepository] = None,
                 rules: Optional[Sequence[AllocationRule]] = None,
                 audit_log: Optional[AllocationAuditLog] = None,
                 rules_dir: Optional[Path] = None):
        """
        Initialize the engine.

        Args:
            repository: Expense source used by bulk allocation
            rules: Allocation rules; defaults to the packaged table
            audit_log: Where lifecycle changes are recorded
            rules_dir: Alternative directory holding the rule tables
        """
        self.repository = repository
        self.rules = list(rules) if rules is not None else load_allocation_rules(rules_dir)
        self.audit_log = audit_log if audit_log is not None else AllocationAuditLog()

    def _audit(self, shared: SharedExpense, action: str, performed_by: str,
               changes: Sequence[Tuple[str, Any, Any]] = (), notes: Optional[str] = None):
        try:
            self.audit_log.record(shared.id, action, performed_by, changes, notes)
        except Exception as e:
            logger.error(f"Failed to record audit entry for {shared.id}: {e}")

    def find_applicable_rule(self, expense: Expense) -> Optional[AllocationRule]:
        """First active rule matching the expense's category, subcategory or description."""
        for rule in self.rules:
            if rule.is_active and rule.applies_to(expense):
                return rule
        return None

    def suggest_allocations(self, expense: Expense, properties: Sequence[PropertyMetrics]) -> AllocationSuggestion:
        """
        Suggest how to split an expense across properties.

        A matching rule gives its method with confidence 0.8; otherwise an
        equal split is suggested with confidence 0.4.
        """
        rule = self.find_applicable_rule(expense)
        if rule:
            allocations = generate_default_allocations(rule.method, properties)
            return AllocationSuggestion(
                allocations=tuple(with_amounts(allocations, expense.amount_cents)),
                method=rule.method,
                confidence=0.8,
                reasoning=f"Applied rule: {rule.name} - {rule.description}",
            )

        allocations = generate_default_allocations('equal', properties)
        return AllocationSuggestion(
            allocations=tuple(with_amounts(allocations, expense.amount_cents)),
            method='equal',
            confidence=0.4,
            reasoning='No specific allocation rule found, suggesting equal split',
        )

    def create_shared_expense_allocation(self, expense: Expense, allocations: Sequence[PropertyAllocation],
                                         method: str, created_by: str) -> SharedExpense:
        """
        Split an expense by percentage.

        Each amount is rounded independently, so the allocated total can
        differ from the original by a few cents; that difference is kept in
        ``remaining_amount`` and not redistributed.

        Raises:
            ValidationError: if the percentages do not sum to 100 +/- 0.01
        """
        total_percentage = sum(a.percentage for a in allocations)
        if not math.isfinite(total_percentage) or abs(total_percentage - 100) > PERCENTAGE_TOLERANCE:
            raise ValidationError(
                f"Allocation percentages must sum to 100%, got {total_percentage:.2f}%"
            )

        priced = with_amounts(allocations, expense.amount_cents)
        total_allocated = sum(a.amount_cents for a in priced)

        shared = SharedExpense(
            id=uuid.uuid4().hex,
            original_expense_id=expense.id,
            original_amount_cents=expense.amount_cents,
            description=expense.description,
            category_id=expense.category_id,
            subcategory_id=expense.subcategory_id,
            expense_date=expense.expense_date,
            allocations=priced,
            method=method,
            total_allocated=total_allocated,
            remaining_amount=expense.amount_cents - total_allocated,
            created_by=created_by,
        )

        logger.info(f"Created shared expense {shared.id} for expense {expense.id} across "
                    f"{len(priced)} properties (remaining {shared.remaining_amount} cents)")
        self._audit(shared, 'created', created_by)
        return shared

    def approve(self, shared: SharedExpense, approved_by: str) -> SharedExpense:
        if shared.status != 'pending':
            raise ValidationError(f"Cannot approve shared expense in status '{shared.status}'")
        shared.status = 'approved'
        shared.approved_by = approved_by
        self._audit(shared, 'approved', approved_by, [('status', 'pending', 'approved')])
        return shared

    def reject(self, shared: SharedExpense, rejected_by: str, notes: Optional[str] = None) -> SharedExpense:
        if shared.status in TERMINAL_STATUSES:
            raise ValidationError(f"Cannot reject shared expense in status '{shared.status}'")
        old_status = shared.status
        shared.status = 'rejected'
        self._audit(shared, 'rejected', rejected_by, [('status', old_status, 'rejected')], notes)
        return shared

    def apply_allocation(self, shared: SharedExpense, approved_by: str) -> List[Expense]:
        """
        Create one expense per property with a non-zero amount.

        Raises:
            ValidationError: if the shared expense is already allocated or
                was rejected
        """
        if shared.status in TERMINAL_STATUSES:
            raise ValidationError(f"Shared expense {shared.id} is already {shared.status}")

        created = []
        for allocation in shared.allocations:
            if allocation.amount_cents <= 0:
                continue
            note = allocation.justification or allocation.method
            created.append(Expense(
                id=uuid.uuid4().hex,
                property_id=allocation.property_id,
                amount_cents=allocation.amount_cents,
                description=f"{shared.description} (Allocated: {allocation.percentage:.1f}% - {note})",
                expense_date=shared.expense_date,
                category_selection=CategorySelection(
                    category_id=shared.category_id,
                    subcategory_id=shared.subcategory_id,
                    confidence=1.0,
                    is_auto_suggested=False,
                ),
                is_tax_deductible=True,
                tax_category='Other Business Expenses',
                property_allocation=[{
                    'property_id': allocation.property_id,
                    'percentage': allocation.percentage,
                    'amount_cents': allocation.amount_cents,
                }],
                created_by=shared.created_by,
            ))

        old_status = shared.status
        shared.status = 'allocated'
        shared.approved_by = approved_by
        shared.allocated_at = datetime.now()

        logger.info(f"Applied shared expense {shared.id}: created {len(created)} property expenses")
        self._audit(shared, 'allocated', approved_by, [('status', old_status, 'allocated')])
        return created

    def process_bulk_allocations(self, expense_ids: Sequence[str], template: Sequence[PropertyAllocation],
                                 method: str, created_by: str) -> BulkAllocationResult:
        """
        Apply one allocation template to several expenses.

        Each expense is handled on its own; failures are collected and the
        batch continues.
        """
        if self.repository is None:
            raise ValidationError("Bulk allocation requires an expense repository")

        result = BulkAllocationResult()
        for expense_id in expense_ids:
            try:
                expense = self.repository.get_expense(expense_id)
                result.successful.append(
                    self.create_shared_expense_allocation(expense, template, method, created_by)
                )
            except Exception as e:
                logger.error(f"Bulk allocation failed for expense {expense_id}: {e}")
                result.failed.append((expense_id, str(e)))

        logger.info(f"Bulk allocation: {len(result.successful)} succeeded, {len(result.failed)} failed")
        return result

    def allocate_to_cost_centers(self, expense: Expense, cost_centers: Sequence[CostCenter]) -> List[PropertyAllocation]:
        """Split each matching cost center's percentage evenly over its properties."""
        allocations = []
        for center in cost_centers:
            percentage = center.category_percentages.get(expense.category_id, 0)
            if percentage <= 0 or not center.property_ids:
                continue

            count = len(center.property_ids)
            per_property = percentage / count
            for property_id in center.property_ids:
                allocations.append(PropertyAllocation(
                    property_id=property_id,
                    percentage=per_property,
                    amount_cents=round_half_up(expense.amount_cents * per_property / 100),
                    method='percentage',
                    justification=f"Cost center: {center.name} ({percentage:g}% split among {count} properties)",
                ))
        return allocations

    def summarize_allocations(self, shared_expenses: Sequence[SharedExpense],
                              start: date, end: date) -> AllocationSummary:
        """
        Totals per property and per method for shared expenses dated in
        [start, end]. Rejected shared expenses are left out.
        """
        selected = [
            s for s in shared_expenses
            if start <= s.expense_date <= end and s.status != 'rejected'
        ]

        properties: Dict[str, PropertyAllocationTotals] = {}
        methods: Dict[str, Dict[str, float]] = {}
        total_allocated = 0

        for shared in selected:
            total_allocated += shared.total_allocated

            method = methods.setdefault(shared.method, {'amount': 0, 'count': 0, 'percentage': 0.0})
            method['amount'] += shared.total_allocated
            method['count'] += 1

            for allocation in shared.allocations:
                totals = properties.setdefault(
                    allocation.property_id, PropertyAllocationTotals(property_name=allocation.property_name)
                )
                totals.allocated_amount += allocation.amount_cents
                totals.expense_count += 1
                totals.category_breakdown[shared.category_id] = (
                    totals.category_breakdown.get(shared.category_id, 0) + allocation.amount_cents
                )

        if total_allocated:
            for totals in properties.values():
                totals.allocation_percentage = totals.allocated_amount / total_allocated * 100
            for method in methods.values():
                method['percentage'] = method['amount'] / total_allocated * 100

        return AllocationSummary(
            period_start=start,
            period_end=end,
            total_shared_expenses=len(selected),
            total_allocated_amount=total_allocated,
            property_breakdown=properties,
            method_breakdown=methods,
        )
