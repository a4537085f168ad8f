"""Read access to historical expenses.

The engine never writes expenses; persistence belongs to the host
application. Repositories here only answer filtered reads.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import NotFoundError, StorageError, ValidationError
from .models import Expense

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpenseFilters:
    """Filters accepted by ``ExpenseRepository.get_expenses``."""
    property_id: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category_id: Optional[str] = None

    def matches(self, expense: Expense) -> bool:
        if self.property_id and expense.property_id != self.property_id:
            return False
        if self.date_from and expense.expense_date < self.date_from:
            return False
        if self.date_to and expense.expense_date > self.date_to:
            return False
        if self.category_id and expense.category_id != self.category_id:
            return False
        return True


class ExpenseRepository(ABC):
    """Source of historical expenses."""

    @abstractmethod
    def get_expenses(self, filters: ExpenseFilters) -> List[Expense]:
        """
        Fetch expenses matching the filters.

        Raises:
            StorageError: if the backing store cannot be read
        """
        pass

    def get_expense(self, expense_id: str) -> Expense:
        """Fetch one expense by id, raising NotFoundError when absent."""
        for expense in self.get_expenses(ExpenseFilters()):
            if expense.id == expense_id:
                return expense
        raise NotFoundError(f"Expense {expense_id} not found")


class InMemoryExpenseRepository(ExpenseRepository):
    """Repository over a list held in memory."""

    def __init__(self, expenses: Optional[Iterable[Expense]] = None):
        self.expenses: List[Expense] = list(expenses or [])

    def add(self, expense: Expense):
        self.expenses.append(expense)

    def get_expenses(self, filters: ExpenseFilters) -> List[Expense]:
        return [e for e in self.expenses if filters.matches(e)]


class JsonExpenseRepository(ExpenseRepository):
    """Repository backed by a JSON file holding a list of expense records."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._expenses: Optional[List[Expense]] = None

    def _load(self) -> List[Expense]:
        if self._expenses is not None:
            return self._expenses

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read expenses from {self.path}: {e}")
            raise StorageError(f"Cannot read expenses from {self.path}: {e}")

        if isinstance(records, dict):
            records = records.get('expenses', [])

        expenses = []
        for idx, record in enumerate(records):
            try:
                expenses.append(Expense.from_dict(record))
            except ValidationError as e:
                logger.warning(f"Skipping expense record {idx} in {self.path.name}: {e}")

        logger.info(f"Loaded {len(expenses)} expenses from {self.path}")
        self._expenses = expenses
        return expenses

    def get_expenses(self, filters: ExpenseFilters) -> List[Expense]:
        return [e for e in self._load() if filters.matches(e)]
