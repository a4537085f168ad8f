"""Property Expense Engine - categorize, analyze, allocate and classify property expenses."""

__version__ = "1.0.0"
__author__ = "Property Expense Team"
__email__ = ""

from .allocation import AllocationEngine, PropertyAllocation, SharedExpense
from .categorization import CategorizationEngine, CategorySuggestion
from .errors import ExpenseEngineError, NotFoundError, StorageError, ValidationError
from .export import ExcelExporter
from .models import CategorySelection, Expense, PropertyMetrics
from .receipts import OCRAnalysisResult, ReceiptAnalyzer
from .storage import ExpenseFilters, ExpenseRepository, InMemoryExpenseRepository, JsonExpenseRepository
from .tax import TaxClassifier
from .trends import TrendAnalyzer

__all__ = [
    'AllocationEngine',
    'CategorizationEngine',
    'CategorySelection',
    'CategorySuggestion',
    'ExcelExporter',
    'Expense',
    'ExpenseEngineError',
    'ExpenseFilters',
    'ExpenseRepository',
    'InMemoryExpenseRepository',
    'JsonExpenseRepository',
    'NotFoundError',
    'OCRAnalysisResult',
    'PropertyAllocation',
    'PropertyMetrics',
    'ReceiptAnalyzer',
    'SharedExpense',
    'StorageError',
    'TaxClassifier',
    'TrendAnalyzer',
    'ValidationError',
]
