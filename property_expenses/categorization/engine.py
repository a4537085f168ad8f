"""Categorization orchestrator combining patterns, history and receipts."""

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import CollaboratorTimeout
from ..receipts.analyzer import (
    ReceiptAnalyzer,
    ReceiptBatchResult,
    ReceiptImageProcessor,
    analyze_receipt_images,
    call_with_timeout,
)
from ..storage import ExpenseRepository
from .learner import HistoricalPatternLearner, PatternCache
from .patterns import PatternDictionary
from .scoring import CategorySuggestion, extract_keywords, rank_suggestions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackEntry:
    """A user's final category choice compared with what was suggested."""
    id: str
    property_id: str
    text: str
    original_suggestions: Tuple[CategorySuggestion, ...]
    category_id: str
    subcategory_id: Optional[str]
    keywords: Tuple[str, ...]
    accepted: bool
    timestamp: datetime


class FeedbackStore(ABC):
    """Where categorization feedback is kept for later learning."""

    @abstractmethod
    def save(self, entry: FeedbackEntry):
        pass

    @abstractmethod
    def entries(self, property_id: str) -> List[FeedbackEntry]:
        pass


class InMemoryFeedbackStore(FeedbackStore):
    """Feedback held in process memory."""

    def __init__(self):
        self._entries: Dict[str, List[FeedbackEntry]] = {}
        self._lock = threading.Lock()

    def save(self, entry: FeedbackEntry):
        with self._lock:
            self._entries.setdefault(entry.property_id, []).append(entry)

    def entries(self, property_id: str) -> List[FeedbackEntry]:
        with self._lock:
            return list(self._entries.get(property_id, []))

    def clear(self, property_id: Optional[str] = None):
        with self._lock:
            if property_id is None:
                self._entries.clear()
            else:
                self._entries.pop(property_id, None)


@dataclass
class CategorizationResult:
    """Suggestions for one expense plus the receipt analyses behind them."""
    suggestions: List[CategorySuggestion]
    receipts: ReceiptBatchResult = field(default_factory=ReceiptBatchResult)
    combined_text: str = ""


class CategorizationEngine:
    """Suggest expense categories from merchant, description and receipt text."""

    MAX_SUGGESTIONS = 3
    MAX_RECEIPT_IMAGES = 3

    def __init__(self, repository: ExpenseRepository,
                 feedback_store: Optional[FeedbackStore] = None,
                 pattern_cache: Optional[PatternCache] = None,
                 ocr_processor: Optional[ReceiptImageProcessor] = None,
                 rules_dir: Optional[Path] = None):
        """
        Initialize the engine.

        Args:
            repository: Source of historical expenses for pattern learning
            feedback_store: Where accept/reject signals are recorded
            pattern_cache: Cache of learned patterns shared between engines
            ocr_processor: OCR collaborator used for receipt images
            rules_dir: Alternative directory holding the rule tables
        """
        self.dictionary = PatternDictionary(rules_dir)
        self.learner = HistoricalPatternLearner(repository, pattern_cache)
        self.receipt_analyzer = ReceiptAnalyzer(rules_dir)
        self.feedback_store = feedback_store if feedback_store is not None else InMemoryFeedbackStore()
        self.ocr_processor = ocr_processor

    def suggest_categories(self, merchant_name: str, description: str, receipt_text: str,
                           property_id: str, timeout: Optional[float] = None) -> List[CategorySuggestion]:
        """
        Rank category suggestions for an expense.

        Pattern dictionary matches and learned historical patterns are
        merged; the best three distinct categories are returned.

        Args:
            merchant_name: Merchant as entered or read from the receipt
            description: Free-text expense description
            receipt_text: OCR text of the receipts, may be empty
            property_id: Property whose history is consulted
            timeout: Seconds allowed for reading history

        Returns:
            Up to three suggestions, highest confidence first
        """
        combined_text = f"{merchant_name or ''} {description or ''} {receipt_text or ''}".strip()

        pattern_suggestions = self.dictionary.suggest(combined_text)

        try:
            learned = call_with_timeout(self.learner.learn, timeout, property_id)
        except CollaboratorTimeout as e:
            logger.warning(f"Historical patterns unavailable for property {property_id}: {e}")
            learned = {}

        keywords = extract_keywords(combined_text)
        historical_suggestions = self.learner.suggest(keywords, learned)

        suggestions = rank_suggestions(pattern_suggestions + historical_suggestions, self.MAX_SUGGESTIONS)
        logger.info(f"Suggested {[(s.category_id, s.subcategory_id) for s in suggestions]} "
                    f"for property {property_id}")
        return suggestions

    def categorize_expense(self, merchant_name: str, description: str, receipt_urls: Sequence[str],
                           property_id: str, timeout: Optional[float] = None) -> CategorizationResult:
        """
        Categorize an expense, reading up to three receipt images first.

        Args:
            merchant_name: Merchant as entered
            description: Free-text expense description
            receipt_urls: Receipt image locations for the OCR collaborator
            property_id: Property whose history is consulted
            timeout: Seconds allowed for receipt OCR and history reads together

        Returns:
            CategorizationResult with suggestions and receipt analyses
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        receipts = ReceiptBatchResult()

        if receipt_urls and self.ocr_processor is not None:
            receipts = analyze_receipt_images(
                receipt_urls, self.ocr_processor,
                max_images=self.MAX_RECEIPT_IMAGES,
                timeout=timeout,
                analyzer=self.receipt_analyzer,
            )
        elif receipt_urls:
            logger.warning("Receipt images supplied but no OCR processor configured")

        remaining = None
        if deadline is not None:
            remaining = max(0.0, deadline - time.monotonic())

        receipt_text = receipts.combined_text
        suggestions = self.suggest_categories(merchant_name, description, receipt_text,
                                              property_id, timeout=remaining)
        combined_text = f"{merchant_name or ''} {description or ''} {receipt_text}".strip()
        return CategorizationResult(suggestions=suggestions, receipts=receipts, combined_text=combined_text)

    def analyze_text_patterns(self, text: str) -> List[CategorySuggestion]:
        """Pattern-only suggestions (top five) without historical learning."""
        return self.dictionary.suggest(text)

    def record_feedback(self, original_suggestions: Sequence[CategorySuggestion], category_id: str,
                        subcategory_id: Optional[str], text: str, property_id: str) -> Optional[FeedbackEntry]:
        """
        Record whether the top suggestion matched the user's final choice.

        Failures are logged and never raised.

        Returns:
            The stored entry, or None when it could not be stored
        """
        try:
            top = original_suggestions[0] if original_suggestions else None
            accepted = bool(top and top.key == (category_id, subcategory_id))
            entry = FeedbackEntry(
                id=uuid.uuid4().hex,
                property_id=property_id,
                text=text.lower(),
                original_suggestions=tuple(original_suggestions),
                category_id=category_id,
                subcategory_id=subcategory_id,
                keywords=tuple(extract_keywords(text)),
                accepted=accepted,
                timestamp=datetime.now(),
            )
            self.feedback_store.save(entry)
        except Exception as e:
            logger.error(f"Failed to record categorization feedback: {e}")
            return None

        if accepted:
            logger.info(f"Suggestion accepted for property {property_id}: {category_id}")
        else:
            logger.info(f"Suggestion corrected for property {property_id}: user chose {category_id}")
        return entry

    def categorization_accuracy(self, property_id: str) -> Dict[str, Any]:
        """
        Summarize recorded feedback for a property.

        Returns:
            Dict with total_suggestions, correct_suggestions, accuracy and
            confidence (mean top-suggestion confidence, 0.5 without data)
        """
        try:
            entries = self.feedback_store.entries(property_id)
        except Exception as e:
            logger.error(f"Failed to read categorization feedback: {e}")
            entries = []

        total = len(entries)
        correct = sum(1 for e in entries if e.accepted)
        top_confidences = [e.original_suggestions[0].confidence for e in entries if e.original_suggestions]

        return {
            'total_suggestions': total,
            'correct_suggestions': correct,
            'accuracy': correct / total if total else 0.0,
            'confidence': sum(top_confidences) / len(top_confidences) if top_confidences else 0.5,
        }
