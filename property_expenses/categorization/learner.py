"""Learning keyword-cluster to category mappings from past expenses."""

import logging
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..storage import ExpenseFilters, ExpenseRepository
from .scoring import CategorySuggestion, extract_keywords

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingExample:
    """A manually categorized expense viewed as training text."""
    text: str
    category_id: str
    subcategory_id: Optional[str] = None
    confidence: float = 1.0


@dataclass(frozen=True)
class LearnedPattern:
    """Category learned for one keyword cluster."""
    keywords: Tuple[str, ...]
    category_id: str
    subcategory_id: Optional[str]
    confidence: float
    support: int

    @property
    def key(self) -> str:
        return ' '.join(self.keywords)


class PatternCache:
    """Learned patterns per property, kept until explicitly invalidated."""

    def __init__(self):
        self._patterns: Dict[str, Dict[str, LearnedPattern]] = {}
        self._lock = threading.Lock()

    def get(self, property_id: str) -> Optional[Dict[str, LearnedPattern]]:
        with self._lock:
            return self._patterns.get(property_id)

    def put(self, property_id: str, patterns: Dict[str, LearnedPattern]):
        with self._lock:
            self._patterns[property_id] = dict(patterns)

    def invalidate(self, property_id: Optional[str] = None):
        """Drop one property's patterns, or all of them when no id is given."""
        with self._lock:
            if property_id is None:
                self._patterns.clear()
            else:
                self._patterns.pop(property_id, None)

    def __contains__(self, property_id: str) -> bool:
        with self._lock:
            return property_id in self._patterns


class HistoricalPatternLearner:
    """Build keyword patterns from a property's manually categorized expenses."""

    MIN_GROUP_SIZE = 2
    MAX_PATTERN_CONFIDENCE = 0.9
    MAX_SUGGESTION_CONFIDENCE = 0.8

    def __init__(self, repository: ExpenseRepository, cache: Optional[PatternCache] = None):
        self.repository = repository
        self.cache = cache

    def training_examples(self, property_id: str) -> List[TrainingExample]:
        """
        Collect training examples for a property.

        Auto-suggested categories are skipped since they are not user
        confirmed.

        Raises:
            ExpenseEngineError: if the repository cannot be read
        """
        examples = []
        for expense in self.repository.get_expenses(ExpenseFilters(property_id=property_id)):
            selection = expense.category_selection
            if selection is None or selection.is_auto_suggested:
                continue
            text = f"{expense.description} {' '.join(expense.receipt_photos)}".lower()
            examples.append(TrainingExample(
                text=text,
                category_id=selection.category_id,
                subcategory_id=selection.subcategory_id,
                confidence=selection.confidence if selection.confidence is not None else 1.0,
            ))
        return examples

    def learn(self, property_id: str) -> Dict[str, LearnedPattern]:
        """
        Learn patterns for a property.

        Examples are grouped by their exact keyword sequence; a group needs
        at least two members to become a pattern, and the pattern takes the
        group's most frequent category.

        Args:
            property_id: Property whose history is used

        Returns:
            Mapping of keyword key to learned pattern, empty when history
            cannot be read
        """
        if self.cache is not None:
            cached = self.cache.get(property_id)
            if cached is not None:
                return cached

        try:
            examples = self.training_examples(property_id)
        except Exception as e:
            logger.error(f"Failed to read history for property {property_id}: {e}")
            return {}

        groups: Dict[Tuple[str, ...], List[TrainingExample]] = defaultdict(list)
        for example in examples:
            groups[tuple(extract_keywords(example.text))].append(example)

        patterns = {}
        for keywords, group in groups.items():
            if len(group) < self.MIN_GROUP_SIZE:
                continue
            counts = Counter((e.category_id, e.subcategory_id) for e in group)
            (category_id, subcategory_id), count = counts.most_common(1)[0]
            pattern = LearnedPattern(
                keywords=keywords,
                category_id=category_id,
                subcategory_id=subcategory_id,
                confidence=min(self.MAX_PATTERN_CONFIDENCE, count / len(group)),
                support=len(group),
            )
            patterns[pattern.key] = pattern

        logger.info(f"Learned {len(patterns)} patterns from {len(examples)} examples "
                    f"for property {property_id}")

        if self.cache is not None:
            self.cache.put(property_id, patterns)
        return patterns

    def suggest(self, keywords: List[str], patterns: Dict[str, LearnedPattern]) -> List[CategorySuggestion]:
        """
        Turn learned patterns overlapping the input keywords into suggestions.

        Args:
            keywords: Keywords extracted from the text being categorized
            patterns: Output of ``learn``

        Returns:
            One 'pattern' suggestion per overlapping learned pattern
        """
        if not keywords:
            return []

        suggestions = []
        for pattern in patterns.values():
            learned = set(pattern.keywords)
            overlap = sum(1 for k in keywords if k in learned)
            if overlap == 0:
                continue
            confidence = min(self.MAX_SUGGESTION_CONFIDENCE,
                             (overlap / len(keywords)) * pattern.confidence)
            suggestions.append(CategorySuggestion(
                category_id=pattern.category_id,
                subcategory_id=pattern.subcategory_id,
                confidence=confidence,
                reason='pattern',
                supporting_terms=pattern.keywords,
            ))
        return suggestions
