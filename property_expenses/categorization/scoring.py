"""Suggestion value object, keyword confidence scoring and ranking."""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import ValidationError

logger = logging.getLogger(__name__)

SUGGESTION_REASONS = ('merchant', 'ocr', 'pattern', 'manual', 'ml')

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95

MAX_KEYWORDS = 10

STOP_WORDS = frozenset([
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'up', 'about', 'into', 'through', 'during',
    'before', 'after', 'above', 'below', 'between', 'among', 'is', 'are',
    'was', 'were', 'be', 'been', 'being', 'have', 'has', 'had', 'do', 'does',
    'did', 'will', 'would', 'could', 'should', 'may', 'might', 'must', 'can',
])


@dataclass(frozen=True)
class CategorySuggestion:
    """A candidate category for an expense with the evidence behind it."""
    category_id: str
    subcategory_id: Optional[str] = None
    confidence: float = 0.0
    reason: str = 'pattern'
    supporting_terms: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.category_id:
            raise ValidationError("Suggestion requires a category")
        if self.reason not in SUGGESTION_REASONS:
            raise ValidationError(f"Unknown suggestion reason: {self.reason}")
        if not (0.0 <= self.confidence <= 1.0):
            raise ValidationError(f"Suggestion confidence out of range: {self.confidence}")
        # Accept lists from callers but store an immutable sequence
        if not isinstance(self.supporting_terms, tuple):
            object.__setattr__(self, 'supporting_terms', tuple(self.supporting_terms))

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.category_id, self.subcategory_id)

    def to_dict(self) -> Dict:
        return {
            'category_id': self.category_id,
            'subcategory_id': self.subcategory_id,
            'confidence': round(self.confidence, 4),
            'reason': self.reason,
            'supporting_terms': list(self.supporting_terms),
        }


def score_keyword_match(keyword: str, text: str) -> float:
    """
    Score how strongly a matched keyword supports a category.

    Longer keywords are more specific; a keyword at the start of the text
    gets a boost; long texts are penalized as less specific.

    Args:
        keyword: The keyword that matched
        text: Lowercased text the keyword was found in

    Returns:
        Confidence in [0.1, 0.95]
    """
    confidence = min(0.9, len(keyword) / 20)

    if text == keyword:
        confidence = 0.95

    if text.startswith(keyword):
        confidence += 0.1

    if len(text) > 100:
        confidence *= 0.8

    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence))


def rank_suggestions(suggestions: Iterable[CategorySuggestion], limit: int) -> List[CategorySuggestion]:
    """
    Keep the best suggestion per (category, subcategory) and rank them.

    A later suggestion replaces an earlier one for the same pair only when
    its confidence is strictly higher. Ties keep input order.

    Args:
        suggestions: Candidates, possibly from several sources
        limit: Maximum number of suggestions returned

    Returns:
        Suggestions sorted by descending confidence
    """
    best: Dict[Tuple[str, Optional[str]], CategorySuggestion] = {}
    for suggestion in suggestions:
        current = best.get(suggestion.key)
        if current is None or suggestion.confidence > current.confidence:
            # Re-insert so the replacement takes the newest position
            best.pop(suggestion.key, None)
            best[suggestion.key] = suggestion

    ranked = sorted(best.values(), key=lambda s: s.confidence, reverse=True)
    return ranked[:max(0, limit)]


def extract_keywords(text: str) -> List[str]:
    """Lowercase, strip punctuation, drop stop words and short tokens."""
    cleaned = re.sub(r'[^\w\s]', ' ', text.lower())
    words = [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]
    return words[:MAX_KEYWORDS]
