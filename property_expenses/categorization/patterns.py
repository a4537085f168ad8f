"""Static merchant keyword and receipt regex matching."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .. import tables
from .scoring import CategorySuggestion, rank_suggestions, score_keyword_match

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternMatch:
    """A keyword or regex hit inside categorization text."""
    category_id: str
    subcategory_id: Optional[str]
    keyword: str
    source: str  # 'merchant' or 'ocr'


class PatternDictionary:
    """Match text against the merchant keyword table and receipt regex table."""

    MAX_SUGGESTIONS = 5

    def __init__(self, rules_dir: Optional[Path] = None):
        """
        Initialize the dictionary from the YAML rule tables.

        Args:
            rules_dir: Alternative directory holding the rule files
        """
        self.merchant_table = tables.merchant_patterns(rules_dir)
        self.receipt_table = tables.receipt_patterns(rules_dir)

    def match(self, text: str) -> List[PatternMatch]:
        """
        Find every table entry present in the text.

        Merchant keywords match by plain substring containment, so 'gas'
        also matches inside 'gasoline'. Each regex category contributes at
        most its first matching pattern.

        Args:
            text: Merchant, description and receipt text combined

        Returns:
            Matches in table order, merchant table first
        """
        lower_text = text.lower()
        matches = []

        for category_id, subcategory_id, keywords in self.merchant_table:
            for keyword in keywords:
                if keyword in lower_text:
                    matches.append(PatternMatch(category_id, subcategory_id, keyword, 'merchant'))

        for category_id, patterns in self.receipt_table.patterns:
            for pattern in patterns:
                found = pattern.search(lower_text)
                if found:
                    matches.append(PatternMatch(category_id, None, found.group(0).lower(), 'ocr'))
                    break

        logger.debug(f"Pattern dictionary found {len(matches)} matches")
        return matches

    def suggest(self, text: str, limit: int = MAX_SUGGESTIONS) -> List[CategorySuggestion]:
        """Score every match and return the ranked pattern suggestions."""
        lower_text = text.lower()
        suggestions = [
            CategorySuggestion(
                category_id=m.category_id,
                subcategory_id=m.subcategory_id,
                confidence=score_keyword_match(m.keyword, lower_text),
                reason=m.source,
                supporting_terms=(m.keyword,),
            )
            for m in self.match(lower_text)
        ]
        return rank_suggestions(suggestions, limit)


_default_dictionary: Optional[PatternDictionary] = None


def analyze_text_patterns(text: str) -> List[CategorySuggestion]:
    """Pattern-only suggestions for a piece of text (top 5)."""
    global _default_dictionary
    if _default_dictionary is None:
        _default_dictionary = PatternDictionary()
    return _default_dictionary.suggest(text)
