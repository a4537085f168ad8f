"""Category hints from merchant keywords and receipt phrases."""

from pathlib import Path
from typing import List, Optional, Tuple

from .. import tables
from .base import BaseExtractor, ParseResult, ReceiptContext


class CategoryHintExtractor(BaseExtractor):
    """Collect the categories suggested by known merchants and receipt phrases."""

    def __init__(self, rules_dir: Optional[Path] = None):
        super().__init__()
        self.table = tables.receipt_patterns(rules_dir)

    def hints(self, text: str) -> Tuple[str, ...]:
        """
        Category hints for a piece of receipt text, without duplicates.

        Args:
            text: OCR text or a single receipt line

        Returns:
            Categories in discovery order, merchant hints first
        """
        result = self.parse(ReceiptContext(full_text=text))
        return result.value if result else ()

    def parse(self, context: ReceiptContext) -> Optional[ParseResult]:
        found: List[str] = []

        for merchant, category_id in self.table.merchant_hints.items():
            if merchant in context.lower_text:
                found.append(category_id)

        for category_id, patterns in self.table.patterns:
            if any(p.search(context.full_text) for p in patterns):
                found.append(category_id)

        result = None
        if found:
            unique = tuple(dict.fromkeys(found))
            result = ParseResult(value=unique, confidence=min(0.9, 0.5 + 0.1 * len(unique)),
                                 source_text=context.full_text)
        self._log_result(result)
        return result
