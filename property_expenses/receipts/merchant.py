"""Merchant name extraction from the top of a receipt."""

import re
from typing import Optional

from .base import BaseExtractor, ParseResult, ReceiptContext


class MerchantExtractor(BaseExtractor):
    """Take the first header line that is not an address or phone number."""

    HEADER_LINES = 3
    MIN_LENGTH = 4
    MAX_LENGTH = 49

    def __init__(self):
        super().__init__()

        self.skip_patterns = [
            re.compile(r'^\d+\s+\w+\s+(st|ave|rd|blvd|dr|ln)', re.IGNORECASE),  # street address
            re.compile(r'^\(\d{3}\)\s*\d{3}-\d{4}'),
            re.compile(r'^\d{3}-\d{3}-\d{4}'),
        ]

        # Document labels that are not part of the merchant name
        self.label_pattern = re.compile(r'\b(receipt|invoice|bill|statement)\b', re.IGNORECASE)

    def parse(self, context: ReceiptContext) -> Optional[ParseResult]:
        """
        Extract the merchant name.

        Args:
            context: Receipt context with trimmed non-empty lines

        Returns:
            ParseResult with the merchant name, or None
        """
        for line_idx, line in enumerate(context.lines[:self.HEADER_LINES]):
            if any(p.search(line) for p in self.skip_patterns):
                continue

            if not (self.MIN_LENGTH <= len(line) <= self.MAX_LENGTH):
                continue

            cleaned = re.sub(r'\s{2,}', ' ', self.label_pattern.sub('', line)).strip()
            if len(cleaned) > 2:
                result = ParseResult(
                    value=cleaned,
                    confidence=0.9 - 0.1 * line_idx,
                    source_text=line,
                    metadata={'line': line_idx},
                )
                self._log_result(result)
                return result

        self._log_result(None)
        return None
