"""Total amount extraction in integer cents."""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..models import round_half_up
from .base import BaseExtractor, ParseResult, ReceiptContext

MAX_RECEIPT_DOLLARS = Decimal('100000')


class AmountExtractor(BaseExtractor):
    """Find the receipt total using labelled patterns before bare dollar values."""

    def __init__(self):
        super().__init__()

        # Amount patterns in priority order (pattern, label, confidence)
        self.amount_patterns = [
            (re.compile(r'(?<!sub)total[:\s]*\$?(\d+\.?\d*)', re.IGNORECASE), 'total', 0.9),
            (re.compile(r'amount[:\s]*\$?(\d+\.?\d*)', re.IGNORECASE), 'amount', 0.8),
            (re.compile(r'balance[:\s]*\$?(\d+\.?\d*)', re.IGNORECASE), 'balance', 0.7),
            (re.compile(r'\$(\d+\.\d{2})'), 'dollar', 0.5),
        ]

    def parse(self, context: ReceiptContext) -> Optional[ParseResult]:
        """
        Extract the total amount.

        The first pattern whose first match falls inside (0, 100000) dollars
        wins; the value is converted to cents rounding halves up.

        Args:
            context: Receipt context with the full OCR text

        Returns:
            ParseResult with the amount in cents, or None
        """
        for pattern, label, confidence in self.amount_patterns:
            match = pattern.search(context.full_text)
            if not match:
                continue

            try:
                dollars = Decimal(match.group(1))
            except InvalidOperation:
                continue

            if 0 < dollars < MAX_RECEIPT_DOLLARS:
                result = ParseResult(
                    value=round_half_up(dollars * 100),
                    confidence=confidence,
                    source_text=match.group(0),
                    metadata={'pattern': label},
                )
                self._log_result(result)
                return result

        self.logger.debug("No total amount pattern matched")
        return None
