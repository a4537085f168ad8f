"""Receipt date extraction."""

import re
from datetime import date, datetime
from typing import Optional

from dateutil.parser import ParserError, parse as date_parse

from .base import BaseExtractor, ParseResult, ReceiptContext

MIN_RECEIPT_YEAR = 2000


class DateExtractor(BaseExtractor):
    """Try date shapes in order and keep the first plausible date."""

    def __init__(self):
        super().__init__()

        # Date patterns in priority order (pattern, shape); numeric shapes
        # must not sit inside a longer digit run
        self.date_patterns = [
            (re.compile(r'(?<!\d)(\d{1,2}/\d{1,2}/\d{2,4})(?!\d)'), 'slash'),
            (re.compile(r'(?<![\d-])(\d{1,2}-\d{1,2}-\d{2,4})(?![\d-])'), 'dash'),
            (re.compile(r'\b([A-Za-z]{3,9}\.?\s+\d{1,2},?\s+\d{4})\b'), 'month_name'),
            (re.compile(r'(?<!\d)(\d{4}-\d{2}-\d{2})(?!\d)'), 'iso'),
        ]

    def parse(self, context: ReceiptContext) -> Optional[ParseResult]:
        """
        Extract the receipt date.

        Args:
            context: Receipt context with the full OCR text

        Returns:
            ParseResult with a ``date`` value, or None
        """
        for pattern, shape in self.date_patterns:
            for match in pattern.finditer(context.full_text):
                parsed = self._parse_date(match.group(1), shape)
                if parsed and parsed.year > MIN_RECEIPT_YEAR:
                    result = ParseResult(
                        value=parsed,
                        confidence=0.9 if shape in ('iso', 'month_name') else 0.8,
                        source_text=match.group(0),
                        metadata={'shape': shape},
                    )
                    self._log_result(result)
                    return result

        self._log_result(None)
        return None

    def _parse_date(self, date_str: str, shape: str) -> Optional[date]:
        """Parse a matched date string, month first for numeric shapes."""
        if shape == 'iso':
            try:
                return datetime.strptime(date_str, '%Y-%m-%d').date()
            except ValueError:
                return None

        if shape in ('slash', 'dash'):
            separator = '/' if shape == 'slash' else '-'
            month, day, year = date_str.split(separator)
            if len(year) == 3:
                return None
            if len(year) == 2:
                year = f"20{year}"
            try:
                return date(int(year), int(month), int(day))
            except ValueError:
                return None

        try:
            return date_parse(date_str.replace('.', ''), fuzzy=False).date()
        except (ParserError, ValueError, OverflowError):
            return None
