"""Base classes for receipt field extractors."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """Result of an extraction with confidence and metadata."""
    value: Any
    confidence: float
    source_text: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReceiptContext:
    """OCR text of one receipt, pre-split for the extractors."""
    full_text: str
    lines: List[str] = None

    def __post_init__(self):
        if self.lines is None:
            self.lines = [line.strip() for line in (self.full_text or '').split('\n') if line.strip()]

    @property
    def lower_text(self) -> str:
        return (self.full_text or '').lower()


class BaseExtractor(ABC):
    """Base class for all receipt field extractors."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def parse(self, context: ReceiptContext) -> Optional[ParseResult]:
        """
        Extract one field from the receipt context.

        Args:
            context: Receipt context with text and lines

        Returns:
            ParseResult with value and confidence, or None if nothing was found
        """
        pass

    def _log_result(self, result: Optional[ParseResult]):
        """Log extraction result for debugging."""
        if result:
            self.logger.debug(f"Extracted: {result.value} (confidence: {result.confidence:.2f})")
        else:
            self.logger.debug("Extraction found nothing")
