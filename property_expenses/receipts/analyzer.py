"""Receipt analysis: structured fields from OCR text, validation and batches."""

import datetime
import logging
import re
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from ..errors import CollaboratorTimeout, ValidationError
from .amount import AmountExtractor
from .base import ReceiptContext
from .date import DateExtractor
from .hints import CategoryHintExtractor
from .merchant import MerchantExtractor

logger = logging.getLogger(__name__)

MERCHANT_SIMILARITY_THRESHOLD = 80
LINE_ITEM_PATTERN = re.compile(r'^(.+?)\s+\$?(\d+\.?\d*)$')
HIGH_AMOUNT_CENTS = 1000000
MAX_RECEIPT_AGE_DAYS = 365


@dataclass(frozen=True)
class OCRAnalysisResult:
    """Fields derived from the OCR text of one receipt image."""
    raw_text: str
    merchant_name: Optional[str] = None
    amount_cents: Optional[int] = None
    date: Optional[datetime.date] = None
    category_hints: Tuple[str, ...] = ()
    confidence: float = 0.0

    def __post_init__(self):
        if self.amount_cents is not None and self.amount_cents <= 0:
            raise ValidationError(f"Receipt amount must be positive, got {self.amount_cents}")
        if not (0.0 <= self.confidence <= 1.0):
            raise ValidationError(f"OCR confidence out of range: {self.confidence}")
        if not isinstance(self.category_hints, tuple):
            object.__setattr__(self, 'category_hints', tuple(self.category_hints))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'merchant_name': self.merchant_name,
            'amount_cents': self.amount_cents,
            'date': self.date.isoformat() if self.date else None,
            'category_hints': list(self.category_hints),
            'confidence': round(self.confidence, 2),
        }


@dataclass(frozen=True)
class ReceiptField:
    """A single field read from a receipt line."""
    field: str  # 'item', 'amount' or 'category'
    value: str
    confidence: float


@dataclass
class OCRValidation:
    """Problems found in an OCR analysis and what to do about them."""
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def add(self, issue: str, suggestion: str):
        self.issues.append(issue)
        self.suggestions.append(suggestion)


class ReceiptAnalyzer:
    """Run the field extractors over OCR text and score the outcome."""

    def __init__(self, rules_dir: Optional[Path] = None):
        self.merchant_extractor = MerchantExtractor()
        self.amount_extractor = AmountExtractor()
        self.date_extractor = DateExtractor()
        self.hint_extractor = CategoryHintExtractor(rules_dir)

    def analyze(self, ocr_text: str) -> OCRAnalysisResult:
        """
        Extract merchant, amount, date and category hints from OCR text.

        Args:
            ocr_text: Raw text from the OCR collaborator

        Returns:
            OCRAnalysisResult; fields that could not be found stay None
        """
        context = ReceiptContext(full_text=ocr_text or '')

        merchant = self.merchant_extractor.parse(context)
        amount = self.amount_extractor.parse(context)
        receipt_date = self.date_extractor.parse(context)
        hint_result = self.hint_extractor.parse(context)
        hints = hint_result.value if hint_result else ()

        merchant_name = merchant.value if merchant else None
        amount_cents = amount.value if amount else None
        date_value = receipt_date.value if receipt_date else None

        confidence = self._calculate_confidence(
            context, merchant_name, amount_cents, date_value, hints
        )

        logger.info(f"Analyzed receipt: merchant={merchant_name}, amount={amount_cents}, "
                    f"date={date_value}, hints={list(hints)} (confidence: {confidence:.2f})")

        return OCRAnalysisResult(
            raw_text=context.full_text,
            merchant_name=merchant_name,
            amount_cents=amount_cents,
            date=date_value,
            category_hints=hints,
            confidence=confidence,
        )

    def _calculate_confidence(self, context: ReceiptContext, merchant_name: Optional[str],
                              amount_cents: Optional[int], date_value: Optional[datetime.date],
                              hints: Tuple[str, ...]) -> float:
        confidence = 0.1

        if merchant_name:
            confidence += 0.3
        if amount_cents:
            confidence += 0.2
        if date_value:
            confidence += 0.2
        if hints:
            confidence += 0.3

        text_length = len(context.full_text)
        if text_length > 50:
            confidence += 0.1
        if text_length > 200:
            confidence += 0.1

        if len(context.lines) > 3:
            confidence += 0.1

        return min(0.95, round(confidence, 4))

    def extract_line_items(self, ocr_text: str) -> List[ReceiptField]:
        """
        Read item names, prices and per-line category hints.

        Args:
            ocr_text: Raw OCR text

        Returns:
            Fields in line order
        """
        fields = []
        for line in ReceiptContext(full_text=ocr_text or '').lines:
            item_match = LINE_ITEM_PATTERN.match(line)
            if item_match:
                item_name, price = item_match.groups()
                fields.append(ReceiptField('item', item_name.strip(), 0.8))
                fields.append(ReceiptField('amount', price, 0.9))

            line_hints = self.hint_extractor.hints(line)
            if line_hints:
                fields.append(ReceiptField('category', line_hints[0], 0.7))

        return fields

    def validate(self, result: OCRAnalysisResult, preliminary: Optional[OCRAnalysisResult] = None,
                 today: Optional[datetime.date] = None) -> OCRValidation:
        """
        Check an analysis for missing or suspicious fields.

        Args:
            result: Analysis to check
            preliminary: Fields the OCR collaborator reported for the same image
            today: Reference date for the receipt age check

        Returns:
            OCRValidation with issues and matching suggestions
        """
        today = today or datetime.date.today()
        validation = OCRValidation()

        if not result.merchant_name or len(result.merchant_name) < 2:
            validation.add('Merchant name not detected or too short',
                           'Check if receipt image is clear and merchant name is visible')
        elif preliminary and preliminary.merchant_name:
            similarity = fuzz.ratio(result.merchant_name.lower(), preliminary.merchant_name.lower())
            if similarity < MERCHANT_SIMILARITY_THRESHOLD:
                validation.add(
                    f"Merchant name '{result.merchant_name}' differs from OCR service "
                    f"result '{preliminary.merchant_name}' ({similarity:.0f}% similar)",
                    'Confirm the merchant name against the receipt image',
                )

        if not result.amount_cents:
            validation.add('Amount not detected or invalid',
                           'Ensure total amount is clearly visible in the receipt')
        elif result.amount_cents > HIGH_AMOUNT_CENTS:
            validation.add('Amount seems unusually high', 'Verify the amount is correct')

        if not result.date:
            validation.add('Date not detected', 'Check if receipt date is clearly visible')
        elif abs((today - result.date).days) > MAX_RECEIPT_AGE_DAYS:
            validation.add('Receipt date is more than a year old', 'Verify the receipt date is correct')

        if not result.category_hints:
            validation.add('No category hints detected',
                           'Receipt content may not match common expense categories')

        if result.confidence < 0.5:
            validation.add('Low confidence in OCR results',
                           'Consider retaking the receipt photo with better lighting and focus')

        return validation


class ReceiptImageProcessor(ABC):
    """External OCR service turning a receipt image into text."""

    @abstractmethod
    def process_receipt_image(self, url: str) -> OCRAnalysisResult:
        """
        Run OCR on one receipt image.

        Args:
            url: Location of the receipt image

        Returns:
            OCRAnalysisResult holding at least the raw text; other fields are
            the service's own preliminary reading
        """
        pass


@dataclass
class ReceiptImageAnalysis:
    """Analysis of one receipt image."""
    url: str
    result: OCRAnalysisResult
    preliminary: OCRAnalysisResult
    validation: OCRValidation


@dataclass
class ReceiptBatchResult:
    """Outcome of analyzing several receipt images."""
    results: List[ReceiptImageAnalysis] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (url, error)

    @property
    def combined_text(self) -> str:
        return ' '.join(r.result.raw_text for r in self.results if r.result.raw_text)


def call_with_timeout(func: Callable, timeout: Optional[float], *args):
    """
    Call ``func(*args)``, giving up after ``timeout`` seconds.

    Raises:
        CollaboratorTimeout: if the call does not finish in time
    """
    if timeout is None:
        return func(*args)

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args)
    try:
        return future.result(timeout=max(0.0, timeout))
    except FuturesTimeout:
        raise CollaboratorTimeout(f"{getattr(func, '__name__', 'call')} timed out after {timeout:.1f}s")
    finally:
        # A hung collaborator is abandoned, not joined
        executor.shutdown(wait=False)


_default_analyzer: Optional[ReceiptAnalyzer] = None


def _analyzer() -> ReceiptAnalyzer:
    global _default_analyzer
    if _default_analyzer is None:
        _default_analyzer = ReceiptAnalyzer()
    return _default_analyzer


def analyze_receipt_text(ocr_text: str) -> OCRAnalysisResult:
    """Analyze OCR text with the packaged rule tables."""
    return _analyzer().analyze(ocr_text)


def extract_line_items(ocr_text: str) -> List[ReceiptField]:
    return _analyzer().extract_line_items(ocr_text)


def validate_ocr_result(result: OCRAnalysisResult, preliminary: Optional[OCRAnalysisResult] = None,
                        today: Optional[datetime.date] = None) -> OCRValidation:
    return _analyzer().validate(result, preliminary, today)


def analyze_receipt_images(urls: Sequence[str], processor: ReceiptImageProcessor,
                           max_images: int = 3, timeout: Optional[float] = None,
                           analyzer: Optional[ReceiptAnalyzer] = None) -> ReceiptBatchResult:
    """
    OCR and analyze up to ``max_images`` receipt images one after another.

    Fields are re-derived from each image's raw text. A failing image is
    recorded in ``failed`` and the batch continues.

    Args:
        urls: Receipt image locations
        processor: OCR collaborator
        max_images: Maximum number of images processed
        timeout: Seconds allowed for the whole batch

    Returns:
        ReceiptBatchResult with per-image analyses and failures
    """
    analyzer = analyzer or _analyzer()
    batch = ReceiptBatchResult()
    deadline = time.monotonic() + timeout if timeout is not None else None

    for url in list(urls)[:max_images]:
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                batch.failed.append((url, 'Deadline exceeded before processing'))
                continue

        try:
            preliminary = call_with_timeout(processor.process_receipt_image, remaining, url)
            result = analyzer.analyze(preliminary.raw_text)
            validation = analyzer.validate(result, preliminary)
        except Exception as e:
            logger.error(f"Receipt image {url} failed: {e}")
            batch.failed.append((url, str(e)))
            continue

        batch.results.append(ReceiptImageAnalysis(url, result, preliminary, validation))

    logger.info(f"Analyzed {len(batch.results)} receipt images, {len(batch.failed)} failed")
    return batch
