"""Receipt text extraction - field extractors and OCR post-processing."""

from .amount import AmountExtractor
from .analyzer import (
    OCRAnalysisResult,
    OCRValidation,
    ReceiptAnalyzer,
    ReceiptBatchResult,
    ReceiptField,
    ReceiptImageProcessor,
    analyze_receipt_images,
    analyze_receipt_text,
    extract_line_items,
    validate_ocr_result,
)
from .date import DateExtractor
from .hints import CategoryHintExtractor
from .merchant import MerchantExtractor

__all__ = [
    'AmountExtractor',
    'CategoryHintExtractor',
    'DateExtractor',
    'MerchantExtractor',
    'OCRAnalysisResult',
    'OCRValidation',
    'ReceiptAnalyzer',
    'ReceiptBatchResult',
    'ReceiptField',
    'ReceiptImageProcessor',
    'analyze_receipt_images',
    'analyze_receipt_text',
    'extract_line_items',
    'validate_ocr_result',
]
