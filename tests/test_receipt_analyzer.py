"""Tests for receipt field extraction and OCR validation."""

import time
from datetime import date

import pytest
from property_expenses.errors import CollaboratorTimeout, ValidationError
from property_expenses.receipts import (
    AmountExtractor,
    CategoryHintExtractor,
    DateExtractor,
    MerchantExtractor,
    OCRAnalysisResult,
    ReceiptAnalyzer,
    ReceiptImageProcessor,
    analyze_receipt_images,
)
from property_expenses.receipts.analyzer import call_with_timeout
from property_expenses.receipts.base import ReceiptContext

PLUMBING_RECEIPT = """
ACME PLUMBING SUPPLY
123 Main St
(555) 123-4567
Pipe fittings  12.50
Labor charge  85.00
Subtotal: 97.50
Total: $105.30
Date: 03/15/2024
"""


class TestAmountExtractor:
    """Test suite for AmountExtractor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = AmountExtractor()

    def parse(self, text):
        return self.extractor.parse(ReceiptContext(full_text=text))

    def test_total_skips_subtotal(self):
        """Test that the total line wins over the subtotal."""
        result = self.parse("Subtotal: 97.50\nTax: 7.80\nTotal: $105.30")

        assert result.value == 10530
        assert result.confidence == 0.9
        assert result.metadata['pattern'] == 'total'

    def test_amount_keyword(self):
        """Test the 'amount' label."""
        result = self.parse("Amount: 45.5")

        assert result.value == 4550
        assert result.metadata['pattern'] == 'amount'

    def test_balance_keyword(self):
        """Test the 'balance' label."""
        assert self.parse("Balance 12").value == 1200

    def test_bare_dollar_value(self):
        """Test the fallback to a bare dollar amount."""
        result = self.parse("Thank you\n$19.99")

        assert result.value == 1999
        assert result.confidence == 0.5

    def test_zero_total_falls_through(self):
        """Test that an out-of-range total is skipped."""
        assert self.parse("Total: 0.00\nPaid $5.00").value == 500

    def test_rounds_half_up(self):
        """Test conversion of fractional cents."""
        assert self.parse("Total: 10.005").value == 1001

    def test_no_amount(self):
        """Test text without any amount."""
        assert self.parse("Thank you for your business") is None


class TestDateExtractor:
    """Test suite for DateExtractor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = DateExtractor()

    def parse(self, text):
        return self.extractor.parse(ReceiptContext(full_text=text))

    def test_slash_date(self):
        """Test month/day/year dates."""
        result = self.parse("Date: 03/15/2024")

        assert result.value == date(2024, 3, 15)
        assert result.confidence == 0.8

    def test_two_digit_year(self):
        """Test that two-digit years are read as 20yy."""
        assert self.parse("3/5/24").value == date(2024, 3, 5)

    def test_month_name(self):
        """Test dates written with the month name."""
        result = self.parse("Invoice date: Jan. 5, 2024")

        assert result.value == date(2024, 1, 5)
        assert result.confidence == 0.9

    def test_iso_date(self):
        """Test ISO formatted dates."""
        assert self.parse("Issued 2024-03-15").value == date(2024, 3, 15)

    def test_old_year_rejected(self):
        """Test that dates before 2001 are ignored."""
        assert self.parse("Since 01/02/1999") is None

    def test_later_match_used_when_first_invalid(self):
        """Test that an impossible first date does not hide a valid one."""
        assert self.parse("Ref 13/45/2024 Date 04/01/2024").value == date(2024, 4, 1)


class TestMerchantExtractor:
    """Test suite for MerchantExtractor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = MerchantExtractor()

    def parse(self, text):
        return self.extractor.parse(ReceiptContext(full_text=text))

    def test_first_line(self):
        """Test the merchant on the first line."""
        result = self.parse(PLUMBING_RECEIPT)

        assert result.value == 'ACME PLUMBING SUPPLY'
        assert result.confidence == pytest.approx(0.9)

    def test_skips_address(self):
        """Test that street addresses are not merchants."""
        result = self.parse("123 Main St\nBob's Cleaning\nTotal 40.00")

        assert result.value == "Bob's Cleaning"
        assert result.confidence == pytest.approx(0.8)

    def test_strips_document_labels(self):
        """Test that a bare 'RECEIPT' header is skipped."""
        assert self.parse("RECEIPT\nJoe's Hardware").value == "Joe's Hardware"

    def test_removes_label_words(self):
        """Test removal of label words inside the merchant line."""
        assert self.parse("City Water Bill").value == 'City Water'


class TestCategoryHintExtractor:
    """Test suite for CategoryHintExtractor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = CategoryHintExtractor()

    def test_merchant_and_phrase_hints(self):
        """Test upper-case merchant names and receipt phrases together."""
        result = self.extractor.parse(ReceiptContext(full_text="HOME DEPOT #0412\nLumber 2x4\nLabor charge 40.00"))

        assert result.value == ('supplies', 'repairs')
        assert result.confidence == pytest.approx(0.7)

    def test_no_hints(self):
        """Test that unrelated text yields nothing."""
        assert self.extractor.parse(ReceiptContext(full_text="Thank you for shopping")) is None
        assert self.extractor.hints("Thank you for shopping") == ()


class TestReceiptAnalyzer:
    """Test suite for ReceiptAnalyzer."""

    def setup_method(self):
        """Set up test fixtures."""
        self.analyzer = ReceiptAnalyzer()

    def test_full_receipt(self):
        """Test extraction of every field from a complete receipt."""
        result = self.analyzer.analyze(PLUMBING_RECEIPT)

        assert result.merchant_name == 'ACME PLUMBING SUPPLY'
        assert result.amount_cents == 10530
        assert result.date == date(2024, 3, 15)
        assert result.category_hints == ('repairs',)
        assert result.confidence == pytest.approx(0.95)

    def test_empty_text(self):
        """Test that empty text yields an empty low-confidence result."""
        result = self.analyzer.analyze("")

        assert result.merchant_name is None
        assert result.amount_cents is None
        assert result.date is None
        assert result.category_hints == ()
        assert result.confidence == pytest.approx(0.1)

    def test_line_items(self):
        """Test item, price and category fields per line."""
        fields = self.analyzer.extract_line_items(PLUMBING_RECEIPT)

        items = [f.value for f in fields if f.field == 'item']
        assert 'Pipe fittings' in items
        assert 'Labor charge' in items
        assert ('amount', '12.50') in [(f.field, f.value) for f in fields]
        assert 'repairs' in [f.value for f in fields if f.field == 'category']

    def test_valid_receipt(self):
        """Test that a complete recent receipt passes validation."""
        result = self.analyzer.analyze(PLUMBING_RECEIPT)

        validation = self.analyzer.validate(result, today=date(2024, 4, 1))

        assert validation.is_valid
        assert validation.suggestions == []

    def test_old_receipt(self):
        """Test the age check."""
        result = self.analyzer.analyze(PLUMBING_RECEIPT)

        validation = self.analyzer.validate(result, today=date(2026, 1, 1))

        assert validation.issues == ['Receipt date is more than a year old']

    def test_empty_result_issues(self):
        """Test that every missing field is reported with a suggestion."""
        validation = self.analyzer.validate(self.analyzer.analyze(""), today=date(2024, 4, 1))

        assert len(validation.issues) == 5
        assert len(validation.suggestions) == 5

    def test_merchant_mismatch(self):
        """Test the cross-check against the OCR service's merchant."""
        result = self.analyzer.analyze(PLUMBING_RECEIPT)
        preliminary = OCRAnalysisResult(raw_text=PLUMBING_RECEIPT, merchant_name='Totally Different Store')

        validation = self.analyzer.validate(result, preliminary, today=date(2024, 4, 1))

        assert len(validation.issues) == 1
        assert 'differs from OCR service' in validation.issues[0]

    def test_similar_merchant_accepted(self):
        """Test that near-identical merchant names pass the cross-check."""
        result = self.analyzer.analyze(PLUMBING_RECEIPT)
        preliminary = OCRAnalysisResult(raw_text=PLUMBING_RECEIPT, merchant_name='Acme Plumbing Suply')

        assert self.analyzer.validate(result, preliminary, today=date(2024, 4, 1)).is_valid

    def test_result_rejects_non_positive_amount(self):
        """Test amount validation on the result type."""
        with pytest.raises(ValidationError):
            OCRAnalysisResult(raw_text='x', amount_cents=0)


class SleepyOCR(ReceiptImageProcessor):
    def process_receipt_image(self, url):
        time.sleep(0.5)
        return OCRAnalysisResult(raw_text=PLUMBING_RECEIPT)


class FlakyOCR(ReceiptImageProcessor):
    def process_receipt_image(self, url):
        if url == 'bad':
            raise RuntimeError('service returned 502')
        if url == 'empty':
            return None
        return OCRAnalysisResult(raw_text=PLUMBING_RECEIPT)


class TestReceiptImages:
    """Test suite for batch receipt image analysis."""

    def test_unexpected_processor_errors_continue(self):
        """Test that any error from the OCR service fails only that image."""
        batch = analyze_receipt_images(['bad', 'empty', 'good'], FlakyOCR())

        assert [r.url for r in batch.results] == ['good']
        assert [url for url, _ in batch.failed] == ['bad', 'empty']
        assert batch.failed[0][1] == 'service returned 502'

    def test_deadline_exceeded(self):
        """Test that a slow OCR service fails the batch items instead of hanging."""
        batch = analyze_receipt_images(['a', 'b'], SleepyOCR(), timeout=0.05)

        assert batch.results == []
        assert [url for url, _ in batch.failed] == ['a', 'b']

    def test_call_with_timeout(self):
        """Test the timeout helper directly."""
        assert call_with_timeout(lambda x: x * 2, None, 21) == 42
        with pytest.raises(CollaboratorTimeout):
            call_with_timeout(time.sleep, 0.01, 0.5)
