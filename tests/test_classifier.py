"""Tests for rule-based document classification."""

import pytest

from src.extraction.classifier import DocumentClassifier
from src.models import DocumentType
from src.utils.config import ClassifierConfig


class TestFilenameHints:
    """Filename hints take precedence over text keywords."""

    def setup_method(self) -> None:
        self.classifier = DocumentClassifier()

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("invoice_001.pdf", DocumentType.INVOICE),
            ("INV-2291.png", DocumentType.INVOICE),
            ("march_bill.jpg", DocumentType.INVOICE),
            ("receipt-cafe.jpg", DocumentType.RECEIPT),
            ("owner_pan.jpg", DocumentType.PAN_CARD),
            ("aadhar_front.png", DocumentType.AADHAAR),
            ("gst_registration_certificate.pdf", DocumentType.GST_CERTIFICATE),
            ("hdfc_statement_jan.pdf", DocumentType.BANK_STATEMENT),
        ],
    )
    def test_filename_types(self, filename: str, expected: DocumentType) -> None:
        result = self.classifier.classify("", filename)
        assert result.type == expected
        assert result.confidence == 0.95
        assert result.matched_on.startswith("filename:")

    def test_filename_beats_text(self) -> None:
        result = self.classifier.classify("Payment received with thanks", "invoice_7.pdf")
        assert result.type == DocumentType.INVOICE

    def test_word_inside_other_word_is_ignored(self) -> None:
        result = self.classifier.classify("", "company_logo.png")
        assert result.type == DocumentType.OTHER

    def test_subtype_from_filename(self) -> None:
        assert self.classifier.classify("", "sales_invoice_12.pdf").subtype == "sales"
        assert self.classifier.classify("", "purchase_bill.pdf").subtype == "purchase"
        assert self.classifier.classify("", "invoice.pdf").subtype is None

    def test_subtype_only_for_invoices(self) -> None:
        result = self.classifier.classify("", "sales_receipt.jpg")
        assert result.type == DocumentType.RECEIPT
        assert result.subtype is None


class TestTextRules:
    """Keyword rules over the extracted text."""

    def setup_method(self) -> None:
        self.classifier = DocumentClassifier()

    def test_tax_invoice(self) -> None:
        result = self.classifier.classify("ACME LTD\nTAX INVOICE\nInvoice No: 1", "scan.png")
        assert result.type == DocumentType.INVOICE
        assert result.confidence == 0.9

    def test_plain_invoice(self) -> None:
        result = self.classifier.classify("Invoice number 44", "scan.png")
        assert result.type == DocumentType.INVOICE
        assert result.confidence == 0.8

    def test_gst_invoice_is_not_a_certificate(self) -> None:
        text = "GST Invoice\nGSTIN: 27AABCU9603R1Z4\nRegistration details"
        assert self.classifier.classify(text, "scan.png").type == DocumentType.INVOICE

    def test_receipt(self) -> None:
        assert self.classifier.classify("Payment Received", "scan.png").type == DocumentType.RECEIPT

    def test_pan_card(self) -> None:
        text = "INCOME TAX DEPARTMENT\nPermanent Account Number\nABCDE1234F"
        assert self.classifier.classify(text, "scan.png").type == DocumentType.PAN_CARD

    def test_aadhaar(self) -> None:
        text = "Unique Identification Authority of India\n1234 5678 9012"
        assert self.classifier.classify(text, "scan.png").type == DocumentType.AADHAAR

    def test_gst_certificate(self) -> None:
        text = "Government of India\nForm GST REG-06\nRegistration Certificate"
        assert self.classifier.classify(text, "scan.png").type == DocumentType.GST_CERTIFICATE

    def test_bank_statement(self) -> None:
        text = "Statement of Account\nOpening Balance 1,000.00"
        assert self.classifier.classify(text, "scan.png").type == DocumentType.BANK_STATEMENT

    def test_fallback_is_other(self) -> None:
        result = DocumentClassifier(ClassifierConfig(fallback_confidence=0.4)).classify(
            "lorem ipsum", "scan.png"
        )
        assert result.type == DocumentType.OTHER
        assert result.confidence == 0.4
        assert result.matched_on is None
