"""Tests for per-document-type field extraction."""

from datetime import date

import pytest

from src.extraction.field_extractor import (
    FieldExtractor,
    normalize_text,
    parse_amount,
    parse_date,
)
from src.models import DocumentType
from tests.fakes import CUSTOMER_GSTIN, VENDOR_GSTIN


class TestParsing:
    """Tests for amount, date and text normalization helpers."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1,23,456.50", 123456.5),
            ("Rs 450", 450.0),
            ("(250.00)", -250.0),
            ("abc", None),
        ],
    )
    def test_parse_amount(self, text: str, expected: float | None) -> None:
        assert parse_amount(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["15/01/2025", "15-01-2025", "15.01.2025", "15/01/25", "15-Jan-2025", "January 15, 2025"],
    )
    def test_parse_date_formats(self, text: str) -> None:
        assert parse_date(text) == date(2025, 1, 15)

    def test_parse_date_is_day_first(self) -> None:
        assert parse_date("03/04/2025") == date(2025, 4, 3)

    def test_parse_date_invalid(self) -> None:
        assert parse_date("32/01/2025") is None

    def test_normalize_text(self) -> None:
        text = normalize_text("Total | ₹ 500\r\n\r\nINR 20\tdue")
        assert text == "Total    Rs 500\nRs 20  due"


class TestInvoiceExtraction:
    """Tests for invoice field parsing."""

    def setup_method(self) -> None:
        self.extractor = FieldExtractor()

    def test_full_invoice(self, invoice_text: str, invoice_fields: dict) -> None:
        fields, confidences = self.extractor.extract_with_confidence(
            invoice_text, DocumentType.INVOICE
        )
        assert fields == invoice_fields
        assert confidences["vendor_gstin"] == 0.98
        assert confidences["tax_calculations"] == 0.95
        assert confidences["line_items"] == 0.95
        assert confidences["hsn_codes"] == 0.95
        assert confidences["vendor_name"] == 0.6

    def test_labelled_buyer_gstin_listed_first(self) -> None:
        text = f"Buyer GSTIN: {CUSTOMER_GSTIN}\nSeller GSTIN: {VENDOR_GSTIN}\n"
        fields = self.extractor.extract_fields(text, DocumentType.INVOICE)
        assert fields["vendor_gstin"] == VENDOR_GSTIN
        assert fields["customer_gstin"] == CUSTOMER_GSTIN

    def test_unlabelled_gstins_in_order(self) -> None:
        text = f"GSTIN {VENDOR_GSTIN}\nGSTIN {CUSTOMER_GSTIN}\n"
        fields = self.extractor.extract_fields(text, DocumentType.INVOICE)
        assert fields["vendor_gstin"] == VENDOR_GSTIN
        assert fields["customer_gstin"] == CUSTOMER_GSTIN

    def test_tax_split_inferred_when_not_printed(self) -> None:
        text = "Invoice No: 88\nSub Total: 10000.00\nGrand Total: 11800.00\n"
        fields, confidences = self.extractor.extract_with_confidence(text, DocumentType.INVOICE)
        assert fields["cgst"] == 900.0
        assert fields["sgst"] == 900.0
        assert fields["tax_inferred"] is True
        assert confidences["tax_calculations"] == 0.6

    def test_igst_inferred_when_mentioned(self) -> None:
        text = "Invoice No: 88\nIGST applicable\nSub Total: 10000.00\nGrand Total: 11800.00\n"
        fields = self.extractor.extract_fields(text, DocumentType.INVOICE)
        assert fields["igst"] == 1800.0
        assert "cgst" not in fields
        assert fields["tax_inferred"] is True

    def test_explicit_taxes_are_not_inferred(self, invoice_text: str) -> None:
        fields = self.extractor.extract_fields(invoice_text, DocumentType.INVOICE)
        assert "tax_inferred" not in fields

    def test_currency_symbol_and_indian_grouping(self) -> None:
        text = "Invoice No: 9\nGrand Total: ₹ 1,18,000.00\n"
        fields = self.extractor.extract_fields(text, DocumentType.INVOICE)
        assert fields["grand_total"] == 118000.0

    def test_negative_round_off(self) -> None:
        text = "Invoice No: 9\nSub Total: 100.00\nCGST: 9.00\nSGST: 9.00\nRound Off: -0.40\nGrand Total: 117.60\n"
        fields = self.extractor.extract_fields(text, DocumentType.INVOICE)
        assert fields["round_off"] == -0.4
        assert fields["grand_total"] == 117.6

    def test_inline_items_without_header(self) -> None:
        text = "Invoice No: 55\nWidget A 2 100.00 200.00\nTotal: 200.00\n"
        fields, confidences = self.extractor.extract_with_confidence(text, DocumentType.INVOICE)
        assert fields["line_items"] == [
            {"description": "Widget A", "quantity": 2.0, "rate": 100.0, "amount": 200.0}
        ]
        assert confidences["line_items"] == 0.8
        assert fields["subtotal"] == 200.0
        assert confidences["subtotal"] == 0.7

    def test_due_date(self) -> None:
        text = "Invoice Date: 01/03/2025\nDue Date: 31/03/2025\n"
        fields = self.extractor.extract_fields(text, DocumentType.INVOICE)
        assert fields["invoice_date"] == "2025-03-01"
        assert fields["due_date"] == "2025-03-31"

    def test_missing_fields_are_absent(self) -> None:
        assert self.extractor.extract_fields("12345", DocumentType.INVOICE) == {}


class TestOtherDocumentTypes:
    """Tests for receipts, KYC documents and bank statements."""

    def setup_method(self) -> None:
        self.extractor = FieldExtractor()

    def test_receipt(self) -> None:
        text = "Cafe Coffee Day\nReceipt No: R-7781\nDate: 12/01/2025\nTotal: 450.00\nPaid by UPI\n"
        fields = self.extractor.extract_fields(text, DocumentType.RECEIPT)
        assert fields["receipt_number"] == "R-7781"
        assert fields["receipt_date"] == "2025-01-12"
        assert fields["vendor_name"] == "Cafe Coffee Day"
        assert fields["total_amount"] == 450.0
        assert fields["payment_method"] == "upi"

    def test_pan_card(self) -> None:
        text = (
            "INCOME TAX DEPARTMENT\nName: RAHUL SHARMA\nFather's Name: SURESH SHARMA\n"
            "Date of Birth: 01/02/1990\nABCDE1234F\n"
        )
        fields = self.extractor.extract_fields(text, DocumentType.PAN_CARD)
        assert fields == {
            "pan_number": "ABCDE1234F",
            "father_name": "SURESH SHARMA",
            "name": "RAHUL SHARMA",
            "date_of_birth": "1990-02-01",
        }

    def test_aadhaar(self) -> None:
        text = "Name: Priya Nair\nDOB: 05/06/1992\nFemale\n1234 5678 9012\n"
        fields = self.extractor.extract_fields(text, DocumentType.AADHAAR)
        assert fields["aadhaar_number"] == "123456789012"
        assert fields["name"] == "Priya Nair"
        assert fields["gender"] == "female"
        assert fields["date_of_birth"] == "1992-06-05"

    def test_gst_certificate(self) -> None:
        text = f"Registration Number: {CUSTOMER_GSTIN}\nLegal Name: Widget Traders\n"
        fields = self.extractor.extract_fields(text, DocumentType.GST_CERTIFICATE)
        assert fields["gstin"] == CUSTOMER_GSTIN
        assert fields["state"] == "Maharashtra"
        assert fields["legal_name"] == "Widget Traders"

    def test_bank_statement(self) -> None:
        text = (
            "HDFC Bank Ltd\n"
            "Account No: 50100123456789\n"
            "IFSC: HDFC0001234\n"
            "Opening Balance: 10,000.00\n"
            "01/01/2025  NEFT from Client  5,000.00  15,000.00\n"
            "03/01/2025  ATM withdrawal  2,000.00  13,000.00\n"
            "Closing Balance: 13,000.00\n"
        )
        fields = self.extractor.extract_fields(text, DocumentType.BANK_STATEMENT)
        assert fields["account_number"] == "50100123456789"
        assert fields["ifsc"] == "HDFC0001234"
        assert fields["bank_name"] == "HDFC Bank Ltd"
        assert fields["opening_balance"] == 10000.0
        assert fields["closing_balance"] == 13000.0
        assert [t["direction"] for t in fields["transactions"]] == ["credit", "debit"]
        assert fields["transactions"][0]["description"] == "NEFT from Client"

    def test_other_has_no_parser(self) -> None:
        assert self.extractor.extract_with_confidence("anything", DocumentType.OTHER) == ({}, {})
