"""Tests for the GST validation engine."""

from datetime import date
from typing import Any

import pytest

from src.extraction.schema import InvoiceData
from src.utils.config import ValidationConfig
from src.validation.rules_engine import (
    TAX_INFERRED_NOTE,
    RuleOutcome,
    Severity,
    ValidationEngine,
    ValidationRule,
    add_months,
)
from tests.fakes import KARNATAKA_GSTIN, TODAY


def _invoice(fields: dict[str, Any], **changes: Any) -> InvoiceData:
    data = dict(fields)
    for key, value in changes.items():
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
    return InvoiceData.from_fields(data)


def _result(report, rule_name: str):
    return next(r for r in report.results if r.rule_name == rule_name)


class TestValidationEngine:
    """End-to-end rule evaluation on typed invoices."""

    def setup_method(self) -> None:
        self.engine = ValidationEngine(today=lambda: TODAY)

    def test_clean_intra_state_invoice(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields))
        assert report.valid
        assert report.total == 7
        assert report.overall_score == 1.0
        assert not report.needs_review()
        assert report.field_status("tax_calculations") is True
        assert report.notes == []

    def test_rule_order_and_severity(self) -> None:
        severities = [(r.name, r.severity) for r in self.engine.rules]
        assert severities[0] == ("GSTIN Format and Checksum", Severity.CRITICAL)
        assert severities[-1] == ("B2B Transaction Validation", Severity.INFO)

    def test_igst_on_intra_state_supply_fails(self, invoice_fields: dict) -> None:
        invoice = _invoice(invoice_fields, cgst=None, sgst=None, igst=1800.0)
        report = self.engine.validate(invoice)
        result = _result(report, "Intra-State Tax Logic")
        assert not result.passed
        assert result.message == "IGST must be zero for intra-state supply (found Rs 1,800.00)"
        assert _result(report, "Tax Calculation Accuracy").passed
        assert not report.valid
        assert report.field_status("tax_calculations") is False

    def test_unequal_split_fails(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, cgst=1000.0, sgst=800.0))
        assert not _result(report, "Intra-State Tax Logic").passed

    def test_split_within_tolerance_passes(self, invoice_fields: dict) -> None:
        invoice = _invoice(invoice_fields, cgst=900.2, sgst=899.8)
        assert _result(self.engine.validate(invoice), "Intra-State Tax Logic").passed

    def test_inter_state_with_igst_passes(self, invoice_fields: dict) -> None:
        invoice = _invoice(
            invoice_fields, customer_gstin=KARNATAKA_GSTIN, cgst=None, sgst=None, igst=1800.0
        )
        report = self.engine.validate(invoice)
        assert report.valid
        assert _result(report, "Intra-State Tax Logic").message == (
            "Not applicable to inter-state supply"
        )

    def test_inter_state_with_cgst_fails(self, invoice_fields: dict) -> None:
        invoice = _invoice(invoice_fields, customer_gstin=KARNATAKA_GSTIN)
        result = _result(self.engine.validate(invoice), "Inter-State Tax Logic")
        assert not result.passed
        assert result.message.startswith("CGST and SGST must be zero")

    def test_inter_state_without_igst_fails(self, invoice_fields: dict) -> None:
        invoice = _invoice(
            invoice_fields, customer_gstin=KARNATAKA_GSTIN, cgst=None, sgst=None
        )
        result = _result(self.engine.validate(invoice), "Inter-State Tax Logic")
        assert result.message == "IGST must be charged on inter-state supply"

    def test_unknown_states_skip_split_rules(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, customer_gstin=None))
        assert _result(report, "Intra-State Tax Logic").message == (
            "State codes not available for validation"
        )

    def test_arithmetic_mismatch(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, grand_total=12000.0))
        result = _result(report, "Tax Calculation Accuracy")
        assert not result.passed
        assert "difference Rs 200.00" in result.message

    def test_arithmetic_within_tolerance(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, grand_total=11800.9))
        assert _result(report, "Tax Calculation Accuracy").passed

    def test_round_off_counts_towards_total(self, invoice_fields: dict) -> None:
        invoice = _invoice(invoice_fields, cgst=900.2, sgst=900.2, round_off=-0.4)
        assert _result(self.engine.validate(invoice), "Tax Calculation Accuracy").passed

    def test_missing_subtotal(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, subtotal=None))
        assert not _result(report, "Tax Calculation Accuracy").passed
        assert not report.valid

    def test_inferred_taxes_are_noted(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, tax_inferred=True))
        assert report.notes == [TAX_INFERRED_NOTE]
        assert _result(report, "Tax Calculation Accuracy").message.endswith(
            "(tax components inferred)"
        )

    def test_invalid_vendor_gstin(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, vendor_gstin="27AABCU9603R1ZM"))
        result = _result(report, "GSTIN Format and Checksum")
        assert not result.passed
        assert result.message == "Vendor GSTIN check character is invalid (expected 4)"
        assert report.field_status("vendor_gstin") is False
        assert report.field_status("customer_gstin") is True
        assert report.critical_errors[0].startswith("GSTIN Format and Checksum: Vendor")

    def test_missing_vendor_gstin(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, vendor_gstin=None))
        result = _result(report, "GSTIN Format and Checksum")
        assert result.message == "Vendor GSTIN is missing"
        assert report.field_status("vendor_gstin") is None

    def test_bad_hsn_code_is_a_warning(self, invoice_fields: dict) -> None:
        items = [dict(item) for item in invoice_fields["line_items"]]
        items[1]["hsn_code"] = "74"
        report = self.engine.validate(_invoice(invoice_fields, line_items=items))
        assert report.valid
        assert report.warnings == [
            "HSN/SAC Code Format: Line 2 HSN/SAC code '74' must be 4, 6 or 8 digits"
        ]
        assert report.field_status("hsn_codes") is False

    def test_no_line_items(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, line_items=None))
        assert _result(report, "HSN/SAC Code Format").message == "No line items found"

    @pytest.mark.parametrize(
        ("invoice_date", "due_date", "expected"),
        [
            ("2025-03-01", None, "is in the future"),
            ("2023-12-01", None, "more than 1 year old"),
            ("2025-01-15", "2025-01-10", "Due date is before the invoice date"),
            ("2025-01-15", "2025-08-01", "more than 6 months after"),
        ],
    )
    def test_date_problems(
        self, invoice_fields: dict, invoice_date: str, due_date: str | None, expected: str
    ) -> None:
        invoice = _invoice(invoice_fields, invoice_date=invoice_date, due_date=due_date)
        result = _result(self.engine.validate(invoice), "Date Logic Validation")
        assert not result.passed
        assert expected in result.message

    def test_due_date_on_six_month_boundary(self, invoice_fields: dict) -> None:
        invoice = _invoice(invoice_fields, due_date="2025-07-15")
        assert _result(self.engine.validate(invoice), "Date Logic Validation").passed

    def test_missing_invoice_date(self, invoice_fields: dict) -> None:
        report = self.engine.validate(_invoice(invoice_fields, invoice_date=None))
        assert _result(report, "Date Logic Validation").message == "Invoice date is missing"

    def test_high_value_without_buyer_gstin(self, invoice_fields: dict) -> None:
        invoice = _invoice(
            invoice_fields,
            customer_gstin=None,
            subtotal=254237.29,
            cgst=22881.36,
            sgst=22881.35,
            grand_total=300000.0,
        )
        report = self.engine.validate(invoice)
        assert report.valid
        assert report.info_messages == [
            "B2B Transaction Validation: Invoices above Rs 250,000.00 must carry the buyer's GSTIN"
        ]

    def test_b2c_flag_with_buyer_gstin(self, invoice_fields: dict) -> None:
        invoice = _invoice(invoice_fields, transaction_classification={"is_b2c": True})
        result = _result(self.engine.validate(invoice), "B2B Transaction Validation")
        assert result.message == "Marked as B2C but a buyer GSTIN is present"

    def test_needs_review_below_score(self, invoice_fields: dict) -> None:
        invoice = _invoice(invoice_fields, invoice_date=None, line_items=None)
        report = self.engine.validate(invoice)
        assert report.valid
        assert report.overall_score == pytest.approx(5 / 7)
        assert report.needs_review()

    def test_custom_rules_and_config(self, invoice_fields: dict) -> None:
        rule = ValidationRule(
            "Always Fails", Severity.WARNING, lambda inv: RuleOutcome(False, "nope")
        )
        engine = ValidationEngine(ValidationConfig(b2b_threshold=1000.0), rules=[rule])
        report = engine.validate(_invoice(invoice_fields))
        assert report.total == 1
        assert report.warnings == ["Always Fails: nope"]
        assert engine.config.b2b_threshold == 1000.0

    def test_to_dict(self, invoice_fields: dict) -> None:
        data = self.engine.validate(_invoice(invoice_fields)).to_dict()
        assert data["valid"] is True
        assert data["overall_score"] == 1.0
        assert len(data["results"]) == 7
        assert data["results"][0]["severity"] == "critical"


class TestAddMonths:
    """Tests for calendar month arithmetic."""

    def test_clamps_to_month_end(self) -> None:
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)

    def test_crosses_year(self) -> None:
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)

    def test_leap_year(self) -> None:
        assert add_months(date(2023, 8, 31), 6) == date(2024, 2, 29)
