"""GST compliance validation engine.

Runs an ordered, pluggable list of independent rules against a typed
invoice. Every rule is a pure function returning a :class:`RuleOutcome`;
the engine attaches the rule's name and severity and aggregates the results
into a :class:`ValidationReport`. A report is valid when no critical rule
failed, and ``overall_score`` is the fraction of rules that passed.

Failures are data, not exceptions: messages are written for display to a
reviewer as-is.
"""

import calendar
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import StrEnum
from typing import Any

from src.extraction.schema import InvoiceData
from src.utils.config import ValidationConfig
from src.utils.logger import get_logger

from .gstin import validate_gstin

logger = get_logger(__name__)

VALID_HSN_LENGTHS = (4, 6, 8)
TAX_INFERRED_NOTE = (
    "Tax components were inferred from grand total minus subtotal, "
    "not read from the invoice; verify them against the printed amounts"
)


class Severity(StrEnum):
    """How a failed rule affects the approval decision."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass
class RuleOutcome:
    """What a rule function returns.

    ``fields`` maps tracked field names (``vendor_gstin``,
    ``tax_calculations``...) to whether this rule found them valid.
    """

    valid: bool
    message: str
    fields: dict[str, bool] = field(default_factory=dict)


@dataclass
class ValidationRule:
    """A named rule with a severity and a pure check function."""

    name: str
    severity: Severity
    check: Callable[[InvoiceData], RuleOutcome]


@dataclass
class ValidationResult:
    """Result of a single rule."""

    rule_name: str
    passed: bool
    message: str
    severity: Severity
    fields: dict[str, bool] = field(default_factory=dict)


@dataclass
class ValidationReport:
    """Ordered rule results for one invoice."""

    results: list[ValidationResult]
    notes: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def overall_score(self) -> float:
        return self.passed_count / self.total if self.total else 1.0

    @property
    def critical_errors(self) -> list[str]:
        return self._failed(Severity.CRITICAL)

    @property
    def warnings(self) -> list[str]:
        return self._failed(Severity.WARNING)

    @property
    def info_messages(self) -> list[str]:
        return self._failed(Severity.INFO)

    @property
    def valid(self) -> bool:
        """True iff no critical rule failed."""
        return not self.critical_errors

    def _failed(self, severity: Severity) -> list[str]:
        return [
            f"{r.rule_name}: {r.message}"
            for r in self.results
            if not r.passed and r.severity == severity
        ]

    def field_status(self, name: str) -> bool | None:
        """Combined verdict of all rules that checked field ``name``.

        Returns:
            False if any rule rejected it, True if at least one accepted it
            and none rejected it, ``None`` if no rule looked at it.
        """
        verdicts = [r.fields[name] for r in self.results if name in r.fields]
        if not verdicts:
            return None
        return all(verdicts)

    def needs_review(self) -> bool:
        """Validation-only review signal: critical failure, >2 warnings, or score < 0.8."""
        return (
            bool(self.critical_errors)
            or len(self.warnings) > 2
            or self.overall_score < 0.8
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage and API responses."""
        return {
            "valid": self.valid,
            "overall_score": round(self.overall_score, 4),
            "results": [asdict(r) for r in self.results],
            "critical_errors": self.critical_errors,
            "warnings": self.warnings,
            "info": self.info_messages,
            "notes": list(self.notes),
        }


def add_months(day: date, months: int) -> date:
    """Shift ``day`` by ``months``, clamping to the end of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _rupees(amount: Decimal | float) -> str:
    return f"Rs {amount:,.2f}"


def _party_message(party: str, message: str) -> str:
    if message.startswith("GSTIN"):
        return f"{party} {message}"
    return f"{party} GSTIN: {message}"


class ValidationEngine:
    """Applies the GST rule set to typed invoices.

    Args:
        config: Thresholds and tolerances.
        rules: Replacement rule list; defaults to :meth:`default_rules`.
        today: Clock used by the date rule.
    """

    def __init__(
        self,
        config: ValidationConfig | None = None,
        rules: list[ValidationRule] | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config = config or ValidationConfig()
        self._today = today
        self.rules = rules if rules is not None else self.default_rules()

    def default_rules(self) -> list[ValidationRule]:
        """Return the standard GST rules in evaluation order."""
        return [
            ValidationRule("GSTIN Format and Checksum", Severity.CRITICAL, self.check_gstins),
            ValidationRule("Intra-State Tax Logic", Severity.CRITICAL, self.check_intra_state),
            ValidationRule("Inter-State Tax Logic", Severity.CRITICAL, self.check_inter_state),
            ValidationRule("Tax Calculation Accuracy", Severity.CRITICAL, self.check_tax_arithmetic),
            ValidationRule("HSN/SAC Code Format", Severity.WARNING, self.check_hsn_codes),
            ValidationRule("Date Logic Validation", Severity.WARNING, self.check_dates),
            ValidationRule("B2B Transaction Validation", Severity.INFO, self.check_threshold),
        ]

    def validate(self, invoice: InvoiceData) -> ValidationReport:
        """Run every rule against ``invoice``.

        Args:
            invoice: Typed invoice.

        Returns:
            Report with one result per rule, in rule order.
        """
        results: list[ValidationResult] = []
        for rule in self.rules:
            outcome = rule.check(invoice)
            results.append(
                ValidationResult(
                    rule_name=rule.name,
                    passed=outcome.valid,
                    message=outcome.message,
                    severity=rule.severity,
                    fields=outcome.fields,
                )
            )

        notes = [TAX_INFERRED_NOTE] if invoice.tax_inferred else []
        report = ValidationReport(results=results, notes=notes)
        logger.info(
            "Validated invoice %s: %d/%d rules passed, %d critical",
            invoice.invoice_number,
            report.passed_count,
            report.total,
            len(report.critical_errors),
        )
        return report

    def check_gstins(self, invoice: InvoiceData) -> RuleOutcome:
        """Vendor GSTIN is required; buyer GSTIN is checked when present."""
        messages: list[str] = []
        fields: dict[str, bool] = {}

        vendor = validate_gstin(invoice.vendor.gstin)
        if invoice.vendor.gstin:
            fields["vendor_gstin"] = vendor.valid
        if not vendor.valid:
            messages.append(_party_message("Vendor", vendor.message))

        if invoice.customer.gstin:
            customer = validate_gstin(invoice.customer.gstin)
            fields["customer_gstin"] = customer.valid
            if not customer.valid:
                messages.append(_party_message("Customer", customer.message))

        if messages:
            return RuleOutcome(False, "; ".join(messages), fields)
        return RuleOutcome(True, "All GSTINs are valid", fields)

    def check_intra_state(self, invoice: InvoiceData) -> RuleOutcome:
        """Same state: IGST must be zero and CGST must equal SGST."""
        inter_state = invoice.is_inter_state
        if inter_state is None:
            return RuleOutcome(True, "State codes not available for validation")
        if inter_state:
            return RuleOutcome(True, "Not applicable to inter-state supply")

        if invoice.igst > 0:
            return RuleOutcome(
                False,
                f"IGST must be zero for intra-state supply (found {_rupees(invoice.igst)})",
                {"tax_calculations": False},
            )
        tolerance = Decimal(str(self.config.split_tolerance))
        if abs(invoice.cgst - invoice.sgst) > tolerance:
            return RuleOutcome(
                False,
                f"CGST ({_rupees(invoice.cgst)}) and SGST ({_rupees(invoice.sgst)}) "
                "must be equal for intra-state supply",
                {"tax_calculations": False},
            )
        return RuleOutcome(
            True, "Intra-state tax split is correct", {"tax_calculations": True}
        )

    def check_inter_state(self, invoice: InvoiceData) -> RuleOutcome:
        """Different states: CGST and SGST must be zero and IGST must be charged."""
        inter_state = invoice.is_inter_state
        if inter_state is None:
            return RuleOutcome(True, "State codes not available for validation")
        if not inter_state:
            return RuleOutcome(True, "Not applicable to intra-state supply")

        if invoice.cgst > 0 or invoice.sgst > 0:
            return RuleOutcome(
                False,
                "CGST and SGST must be zero for inter-state supply "
                f"(found CGST {_rupees(invoice.cgst)}, SGST {_rupees(invoice.sgst)})",
                {"tax_calculations": False},
            )
        if invoice.igst <= 0:
            return RuleOutcome(
                False,
                "IGST must be charged on inter-state supply",
                {"tax_calculations": False},
            )
        return RuleOutcome(
            True, "Inter-state tax split is correct", {"tax_calculations": True}
        )

    def check_tax_arithmetic(self, invoice: InvoiceData) -> RuleOutcome:
        """Subtotal plus taxes plus round-off must equal the grand total."""
        if invoice.subtotal is None or invoice.grand_total is None:
            return RuleOutcome(
                False,
                "Subtotal or grand total is missing, so tax arithmetic cannot be checked",
                {"tax_calculations": False},
            )

        computed = invoice.subtotal + invoice.tax_total + invoice.round_off
        difference = abs(computed - invoice.grand_total)
        suffix = " (tax components inferred)" if invoice.tax_inferred else ""
        if difference > Decimal(str(self.config.arithmetic_tolerance)):
            return RuleOutcome(
                False,
                f"Subtotal + taxes + round-off = {_rupees(computed)}, but grand total is "
                f"{_rupees(invoice.grand_total)} (difference {_rupees(difference)}){suffix}",
                {"tax_calculations": False},
            )
        return RuleOutcome(
            True, f"Tax calculation is correct{suffix}", {"tax_calculations": True}
        )

    def check_hsn_codes(self, invoice: InvoiceData) -> RuleOutcome:
        """Every line item needs a 4, 6 or 8 digit HSN/SAC code."""
        if not invoice.line_items:
            return RuleOutcome(False, "No line items found")

        problems: list[str] = []
        for number, item in enumerate(invoice.line_items, 1):
            if not item.hsn_code:
                problems.append(f"Line {number} ({item.description}) has no HSN/SAC code")
                continue
            digits = re.sub(r"\D", "", item.hsn_code)
            if len(digits) not in VALID_HSN_LENGTHS:
                problems.append(
                    f"Line {number} HSN/SAC code '{item.hsn_code}' must be 4, 6 or 8 digits"
                )

        if problems:
            return RuleOutcome(False, "; ".join(problems), {"hsn_codes": False})
        return RuleOutcome(True, "All HSN/SAC codes are valid", {"hsn_codes": True})

    def check_dates(self, invoice: InvoiceData) -> RuleOutcome:
        """Invoice date within the last year; due date within six months after it."""
        if invoice.invoice_date is None:
            return RuleOutcome(False, "Invoice date is missing")

        today = self._today()
        issued = invoice.invoice_date
        problems: list[str] = []
        if issued > today:
            problems.append(f"Invoice date {issued.isoformat()} is in the future")
        if issued < today - timedelta(days=self.config.max_invoice_age_days):
            problems.append(f"Invoice date {issued.isoformat()} is more than 1 year old")

        if invoice.due_date is not None:
            if invoice.due_date < issued:
                problems.append("Due date is before the invoice date")
            elif invoice.due_date > add_months(issued, self.config.max_due_months):
                problems.append(
                    f"Due date is more than {self.config.max_due_months} months "
                    "after the invoice date"
                )

        if problems:
            return RuleOutcome(False, "; ".join(problems), {"invoice_date": False})
        return RuleOutcome(True, "Dates are valid", {"invoice_date": True})

    def check_threshold(self, invoice: InvoiceData) -> RuleOutcome:
        """High-value supplies need a buyer GSTIN; B2B/B2C flags must agree with it."""
        threshold = Decimal(str(self.config.b2b_threshold))
        has_buyer_gstin = bool(invoice.customer.gstin)

        if invoice.grand_total is not None and invoice.grand_total > threshold and not has_buyer_gstin:
            return RuleOutcome(
                False,
                f"Invoices above {_rupees(threshold)} must carry the buyer's GSTIN",
            )

        classification = invoice.transaction_classification
        if classification is not None:
            if classification.is_b2b and not has_buyer_gstin:
                return RuleOutcome(False, "Marked as B2B but the buyer GSTIN is missing")
            if classification.is_b2c and has_buyer_gstin:
                return RuleOutcome(False, "Marked as B2C but a buyer GSTIN is present")

        return RuleOutcome(True, "Transaction classification is consistent")
