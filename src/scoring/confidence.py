"""Confidence scoring and the auto-approval gate.

Each tracked invoice field gets a status (valid, invalid, unverified,
missing) from the validation report and a confidence from the extraction
stage. Invalid fields are capped at 0.7 and missing fields are pinned to
0.5. The weighted mean over fields, plus small weights for the provider and
classification confidences, is compared with two thresholds:

* ``>= auto_approve_threshold``: auto-approve, unless a critical field is
  invalid, more than two warning fields are invalid, or the amount is high.
* ``>= needs_review_threshold``: review recommended.
* below that: review required.
"""

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from src.extraction.schema import InvoiceData
from src.models import ExtractionResult
from src.utils.config import ScoringConfig
from src.utils.logger import get_logger
from src.validation.rules_engine import TAX_INFERRED_NOTE, Severity, ValidationReport

logger = get_logger(__name__)

INVALID_CAP = 0.7
MISSING_CONFIDENCE = 0.5
DEFAULT_FIELD_CONFIDENCE = 0.5
LINE_ITEM_TOLERANCE = Decimal("1")
INVOICE_NUMBER_MAX_LENGTH = 50

FIELD_SEVERITY: dict[str, Severity] = {
    "vendor_gstin": Severity.CRITICAL,
    "customer_gstin": Severity.CRITICAL,
    "tax_calculations": Severity.CRITICAL,
    "grand_total": Severity.CRITICAL,
    "line_items": Severity.WARNING,
    "invoice_number": Severity.WARNING,
    "invoice_date": Severity.WARNING,
    "hsn_codes": Severity.INFO,
}

FIELD_LABELS: dict[str, str] = {
    "vendor_gstin": "vendor GSTIN",
    "customer_gstin": "customer GSTIN",
    "tax_calculations": "tax amounts",
    "grand_total": "grand total",
    "line_items": "line items",
    "invoice_number": "invoice number",
    "invoice_date": "invoice date",
    "hsn_codes": "HSN/SAC codes",
}


class FieldStatus(StrEnum):
    """Validation status of a tracked field."""

    VALID = "valid"
    INVALID = "invalid"
    UNVERIFIED = "unverified"
    MISSING = "missing"


class ConfidenceBand(StrEnum):
    """Confidence band implied by the two thresholds."""

    AUTO_APPROVE = "auto_approve"
    REVIEW_RECOMMENDED = "review_recommended"
    REVIEW_REQUIRED = "review_required"


@dataclass
class FieldScore:
    """Score for one tracked field."""

    field: str
    value: Any
    confidence: float
    status: FieldStatus
    severity: Severity
    reason: str | None = None


@dataclass
class ConfidenceReport:
    """Scoring outcome and approval decision for one document.

    ``should_auto_approve`` implies no critical issues and
    ``weighted_score >= auto_approve_threshold``.
    """

    field_scores: list[FieldScore]
    weighted_score: float
    should_auto_approve: bool
    needs_review: bool
    band: ConfidenceBand
    priority: str
    review_reason: str | None = None
    critical_issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    high_value: bool = False
    escalate: bool = False
    escalation_reason: str | None = None

    def get(self, name: str) -> FieldScore | None:
        """Return the score for field ``name``, if tracked."""
        return next((s for s in self.field_scores if s.field == name), None)

    def summary(self) -> str:
        """One-line description for notifications and list views."""
        labels = {
            ConfidenceBand.AUTO_APPROVE: "Auto-approved",
            ConfidenceBand.REVIEW_RECOMMENDED: "Review recommended",
            ConfidenceBand.REVIEW_REQUIRED: "Review required",
        }
        label = labels[self.band]
        if self.band == ConfidenceBand.AUTO_APPROVE and not self.should_auto_approve:
            label = "Review required"
        return (
            f"{label} ({self.weighted_score:.0%} confidence): "
            f"{len(self.critical_issues)} critical issues, {len(self.warnings)} warnings"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        data = asdict(self)
        for score in data["field_scores"]:
            score["value"] = _jsonable(score["value"])
        return data


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class ConfidenceScorer:
    """Combines extraction confidences with validation outcomes.

    Args:
        config: Thresholds and weights.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def weight(self, name: str) -> float:
        """Weight of field ``name`` in the weighted score."""
        return self.config.field_weights.get(name, self.config.default_field_weight)

    def _tracked_values(
        self, invoice: InvoiceData, fields: dict[str, Any]
    ) -> dict[str, Any]:
        values: dict[str, Any] = {
            "vendor_gstin": invoice.vendor.gstin,
            "tax_calculations": invoice.tax_total,
            "line_items": invoice.line_items or None,
            "grand_total": invoice.grand_total,
            "invoice_number": invoice.invoice_number,
            "invoice_date": invoice.invoice_date,
            "hsn_codes": [i.hsn_code for i in invoice.line_items if i.hsn_code] or None,
        }
        if invoice.customer.gstin:
            values["customer_gstin"] = invoice.customer.gstin
        return values

    def _rule_messages(self, validation: ValidationReport, name: str) -> str | None:
        messages = [
            r.message for r in validation.results if r.fields.get(name) is False
        ]
        return "; ".join(messages) if messages else None

    def _status(
        self,
        name: str,
        value: Any,
        invoice: InvoiceData,
        raw_fields: dict[str, Any],
        validation: ValidationReport,
    ) -> tuple[FieldStatus, str | None]:
        if value is None:
            label = FIELD_LABELS.get(name, name)
            return FieldStatus.MISSING, f"{label[0].upper()}{label[1:]} not found"

        if name == "grand_total":
            if value <= 0:
                return FieldStatus.INVALID, "Grand total must be greater than zero"
            return FieldStatus.VALID, None

        if name == "invoice_number":
            if len(value) > INVOICE_NUMBER_MAX_LENGTH:
                return (
                    FieldStatus.INVALID,
                    f"Invoice number is longer than {INVOICE_NUMBER_MAX_LENGTH} characters",
                )
            if "//" in value:
                return FieldStatus.INVALID, "Invoice number contains consecutive slashes"

        if name == "line_items":
            raw_items = raw_fields.get("line_items") or []
            if len(raw_items) != len(invoice.line_items):
                return FieldStatus.INVALID, "Some line items lack a description or amount"
            if invoice.subtotal is not None:
                items_total = sum((i.amount for i in invoice.line_items), Decimal("0"))
                if abs(items_total - invoice.subtotal) > LINE_ITEM_TOLERANCE:
                    return (
                        FieldStatus.INVALID,
                        f"Line items add up to Rs {items_total:,.2f}, "
                        f"subtotal is Rs {invoice.subtotal:,.2f}",
                    )
            return FieldStatus.VALID, None

        verdict = validation.field_status(name)
        if verdict is False:
            return FieldStatus.INVALID, self._rule_messages(validation, name)
        if name == "tax_calculations" and invoice.tax_inferred:
            return FieldStatus.UNVERIFIED, "Tax components inferred from totals"
        if verdict is True:
            return FieldStatus.VALID, None
        return FieldStatus.UNVERIFIED, None

    def _priority(self, score: float, critical: bool) -> str:
        if critical or score < self.config.needs_review_threshold:
            return "high"
        if score < self.config.auto_approve_threshold:
            return "medium"
        return "low"

    def score(
        self,
        extraction: ExtractionResult,
        validation: ValidationReport,
        invoice: InvoiceData | None = None,
    ) -> ConfidenceReport:
        """Score an extraction against its validation report.

        Args:
            extraction: Extraction result holding per-field confidences.
            validation: Validation report for the same fields.
            invoice: Typed invoice; built from ``extraction.fields`` if omitted.

        Returns:
            The confidence report with the approval decision.
        """
        invoice = invoice or InvoiceData.from_fields(extraction.fields)
        cfg = self.config

        scores: list[FieldScore] = []
        for name, value in self._tracked_values(invoice, extraction.fields).items():
            status, reason = self._status(name, value, invoice, extraction.fields, validation)
            confidence = extraction.field_confidences.get(name, DEFAULT_FIELD_CONFIDENCE)
            if status == FieldStatus.INVALID:
                confidence = min(confidence, INVALID_CAP)
            elif status == FieldStatus.MISSING:
                confidence = MISSING_CONFIDENCE
            scores.append(
                FieldScore(
                    field=name,
                    value=value,
                    confidence=confidence,
                    status=status,
                    severity=FIELD_SEVERITY.get(name, Severity.INFO),
                    reason=reason,
                )
            )

        numerator = sum(s.confidence * self.weight(s.field) for s in scores)
        denominator = sum(self.weight(s.field) for s in scores)
        numerator += extraction.confidence * cfg.provider_weight
        numerator += extraction.classification.confidence * cfg.classification_weight
        denominator += cfg.provider_weight + cfg.classification_weight
        weighted = round(numerator / denominator, 4) if denominator else 0.0

        def _issue(s: FieldScore) -> str:
            return f"{FIELD_LABELS.get(s.field, s.field)}: {s.reason or s.status}"

        critical = [
            _issue(s)
            for s in scores
            if s.status == FieldStatus.INVALID and s.severity == Severity.CRITICAL
        ]
        invalid_warnings = [
            _issue(s)
            for s in scores
            if s.status == FieldStatus.INVALID and s.severity == Severity.WARNING
        ]
        warnings = invalid_warnings + (
            [TAX_INFERRED_NOTE] if invoice.tax_inferred else []
        )

        grand_total = invoice.grand_total
        high_value = grand_total is not None and grand_total > Decimal(str(cfg.high_value_amount))
        below_threshold = weighted < cfg.auto_approve_threshold

        needs_review = bool(
            below_threshold or critical or len(invalid_warnings) > 2 or high_value
        )
        should_auto_approve = not needs_review

        reasons: list[str] = []
        if critical:
            reasons.append(f"Critical validation failures: {'; '.join(critical)}")
        if below_threshold:
            reasons.append(
                f"Low confidence: {weighted:.1%} "
                f"(threshold: {cfg.auto_approve_threshold:.0%})"
            )
        if len(invalid_warnings) > 2:
            reasons.append(f"Multiple warnings: {len(invalid_warnings)} issues found")
        if high_value:
            reasons.append(
                f"High-value transaction: Rs {grand_total:,.2f} exceeds the "
                f"Rs {cfg.high_value_amount:,.2f} auto-approval limit"
            )

        if weighted >= cfg.auto_approve_threshold:
            band = ConfidenceBand.AUTO_APPROVE
        elif weighted >= cfg.needs_review_threshold:
            band = ConfidenceBand.REVIEW_RECOMMENDED
        else:
            band = ConfidenceBand.REVIEW_REQUIRED

        escalation_reason = None
        if weighted < cfg.escalation_threshold:
            escalation_reason = (
                f"Very low confidence: {weighted:.1%} "
                f"(escalation threshold: {cfg.escalation_threshold:.0%})"
            )
        elif grand_total is not None and grand_total > Decimal(str(cfg.escalation_amount)):
            escalation_reason = (
                f"Very high value: Rs {grand_total:,.2f} exceeds "
                f"Rs {cfg.escalation_amount:,.2f}"
            )

        report = ConfidenceReport(
            field_scores=scores,
            weighted_score=weighted,
            should_auto_approve=should_auto_approve,
            needs_review=needs_review,
            band=band,
            priority=self._priority(weighted, bool(critical)),
            review_reason=". ".join(reasons) if reasons else None,
            critical_issues=critical,
            warnings=warnings,
            high_value=high_value,
            escalate=escalation_reason is not None,
            escalation_reason=escalation_reason,
        )
        logger.info(
            "Confidence %.3f (%s), auto_approve=%s", weighted, band, should_auto_approve
        )
        return report

    def suggest_improvements(self, report: ConfidenceReport) -> list[str]:
        """List reviewer actions for invalid, missing and inferred fields."""
        suggestions: list[str] = []
        for score in report.field_scores:
            label = FIELD_LABELS.get(score.field, score.field)
            if score.status == FieldStatus.INVALID:
                suggestions.append(f"Verify the {label}: {score.reason}")
            elif score.status == FieldStatus.MISSING:
                suggestions.append(f"Add the missing {label}")
            elif score.status == FieldStatus.UNVERIFIED and score.reason:
                suggestions.append(f"Confirm the {label}: {score.reason}")
        return suggestions

    def score_untyped(
        self, extraction: ExtractionResult, reason: str | None = None
    ) -> ConfidenceReport:
        """Score an extraction that cannot be checked field by field.

        Used for degraded results, unrecognised documents and invoices whose
        fields could not be typed. Only the provider and classification
        confidences contribute and the document always goes to review.

        Args:
            extraction: The extraction result.
            reason: Review reason; derived from the extraction if omitted.
        """
        cfg = self.config
        if reason is None and extraction.degraded:
            reason = "Text extraction failed: " + "; ".join(extraction.fields.get("error", []))
        weighted = round(
            (extraction.confidence + extraction.classification.confidence) / 2, 4
        )
        escalate = weighted < cfg.escalation_threshold
        return ConfidenceReport(
            field_scores=[],
            weighted_score=weighted,
            should_auto_approve=False,
            needs_review=True,
            band=(
                ConfidenceBand.REVIEW_RECOMMENDED
                if weighted >= cfg.needs_review_threshold
                else ConfidenceBand.REVIEW_REQUIRED
            ),
            priority=self._priority(weighted, False),
            review_reason=reason or f"Unrecognised document type ({weighted:.1%} confidence)",
            escalate=escalate,
            escalation_reason=(
                f"Very low confidence: {weighted:.1%} "
                f"(escalation threshold: {cfg.escalation_threshold:.0%})"
                if escalate
                else None
            ),
        )
