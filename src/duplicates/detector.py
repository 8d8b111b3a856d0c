"""Duplicate invoice detection against a client's invoice history.

Three strategies run independently over the history:

* exact: same normalized invoice number and vendor, amounts within 0.01;
* fuzzy: ``0.4 * number_similarity + 0.3 * vendor_similarity + 0.3 * same_amount``
  where the amount term is 1 when the amounts are within 1% of each other;
* heuristic: same date, amount and vendor under a different invoice number.

Detection only reads the history, so it is safe to run concurrently for
different candidates.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any

from src.extraction.schema import InvoiceData
from src.utils.config import DuplicateConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)

EXACT_AMOUNT_TOLERANCE = Decimal("0.01")
FUZZY_AMOUNT_RATIO = Decimal("0.01")
HEURISTIC_SCORE = 0.7

_LEGAL_SUFFIXES = re.compile(r"\b(pvt|ltd|limited|private|inc|corp|llc|llp)\b")


class Suggestion(StrEnum):
    """Routing decision for a candidate invoice."""

    ACCEPT = "accept"
    REVIEW = "review"
    REJECT = "reject"


@dataclass
class InvoiceRecord:
    """The fields duplicate detection compares.

    Used both for the candidate and for each historical invoice.
    """

    id: str | None
    invoice_number: str | None
    vendor_name: str | None
    amount: Decimal | None
    invoice_date: date | None = None
    vendor_gstin: str | None = None

    @classmethod
    def from_invoice(cls, invoice: InvoiceData, record_id: str | None = None) -> "InvoiceRecord":
        """Build a record from a typed invoice.

        The counterparty is the vendor for purchases; for sales the customer
        is the party that would receive a duplicate bill.
        """
        party = invoice.vendor if invoice.invoice_type == "purchase" else invoice.customer
        return cls(
            id=record_id,
            invoice_number=invoice.invoice_number,
            vendor_name=party.name,
            amount=invoice.grand_total,
            invoice_date=invoice.invoice_date,
            vendor_gstin=party.gstin,
        )


@dataclass
class DuplicateMatch:
    """One historical invoice that resembles the candidate."""

    candidate_invoice_id: str | None
    similarity_score: float
    match_reasons: list[str] = field(default_factory=list)


@dataclass
class DuplicateDetectionResult:
    """Aggregated detection outcome for one candidate."""

    is_duplicate: bool
    confidence: float
    matches: list[DuplicateMatch]
    suggestion: Suggestion

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity in [0, 1]."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def normalize_invoice_number(value: str | None) -> str:
    """Lowercase and keep only letters and digits."""
    return re.sub(r"[^a-z0-9]", "", (value or "").lower())


def normalize_vendor(value: str | None) -> str:
    """Lowercase, drop punctuation and legal-entity suffixes."""
    text = re.sub(r"[^\w\s]", " ", (value or "").lower())
    text = _LEGAL_SUFFIXES.sub(" ", text)
    return re.sub(r"\s+", " ", text).strip()


def _vendor_key(record: InvoiceRecord) -> str:
    return normalize_vendor(record.vendor_name) or (record.vendor_gstin or "").upper()


def _within_ratio(a: Decimal | None, b: Decimal | None, ratio: Decimal) -> bool:
    if a is None or b is None:
        return False
    largest = max(abs(a), abs(b))
    if largest == 0:
        return True
    return abs(a - b) / largest <= ratio


def _same_amount(a: Decimal | None, b: Decimal | None) -> bool:
    return a is not None and b is not None and abs(a - b) < EXACT_AMOUNT_TOLERANCE


class DuplicateDetector:
    """Finds likely duplicates of an invoice in the client's history.

    Args:
        config: Decision thresholds.
    """

    def __init__(self, config: DuplicateConfig | None = None) -> None:
        self.config = config or DuplicateConfig()

    def _is_exact(self, candidate: InvoiceRecord, other: InvoiceRecord) -> bool:
        number = normalize_invoice_number(candidate.invoice_number)
        return (
            bool(number)
            and number == normalize_invoice_number(other.invoice_number)
            and _vendor_key(candidate) == _vendor_key(other)
            and _same_amount(candidate.amount, other.amount)
        )

    def _fuzzy(self, candidate: InvoiceRecord, other: InvoiceRecord) -> DuplicateMatch | None:
        number_sim = similarity(
            normalize_invoice_number(candidate.invoice_number),
            normalize_invoice_number(other.invoice_number),
        )
        vendor_sim = similarity(_vendor_key(candidate), _vendor_key(other))
        amount_match = _within_ratio(candidate.amount, other.amount, FUZZY_AMOUNT_RATIO)

        score = 0.4 * number_sim + 0.3 * vendor_sim + 0.3 * (1.0 if amount_match else 0.0)
        if score <= self.config.fuzzy_threshold:
            return None

        reasons: list[str] = []
        if number_sim > 0.9:
            reasons.append("Very similar invoice number")
        if vendor_sim > 0.9:
            reasons.append("Same vendor")
        if amount_match:
            reasons.append("Same amount (+/-1%)")
        return DuplicateMatch(other.id, round(score, 4), reasons)

    def _heuristic(self, candidate: InvoiceRecord, other: InvoiceRecord) -> bool:
        return (
            candidate.invoice_date is not None
            and candidate.invoice_date == other.invoice_date
            and _same_amount(candidate.amount, other.amount)
            and bool(_vendor_key(candidate))
            and _vendor_key(candidate) == _vendor_key(other)
            and normalize_invoice_number(candidate.invoice_number)
            != normalize_invoice_number(other.invoice_number)
        )

    def suggestion_for(self, confidence: float) -> Suggestion:
        """Map a duplicate confidence to accept, review or reject."""
        if confidence >= self.config.reject_threshold:
            return Suggestion.REJECT
        if confidence >= self.config.review_threshold:
            return Suggestion.REVIEW
        return Suggestion.ACCEPT

    def detect(
        self, candidate: InvoiceRecord, history: list[InvoiceRecord]
    ) -> DuplicateDetectionResult:
        """Compare a candidate with the client's previous invoices.

        Args:
            candidate: Invoice about to be posted.
            history: Previously posted invoices of the same client.

        Returns:
            Matches sorted by descending score and the routing suggestion.
        """
        matches: list[DuplicateMatch] = []
        for other in history:
            if candidate.id is not None and other.id == candidate.id:
                continue
            if self._is_exact(candidate, other):
                matches.append(
                    DuplicateMatch(
                        other.id, 1.0, ["Exact match: invoice number, vendor, and amount"]
                    )
                )
                continue
            fuzzy = self._fuzzy(candidate, other)
            if fuzzy is not None:
                matches.append(fuzzy)
            elif self._heuristic(candidate, other):
                matches.append(
                    DuplicateMatch(
                        other.id, HEURISTIC_SCORE, ["Same date and amount from same vendor"]
                    )
                )

        matches.sort(key=lambda m: m.similarity_score, reverse=True)
        confidence = matches[0].similarity_score if matches else 0.0
        result = DuplicateDetectionResult(
            is_duplicate=bool(matches),
            confidence=confidence,
            matches=matches,
            suggestion=self.suggestion_for(confidence),
        )
        if matches:
            logger.info(
                "Invoice %s resembles %d earlier invoice(s), best score %.3f -> %s",
                candidate.invoice_number,
                len(matches),
                confidence,
                result.suggestion,
            )
        return result

    def detect_batch(
        self, candidates: list[InvoiceRecord], history: list[InvoiceRecord]
    ) -> dict[str | None, DuplicateDetectionResult]:
        """Run :meth:`detect` for several candidates against the same history.

        Returns:
            Results keyed by candidate ``id``.
        """
        return {candidate.id: self.detect(candidate, history) for candidate in candidates}
