"""Tests for the human review queue."""

import pytest

from src.errors import (
    ClaimConflictError,
    InvalidTransitionError,
    NotFoundError,
    TenantMismatchError,
)
from src.ledger.models import CorrectionType, ReviewStatus
from src.ledger.store import LedgerStore
from src.models import Classification, DocumentType, ExtractionResult, IncomingDocument
from src.review.queue import ReviewQueue, apply_corrections, classify_correction
from src.scoring.confidence import ConfidenceBand, ConfidenceReport
from tests.fakes import INVOICE_TEXT, RecordingNotifier


def _report(
    score: float = 0.9, priority: str = "medium", escalate: bool = False
) -> ConfidenceReport:
    return ConfidenceReport(
        field_scores=[],
        weighted_score=score,
        should_auto_approve=False,
        needs_review=True,
        band=ConfidenceBand.REVIEW_RECOMMENDED,
        priority=priority,
        review_reason="Low confidence",
        escalate=escalate,
        escalation_reason="Very low confidence" if escalate else None,
    )


class TestCorrectionHelpers:
    """Tests for correction classification."""

    @pytest.mark.parametrize(
        ("before", "after", "expected"),
        [
            (None, "INV-1", CorrectionType.MISSING),
            ("INV-1", None, CorrectionType.EXTRA),
            ("ACME SUPPLIES PVT LTD", "Acme Supplies Pvt. Ltd.", CorrectionType.FORMAT),
            ("INV-1", "INV-2", CorrectionType.VALUE),
            (11800.0, 11880.0, CorrectionType.VALUE),
        ],
    )
    def test_classify_correction(self, before, after, expected: CorrectionType) -> None:
        assert classify_correction(before, after) == expected

    def test_apply_corrections(self) -> None:
        fields = {"invoice_number": "1", "vendor_name": "x"}
        corrected = apply_corrections(fields, {"vendor_name": None, "due_date": "2025-02-01"})
        assert corrected == {"invoice_number": "1", "due_date": "2025-02-01"}
        assert fields == {"invoice_number": "1", "vendor_name": "x"}


class TestReviewQueue:
    """Tests for enqueue, claim, approve, reject and escalate."""

    @pytest.fixture(autouse=True)
    def _queue(self, store: LedgerStore, notifier: RecordingNotifier, invoice_fields: dict) -> None:
        self.store = store
        self.notifier = notifier
        self.queue = ReviewQueue(store, notifier)
        self.extraction = ExtractionResult(
            classification=Classification(DocumentType.INVOICE, 0.95),
            fields=invoice_fields,
            raw_text=INVOICE_TEXT,
            confidence=0.95,
            provider="static",
        )

    def _document(self, accountant_id: str = "acct-1") -> str:
        document = IncomingDocument("client-1", accountant_id, "invoice.pdf")
        self.store.save_document(document)
        return document.id

    def _enqueue(self, **report_kwargs) -> str:
        return self.queue.enqueue(self._document(), self.extraction, _report(**report_kwargs)).id

    def test_enqueue_creates_pending_item(self) -> None:
        document_id = self._document()
        item = self.queue.enqueue(document_id, self.extraction, _report())
        assert item.status == ReviewStatus.PENDING
        assert item.priority == "medium"
        assert item.weighted_confidence == 0.9
        assert item.extracted_data["fields"]["invoice_number"] == "INV-2025-001"
        assert item.original_ocr_text == INVOICE_TEXT
        assert self.notifier.names() == ["review_required"]
        assert self.notifier.events[0][1]["document_id"] == document_id

    def test_enqueue_is_idempotent_per_document(self) -> None:
        document_id = self._document()
        first = self.queue.enqueue(document_id, self.extraction, _report(score=0.9))
        second = self.queue.enqueue(document_id, self.extraction, _report(score=0.8, priority="high"))
        assert second.id == first.id
        assert second.weighted_confidence == 0.8
        assert second.priority == "high"
        assert self.notifier.names() == ["review_required"]

    def test_enqueue_leaves_claimed_item_alone(self) -> None:
        document_id = self._document()
        item = self.queue.enqueue(document_id, self.extraction, _report())
        self.queue.claim(item.id, "reviewer-1", "acct-1")
        again = self.queue.enqueue(document_id, self.extraction, _report(score=0.1))
        assert again.status == ReviewStatus.IN_REVIEW
        assert again.weighted_confidence == 0.9

    def test_enqueue_escalates_when_report_says_so(self) -> None:
        item_id = self._enqueue(score=0.2, priority="high", escalate=True)
        item = self.queue.get(item_id, "acct-1")
        assert item.status == ReviewStatus.ESCALATED
        assert item.escalation_reason == "Very low confidence"
        assert self.notifier.names() == ["review_required", "review_escalated"]

    def test_enqueue_unknown_document(self) -> None:
        with pytest.raises(NotFoundError):
            self.queue.enqueue("missing", self.extraction, _report())

    def test_claim(self) -> None:
        item_id = self._enqueue()
        item = self.queue.claim(item_id, "reviewer-1", "acct-1")
        assert item.status == ReviewStatus.IN_REVIEW
        assert item.assigned_to == "reviewer-1"
        assert item.assigned_at is not None

    def test_second_claim_conflicts(self) -> None:
        item_id = self._enqueue()
        self.queue.claim(item_id, "reviewer-1", "acct-1")
        with pytest.raises(ClaimConflictError) as excinfo:
            self.queue.claim(item_id, "reviewer-2", "acct-1")
        assert excinfo.value.current == ReviewStatus.IN_REVIEW
        assert self.queue.get(item_id, "acct-1").assigned_to == "reviewer-1"

    def test_claim_by_other_accountant(self) -> None:
        item_id = self._enqueue()
        with pytest.raises(TenantMismatchError):
            self.queue.claim(item_id, "reviewer-1", "acct-2")

    def test_claim_unknown_item(self) -> None:
        with pytest.raises(NotFoundError):
            self.queue.claim("missing", "reviewer-1", "acct-1")

    def test_approve_records_corrections(self) -> None:
        item_id = self._enqueue()
        self.queue.claim(item_id, "reviewer-1", "acct-1")
        item = self.queue.approve(
            item_id,
            "reviewer-1",
            "acct-1",
            corrections={
                "invoice_number": "INV-2025-0001",
                "vendor_name": "Acme Supplies Pvt. Ltd.",
                "due_date": "2025-02-15",
                "customer_name": None,
                "subtotal": 10000.0,
            },
            notes="Checked against paper copy",
        )
        assert item.status == ReviewStatus.APPROVED
        assert item.reviewed_at is not None
        assert item.reviewer_notes == "Checked against paper copy"
        assert item.corrected_data["invoice_number"] == "INV-2025-0001"
        assert item.corrected_data["due_date"] == "2025-02-15"
        assert "customer_name" not in item.corrected_data
        assert item.correction_summary == {
            "fields_corrected": 4,
            "by_type": {"value": 1, "format": 1, "missing": 1, "extra": 1},
        }

        recorded = self.queue.corrections(item.document_id, "acct-1")
        assert {(c.field_name, c.correction_type) for c in recorded} == {
            ("invoice_number", "value"),
            ("vendor_name", "format"),
            ("due_date", "missing"),
            ("customer_name", "extra"),
        }
        assert all(c.corrected_by == "reviewer-1" for c in recorded)

    def test_approve_without_corrections(self) -> None:
        item_id = self._enqueue()
        self.queue.claim(item_id, "reviewer-1", "acct-1")
        item = self.queue.approve(item_id, "reviewer-1", "acct-1")
        assert item.corrected_data == self.extraction.fields
        assert item.correction_summary["fields_corrected"] == 0

    def test_approve_requires_claim(self) -> None:
        item_id = self._enqueue()
        with pytest.raises(InvalidTransitionError):
            self.queue.approve(item_id, "reviewer-1", "acct-1")

    def test_approve_by_other_reviewer(self) -> None:
        item_id = self._enqueue()
        self.queue.claim(item_id, "reviewer-1", "acct-1")
        with pytest.raises(ClaimConflictError):
            self.queue.approve(item_id, "reviewer-2", "acct-1")

    def test_reject(self) -> None:
        item_id = self._enqueue()
        self.queue.claim(item_id, "reviewer-1", "acct-1")
        item = self.queue.reject(item_id, "reviewer-1", "acct-1", notes="Not our client")
        assert item.status == ReviewStatus.REJECTED
        assert item.reviewer_notes == "Not our client"
        with pytest.raises(InvalidTransitionError):
            self.queue.claim(item_id, "reviewer-1", "acct-1")

    def test_escalated_item_can_be_claimed_by_supervisor(self) -> None:
        item_id = self._enqueue()
        self.queue.claim(item_id, "reviewer-1", "acct-1")
        escalated = self.queue.escalate(item_id, "acct-1", "Unsure about GST treatment")
        assert escalated.status == ReviewStatus.ESCALATED
        assert escalated.priority == "high"
        assert escalated.assigned_to is None
        assert self.notifier.events[-1] == (
            "review_escalated",
            {
                "review_id": item_id,
                "document_id": escalated.document_id,
                "client_id": "client-1",
                "accountant_id": "acct-1",
                "reason": "Unsure about GST treatment",
            },
        )

        claimed = self.queue.claim(item_id, "supervisor-1", "acct-1")
        assert claimed.status == ReviewStatus.IN_REVIEW
        assert claimed.assigned_to == "supervisor-1"

    def test_cannot_escalate_twice(self) -> None:
        item_id = self._enqueue()
        self.queue.escalate(item_id, "acct-1", "first")
        with pytest.raises(InvalidTransitionError):
            self.queue.escalate(item_id, "acct-1", "second")

    def test_get_other_accountant(self) -> None:
        item_id = self._enqueue()
        with pytest.raises(TenantMismatchError):
            self.queue.get(item_id, "acct-2")

    def test_get_by_document(self) -> None:
        document_id = self._document()
        assert self.queue.get_by_document(document_id) is None
        item = self.queue.enqueue(document_id, self.extraction, _report())
        assert self.queue.get_by_document(document_id).id == item.id

    def test_list_orders_by_priority(self) -> None:
        low = self._enqueue(priority="low")
        high = self._enqueue(priority="high")
        medium = self._enqueue(priority="medium")
        assert [i.id for i in self.queue.list_items("acct-1")] == [high, medium, low]
        assert [i.id for i in self.queue.list_items("acct-1", priority="low")] == [low]
        assert len(self.queue.list_items("acct-1", limit=2)) == 2
        assert self.queue.list_items("acct-2") == []

    def test_list_filters_by_status(self) -> None:
        first = self._enqueue()
        self._enqueue()
        self.queue.claim(first, "reviewer-1", "acct-1")
        in_review = self.queue.list_items("acct-1", status=ReviewStatus.IN_REVIEW)
        assert [i.id for i in in_review] == [first]

    def test_stats(self) -> None:
        first = self._enqueue(score=0.9)
        self._enqueue(score=0.7, priority="high")
        self.queue.claim(first, "reviewer-1", "acct-1")
        self.queue.approve(first, "reviewer-1", "acct-1")

        stats = self.queue.stats("acct-1")
        assert stats["total"] == 2
        assert stats["approved"] == 1
        assert stats["pending"] == 1
        assert stats["open_by_priority"] == {"high": 1, "medium": 0, "low": 0}
        assert stats["average_confidence"] == pytest.approx(0.8)

    def test_stats_empty(self) -> None:
        stats = self.queue.stats("acct-1")
        assert stats["total"] == 0
        assert stats["average_confidence"] is None
