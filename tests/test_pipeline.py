"""End-to-end tests for the document-to-ledger pipeline."""

from collections.abc import Callable
from decimal import Decimal

import pytest

from src.errors import NotFoundError, UnbalancedEntryError
from src.extraction.schema import InvoiceType
from src.ledger.models import ReviewStatus
from src.ledger.store import LedgerStore
from src.models import Classification, DocumentType, ExtractionResult, IncomingDocument
from src.pipeline import Disposition, DocumentPipeline
from tests.fakes import (
    CUSTOMER_GSTIN,
    INVOICE_TEXT,
    VENDOR_GSTIN,
    RecordingNotifier,
    StaticProvider,
)

RECEIPT_TEXT = "Cafe Coffee Day\nReceipt No: R-7781\nDate: 12/01/2025\nTotal: 450.00\nPaid by UPI\n"


class TestDocumentPipeline:
    """Tests for dispositions reached by process, complete_review and reject_review."""

    @pytest.fixture(autouse=True)
    def _setup(
        self,
        make_pipeline: Callable[..., DocumentPipeline],
        store: LedgerStore,
        notifier: RecordingNotifier,
    ) -> None:
        self.make_pipeline = make_pipeline
        self.store = store
        self.notifier = notifier

    def _submit(
        self,
        pipeline: DocumentPipeline,
        filename: str = "invoice_001.pdf",
        **metadata,
    ) -> IncomingDocument:
        document = IncomingDocument("client-1", "acct-1", filename, metadata=metadata)
        pipeline.storage.save(document.id, b"%PDF-1.4 stub")
        return document

    def _process(self, pipeline: DocumentPipeline, filename: str = "invoice_001.pdf", **metadata):
        return pipeline.process(self._submit(pipeline, filename, **metadata))

    def test_clean_invoice_is_posted(self) -> None:
        pipeline = self.make_pipeline()
        outcome = self._process(pipeline)

        assert outcome.disposition == Disposition.POSTED
        assert outcome.invoice_type == InvoiceType.PURCHASE
        assert outcome.journal_entry_id is not None
        assert outcome.confidence.should_auto_approve
        assert outcome.validation.valid
        assert not outcome.duplicates.is_duplicate
        assert self.store.disposition(outcome.document_id) == "posted"
        assert self.notifier.names() == ["document_posted"]

        entry = pipeline.journal.get_entry(outcome.journal_entry_id, "client-1", "acct-1")
        assert entry.total_debits == entry.total_credits == Decimal("11800.00")
        assert len(self.store.invoice_history("client-1", "acct-1", "purchase")) == 1

    def test_outcome_to_dict(self) -> None:
        data = self._process(self.make_pipeline()).to_dict()
        assert data["disposition"] == "posted"
        assert data["document_type"] == "invoice"
        assert data["invoice_type"] == "purchase"
        assert data["fields"]["vendor_gstin"] == VENDOR_GSTIN
        assert data["review_item_id"] is None

    def test_exact_duplicate_is_archived(self) -> None:
        pipeline = self.make_pipeline()
        first = self._process(pipeline)
        second = self._process(pipeline)

        assert second.disposition == Disposition.ARCHIVED_DUPLICATE
        assert second.journal_entry_id is None
        assert second.duplicates.matches[0].similarity_score == 1.0
        assert self.store.disposition(second.document_id) == "archived_duplicate"
        assert self.store.disposition(first.document_id) == "posted"
        assert self.notifier.names() == ["document_posted", "duplicate_archived"]
        assert len(self.store.invoice_history("client-1", "acct-1", "purchase")) == 1

    def test_possible_duplicate_goes_to_review_then_posts(self) -> None:
        self._process(self.make_pipeline())
        lookalike = self.make_pipeline(
            StaticProvider(text=INVOICE_TEXT.replace("INV-2025-001", "BILL-77"))
        )
        outcome = self._process(lookalike)

        assert outcome.disposition == Disposition.QUEUED_FOR_REVIEW
        assert outcome.duplicates.suggestion == "review"
        assert outcome.confidence.review_reason.startswith("Possible duplicate of invoice")

        lookalike.review_queue.claim(outcome.review_item_id, "reviewer-1", "acct-1")
        reviewed = lookalike.complete_review(outcome.review_item_id, "reviewer-1", "acct-1")
        assert reviewed.disposition == Disposition.POSTED
        assert len(self.store.invoice_history("client-1", "acct-1", "purchase")) == 2

    def test_low_confidence_invoice_is_queued_and_completed(self) -> None:
        text = INVOICE_TEXT.replace("Invoice No: INV-2025-001\n", "")
        pipeline = self.make_pipeline(StaticProvider(text=text))
        outcome = self._process(pipeline)

        assert outcome.disposition == Disposition.QUEUED_FOR_REVIEW
        assert outcome.journal_entry_id is None
        assert outcome.confidence.needs_review
        assert self.store.disposition(outcome.document_id) == "queued_for_review"
        assert self.notifier.names() == ["review_required"]

        pipeline.review_queue.claim(outcome.review_item_id, "reviewer-1", "acct-1")
        reviewed = pipeline.complete_review(
            outcome.review_item_id,
            "reviewer-1",
            "acct-1",
            corrections={"invoice_number": "INV-2025-001"},
            notes="Number read from stamp",
        )
        assert reviewed.disposition == Disposition.POSTED
        assert reviewed.extraction.fields["invoice_number"] == "INV-2025-001"
        assert reviewed.extraction.field_confidences["invoice_number"] == 1.0
        assert reviewed.extraction.version == 2

        latest = self.store.latest_extraction(outcome.document_id)
        assert latest.fields["invoice_number"] == "INV-2025-001"
        item = pipeline.review_queue.get(outcome.review_item_id, "acct-1")
        assert item.status == ReviewStatus.APPROVED

    def test_unbalanced_correction_keeps_item_in_review(self) -> None:
        text = INVOICE_TEXT.replace("Invoice No: INV-2025-001\n", "")
        pipeline = self.make_pipeline(StaticProvider(text=text))
        outcome = self._process(pipeline)
        pipeline.review_queue.claim(outcome.review_item_id, "reviewer-1", "acct-1")

        with pytest.raises(UnbalancedEntryError):
            pipeline.complete_review(
                outcome.review_item_id, "reviewer-1", "acct-1", corrections={"grand_total": 20000.0}
            )
        item = pipeline.review_queue.get(outcome.review_item_id, "acct-1")
        assert item.status == ReviewStatus.IN_REVIEW
        assert self.store.disposition(outcome.document_id) == "queued_for_review"

    def test_rounding_gap_is_queued_instead_of_posted(self) -> None:
        text = INVOICE_TEXT.replace("Grand Total: 11800.00", "Grand Total: 11800.50")
        pipeline = self.make_pipeline(StaticProvider(text=text))
        outcome = self._process(pipeline)

        assert outcome.disposition == Disposition.QUEUED_FOR_REVIEW
        assert outcome.journal_entry_id is None
        assert outcome.confidence.priority == "high"
        assert outcome.confidence.review_reason == (
            "Amounts do not balance: debits Rs 11,800.00, credits Rs 11,800.50"
        )
        assert outcome.confidence.review_reason in outcome.confidence.critical_issues
        assert self.store.disposition(outcome.document_id) == "queued_for_review"
        item = pipeline.review_queue.get(outcome.review_item_id, "acct-1")
        assert item.priority == "high"
        assert self.store.invoice_history("client-1", "acct-1", "purchase") == []

    def test_reprocessing_a_posted_document_leaves_it_posted(self) -> None:
        pipeline = self.make_pipeline()
        document = self._submit(pipeline)
        first = pipeline.process(document)
        second = pipeline.process(document)

        assert first.disposition == second.disposition == Disposition.POSTED
        assert second.extraction.fields["invoice_number"] == "INV-2025-001"
        assert self.store.disposition(document.id) == "posted"
        assert self.notifier.names() == ["document_posted"]
        assert len(self.store.invoice_history("client-1", "acct-1", "purchase")) == 1
        entry = pipeline.journal.get_entry(first.journal_entry_id, "client-1", "acct-1")
        assert entry.status == "posted"

    def test_reviewer_expense_account_is_learned_for_the_vendor(self) -> None:
        text = INVOICE_TEXT.replace("Invoice No: INV-2025-001\n", "")
        pipeline = self.make_pipeline(StaticProvider(text=text))
        outcome = self._process(pipeline)
        pipeline.review_queue.claim(outcome.review_item_id, "reviewer-1", "acct-1")

        reviewed = pipeline.complete_review(
            outcome.review_item_id,
            "reviewer-1",
            "acct-1",
            corrections={"invoice_number": "INV-2025-001", "expense_account": "Raw Materials"},
        )
        entry = pipeline.journal.get_entry(reviewed.journal_entry_id, "client-1", "acct-1")
        assert entry.lines[0].account_name == "Raw Materials"
        assert self.store.expense_account("acct-1", "Acme Supplies Ltd") == "Raw Materials"

    def test_reject_review(self) -> None:
        pipeline = self.make_pipeline(StaticProvider(text="lorem ipsum dolor"))
        outcome = self._process(pipeline, "scan.png")
        pipeline.review_queue.claim(outcome.review_item_id, "reviewer-1", "acct-1")

        rejected = pipeline.reject_review(
            outcome.review_item_id, "reviewer-1", "acct-1", notes="Blank page"
        )
        assert rejected.disposition == Disposition.REJECTED
        assert self.store.disposition(outcome.document_id) == "rejected"
        assert self.notifier.events[-1] == (
            "document_rejected",
            {"document_id": outcome.document_id, "client_id": "client-1", "notes": "Blank page"},
        )

    def test_unrecognised_document_is_queued(self) -> None:
        pipeline = self.make_pipeline(StaticProvider(text="lorem ipsum dolor"))
        outcome = self._process(pipeline, "scan.png")

        assert outcome.disposition == Disposition.QUEUED_FOR_REVIEW
        assert outcome.extraction.classification.type == DocumentType.OTHER
        assert outcome.confidence.weighted_score == pytest.approx(0.775)
        item = pipeline.review_queue.get(outcome.review_item_id, "acct-1")
        assert item.status == ReviewStatus.PENDING

        pipeline.review_queue.claim(item.id, "reviewer-1", "acct-1")
        filed = pipeline.complete_review(item.id, "reviewer-1", "acct-1")
        assert filed.disposition == Disposition.FILED

    def test_degraded_extraction_is_escalated(self) -> None:
        pipeline = self.make_pipeline(
            StaticProvider("tesseract", available=False),
            StaticProvider("vision_llm", error="HTTP 500"),
        )
        outcome = self._process(pipeline, "scan.png")

        assert outcome.disposition == Disposition.QUEUED_FOR_REVIEW
        assert outcome.extraction.degraded
        assert outcome.confidence.escalate
        assert outcome.confidence.review_reason == (
            "Text extraction failed: tesseract: provider unavailable; vision_llm: HTTP 500"
        )
        item = pipeline.review_queue.get(outcome.review_item_id, "acct-1")
        assert item.status == ReviewStatus.ESCALATED
        assert self.notifier.names() == ["review_required", "review_escalated"]

    def test_reviewer_can_key_in_a_degraded_invoice(self, invoice_fields: dict) -> None:
        pipeline = self.make_pipeline(StaticProvider("vision_llm", error="HTTP 500"))
        outcome = self._process(pipeline, "scan.png")
        pipeline.review_queue.claim(outcome.review_item_id, "supervisor-1", "acct-1")

        reviewed = pipeline.complete_review(
            outcome.review_item_id, "supervisor-1", "acct-1", corrections=invoice_fields
        )
        assert reviewed.disposition == Disposition.POSTED
        assert reviewed.extraction.classification.type == DocumentType.INVOICE
        assert reviewed.extraction.classification.matched_on == "reviewer"
        assert "error" not in reviewed.extraction.fields

    def test_receipt_is_filed(self) -> None:
        pipeline = self.make_pipeline(StaticProvider(text=RECEIPT_TEXT))
        outcome = self._process(pipeline, "receipt_jan.jpg")

        assert outcome.disposition == Disposition.FILED
        assert outcome.extraction.fields["total_amount"] == 450.0
        assert outcome.journal_entry_id is None
        assert self.store.disposition(outcome.document_id) == "filed"

    def test_sales_invoice_from_metadata(self) -> None:
        outcome = self._process(self.make_pipeline(), invoice_type="sales")
        assert outcome.disposition == Disposition.POSTED
        assert outcome.invoice_type == InvoiceType.SALES
        assert len(self.store.invoice_history("client-1", "acct-1", "sales")) == 1
        assert self.store.invoice_history("client-1", "acct-1", "purchase") == []

    def test_missing_bytes(self) -> None:
        pipeline = self.make_pipeline()
        with pytest.raises(NotFoundError):
            pipeline.process(IncomingDocument("client-1", "acct-1", "invoice.pdf"))


class TestResolveInvoiceType:
    """Tests for deciding between sales and purchase."""

    @pytest.fixture(autouse=True)
    def _setup(self, make_pipeline: Callable[..., DocumentPipeline], store: LedgerStore) -> None:
        self.pipeline = make_pipeline()
        self.store = store

    def _extraction(self, subtype: str | None = None) -> ExtractionResult:
        return ExtractionResult(
            classification=Classification(DocumentType.INVOICE, 0.95, subtype=subtype),
            fields={"vendor_gstin": VENDOR_GSTIN, "customer_gstin": CUSTOMER_GSTIN},
            raw_text=INVOICE_TEXT,
            confidence=0.95,
        )

    def _resolve(self, extraction: ExtractionResult, **metadata) -> InvoiceType:
        document = IncomingDocument("client-1", "acct-1", "doc.pdf", metadata=metadata)
        return self.pipeline.resolve_invoice_type(document, extraction)

    def test_metadata_wins(self) -> None:
        assert self._resolve(self._extraction("purchase"), invoice_type="SALES") == InvoiceType.SALES

    def test_client_gstin_matches_vendor(self) -> None:
        assert self._resolve(self._extraction(), client_gstin=VENDOR_GSTIN) == InvoiceType.SALES

    def test_client_gstin_matches_customer(self) -> None:
        extraction = self._extraction("sales")
        assert self._resolve(extraction, client_gstin=CUSTOMER_GSTIN) == InvoiceType.PURCHASE

    def test_registered_client_gstin(self) -> None:
        self.store.register_client("client-1", "acct-1", gstin=VENDOR_GSTIN.lower())
        assert self._resolve(self._extraction()) == InvoiceType.SALES

    def test_filename_subtype(self) -> None:
        assert self._resolve(self._extraction("sales")) == InvoiceType.SALES

    def test_defaults_to_purchase(self) -> None:
        assert self._resolve(self._extraction()) == InvoiceType.PURCHASE
