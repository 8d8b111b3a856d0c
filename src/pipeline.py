"""Document-to-ledger pipeline.

``process`` takes an incoming document through extraction, classification,
field parsing, validation and confidence scoring. Confident invoices go on
to duplicate detection and journal posting; everything else is queued for
human review. ``complete_review`` and ``reject_review`` re-enter the flow
after a reviewer has decided.

Every document ends with exactly one disposition, recorded on its row:
``posted``, ``queued_for_review``, ``rejected``, ``archived_duplicate`` or
``filed`` (KYC papers, receipts and statements, which carry no journal).
"""

from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.collaborators import (
    DocumentStorage,
    FileSystemStorage,
    LogNotifier,
    Notifier,
    notify_safely,
)
from src.duplicates.detector import (
    DuplicateDetectionResult,
    DuplicateDetector,
    InvoiceRecord,
    Suggestion,
    normalize_vendor,
)
from src.errors import UnbalancedEntryError
from src.extraction.classifier import DocumentClassifier
from src.extraction.field_extractor import FieldExtractor
from src.extraction.schema import InvoiceData, InvoiceType
from src.ledger.journal import JournalGenerator
from src.ledger.store import LedgerStore
from src.models import Classification, DocumentType, ExtractionResult, IncomingDocument
from src.ocr.orchestrator import ExtractionOrchestrator
from src.ocr.providers import build_providers
from src.review.queue import ReviewQueue, apply_corrections
from src.scoring.confidence import ConfidenceReport, ConfidenceScorer
from src.utils.config import AppConfig
from src.utils.logger import get_logger
from src.validation.gstin import clean_gstin
from src.validation.rules_engine import ValidationEngine, ValidationReport

logger = get_logger(__name__)

REVIEWED_CONFIDENCE = 1.0


class Disposition(StrEnum):
    """Where a document ended up."""

    POSTED = "posted"
    QUEUED_FOR_REVIEW = "queued_for_review"
    REJECTED = "rejected"
    ARCHIVED_DUPLICATE = "archived_duplicate"
    FILED = "filed"


SETTLED_DISPOSITIONS = frozenset(
    {Disposition.POSTED, Disposition.REJECTED, Disposition.ARCHIVED_DUPLICATE, Disposition.FILED}
)


def _unbalanced_report(report: ConfidenceReport, exc: UnbalancedEntryError) -> ConfidenceReport:
    """Hold back an invoice whose amounts would not post as a balanced entry."""
    issue = (
        f"Amounts do not balance: debits Rs {exc.total_debits:,.2f}, "
        f"credits Rs {exc.total_credits:,.2f}"
    )
    return replace(
        report,
        should_auto_approve=False,
        needs_review=True,
        priority="high",
        review_reason=issue,
        critical_issues=[*report.critical_issues, issue],
    )


@dataclass
class ProcessingOutcome:
    """Everything the pipeline decided about one document."""

    document_id: str
    disposition: Disposition
    extraction: ExtractionResult
    invoice_type: InvoiceType | None = None
    validation: ValidationReport | None = None
    confidence: ConfidenceReport | None = None
    duplicates: DuplicateDetectionResult | None = None
    journal_entry_id: str | None = None
    review_item_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize a summary for API and CLI output."""
        return {
            "document_id": self.document_id,
            "disposition": str(self.disposition),
            "document_type": str(self.extraction.classification.type),
            "provider": self.extraction.provider,
            "invoice_type": str(self.invoice_type) if self.invoice_type else None,
            "fields": self.extraction.fields,
            "validation": self.validation.to_dict() if self.validation else None,
            "confidence": self.confidence.to_dict() if self.confidence else None,
            "duplicates": self.duplicates.to_dict() if self.duplicates else None,
            "journal_entry_id": self.journal_entry_id,
            "review_item_id": self.review_item_id,
        }


class DocumentPipeline:
    """Wires the pipeline stages to the storage, persistence and notification collaborators.

    Args:
        store: Persistence boundary.
        storage: Source of document bytes.
        orchestrator: Provider fallback plus classification and field parsing.
        validator: GST validation engine.
        scorer: Confidence scorer.
        detector: Duplicate detector.
        journal: Journal generator.
        review_queue: Review queue.
        notifier: Fire-and-forget notification sink.
    """

    def __init__(
        self,
        store: LedgerStore,
        storage: DocumentStorage,
        orchestrator: ExtractionOrchestrator,
        validator: ValidationEngine | None = None,
        scorer: ConfidenceScorer | None = None,
        detector: DuplicateDetector | None = None,
        journal: JournalGenerator | None = None,
        review_queue: ReviewQueue | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.orchestrator = orchestrator
        self.validator = validator or ValidationEngine()
        self.scorer = scorer or ConfidenceScorer()
        self.detector = detector or DuplicateDetector()
        self.journal = journal or JournalGenerator(store)
        self.notifier = notifier
        self.review_queue = review_queue or ReviewQueue(store, notifier)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: LedgerStore | None = None,
        storage: DocumentStorage | None = None,
        notifier: Notifier | None = None,
    ) -> "DocumentPipeline":
        """Build a pipeline with every stage configured from ``config``."""
        store = store or LedgerStore(config.ledger.database_url)
        notifier = notifier or LogNotifier()
        orchestrator = ExtractionOrchestrator(
            build_providers(config.providers, config.preprocessing),
            classifier=DocumentClassifier(config.classifier),
            field_extractor=FieldExtractor(),
            timeout_s=config.providers.timeout_s,
        )
        return cls(
            store=store,
            storage=storage or FileSystemStorage(Path(config.storage_root)),
            orchestrator=orchestrator,
            validator=ValidationEngine(config.validation),
            scorer=ConfidenceScorer(config.scoring),
            detector=DuplicateDetector(config.duplicates),
            journal=JournalGenerator(store, config.ledger),
            review_queue=ReviewQueue(store, notifier),
            notifier=notifier,
        )

    def resolve_invoice_type(
        self, document: IncomingDocument, extraction: ExtractionResult
    ) -> InvoiceType:
        """Decide whether an invoice is a sale or a purchase for the client.

        Explicit ``invoice_type`` metadata wins. Otherwise the client's own
        GSTIN (metadata ``client_gstin`` or the stored client record) is
        compared with the parties on the invoice, then the filename hint is
        used, and purchase is the default.
        """
        explicit = str(document.metadata.get("invoice_type", "")).lower()
        if explicit in (InvoiceType.SALES, InvoiceType.PURCHASE):
            return InvoiceType(explicit)

        client_gstin = document.metadata.get("client_gstin") or self.store.client_gstin(
            document.client_id
        )
        if client_gstin:
            own = clean_gstin(client_gstin)
            vendor = extraction.fields.get("vendor_gstin")
            customer = extraction.fields.get("customer_gstin")
            if vendor and clean_gstin(vendor) == own:
                return InvoiceType.SALES
            if customer and clean_gstin(customer) == own:
                return InvoiceType.PURCHASE

        subtype = extraction.classification.subtype
        if subtype in (InvoiceType.SALES, InvoiceType.PURCHASE):
            return InvoiceType(subtype)
        return InvoiceType.PURCHASE

    def _queue(
        self,
        document: IncomingDocument,
        extraction: ExtractionResult,
        report: ConfidenceReport,
        validation: ValidationReport | None = None,
        invoice_type: InvoiceType | None = None,
        duplicates: DuplicateDetectionResult | None = None,
    ) -> ProcessingOutcome:
        item = self.review_queue.enqueue(document.id, extraction, report, validation)
        self.store.set_disposition(
            document.id,
            Disposition.QUEUED_FOR_REVIEW,
            confidence=report.weighted_score,
            needs_review=True,
        )
        logger.info("Document %s queued for review: %s", document.id, report.review_reason)
        return ProcessingOutcome(
            document_id=document.id,
            disposition=Disposition.QUEUED_FOR_REVIEW,
            extraction=extraction,
            invoice_type=invoice_type,
            validation=validation,
            confidence=report,
            duplicates=duplicates,
            review_item_id=item.id,
        )

    def _post(
        self,
        document: IncomingDocument,
        extraction: ExtractionResult,
        invoice: InvoiceData,
        validation: ValidationReport,
        report: ConfidenceReport,
        reviewed: bool,
        expense_account: str | None = None,
    ) -> ProcessingOutcome:
        history = self.store.invoice_history(
            document.client_id, document.accountant_id, invoice.invoice_type
        )
        duplicates = self.detector.detect(InvoiceRecord.from_invoice(invoice), history)

        if duplicates.suggestion == Suggestion.REJECT:
            self.store.set_disposition(
                document.id, Disposition.ARCHIVED_DUPLICATE, confidence=report.weighted_score
            )
            logger.info(
                "Document %s archived as duplicate of %s",
                document.id,
                duplicates.matches[0].candidate_invoice_id,
            )
            notify_safely(
                self.notifier,
                "duplicate_archived",
                {
                    "document_id": document.id,
                    "client_id": document.client_id,
                    "matches": [m.candidate_invoice_id for m in duplicates.matches],
                },
            )
            return ProcessingOutcome(
                document_id=document.id,
                disposition=Disposition.ARCHIVED_DUPLICATE,
                extraction=extraction,
                invoice_type=invoice.invoice_type,
                validation=validation,
                confidence=report,
                duplicates=duplicates,
            )

        if duplicates.suggestion == Suggestion.REVIEW and not reviewed:
            best = duplicates.matches[0]
            report = replace(
                report,
                should_auto_approve=False,
                needs_review=True,
                review_reason=(
                    f"Possible duplicate of invoice {best.candidate_invoice_id} "
                    f"({best.similarity_score:.0%}): {', '.join(best.match_reasons)}"
                ),
            )
            return self._queue(
                document, extraction, report, validation, invoice.invoice_type, duplicates
            )

        entry = self.journal.generate(
            invoice,
            document.client_id,
            document.accountant_id,
            document_id=document.id,
            expense_account=expense_account,
        )
        self.store.set_disposition(
            document.id, Disposition.POSTED, confidence=report.weighted_score, needs_review=False
        )
        notify_safely(
            self.notifier,
            "document_posted",
            {
                "document_id": document.id,
                "client_id": document.client_id,
                "journal_entry_id": entry.id,
                "amount": str(invoice.grand_total),
            },
        )
        return ProcessingOutcome(
            document_id=document.id,
            disposition=Disposition.POSTED,
            extraction=extraction,
            invoice_type=invoice.invoice_type,
            validation=validation,
            confidence=report,
            duplicates=duplicates,
            journal_entry_id=entry.id,
        )

    def _file(self, document: IncomingDocument, extraction: ExtractionResult) -> ProcessingOutcome:
        self.store.set_disposition(document.id, Disposition.FILED, needs_review=False)
        logger.info(
            "Filed %s document %s", extraction.classification.type, document.id
        )
        return ProcessingOutcome(
            document_id=document.id, disposition=Disposition.FILED, extraction=extraction
        )

    def process(self, document: IncomingDocument) -> ProcessingOutcome:
        """Run a document through the pipeline.

        Args:
            document: The incoming document; its bytes must be in storage.

        Returns:
            The outcome with the final disposition.

        Raises:
            NotFoundError: If storage holds no bytes for the document.
            TenantMismatchError: If the document belongs to another tenant.
        """
        self.store.save_document(document)
        settled = self.store.disposition(document.id)
        if settled in SETTLED_DISPOSITIONS:
            logger.info("Document %s is already %s; not processing it again", document.id, settled)
            return ProcessingOutcome(
                document_id=document.id,
                disposition=Disposition(settled),
                extraction=self.store.latest_extraction(document.id),
            )
        content = self.storage.fetch_document_bytes(document.id)
        extraction = self.orchestrator.extract(content, document.filename)
        self.store.save_extraction(document.id, extraction)

        doc_type = extraction.classification.type
        if extraction.degraded or doc_type == DocumentType.OTHER:
            return self._queue(document, extraction, self.scorer.score_untyped(extraction))
        if doc_type != DocumentType.INVOICE:
            return self._file(document, extraction)

        invoice_type = self.resolve_invoice_type(document, extraction)
        try:
            invoice = InvoiceData.from_fields(extraction.fields, invoice_type)
        except ValidationError as exc:
            logger.warning("Invoice fields of %s could not be typed: %s", document.id, exc)
            report = self.scorer.score_untyped(
                extraction,
                reason=f"Extracted fields are malformed ({exc.error_count()} errors)",
            )
            return self._queue(document, extraction, report, invoice_type=invoice_type)

        validation = self.validator.validate(invoice)
        report = self.scorer.score(extraction, validation, invoice)
        if report.should_auto_approve:
            try:
                self.journal.check_lines(self.journal.build_lines(invoice))
            except UnbalancedEntryError as exc:
                report = _unbalanced_report(report, exc)
        if not report.should_auto_approve:
            return self._queue(document, extraction, report, validation, invoice_type)
        return self._post(document, extraction, invoice, validation, report, reviewed=False)

    def complete_review(
        self,
        item_id: str,
        reviewer_id: str,
        accountant_id: str,
        corrections: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> ProcessingOutcome:
        """Approve a review item and carry the corrected document to the ledger.

        The corrected fields are checked before the item is approved, so a
        correction that would produce an unbalanced journal leaves the item
        in review. After approval the corrected fields become a new
        extraction version and the document re-enters at duplicate detection.

        Args:
            item_id: Review item being approved.
            reviewer_id: Reviewer holding the item.
            accountant_id: Tenant of the reviewer.
            corrections: Field values to override; ``None`` removes a field.
                An ``expense_account`` entry sets the purchase debit account
                and is remembered for the vendor.
            notes: Reviewer notes.

        Returns:
            The outcome after posting, archiving or filing.

        Raises:
            InvalidTransitionError: If the item is not in review.
            ClaimConflictError: If another reviewer holds the item.
            UnbalancedEntryError: If the corrected invoice does not balance.
            pydantic.ValidationError: If a corrected value has the wrong type.
        """
        corrections = corrections or {}
        item = self.review_queue.get(item_id, accountant_id)
        document = self.store.load_incoming(item.document_id)
        extraction = ExtractionResult.from_dict(item.extracted_data)
        fields = apply_corrections(extraction.fields, corrections)
        fields.pop("error", None)

        doc_type = extraction.classification.type
        if doc_type in (DocumentType.OTHER, DocumentType.INVOICE) and fields.get("grand_total") is not None:
            doc_type = DocumentType.INVOICE

        invoice: InvoiceData | None = None
        invoice_type: InvoiceType | None = None
        if doc_type == DocumentType.INVOICE:
            draft = replace(extraction, fields=fields)
            invoice_type = self.resolve_invoice_type(document, draft)
            invoice = InvoiceData.from_fields(fields, invoice_type)
            self.journal.check_lines(self.journal.build_lines(invoice))

        self.review_queue.approve(item_id, reviewer_id, accountant_id, corrections, notes)

        field_confidences = dict(extraction.field_confidences)
        for name in corrections:
            field_confidences[name] = REVIEWED_CONFIDENCE
        classification = extraction.classification
        if doc_type != classification.type:
            classification = Classification(doc_type, REVIEWED_CONFIDENCE, matched_on="reviewer")
        corrected = replace(
            extraction,
            classification=classification,
            fields=fields,
            field_confidences=field_confidences,
        )
        self.store.save_extraction(document.id, corrected, created_by=reviewer_id)

        if invoice is None:
            return self._file(document, corrected)

        validation = self.validator.validate(invoice)
        report = self.scorer.score(corrected, validation, invoice)
        expense_account = corrections.get("expense_account")
        if (
            expense_account
            and invoice.invoice_type == InvoiceType.PURCHASE
            and normalize_vendor(invoice.vendor.name)
        ):
            self.store.learn_expense_account(
                document.accountant_id, invoice.vendor.name, expense_account
            )
        return self._post(
            document,
            corrected,
            invoice,
            validation,
            report,
            reviewed=True,
            expense_account=expense_account,
        )

    def reject_review(
        self,
        item_id: str,
        reviewer_id: str,
        accountant_id: str,
        notes: str | None = None,
    ) -> ProcessingOutcome:
        """Reject a review item; the document is archived with no journal."""
        item = self.review_queue.reject(item_id, reviewer_id, accountant_id, notes)
        self.store.set_disposition(item.document_id, Disposition.REJECTED, needs_review=False)
        notify_safely(
            self.notifier,
            "document_rejected",
            {"document_id": item.document_id, "client_id": item.client_id, "notes": notes},
        )
        return ProcessingOutcome(
            document_id=item.document_id,
            disposition=Disposition.REJECTED,
            extraction=ExtractionResult.from_dict(item.extracted_data),
            review_item_id=item.id,
        )
