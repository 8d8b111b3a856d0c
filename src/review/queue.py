"""Human review queue.

Items move ``pending -> in_review -> approved | rejected``; ``pending`` and
``in_review`` items can also be escalated, and escalated items go back to
``in_review`` when a supervisor claims them. Enqueueing is keyed by
document ID, so re-processing a document never creates a second item.

Claiming is a compare-and-swap ``UPDATE ... WHERE status IN (...)``: of two
reviewers racing for the same item exactly one wins.
"""

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from src.collaborators import Notifier, notify_safely
from src.errors import (
    ClaimConflictError,
    InvalidTransitionError,
    NotFoundError,
    TenantMismatchError,
)
from src.ledger.models import (
    CorrectionType,
    ExtractionCorrection,
    Priority,
    ReviewQueueItem,
    ReviewStatus,
)
from src.ledger.store import LedgerStore
from src.models import ExtractionResult
from src.scoring.confidence import ConfidenceReport
from src.utils.logger import get_logger
from src.validation.rules_engine import ValidationReport

logger = get_logger(__name__)

CLAIMABLE = (ReviewStatus.PENDING, ReviewStatus.ESCALATED)
ESCALATABLE = (ReviewStatus.PENDING, ReviewStatus.IN_REVIEW)


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)


def _canonical(value: Any) -> str:
    return "".join(ch for ch in (_as_text(value) or "").lower() if ch.isalnum())


def classify_correction(before: Any, after: Any) -> CorrectionType:
    """Classify a reviewer's change to one field.

    ``missing`` when the field was not extracted, ``extra`` when the reviewer
    removed it, ``format`` when only case, spacing or punctuation changed,
    otherwise ``value``.
    """
    if before is None:
        return CorrectionType.MISSING
    if after is None:
        return CorrectionType.EXTRA
    if _canonical(before) == _canonical(after):
        return CorrectionType.FORMAT
    return CorrectionType.VALUE


def apply_corrections(fields: dict[str, Any], corrections: dict[str, Any]) -> dict[str, Any]:
    """Return ``fields`` with ``corrections`` applied; ``None`` removes a field."""
    corrected = dict(fields)
    for name, value in corrections.items():
        if value is None:
            corrected.pop(name, None)
        else:
            corrected[name] = value
    return corrected


class ReviewQueue:
    """Review-queue operations on top of the ledger store.

    Args:
        store: Persistence boundary.
        notifier: Receives ``review_required`` and ``review_escalated`` events.
    """

    def __init__(self, store: LedgerStore, notifier: Notifier | None = None) -> None:
        self.store = store
        self.notifier = notifier

    @staticmethod
    def _check_accountant(item: ReviewQueueItem, accountant_id: str) -> None:
        if item.accountant_id != accountant_id:
            logger.error(
                "Accountant %s attempted to access review item %s of accountant %s",
                accountant_id,
                item.id,
                item.accountant_id,
            )
            raise TenantMismatchError(f"Review item {item.id} belongs to another accountant")

    def _load(self, session: Session, item_id: str, accountant_id: str) -> ReviewQueueItem:
        item = session.get(ReviewQueueItem, item_id)
        if item is None:
            raise NotFoundError(f"Review item {item_id} not found")
        self._check_accountant(item, accountant_id)
        return item

    def enqueue(
        self,
        document_id: str,
        extraction: ExtractionResult,
        report: ConfidenceReport,
        validation: ValidationReport | None = None,
    ) -> ReviewQueueItem:
        """Queue a document for review, or return its existing item.

        A pending item is refreshed with the new extraction and report; items
        already claimed or decided are returned unchanged. Reports that call
        for escalation escalate the item straight away.

        Args:
            document_id: Document to review.
            extraction: Extraction result shown to the reviewer.
            report: Confidence report that triggered the review.
            validation: Validation report, for the error and warning lists.

        Returns:
            The queue item for the document.
        """
        errors = validation.critical_errors if validation else list(report.critical_issues)
        warnings = validation.warnings if validation else list(report.warnings)

        with self.store.transaction() as session:
            document = self.store.get_document(session, document_id)
            item = session.scalar(
                select(ReviewQueueItem).where(ReviewQueueItem.document_id == document_id)
            )
            created = item is None
            if created:
                item = ReviewQueueItem(
                    document_id=document_id,
                    client_id=document.client_id,
                    accountant_id=document.accountant_id,
                    status=ReviewStatus.PENDING,
                )
                session.add(item)
            elif item.status != ReviewStatus.PENDING:
                logger.info(
                    "Document %s already in review queue as %s (%s)",
                    document_id,
                    item.id,
                    item.status,
                )
                return item

            item.extracted_data = extraction.to_dict()
            item.original_ocr_text = extraction.raw_text
            item.weighted_confidence = report.weighted_score
            item.confidence_report = report.to_dict()
            item.validation_errors = errors
            item.validation_warnings = warnings
            item.priority = report.priority
            item.review_reason = report.review_reason
            session.flush()

        logger.info(
            "%s review item %s for document %s (priority %s)",
            "Created" if created else "Refreshed",
            item.id,
            document_id,
            item.priority,
        )
        if created:
            notify_safely(
                self.notifier,
                "review_required",
                {
                    "review_id": item.id,
                    "document_id": document_id,
                    "client_id": item.client_id,
                    "accountant_id": item.accountant_id,
                    "priority": item.priority,
                    "reason": item.review_reason,
                },
            )
        if report.escalate:
            item = self.escalate(item.id, item.accountant_id, report.escalation_reason or "")
        return item

    def get(self, item_id: str, accountant_id: str) -> ReviewQueueItem:
        """Load one review item.

        Raises:
            NotFoundError: If the item does not exist.
            TenantMismatchError: If it belongs to another accountant.
        """
        with self.store.transaction() as session:
            return self._load(session, item_id, accountant_id)

    def get_by_document(self, document_id: str) -> ReviewQueueItem | None:
        with self.store.transaction() as session:
            return session.scalar(
                select(ReviewQueueItem).where(ReviewQueueItem.document_id == document_id)
            )

    def list_items(
        self,
        accountant_id: str,
        status: str | None = None,
        priority: str | None = None,
        client_id: str | None = None,
        limit: int = 50,
    ) -> list[ReviewQueueItem]:
        """List an accountant's items, high priority and oldest first."""
        priority_order = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
        query = select(ReviewQueueItem).where(ReviewQueueItem.accountant_id == accountant_id)
        if status is not None:
            query = query.where(ReviewQueueItem.status == status)
        if priority is not None:
            query = query.where(ReviewQueueItem.priority == priority)
        if client_id is not None:
            query = query.where(ReviewQueueItem.client_id == client_id)

        with self.store.transaction() as session:
            items = session.scalars(query.order_by(ReviewQueueItem.created_at)).all()
        items = sorted(items, key=lambda i: priority_order.get(i.priority, 3))
        return items[:limit]

    def claim(self, item_id: str, reviewer_id: str, accountant_id: str) -> ReviewQueueItem:
        """Assign a pending or escalated item to a reviewer.

        Raises:
            ClaimConflictError: If the item is no longer claimable.
            NotFoundError: If the item does not exist.
            TenantMismatchError: If it belongs to another accountant.
        """
        now = datetime.now(UTC)
        with self.store.transaction() as session:
            result = session.execute(
                update(ReviewQueueItem)
                .where(
                    ReviewQueueItem.id == item_id,
                    ReviewQueueItem.accountant_id == accountant_id,
                    ReviewQueueItem.status.in_(CLAIMABLE),
                )
                .values(
                    status=ReviewStatus.IN_REVIEW,
                    assigned_to=reviewer_id,
                    assigned_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            item = self._load(session, item_id, accountant_id)
            if result.rowcount == 0:
                logger.warning(
                    "Reviewer %s lost claim on %s (status %s, assigned to %s)",
                    reviewer_id,
                    item_id,
                    item.status,
                    item.assigned_to,
                )
                raise ClaimConflictError("review item", item.status, ReviewStatus.IN_REVIEW)
        logger.info("Review item %s claimed by %s", item_id, reviewer_id)
        return item

    def _require_reviewer(self, item: ReviewQueueItem, reviewer_id: str, target: str) -> None:
        if item.status != ReviewStatus.IN_REVIEW:
            raise InvalidTransitionError("review item", item.status, target)
        if item.assigned_to != reviewer_id:
            raise ClaimConflictError("review item", item.status, target)

    def approve(
        self,
        item_id: str,
        reviewer_id: str,
        accountant_id: str,
        corrections: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> ReviewQueueItem:
        """Approve an item, recording the reviewer's field corrections.

        The corrected field map is the extracted one with ``corrections``
        applied; a correction of ``None`` removes the field.

        Raises:
            InvalidTransitionError: If the item is not in review.
            ClaimConflictError: If another reviewer holds the item.
        """
        corrections = corrections or {}
        with self.store.transaction() as session:
            item = self._load(session, item_id, accountant_id)
            self._require_reviewer(item, reviewer_id, ReviewStatus.APPROVED)

            extracted = dict(item.extracted_data.get("fields", {}))
            corrected = apply_corrections(extracted, corrections)
            counts: dict[str, int] = {}
            for name, value in corrections.items():
                before = extracted.get(name)
                if before == value:
                    continue
                kind = classify_correction(before, value)
                counts[kind] = counts.get(kind, 0) + 1
                session.add(
                    ExtractionCorrection(
                        document_id=item.document_id,
                        review_queue_id=item.id,
                        client_id=item.client_id,
                        accountant_id=item.accountant_id,
                        field_name=name,
                        extracted_value=_as_text(before),
                        corrected_value=_as_text(value),
                        correction_type=kind,
                        corrected_by=reviewer_id,
                    )
                )

            now = datetime.now(UTC)
            item.status = ReviewStatus.APPROVED
            item.corrected_data = corrected
            item.correction_summary = {"fields_corrected": sum(counts.values()), "by_type": counts}
            item.reviewer_notes = notes
            item.reviewed_at = now
        logger.info(
            "Review item %s approved by %s with %d correction(s)",
            item_id,
            reviewer_id,
            item.correction_summary["fields_corrected"],
        )
        return item

    def reject(
        self, item_id: str, reviewer_id: str, accountant_id: str, notes: str | None = None
    ) -> ReviewQueueItem:
        """Reject an item; no financial record will be created for it.

        Raises:
            InvalidTransitionError: If the item is not in review.
            ClaimConflictError: If another reviewer holds the item.
        """
        with self.store.transaction() as session:
            item = self._load(session, item_id, accountant_id)
            self._require_reviewer(item, reviewer_id, ReviewStatus.REJECTED)
            item.status = ReviewStatus.REJECTED
            item.reviewer_notes = notes
            item.reviewed_at = datetime.now(UTC)
        logger.info("Review item %s rejected by %s", item_id, reviewer_id)
        return item

    def escalate(self, item_id: str, accountant_id: str, reason: str) -> ReviewQueueItem:
        """Escalate a pending or in-review item to a supervisor.

        Sets priority to high, clears the assignment and notifies the
        supervisor.

        Raises:
            InvalidTransitionError: If the item is already decided or escalated.
        """
        with self.store.transaction() as session:
            item = self._load(session, item_id, accountant_id)
            if item.status not in ESCALATABLE:
                raise InvalidTransitionError("review item", item.status, ReviewStatus.ESCALATED)
            item.status = ReviewStatus.ESCALATED
            item.priority = Priority.HIGH
            item.escalation_reason = reason
            item.assigned_to = None
            item.assigned_at = None
        logger.warning("Review item %s escalated: %s", item_id, reason)
        notify_safely(
            self.notifier,
            "review_escalated",
            {
                "review_id": item.id,
                "document_id": item.document_id,
                "client_id": item.client_id,
                "accountant_id": item.accountant_id,
                "reason": reason,
            },
        )
        return item

    def corrections(self, document_id: str, accountant_id: str) -> list[ExtractionCorrection]:
        """Return the field corrections recorded for a document."""
        with self.store.transaction() as session:
            return list(
                session.scalars(
                    select(ExtractionCorrection)
                    .where(
                        ExtractionCorrection.document_id == document_id,
                        ExtractionCorrection.accountant_id == accountant_id,
                    )
                    .order_by(ExtractionCorrection.corrected_at)
                ).all()
            )

    def stats(self, accountant_id: str) -> dict[str, Any]:
        """Counts per status, open items per priority, and mean confidence."""
        with self.store.transaction() as session:
            by_status = dict(
                session.execute(
                    select(ReviewQueueItem.status, func.count())
                    .where(ReviewQueueItem.accountant_id == accountant_id)
                    .group_by(ReviewQueueItem.status)
                ).all()
            )
            open_by_priority = dict(
                session.execute(
                    select(ReviewQueueItem.priority, func.count())
                    .where(
                        ReviewQueueItem.accountant_id == accountant_id,
                        ReviewQueueItem.status.in_(
                            [ReviewStatus.PENDING, ReviewStatus.IN_REVIEW, ReviewStatus.ESCALATED]
                        ),
                    )
                    .group_by(ReviewQueueItem.priority)
                ).all()
            )
            average = session.scalar(
                select(func.avg(ReviewQueueItem.weighted_confidence)).where(
                    ReviewQueueItem.accountant_id == accountant_id
                )
            )

        stats: dict[str, Any] = {status.value: by_status.get(status.value, 0) for status in ReviewStatus}
        stats["total"] = sum(by_status.values())
        stats["open_by_priority"] = {
            priority.value: open_by_priority.get(priority.value, 0) for priority in Priority
        }
        stats["average_confidence"] = round(float(average), 4) if average is not None else None
        return stats
