"""SQLAlchemy ORM models for documents, extractions, journals and reviews.

Every row carries ``client_id`` and ``accountant_id``; :class:`LedgerStore`
checks them on each write so no row can reference another tenant's data.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.models import new_id


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class EntryStatus(StrEnum):
    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


class EntryType(StrEnum):
    SALES = "sales"
    PURCHASE = "purchase"
    PAYMENT = "payment"
    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    OTHER = "other"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CorrectionType(StrEnum):
    MISSING = "missing"
    VALUE = "value"
    FORMAT = "format"
    EXTRA = "extra"


class Client(Base):
    """An accounting client, owned by exactly one accountant."""

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gstin: Mapped[str | None] = mapped_column(String(15), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    sender_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sender_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    doc_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)

    # Processing outcome
    document_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    disposition: Mapped[str | None] = mapped_column(String(30), nullable=True, index=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    extractions: Mapped[list["ExtractionRecord"]] = relationship(
        back_populates="document", order_by="ExtractionRecord.version"
    )


class ExtractionRecord(Base):
    """One version of a document's extraction result.

    Version 1 comes from the providers; later versions hold reviewer
    corrections.
    """

    __tablename__ = "extraction_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), nullable=False)
    client_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    document: Mapped["Document"] = relationship(back_populates="extractions")

    __table_args__ = (UniqueConstraint("document_id", "version", name="uq_extraction_version"),)


class Invoice(Base):
    """A posted invoice; the history duplicate detection compares against."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    document_id: Mapped[str | None] = mapped_column(ForeignKey("documents.id"), nullable=True)
    client_id: Mapped[str] = mapped_column(String(36), nullable=False)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(20), nullable=False)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vendor_gstin: Mapped[str | None] = mapped_column(String(15), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_gstin: Mapped[str | None] = mapped_column(String(15), nullable=True)
    subtotal: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    tax_total: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    journal_entry_id: Mapped[str | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_invoices_client_type", "client_id", "invoice_type"),)


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    client_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    document_id: Mapped[str | None] = mapped_column(ForeignKey("documents.id"), nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)
    narration: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default=EntryStatus.DRAFT, index=True)
    reversal_of_id: Mapped[str | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    lines: Mapped[list["JournalLineItem"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalLineItem.position",
    )

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), Decimal("0"))


class JournalLineItem(Base):
    __tablename__ = "journal_line_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    entry_id: Mapped[str] = mapped_column(ForeignKey("journal_entries.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    account_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    debit_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    reference_document_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint(
            "(debit_amount = 0 AND credit_amount > 0) OR (debit_amount > 0 AND credit_amount = 0)",
            name="chk_debit_or_credit",
        ),
    )


class ReviewQueueItem(Base):
    __tablename__ = "review_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id"), nullable=False, unique=True
    )
    client_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # Extracted data
    extracted_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    original_ocr_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Confidence and validation
    weighted_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_report: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    validation_errors: Mapped[list[str]] = mapped_column(JSON, default=list)
    validation_warnings: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Workflow
    status: Mapped[str] = mapped_column(String(20), default=ReviewStatus.PENDING)
    priority: Mapped[str] = mapped_column(String(10), default=Priority.MEDIUM)
    assigned_to: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Outcome
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrected_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    correction_summary: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_review_queue_status_priority", "status", "priority", "created_at"),
    )


class ExtractionCorrection(Base):
    __tablename__ = "extraction_corrections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), nullable=False)
    review_queue_id: Mapped[str | None] = mapped_column(
        ForeignKey("review_queue.id"), nullable=True
    )
    client_id: Mapped[str] = mapped_column(String(36), nullable=False)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    field_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    extracted_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrected_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    correction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    corrected_by: Mapped[str] = mapped_column(String(36), nullable=False)
    corrected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class VendorAccountMapping(Base):
    """Expense account a reviewer chose for a vendor, reused on later purchases."""

    __tablename__ = "vendor_account_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    accountant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("accountant_id", "normalized_name", name="uq_vendor_account_mapping"),
    )
