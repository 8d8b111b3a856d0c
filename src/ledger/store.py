"""Persistence boundary for the pipeline.

Wraps a SQLAlchemy engine and session factory. All writes go through
:meth:`LedgerStore.transaction`, which commits on success and rolls back on
any exception, and every write checks that the rows it touches belong to
the same client and accountant.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, func, make_url, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.duplicates.detector import InvoiceRecord, normalize_vendor
from src.errors import NotFoundError, TenantMismatchError
from src.extraction.schema import InvoiceData
from src.models import ExtractionResult, IncomingDocument, SourceChannel
from src.utils.logger import get_logger

from .models import (
    Base,
    Client,
    Document,
    ExtractionRecord,
    Invoice,
    VendorAccountMapping,
    utcnow,
)

logger = get_logger(__name__)

LEARNED_MAPPING_CONFIDENCE = 0.95
MIN_MAPPING_CONFIDENCE = 0.8


def _engine_kwargs(database_url: str) -> dict[str, Any]:
    if not database_url.startswith("sqlite"):
        return {}
    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
        kwargs["poolclass"] = StaticPool
    return kwargs


def check_tenant(row: Any, client_id: str, accountant_id: str) -> None:
    """Raise if ``row`` belongs to a different client or accountant.

    Raises:
        TenantMismatchError: On any mismatch.
    """
    if row.client_id != client_id or row.accountant_id != accountant_id:
        logger.error(
            "Tenant mismatch on %s %s: row is %s/%s, caller is %s/%s",
            type(row).__name__,
            row.id,
            row.client_id,
            row.accountant_id,
            client_id,
            accountant_id,
        )
        raise TenantMismatchError(
            f"{type(row).__name__} {row.id} belongs to another client or accountant"
        )


class LedgerStore:
    """Transactional store for documents, extractions and invoice history.

    Args:
        database_url: SQLAlchemy URL; in-memory SQLite shares one connection.
        create_schema: Create missing tables on construction.
    """

    def __init__(self, database_url: str = "sqlite:///:memory:", create_schema: bool = True) -> None:
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(database_url, **_engine_kwargs(database_url))
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        if create_schema:
            Base.metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session that commits on exit and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ensure_client(self, session: Session, client_id: str, accountant_id: str) -> Client:
        """Return the client row, creating it on first use.

        Raises:
            TenantMismatchError: If the client belongs to another accountant.
        """
        client = session.get(Client, client_id)
        if client is None:
            client = Client(id=client_id, accountant_id=accountant_id)
            session.add(client)
            session.flush()
        elif client.accountant_id != accountant_id:
            logger.error(
                "Client %s belongs to accountant %s, not %s",
                client_id,
                client.accountant_id,
                accountant_id,
            )
            raise TenantMismatchError(f"Client {client_id} belongs to another accountant")
        return client

    def register_client(
        self,
        client_id: str,
        accountant_id: str,
        name: str | None = None,
        gstin: str | None = None,
    ) -> None:
        """Create or update a client's name and GSTIN."""
        with self.transaction() as session:
            client = self.ensure_client(session, client_id, accountant_id)
            if name is not None:
                client.name = name
            if gstin is not None:
                client.gstin = gstin

    def client_gstin(self, client_id: str) -> str | None:
        with self.transaction() as session:
            client = session.get(Client, client_id)
            return client.gstin if client else None

    def save_document(self, document: IncomingDocument) -> None:
        """Record an incoming document; saving the same document again is a no-op.

        Raises:
            TenantMismatchError: If the ID is already used by another tenant.
        """
        with self.transaction() as session:
            self.ensure_client(session, document.client_id, document.accountant_id)
            existing = session.get(Document, document.id)
            if existing is not None:
                check_tenant(existing, document.client_id, document.accountant_id)
                return
            session.add(
                Document(
                    id=document.id,
                    client_id=document.client_id,
                    accountant_id=document.accountant_id,
                    filename=document.filename,
                    source=str(document.source),
                    sender_phone=document.sender_phone,
                    sender_email=document.sender_email,
                    doc_metadata=dict(document.metadata),
                )
            )
        logger.info("Stored document %s (%s)", document.id, document.filename)

    def get_document(self, session: Session, document_id: str) -> Document:
        """Load a document row inside an open session.

        Raises:
            NotFoundError: If no such document exists.
        """
        document = session.get(Document, document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def load_incoming(self, document_id: str) -> IncomingDocument:
        """Rebuild the intake record of a stored document."""
        with self.transaction() as session:
            row = self.get_document(session, document_id)
            return IncomingDocument(
                client_id=row.client_id,
                accountant_id=row.accountant_id,
                filename=row.filename,
                source=SourceChannel(row.source),
                sender_phone=row.sender_phone,
                sender_email=row.sender_email,
                metadata=dict(row.doc_metadata or {}),
                id=row.id,
            )

    def save_extraction(
        self,
        document_id: str,
        extraction: ExtractionResult,
        created_by: str | None = None,
    ) -> int:
        """Append a new extraction version for a document.

        Returns:
            The version number assigned; also set on ``extraction``.
        """
        with self.transaction() as session:
            document = self.get_document(session, document_id)
            latest = session.scalar(
                select(func.max(ExtractionRecord.version)).where(
                    ExtractionRecord.document_id == document_id
                )
            )
            extraction.version = (latest or 0) + 1
            session.add(
                ExtractionRecord(
                    document_id=document_id,
                    client_id=document.client_id,
                    accountant_id=document.accountant_id,
                    version=extraction.version,
                    provider=extraction.provider,
                    confidence=extraction.confidence,
                    data=extraction.to_dict(),
                    created_by=created_by,
                )
            )
            document.document_type = str(extraction.classification.type)
        logger.debug("Saved extraction v%d for document %s", extraction.version, document_id)
        return extraction.version

    def latest_extraction(self, document_id: str) -> ExtractionResult:
        """Return the newest extraction version of a document.

        Raises:
            NotFoundError: If the document has no extraction yet.
        """
        with self.transaction() as session:
            record = session.scalar(
                select(ExtractionRecord)
                .where(ExtractionRecord.document_id == document_id)
                .order_by(ExtractionRecord.version.desc())
                .limit(1)
            )
            if record is None:
                raise NotFoundError(f"No extraction stored for document {document_id}")
            return ExtractionResult.from_dict(record.data)

    def set_disposition(
        self,
        document_id: str,
        disposition: str,
        confidence: float | None = None,
        needs_review: bool | None = None,
    ) -> None:
        """Record where a document ended up."""
        with self.transaction() as session:
            document = self.get_document(session, document_id)
            document.disposition = disposition
            if confidence is not None:
                document.confidence_score = confidence
            if needs_review is not None:
                document.needs_review = needs_review

    def disposition(self, document_id: str) -> str | None:
        with self.transaction() as session:
            return self.get_document(session, document_id).disposition

    def add_invoice(
        self,
        session: Session,
        invoice: InvoiceData,
        client_id: str,
        accountant_id: str,
        document_id: str | None = None,
        journal_entry_id: str | None = None,
    ) -> Invoice:
        """Insert an invoice history row inside the caller's transaction."""
        if document_id is not None:
            check_tenant(self.get_document(session, document_id), client_id, accountant_id)
        row = Invoice(
            document_id=document_id,
            client_id=client_id,
            accountant_id=accountant_id,
            invoice_type=str(invoice.invoice_type),
            invoice_number=invoice.invoice_number,
            invoice_date=invoice.invoice_date,
            vendor_name=invoice.vendor.name,
            vendor_gstin=invoice.vendor.gstin,
            customer_name=invoice.customer.name,
            customer_gstin=invoice.customer.gstin,
            subtotal=invoice.subtotal,
            tax_total=invoice.tax_total,
            grand_total=invoice.grand_total,
            journal_entry_id=journal_entry_id,
        )
        session.add(row)
        return row

    def invoice_history(
        self, client_id: str, accountant_id: str, invoice_type: str
    ) -> list[InvoiceRecord]:
        """Return the client's previous invoices of one type for duplicate detection."""
        with self.transaction() as session:
            rows = session.scalars(
                select(Invoice)
                .where(
                    Invoice.client_id == client_id,
                    Invoice.accountant_id == accountant_id,
                    Invoice.invoice_type == invoice_type,
                )
                .order_by(Invoice.created_at)
            ).all()
            records: list[InvoiceRecord] = []
            for row in rows:
                sales = row.invoice_type == "sales"
                records.append(
                    InvoiceRecord(
                        id=row.id,
                        invoice_number=row.invoice_number,
                        vendor_name=row.customer_name if sales else row.vendor_name,
                        amount=row.grand_total,
                        invoice_date=row.invoice_date,
                        vendor_gstin=row.customer_gstin if sales else row.vendor_gstin,
                    )
                )
            return records

    def expense_account(self, accountant_id: str, vendor_name: str | None) -> str | None:
        """Return the learned expense account for a vendor, if one is trusted."""
        key = normalize_vendor(vendor_name)
        if not key:
            return None
        with self.transaction() as session:
            mapping = session.scalar(
                select(VendorAccountMapping).where(
                    VendorAccountMapping.accountant_id == accountant_id,
                    VendorAccountMapping.normalized_name == key,
                )
            )
            if mapping is None or mapping.confidence <= MIN_MAPPING_CONFIDENCE:
                return None
            mapping.usage_count += 1
            mapping.last_used = utcnow()
            return mapping.account_name

    def learn_expense_account(
        self,
        accountant_id: str,
        vendor_name: str,
        account_name: str,
        account_code: str | None = None,
    ) -> None:
        """Remember the expense account a reviewer chose for a vendor.

        A repeated choice raises the mapping's confidence by 0.1, capped at 1.0.

        Raises:
            ValueError: If the vendor name normalizes to nothing.
        """
        key = normalize_vendor(vendor_name)
        if not key:
            raise ValueError(f"Cannot map vendor {vendor_name!r} to an account")
        with self.transaction() as session:
            mapping = session.scalar(
                select(VendorAccountMapping).where(
                    VendorAccountMapping.accountant_id == accountant_id,
                    VendorAccountMapping.normalized_name == key,
                )
            )
            if mapping is None:
                session.add(
                    VendorAccountMapping(
                        accountant_id=accountant_id,
                        vendor_name=vendor_name,
                        normalized_name=key,
                        account_name=account_name,
                        account_code=account_code,
                        confidence=LEARNED_MAPPING_CONFIDENCE,
                        usage_count=0,
                    )
                )
            else:
                mapping.account_name = account_name
                mapping.account_code = account_code
                mapping.confidence = min(mapping.confidence + 0.1, 1.0)
                mapping.usage_count += 1
                mapping.last_used = utcnow()
        logger.info("Vendor %r now maps to expense account %r", key, account_name)
