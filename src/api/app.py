"""FastAPI application for the document-to-ledger service.

Provides REST endpoints for document intake, the review queue, journal
entries, GSTIN checks and health.
"""

import asyncio
import json
import time
from datetime import date
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.errors import (
    InvalidTransitionError,
    InvariantViolation,
    NotFoundError,
    TenantMismatchError,
)
from src.ledger.models import JournalEntry, ReviewQueueItem
from src.models import IncomingDocument, SourceChannel
from src.pipeline import DocumentPipeline, ProcessingOutcome
from src.utils.config import load_config
from src.utils.logger import get_logger
from src.validation.gstin import validate_gstin

from .schemas import (
    ApproveRequest,
    ClaimRequest,
    DuplicateMatchResponse,
    DuplicateResponse,
    EscalateRequest,
    GSTINRequest,
    GSTINResponse,
    HealthResponse,
    JournalEntryResponse,
    JournalLineResponse,
    ProcessingResponse,
    ProviderAttemptResponse,
    ProviderStatus,
    RejectRequest,
    ReverseRequest,
    ReviewItemResponse,
    ValidationResultResponse,
)

logger = get_logger(__name__)

VERSION = "1.0.0"

app = FastAPI(
    title="Document Ledger API",
    description="Turn invoices and business documents into reviewed journal entries",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_pipeline() -> DocumentPipeline:
    """Build the shared pipeline from the application config."""
    return DocumentPipeline.from_config(load_config())


PipelineDep = Annotated[DocumentPipeline, Depends(get_pipeline)]

_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/tiff",
    "application/pdf",
    "application/octet-stream",
}


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def _conflict(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(TenantMismatchError)
async def _forbidden(request: Request, exc: TenantMismatchError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(InvariantViolation)
async def _invariant(request: Request, exc: InvariantViolation) -> JSONResponse:
    logger.error("Request %s rejected: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def _invalid_fields(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": json.loads(exc.json(include_url=False))},
    )


def _outcome_response(
    outcome: ProcessingOutcome, processing_time_ms: float | None = None
) -> ProcessingResponse:
    """Flatten a pipeline outcome into the API response."""
    extraction = outcome.extraction
    report = outcome.confidence
    duplicates = None
    if outcome.duplicates is not None:
        duplicates = DuplicateResponse(
            is_duplicate=outcome.duplicates.is_duplicate,
            confidence=outcome.duplicates.confidence,
            suggestion=str(outcome.duplicates.suggestion),
            matches=[
                DuplicateMatchResponse(
                    candidate_invoice_id=m.candidate_invoice_id,
                    similarity_score=m.similarity_score,
                    match_reasons=m.match_reasons,
                )
                for m in outcome.duplicates.matches
            ],
        )

    return ProcessingResponse(
        document_id=outcome.document_id,
        disposition=str(outcome.disposition),
        document_type=str(extraction.classification.type),
        provider=extraction.provider,
        invoice_type=str(outcome.invoice_type) if outcome.invoice_type else None,
        extraction_confidence=extraction.confidence,
        confidence=report.weighted_score if report else None,
        should_auto_approve=report.should_auto_approve if report else None,
        review_reason=report.review_reason if report else None,
        critical_issues=report.critical_issues if report else [],
        warnings=report.warnings if report else [],
        fields=json.loads(json.dumps(extraction.fields, default=str)),
        validation=[
            ValidationResultResponse(
                rule_name=r.rule_name,
                passed=r.passed,
                message=r.message,
                severity=str(r.severity),
            )
            for r in (outcome.validation.results if outcome.validation else [])
        ],
        duplicates=duplicates,
        journal_entry_id=outcome.journal_entry_id,
        review_item_id=outcome.review_item_id,
        attempts=[
            ProviderAttemptResponse(
                provider=a.provider, succeeded=a.succeeded, time_ms=a.time_ms, error=a.error
            )
            for a in extraction.attempts
        ],
        processing_time_ms=processing_time_ms,
    )


def _item_response(item: ReviewQueueItem) -> ReviewItemResponse:
    return ReviewItemResponse(
        id=item.id,
        document_id=item.document_id,
        client_id=item.client_id,
        status=item.status,
        priority=item.priority,
        weighted_confidence=item.weighted_confidence,
        assigned_to=item.assigned_to,
        review_reason=item.review_reason,
        escalation_reason=item.escalation_reason,
        validation_errors=item.validation_errors or [],
        validation_warnings=item.validation_warnings or [],
        extracted_fields=(item.extracted_data or {}).get("fields", {}),
        corrected_data=item.corrected_data,
        reviewer_notes=item.reviewer_notes,
        created_at=item.created_at,
    )


def _entry_response(entry: JournalEntry) -> JournalEntryResponse:
    return JournalEntryResponse(
        id=entry.id,
        client_id=entry.client_id,
        entry_date=entry.entry_date,
        entry_type=entry.entry_type,
        narration=entry.narration,
        status=entry.status,
        is_auto_generated=entry.is_auto_generated,
        reversal_of_id=entry.reversal_of_id,
        lines=[
            JournalLineResponse(
                account_name=line.account_name,
                account_code=line.account_code,
                debit=line.debit_amount,
                credit=line.credit_amount,
            )
            for line in entry.lines
        ],
        total_debits=entry.total_debits,
        total_credits=entry.total_credits,
    )


@app.get("/health", response_model=HealthResponse)
async def health_check(pipeline: PipelineDep) -> HealthResponse:
    """Return system health and the provider fallback order."""
    return HealthResponse(
        status="healthy",
        version=VERSION,
        providers=[
            ProviderStatus(name=p.name, available=p.is_available())
            for p in pipeline.orchestrator.providers
        ],
    )


@app.post("/documents", response_model=ProcessingResponse)
async def submit_document(
    pipeline: PipelineDep,
    file: Annotated[UploadFile, File(...)],
    client_id: Annotated[str, Form()],
    accountant_id: Annotated[str, Form()],
    source: Annotated[SourceChannel, Form()] = SourceChannel.UPLOAD,
    sender_phone: Annotated[str | None, Form()] = None,
    sender_email: Annotated[str | None, Form()] = None,
    metadata: Annotated[str | None, Form()] = None,
) -> ProcessingResponse:
    """Store an uploaded document and run it through the pipeline.

    Args:
        pipeline: Shared document pipeline.
        file: Uploaded document file (PNG, JPEG, TIFF, or PDF).
        client_id: Client the document belongs to.
        accountant_id: Accountant serving the client.
        source: Intake channel.
        sender_phone: Sender phone for WhatsApp intake.
        sender_email: Sender address for email intake.
        metadata: JSON object of extra hints such as ``invoice_type``.

    Returns:
        The disposition and everything decided on the way.
    """
    start_time = time.time()

    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )

    try:
        extra: dict[str, Any] = json.loads(metadata) if metadata else {}
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid metadata: {exc}") from exc
    if not isinstance(extra, dict):
        raise HTTPException(status_code=400, detail="Metadata must be a JSON object")

    document = IncomingDocument(
        client_id=client_id,
        accountant_id=accountant_id,
        filename=file.filename or "document",
        source=source,
        sender_phone=sender_phone,
        sender_email=sender_email,
        metadata=extra,
    )
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        await asyncio.to_thread(pipeline.storage.save, document.id, content)
        outcome = await asyncio.to_thread(pipeline.process, document)
    except (InvariantViolation, NotFoundError):
        raise
    except Exception as exc:
        logger.error("Processing of %s failed: %s", document.filename, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return _outcome_response(outcome, (time.time() - start_time) * 1000)


@app.get("/review-queue", response_model=list[ReviewItemResponse])
async def list_review_items(
    pipeline: PipelineDep,
    accountant_id: Annotated[str, Query()],
    status: Annotated[str | None, Query()] = None,
    priority: Annotated[str | None, Query()] = None,
    client_id: Annotated[str | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[ReviewItemResponse]:
    """List review items, high priority first."""
    items = pipeline.review_queue.list_items(accountant_id, status, priority, client_id, limit)
    return [_item_response(item) for item in items]


@app.get("/review-queue/stats")
async def review_stats(
    pipeline: PipelineDep, accountant_id: Annotated[str, Query()]
) -> dict[str, Any]:
    return pipeline.review_queue.stats(accountant_id)


@app.get("/review-queue/{item_id}", response_model=ReviewItemResponse)
async def get_review_item(
    item_id: str, pipeline: PipelineDep, accountant_id: Annotated[str, Query()]
) -> ReviewItemResponse:
    return _item_response(pipeline.review_queue.get(item_id, accountant_id))


@app.post("/review-queue/{item_id}/claim", response_model=ReviewItemResponse)
async def claim_review_item(
    item_id: str, body: ClaimRequest, pipeline: PipelineDep
) -> ReviewItemResponse:
    """Assign a pending or escalated item to the calling reviewer."""
    item = pipeline.review_queue.claim(item_id, body.reviewer_id, body.accountant_id)
    return _item_response(item)


@app.post("/review-queue/{item_id}/approve", response_model=ProcessingResponse)
async def approve_review_item(
    item_id: str, body: ApproveRequest, pipeline: PipelineDep
) -> ProcessingResponse:
    """Approve an item with optional corrections and post the document."""
    outcome = pipeline.complete_review(
        item_id, body.reviewer_id, body.accountant_id, body.corrections, body.notes
    )
    return _outcome_response(outcome)


@app.post("/review-queue/{item_id}/reject", response_model=ProcessingResponse)
async def reject_review_item(
    item_id: str, body: RejectRequest, pipeline: PipelineDep
) -> ProcessingResponse:
    outcome = pipeline.reject_review(item_id, body.reviewer_id, body.accountant_id, body.notes)
    return _outcome_response(outcome)


@app.post("/review-queue/{item_id}/escalate", response_model=ReviewItemResponse)
async def escalate_review_item(
    item_id: str, body: EscalateRequest, pipeline: PipelineDep
) -> ReviewItemResponse:
    item = pipeline.review_queue.escalate(item_id, body.accountant_id, body.reason)
    return _item_response(item)


@app.get("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    entry_id: str,
    pipeline: PipelineDep,
    client_id: Annotated[str, Query()],
    accountant_id: Annotated[str, Query()],
) -> JournalEntryResponse:
    return _entry_response(pipeline.journal.get_entry(entry_id, client_id, accountant_id))


@app.post("/journal-entries/{entry_id}/reverse", response_model=JournalEntryResponse)
async def reverse_journal_entry(
    entry_id: str, body: ReverseRequest, pipeline: PipelineDep
) -> JournalEntryResponse:
    """Reverse a posted entry and return the reversing entry."""
    reversal = pipeline.journal.reverse(
        entry_id, body.client_id, body.accountant_id, body.reason, body.reversal_date
    )
    return _entry_response(reversal)


@app.get("/clients/{client_id}/journal-summary")
async def journal_summary(
    client_id: str,
    pipeline: PipelineDep,
    accountant_id: Annotated[str, Query()],
    start: Annotated[date | None, Query()] = None,
    end: Annotated[date | None, Query()] = None,
) -> dict[str, Any]:
    summary = pipeline.journal.summary(client_id, accountant_id, start, end)
    return {
        key: str(value) if key.startswith("total_") else value
        for key, value in summary.items()
    }


@app.post("/gstin/validate", response_model=GSTINResponse)
async def check_gstin(body: GSTINRequest) -> GSTINResponse:
    """Validate a GSTIN's shape, state code and check character."""
    check = validate_gstin(body.gstin)
    return GSTINResponse(
        gstin=check.gstin,
        valid=check.valid,
        message=check.message,
        state_code=check.state_code,
        state_name=check.state_name,
    )
