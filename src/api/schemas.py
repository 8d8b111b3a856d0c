"""Pydantic request/response schemas for the FastAPI endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class ProviderStatus(BaseModel):
    """Availability of one text-extraction provider."""

    name: str
    available: bool


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    providers: list[ProviderStatus]


class ProviderAttemptResponse(BaseModel):
    """One provider call made while extracting a document."""

    provider: str
    succeeded: bool
    time_ms: float
    error: str | None = None


class ValidationResultResponse(BaseModel):
    """Response schema for a validation rule result."""

    rule_name: str
    passed: bool
    message: str
    severity: str


class DuplicateMatchResponse(BaseModel):
    candidate_invoice_id: str | None
    similarity_score: float
    match_reasons: list[str]


class DuplicateResponse(BaseModel):
    """Duplicate detection outcome for an invoice."""

    is_duplicate: bool
    confidence: float
    suggestion: str
    matches: list[DuplicateMatchResponse]


class ProcessingResponse(BaseModel):
    """Response schema for a processed document."""

    document_id: str
    disposition: str
    document_type: str
    provider: str | None
    invoice_type: str | None = None
    extraction_confidence: float
    confidence: float | None = None
    should_auto_approve: bool | None = None
    review_reason: str | None = None
    critical_issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    fields: dict[str, Any]
    validation: list[ValidationResultResponse] = Field(default_factory=list)
    duplicates: DuplicateResponse | None = None
    journal_entry_id: str | None = None
    review_item_id: str | None = None
    attempts: list[ProviderAttemptResponse] = Field(default_factory=list)
    processing_time_ms: float | None = None


class ReviewItemResponse(BaseModel):
    """A review-queue item as shown to reviewers."""

    id: str
    document_id: str
    client_id: str
    status: str
    priority: str
    weighted_confidence: float
    assigned_to: str | None = None
    review_reason: str | None = None
    escalation_reason: str | None = None
    validation_errors: list[str] = Field(default_factory=list)
    validation_warnings: list[str] = Field(default_factory=list)
    extracted_fields: dict[str, Any] = Field(default_factory=dict)
    corrected_data: dict[str, Any] | None = None
    reviewer_notes: str | None = None
    created_at: datetime | None = None


class ClaimRequest(BaseModel):
    reviewer_id: str
    accountant_id: str


class ApproveRequest(BaseModel):
    """Reviewer approval with optional field corrections."""

    reviewer_id: str
    accountant_id: str
    corrections: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None


class RejectRequest(BaseModel):
    reviewer_id: str
    accountant_id: str
    notes: str | None = None


class EscalateRequest(BaseModel):
    accountant_id: str
    reason: str


class JournalLineResponse(BaseModel):
    account_name: str
    account_code: str | None = None
    debit: Decimal
    credit: Decimal


class JournalEntryResponse(BaseModel):
    """A journal entry with its lines."""

    id: str
    client_id: str
    entry_date: date
    entry_type: str
    narration: str | None
    status: str
    is_auto_generated: bool
    reversal_of_id: str | None = None
    lines: list[JournalLineResponse]
    total_debits: Decimal
    total_credits: Decimal


class ReverseRequest(BaseModel):
    """Request to reverse a posted journal entry."""

    client_id: str
    accountant_id: str
    reason: str
    reversal_date: date | None = None


class GSTINRequest(BaseModel):
    gstin: str


class GSTINResponse(BaseModel):
    """Result of validating a GSTIN."""

    gstin: str
    valid: bool
    message: str
    state_code: str | None = None
    state_name: str | None = None
