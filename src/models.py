"""Core data types shared by every pipeline stage.

These are plain dataclasses: an :class:`IncomingDocument` is created at
intake and never mutated, an :class:`ExtractionResult` carries the raw text
and schema-less field map produced by the extraction stage, and
:class:`ProviderResult` / :class:`ProviderAttempt` describe individual
provider calls.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


def new_id() -> str:
    """Return a new opaque identifier."""
    return str(uuid.uuid4())


class DocumentType(StrEnum):
    """Document types recognised by the classifier."""

    INVOICE = "invoice"
    RECEIPT = "receipt"
    PAN_CARD = "pan_card"
    AADHAAR = "aadhaar"
    GST_CERTIFICATE = "gst_certificate"
    BANK_STATEMENT = "bank_statement"
    OTHER = "other"


class SourceChannel(StrEnum):
    """Channels through which documents arrive."""

    WHATSAPP = "whatsapp"
    EMAIL = "email"
    UPLOAD = "upload"
    API = "api"


@dataclass(frozen=True)
class IncomingDocument:
    """A document as received at intake.

    The binary content is not held here; it is fetched from the storage
    collaborator by ``id`` when extraction runs.
    """

    client_id: str
    accountant_id: str
    filename: str
    source: SourceChannel = SourceChannel.UPLOAD
    sender_phone: str | None = None
    sender_email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)


@dataclass
class Classification:
    """Document type assignment with its confidence."""

    type: DocumentType
    confidence: float
    subtype: str | None = None
    matched_on: str | None = None


@dataclass
class ProviderResult:
    """Raw output of a single text-extraction provider."""

    text: str
    confidence: float
    time_ms: float


@dataclass
class ProviderAttempt:
    """Record of one provider call made by the orchestrator."""

    provider: str
    succeeded: bool
    time_ms: float = 0.0
    error: str | None = None


@dataclass
class ExtractionResult:
    """Normalized outcome of text extraction, classification and field parsing.

    ``fields`` is a schema-less map; absent fields are simply missing from it.
    ``field_confidences`` holds per-field extraction confidence keyed by the
    names the confidence scorer tracks.
    """

    classification: Classification
    fields: dict[str, Any]
    raw_text: str
    confidence: float
    provider: str | None = None
    attempts: list[ProviderAttempt] = field(default_factory=list)
    field_confidences: dict[str, float] = field(default_factory=dict)
    version: int = 1

    @property
    def degraded(self) -> bool:
        """True when every provider failed and this result is synthetic."""
        return self.provider is None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractionResult":
        """Rebuild a result from :meth:`to_dict` output.

        Args:
            data: Dictionary produced by :meth:`to_dict`.

        Returns:
            The reconstructed extraction result.
        """
        cls_data = data["classification"]
        return cls(
            classification=Classification(
                type=DocumentType(cls_data["type"]),
                confidence=cls_data["confidence"],
                subtype=cls_data.get("subtype"),
                matched_on=cls_data.get("matched_on"),
            ),
            fields=dict(data.get("fields", {})),
            raw_text=data.get("raw_text", ""),
            confidence=data["confidence"],
            provider=data.get("provider"),
            attempts=[ProviderAttempt(**a) for a in data.get("attempts", [])],
            field_confidences=dict(data.get("field_confidences", {})),
            version=data.get("version", 1),
        )
