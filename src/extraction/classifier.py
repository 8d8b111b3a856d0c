"""Rule-based document classification.

Assigns a document type from filename hints first and text keywords
second. Invoice and receipt keywords are checked before the certificate
keywords so that a GST *invoice* is never mistaken for a GST registration
certificate.
"""

import re

from src.models import Classification, DocumentType
from src.utils.config import ClassifierConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)


def _token(pattern: str) -> str:
    """Wrap ``pattern`` so it only matches as a whole word inside a filename."""
    return rf"(?<![a-z]){pattern}(?![a-z])"


# (pattern over the lowercased filename, type)
_FILENAME_HINTS: list[tuple[str, DocumentType]] = [
    (_token(r"(?:invoices?|inv)"), DocumentType.INVOICE),
    (_token(r"(?:purchases?|bills?)"), DocumentType.INVOICE),
    (_token(r"receipts?"), DocumentType.RECEIPT),
    (_token(r"pan(?:card)?"), DocumentType.PAN_CARD),
    (_token(r"aadh?aa?r"), DocumentType.AADHAAR),
    (
        _token(r"gst(?:in)?") + r".*" + _token(r"(?:cert|certificate|reg|registration)"),
        DocumentType.GST_CERTIFICATE,
    ),
    (_token(r"statements?"), DocumentType.BANK_STATEMENT),
]

_SUBTYPE_HINTS: list[tuple[str, str]] = [
    (_token(r"(?:purchases?|bills?)"), "purchase"),
    (_token(r"(?:sales?)"), "sales"),
]

# (pattern over the text, type, confidence), checked in order
_TEXT_RULES: list[tuple[str, DocumentType, float]] = [
    (r"\btax\s+invoice\b", DocumentType.INVOICE, 0.9),
    (r"\binvoice\b", DocumentType.INVOICE, 0.8),
    (r"\bbill\s+of\s+supply\b", DocumentType.INVOICE, 0.8),
    (r"\breceipt\b|\bpayment\s+received\b", DocumentType.RECEIPT, 0.8),
    (
        r"permanent\s+account\s+number|income\s+tax\s+department",
        DocumentType.PAN_CARD,
        0.85,
    ),
    (
        r"\baadh?aa?r\b|unique\s+identification\s+authority",
        DocumentType.AADHAAR,
        0.85,
    ),
    (
        r"registration\s+certificate|form\s+gst\s+reg-?0?6|gst\s+certificate",
        DocumentType.GST_CERTIFICATE,
        0.8,
    ),
    (
        r"bank\s+statement|statement\s+of\s+account|account\s+statement",
        DocumentType.BANK_STATEMENT,
        0.8,
    ),
]


class DocumentClassifier:
    """Deterministic classifier over raw text and filename.

    Args:
        config: Confidence values for filename hits and the fallback.
    """

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        self.config = config or ClassifierConfig()

    @staticmethod
    def invoice_subtype(filename: str) -> str | None:
        """Return ``"purchase"`` or ``"sales"`` when the filename says so."""
        name = filename.lower()
        for pattern, subtype in _SUBTYPE_HINTS:
            if re.search(pattern, name):
                return subtype
        return None

    def classify(self, raw_text: str, filename_hint: str = "") -> Classification:
        """Assign a document type.

        Args:
            raw_text: Text produced by a provider.
            filename_hint: Original filename as submitted.

        Returns:
            Classification with type, confidence and the matching rule.
        """
        name = filename_hint.lower()
        subtype = self.invoice_subtype(filename_hint)

        for pattern, doc_type in _FILENAME_HINTS:
            if re.search(pattern, name):
                logger.debug("Filename %s classified as %s", filename_hint, doc_type)
                return Classification(
                    type=doc_type,
                    confidence=self.config.filename_confidence,
                    subtype=subtype if doc_type == DocumentType.INVOICE else None,
                    matched_on=f"filename:{pattern}",
                )

        for pattern, doc_type, confidence in _TEXT_RULES:
            if re.search(pattern, raw_text, re.IGNORECASE):
                logger.debug("Text matched %s for %s", pattern, doc_type)
                return Classification(
                    type=doc_type,
                    confidence=confidence,
                    subtype=subtype if doc_type == DocumentType.INVOICE else None,
                    matched_on=f"text:{pattern}",
                )

        return Classification(
            type=DocumentType.OTHER,
            confidence=self.config.fallback_confidence,
        )
