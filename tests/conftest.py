"""Shared test fixtures for the document-to-ledger test suite."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from src.collaborators import FileSystemStorage
from src.ledger.store import LedgerStore
from src.ocr.orchestrator import ExtractionOrchestrator
from src.pipeline import DocumentPipeline
from src.validation.rules_engine import ValidationEngine
from tests.fakes import (
    CUSTOMER_GSTIN,
    INVOICE_TEXT,
    TODAY,
    VENDOR_GSTIN,
    RecordingNotifier,
    StaticProvider,
)


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic RGB test image."""
    image = np.zeros((200, 300, 3), dtype=np.uint8)
    image[50:150, 50:250] = (255, 255, 255)
    return image


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


@pytest.fixture
def invoice_text() -> str:
    """OCR text of an intra-state Maharashtra tax invoice."""
    return INVOICE_TEXT


@pytest.fixture
def invoice_fields() -> dict[str, Any]:
    """Field map as the extractor produces it for ``invoice_text``."""
    return {
        "invoice_number": "INV-2025-001",
        "invoice_date": "2025-01-15",
        "vendor_name": "ACME SUPPLIES PVT LTD",
        "vendor_gstin": VENDOR_GSTIN,
        "customer_name": "Widget Traders",
        "customer_gstin": CUSTOMER_GSTIN,
        "line_items": [
            {
                "description": "Steel Bolts",
                "hsn_code": "7318",
                "quantity": 10.0,
                "rate": 500.0,
                "amount": 5000.0,
            },
            {
                "description": "Copper Wire",
                "hsn_code": "7408",
                "quantity": 5.0,
                "rate": 1000.0,
                "amount": 5000.0,
            },
        ],
        "subtotal": 10000.0,
        "cgst": 900.0,
        "sgst": 900.0,
        "grand_total": 11800.0,
    }


@pytest.fixture
def store() -> LedgerStore:
    """Fresh in-memory ledger database."""
    return LedgerStore("sqlite:///:memory:")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_pipeline(
    store: LedgerStore, notifier: RecordingNotifier, tmp_path: Path
) -> Callable[..., DocumentPipeline]:
    """Factory for pipelines over the in-memory store and a temp document folder."""

    def _make(*providers: StaticProvider) -> DocumentPipeline:
        orchestrator = ExtractionOrchestrator(list(providers) or [StaticProvider()], timeout_s=5)
        return DocumentPipeline(
            store=store,
            storage=FileSystemStorage(tmp_path / "documents"),
            orchestrator=orchestrator,
            validator=ValidationEngine(today=lambda: TODAY),
            notifier=notifier,
        )

    return _make
