"""Tests for sequential provider fallback."""

import threading

from src.models import DocumentType, ProviderResult
from src.ocr.orchestrator import DEGRADED_CONFIDENCE, ExtractionOrchestrator
from tests.fakes import INVOICE_TEXT, StaticProvider


class SlowProvider(StaticProvider):
    """Provider that blocks until released."""

    def __init__(self) -> None:
        super().__init__(name="slow")
        self.release = threading.Event()

    def extract(self, content: bytes, filename_hint: str) -> ProviderResult:
        self.release.wait(5)
        return super().extract(content, filename_hint)


class BrokenProvider(StaticProvider):
    """Provider raising something other than a provider error."""

    def extract(self, content: bytes, filename_hint: str) -> ProviderResult:
        raise RuntimeError("segfault in native library")


class TestExtractionOrchestrator:
    """Tests for provider ordering, fallback and degraded results."""

    def test_first_provider_wins(self) -> None:
        first = StaticProvider("first", confidence=0.8)
        second = StaticProvider("second")
        result = ExtractionOrchestrator([first, second]).extract(b"data", "invoice_001.pdf")

        assert result.provider == "first"
        assert result.confidence == 0.8
        assert second.calls == 0
        assert result.classification.type == DocumentType.INVOICE
        assert result.fields["invoice_number"] == "INV-2025-001"
        assert result.field_confidences["grand_total"] == 0.97
        assert result.raw_text == INVOICE_TEXT
        assert [a.provider for a in result.attempts] == ["first"]
        assert not result.degraded

    def test_falls_back_on_provider_error(self) -> None:
        failing = StaticProvider("vision_llm", error="HTTP 429")
        backup = StaticProvider("cloud_ocr", confidence=0.9)
        result = ExtractionOrchestrator([failing, backup]).extract(b"data", "scan.png")

        assert result.provider == "cloud_ocr"
        assert result.confidence == 0.9
        assert [(a.provider, a.succeeded, a.error) for a in result.attempts] == [
            ("vision_llm", False, "HTTP 429"),
            ("cloud_ocr", True, None),
        ]

    def test_skips_unavailable_provider(self) -> None:
        missing = StaticProvider("tesseract", available=False)
        backup = StaticProvider("cloud_ocr")
        result = ExtractionOrchestrator([missing, backup]).extract(b"data", "scan.png")

        assert missing.calls == 0
        assert result.attempts[0].error == "provider unavailable"
        assert result.provider == "cloud_ocr"

    def test_timeout_moves_to_next_provider(self) -> None:
        slow = SlowProvider()
        backup = StaticProvider("backup")
        try:
            result = ExtractionOrchestrator([slow, backup], timeout_s=0.05).extract(
                b"data", "scan.png"
            )
        finally:
            slow.release.set()

        assert result.provider == "backup"
        assert result.attempts[0].error == "timed out after 0.05s"

    def test_unexpected_exception_is_a_failed_attempt(self) -> None:
        result = ExtractionOrchestrator([BrokenProvider("broken"), StaticProvider()]).extract(
            b"data", "scan.png"
        )
        assert result.attempts[0].error == "unexpected error: segfault in native library"
        assert result.provider == "static"

    def test_all_providers_failing_degrades(self) -> None:
        providers = [
            StaticProvider("tesseract", available=False),
            StaticProvider("vision_llm", error="HTTP 500"),
        ]
        result = ExtractionOrchestrator(providers).extract(b"data", "invoice.pdf")

        assert result.degraded
        assert result.provider is None
        assert result.confidence == DEGRADED_CONFIDENCE
        assert result.classification.type == DocumentType.OTHER
        assert result.classification.confidence == DEGRADED_CONFIDENCE
        assert result.fields == {
            "error": ["tesseract: provider unavailable", "vision_llm: HTTP 500"]
        }
        assert result.raw_text == ""

    def test_no_providers_degrades(self) -> None:
        result = ExtractionOrchestrator([]).extract(b"data", "invoice.pdf")
        assert result.degraded
        assert result.fields == {"error": []}

    def test_unclassified_text_has_no_fields(self) -> None:
        provider = StaticProvider(text="lorem ipsum dolor")
        result = ExtractionOrchestrator([provider]).extract(b"data", "scan.png")
        assert result.classification.type == DocumentType.OTHER
        assert result.fields == {}
        assert not result.degraded
