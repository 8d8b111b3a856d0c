"""Sequential provider fallback for text extraction.

The orchestrator walks its provider list in priority order, giving each
provider one attempt bounded by a timeout. The first provider to return
text wins and its confidence is reported unchanged. When every provider
fails, a degraded result typed ``other`` with confidence 0.1 is returned,
carrying each provider's failure reason in ``fields["error"]``.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from src.errors import ProviderError
from src.extraction.classifier import DocumentClassifier
from src.extraction.field_extractor import FieldExtractor
from src.models import (
    Classification,
    DocumentType,
    ExtractionResult,
    ProviderAttempt,
    ProviderResult,
)
from src.utils.logger import get_logger

from .providers import ExtractionProvider

logger = get_logger(__name__)

DEGRADED_CONFIDENCE = 0.1


class ExtractionOrchestrator:
    """Runs providers in order, then classifies and parses the winning text.

    Args:
        providers: Providers in priority order.
        classifier: Document classifier.
        field_extractor: Per-type field extractor.
        timeout_s: Upper bound on a single provider call in seconds.
    """

    def __init__(
        self,
        providers: list[ExtractionProvider],
        classifier: DocumentClassifier | None = None,
        field_extractor: FieldExtractor | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.providers = providers
        self.classifier = classifier or DocumentClassifier()
        self.field_extractor = field_extractor or FieldExtractor()
        self.timeout_s = timeout_s

    def _call_provider(
        self, provider: ExtractionProvider, content: bytes, filename: str
    ) -> ProviderResult:
        """Call ``provider.extract`` and give up after ``timeout_s``.

        A timed-out call keeps running in its worker thread; its result is
        discarded.
        """
        executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"provider-{provider.name}"
        )
        try:
            future = executor.submit(provider.extract, content, filename)
            return future.result(timeout=self.timeout_s)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _attempt(
        self, provider: ExtractionProvider, content: bytes, filename: str
    ) -> tuple[ProviderResult | None, ProviderAttempt]:
        if not provider.is_available():
            return None, ProviderAttempt(provider.name, False, error="provider unavailable")

        try:
            result = self._call_provider(provider, content, filename)
        except ProviderError as exc:
            reason = exc.reason
        except FuturesTimeout:
            reason = f"timed out after {self.timeout_s:g}s"
        except Exception as exc:
            reason = f"unexpected error: {exc}"
        else:
            return result, ProviderAttempt(provider.name, True, time_ms=result.time_ms)

        return None, ProviderAttempt(provider.name, False, error=reason)

    def extract(self, content: bytes, filename: str) -> ExtractionResult:
        """Extract, classify and parse a document. Never raises for provider failures.

        Args:
            content: Raw document bytes.
            filename: Original filename, used as a classification hint.

        Returns:
            The extraction result from the first successful provider, or a
            degraded result if none succeeded.
        """
        attempts: list[ProviderAttempt] = []

        for provider in self.providers:
            result, attempt = self._attempt(provider, content, filename)
            attempts.append(attempt)
            if result is None:
                logger.warning(
                    "Provider %s failed for %s: %s; falling back",
                    provider.name,
                    filename,
                    attempt.error,
                )
                continue

            classification = self.classifier.classify(result.text, filename)
            fields, field_confidences = self.field_extractor.extract_with_confidence(
                result.text, classification.type
            )
            logger.info(
                "Extracted %s via %s: type=%s, %d fields",
                filename,
                provider.name,
                classification.type,
                len(fields),
            )
            return ExtractionResult(
                classification=classification,
                fields=fields,
                raw_text=result.text,
                confidence=result.confidence,
                provider=provider.name,
                attempts=attempts,
                field_confidences=field_confidences,
            )

        logger.error("All %d providers failed for %s", len(self.providers), filename)
        return ExtractionResult(
            classification=Classification(DocumentType.OTHER, DEGRADED_CONFIDENCE),
            fields={"error": [f"{a.provider}: {a.error}" for a in attempts]},
            raw_text="",
            confidence=DEGRADED_CONFIDENCE,
            provider=None,
            attempts=attempts,
        )
