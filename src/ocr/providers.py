"""Text-extraction provider adapters.

Every provider turns raw document bytes into text plus its own confidence in
[0, 1] and reports whether it can run at all. Three implementations ship:

* ``tesseract``: local OCR with the pluggable preprocessing step.
* ``vision_llm``: a vision-language model behind an OpenAI-compatible
  ``/chat/completions`` endpoint.
* ``cloud_ocr``: Google Vision ``DOCUMENT_TEXT_DETECTION`` over REST.

Providers raise :class:`ProviderError` for anything that goes wrong; the
orchestrator turns those into fallback attempts. A new provider only needs
an entry in :data:`PROVIDER_FACTORIES` and a name in the configured order.
"""

import base64
import time
from collections.abc import Callable
from typing import Any, Protocol

import httpx
import numpy as np
import pytesseract

from src.errors import ProviderError, ProviderUnavailableError
from src.models import ProviderResult
from src.preprocessing.pipeline import ImagePreprocessor, PreprocessingStep
from src.utils.config import (
    CloudOCRProviderConfig,
    PreprocessingConfig,
    ProvidersConfig,
    TesseractProviderConfig,
    VisionLLMProviderConfig,
)
from src.utils.logger import get_logger

from .page_loader import PageLoader
from .tesseract_engine import TesseractEngine

logger = get_logger(__name__)


class ExtractionProvider(Protocol):
    """Closed interface every text-extraction provider implements."""

    name: str

    def is_available(self) -> bool: ...

    def extract(self, content: bytes, filename_hint: str) -> ProviderResult: ...


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _http_error(provider: str, exc: httpx.HTTPError) -> ProviderError:
    """Translate an httpx error into a ProviderError with a readable reason."""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(provider, "request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ProviderError(provider, "quota exceeded (HTTP 429)")
        return ProviderError(provider, f"HTTP {status}: {exc.response.text[:200]}")
    return ProviderError(provider, f"connection failed: {exc}")


class TesseractProvider:
    """Local OCR provider backed by Tesseract.

    Args:
        config: Tesseract settings.
        preprocess: Image step applied to every page before OCR.
        timeout_s: Per-page Tesseract timeout in seconds.
    """

    name = "tesseract"

    def __init__(
        self,
        config: TesseractProviderConfig,
        preprocess: PreprocessingStep | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.config = config
        self.engine = TesseractEngine(
            tesseract_cmd=config.tesseract_cmd,
            default_lang=config.default_lang,
        )
        self.loader = PageLoader(dpi=config.pdf_dpi)
        self.preprocess = preprocess
        self.timeout_s = timeout_s

    def is_available(self) -> bool:
        return self.engine.is_installed()

    def extract(self, content: bytes, filename_hint: str) -> ProviderResult:
        """Run OCR over every page of the document.

        Args:
            content: Raw PDF or image bytes.
            filename_hint: Original filename, used only for logging.

        Returns:
            Page texts joined with blank lines and a word-weighted confidence.

        Raises:
            ProviderError: On decode failure, Tesseract failure or empty output.
        """
        start = time.perf_counter()
        try:
            pages = self.loader.load(content)
        except (ValueError, RuntimeError) as exc:
            raise ProviderError(self.name, str(exc)) from exc

        texts: list[str] = []
        weighted_conf = 0.0
        total_words = 0
        for page in pages:
            image: np.ndarray = self.preprocess(page) if self.preprocess else page
            try:
                result = self.engine.extract_text(
                    image, psm=self.config.psm, timeout=self.timeout_s
                )
            except (RuntimeError, pytesseract.TesseractError) as exc:
                raise ProviderError(self.name, str(exc)) from exc
            texts.append(result.text.strip())
            weighted_conf += result.confidence * result.word_count
            total_words += result.word_count

        text = "\n\n".join(t for t in texts if t)
        if not text:
            raise ProviderError(self.name, "no text recognised")

        confidence = weighted_conf / total_words if total_words else 0.0
        logger.info(
            "Tesseract read %d pages from %s (confidence %.2f)",
            len(pages),
            filename_hint,
            confidence,
        )
        return ProviderResult(text=text, confidence=confidence, time_ms=_elapsed_ms(start))


class VisionLLMProvider:
    """Vision-language model provider using an OpenAI-compatible API.

    The model transcribes the page images; since such APIs report no
    confidence, the configured ``reported_confidence`` is used.

    Args:
        config: Endpoint, model and credentials.
        timeout_s: HTTP timeout in seconds.
        transport: Optional httpx transport, used to stub the network.
        max_pages: Pages sent per request.
    """

    name = "vision_llm"

    def __init__(
        self,
        config: VisionLLMProviderConfig,
        timeout_s: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        max_pages: int = 5,
    ) -> None:
        self.config = config
        self.timeout_s = timeout_s
        self.transport = transport
        self.loader = PageLoader(dpi=200, max_pages=max_pages)

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    def _build_request(self, pages: list[bytes]) -> dict[str, Any]:
        content: list[dict[str, Any]] = [{"type": "text", "text": self.config.prompt}]
        for png in pages:
            encoded = base64.b64encode(png).decode("ascii")
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{encoded}"},
                }
            )
        return {
            "model": self.config.model,
            "temperature": 0,
            "messages": [{"role": "user", "content": content}],
        }

    def extract(self, content: bytes, filename_hint: str) -> ProviderResult:
        """Send the page images to the model and return its transcription.

        Raises:
            ProviderUnavailableError: If no API key is configured.
            ProviderError: On HTTP failure, timeout or an empty answer.
        """
        if not self.is_available():
            raise ProviderUnavailableError(self.name, "API key not configured")

        start = time.perf_counter()
        try:
            pages = self.loader.to_png_pages(content)
        except (ValueError, RuntimeError) as exc:
            raise ProviderError(self.name, str(exc)) from exc

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
                response = client.post(url, json=self._build_request(pages), headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise _http_error(self.name, exc) from exc

        try:
            text = response.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(self.name, "malformed response body") from exc

        if not text.strip():
            raise ProviderError(self.name, "model returned no text")

        logger.info("Vision model transcribed %s (%d pages)", filename_hint, len(pages))
        return ProviderResult(
            text=text.strip(),
            confidence=self.config.reported_confidence,
            time_ms=_elapsed_ms(start),
        )


class CloudOCRProvider:
    """Google Vision document text detection over the REST API.

    Args:
        config: Endpoint and API key.
        timeout_s: HTTP timeout in seconds.
        transport: Optional httpx transport, used to stub the network.
    """

    name = "cloud_ocr"

    def __init__(
        self,
        config: CloudOCRProviderConfig,
        timeout_s: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout_s = timeout_s
        self.transport = transport
        self.loader = PageLoader(dpi=200)

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    def extract(self, content: bytes, filename_hint: str) -> ProviderResult:
        """Annotate every page and combine the full-text annotations.

        Raises:
            ProviderUnavailableError: If no API key is configured.
            ProviderError: On HTTP failure, an API-level error or empty output.
        """
        if not self.is_available():
            raise ProviderUnavailableError(self.name, "API key not configured")

        start = time.perf_counter()
        try:
            pages = self.loader.to_png_pages(content)
        except (ValueError, RuntimeError) as exc:
            raise ProviderError(self.name, str(exc)) from exc

        body = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(png).decode("ascii")},
                    "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
                }
                for png in pages
            ]
        }
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
                response = client.post(
                    self.config.endpoint, json=body, params={"key": self.config.api_key}
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise _http_error(self.name, exc) from exc

        texts: list[str] = []
        page_confidences: list[float] = []
        for item in response.json().get("responses", []):
            if "error" in item:
                raise ProviderError(self.name, item["error"].get("message", "API error"))
            annotation = item.get("fullTextAnnotation") or {}
            if annotation.get("text"):
                texts.append(annotation["text"].strip())
            page_confidences.extend(
                p["confidence"] for p in annotation.get("pages", []) if "confidence" in p
            )

        text = "\n\n".join(texts)
        if not text:
            raise ProviderError(self.name, "no text detected")

        confidence = (
            sum(page_confidences) / len(page_confidences)
            if page_confidences
            else self.config.default_confidence
        )
        logger.info("Cloud OCR read %s (confidence %.2f)", filename_hint, confidence)
        return ProviderResult(text=text, confidence=confidence, time_ms=_elapsed_ms(start))


PROVIDER_FACTORIES: dict[str, Callable[[ProvidersConfig, PreprocessingConfig], ExtractionProvider]] = {
    "tesseract": lambda cfg, pre: TesseractProvider(
        cfg.tesseract, preprocess=ImagePreprocessor(pre), timeout_s=cfg.timeout_s
    ),
    "vision_llm": lambda cfg, pre: VisionLLMProvider(cfg.vision_llm, timeout_s=cfg.timeout_s),
    "cloud_ocr": lambda cfg, pre: CloudOCRProvider(cfg.cloud_ocr, timeout_s=cfg.timeout_s),
}


def build_providers(
    config: ProvidersConfig, preprocessing: PreprocessingConfig
) -> list[ExtractionProvider]:
    """Instantiate providers in the configured priority order.

    Args:
        config: Provider order and settings.
        preprocessing: Settings for the local OCR preprocessing step.

    Returns:
        Providers in priority order.

    Raises:
        ValueError: If the order names an unknown provider.
    """
    providers: list[ExtractionProvider] = []
    for name in config.order:
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            raise ValueError(f"Unknown extraction provider: {name}")
        providers.append(factory(config, preprocessing))
    return providers
