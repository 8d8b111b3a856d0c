"""Tesseract OCR engine wrapper used by the local OCR provider.

Runs Tesseract on preprocessed page images and reports the recognised text
with a page-level confidence averaged from word confidences.
"""

import shutil
from dataclasses import dataclass

import numpy as np
import pytesseract
from PIL import Image

from src.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class OCRResult:
    """OCR output for a single page."""

    text: str
    confidence: float
    word_count: int
    language: str


class TesseractEngine:
    """Wrapper around Tesseract OCR for document text extraction.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Default OCR language code.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.tesseract_cmd = tesseract_cmd or "tesseract"
        self.default_lang = default_lang

    def is_installed(self) -> bool:
        """Return True when the Tesseract binary can be found."""
        return shutil.which(self.tesseract_cmd) is not None

    def extract_text(
        self,
        image: np.ndarray,
        lang: str | None = None,
        psm: int = 6,
        timeout: float = 0,
    ) -> OCRResult:
        """Extract text from a page image.

        Args:
            image: Input image as a numpy array.
            lang: OCR language code. Defaults to the engine default.
            psm: Tesseract page segmentation mode. Mode 6 keeps table rows
                on one line, which the line-item parser relies on.
            timeout: Seconds before Tesseract is killed; 0 disables it.

        Returns:
            OCRResult with full text and average word confidence in [0, 1].

        Raises:
            RuntimeError: If Tesseract exceeds ``timeout``.
        """
        lang = lang or self.default_lang
        config = f"--psm {psm} -c preserve_interword_spaces=1"
        pil_image = Image.fromarray(image)

        text = pytesseract.image_to_string(
            pil_image, lang=lang, config=config, timeout=timeout
        )
        data = pytesseract.image_to_data(
            pil_image,
            lang=lang,
            config=config,
            output_type=pytesseract.Output.DICT,
            timeout=timeout,
        )

        confidences = [
            float(conf)
            for conf, word in zip(data["conf"], data["text"], strict=False)
            if float(conf) > 0 and str(word).strip()
        ]
        avg_conf = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0

        logger.info(
            "OCR extracted %d words with average confidence %.2f",
            len(confidences),
            avg_conf,
        )
        return OCRResult(
            text=text,
            confidence=avg_conf,
            word_count=len(confidences),
            language=lang,
        )
