"""Decode document bytes into page images.

Providers receive raw bytes from the storage collaborator. PDFs are rendered
page by page with pdf2image; every other payload is opened with Pillow.
"""

import io

import numpy as np
from pdf2image import convert_from_bytes
from PIL import Image, UnidentifiedImageError

from src.utils.logger import get_logger

logger = get_logger(__name__)

PDF_MAGIC = b"%PDF"


def is_pdf(content: bytes) -> bool:
    """Return True when the bytes start with the PDF signature."""
    return content[:4] == PDF_MAGIC


class PageLoader:
    """Converts document bytes into RGB page images.

    Args:
        dpi: Resolution for PDF rendering.
        max_pages: Upper bound on pages rendered from one PDF.
    """

    def __init__(self, dpi: int = 300, max_pages: int = 20) -> None:
        self.dpi = dpi
        self.max_pages = max_pages

    def load(self, content: bytes) -> list[np.ndarray]:
        """Decode ``content`` into a list of page images.

        Args:
            content: Raw PDF or image bytes.

        Returns:
            Page images as RGB numpy arrays.

        Raises:
            ValueError: If the bytes are neither a PDF nor a readable image.
            RuntimeError: If PDF rendering fails.
        """
        if is_pdf(content):
            try:
                pil_pages = convert_from_bytes(
                    content, dpi=self.dpi, last_page=self.max_pages
                )
            except Exception as exc:
                raise RuntimeError(f"PDF conversion failed: {exc}") from exc
            logger.info("Rendered %d PDF pages at %d DPI", len(pil_pages), self.dpi)
            return [np.array(page.convert("RGB")) for page in pil_pages]

        try:
            image = Image.open(io.BytesIO(content))
        except UnidentifiedImageError as exc:
            raise ValueError("Unsupported document format") from exc
        return [np.array(image.convert("RGB"))]

    def to_png_pages(self, content: bytes) -> list[bytes]:
        """Decode ``content`` and re-encode every page as PNG bytes.

        Args:
            content: Raw PDF or image bytes.

        Returns:
            One PNG payload per page.
        """
        pages: list[bytes] = []
        for array in self.load(content):
            buf = io.BytesIO()
            Image.fromarray(array).save(buf, format="PNG")
            pages.append(buf.getvalue())
        return pages
