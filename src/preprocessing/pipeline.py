"""Pluggable image preprocessing applied before local OCR.

The Tesseract provider accepts any callable that maps an image array to an
image array. :class:`ImagePreprocessor` is the default step: grayscale
conversion, optional deskew, non-local-means denoising and adaptive
binarization, each toggled by :class:`PreprocessingConfig`.
"""

from typing import Protocol

import cv2
import numpy as np

from src.utils.config import PreprocessingConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)


class PreprocessingStep(Protocol):
    """Image-to-image transform run before OCR."""

    def __call__(self, image: np.ndarray) -> np.ndarray: ...


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert an RGB, RGBA or grayscale image to single-channel grayscale."""
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)


def estimate_skew(gray: np.ndarray) -> float:
    """Estimate document skew from the minimum-area rectangle around ink pixels.

    Args:
        gray: Grayscale image with dark text on a light background.

    Returns:
        Skew angle in degrees, in the range (-45, 45].
    """
    inverted = cv2.bitwise_not(gray)
    _, mask = cv2.threshold(inverted, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    coords = np.column_stack(np.where(mask > 0))
    if len(coords) < 10:
        return 0.0
    angle = cv2.minAreaRect(coords.astype(np.float32))[-1]
    if angle > 45:
        angle -= 90
    return float(angle)


def rotate(image: np.ndarray, angle: float) -> np.ndarray:
    """Rotate an image about its centre, replicating border pixels."""
    h, w = image.shape[:2]
    matrix = cv2.getRotationMatrix2D((w // 2, h // 2), angle, 1.0)
    return cv2.warpAffine(
        image,
        matrix,
        (w, h),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_REPLICATE,
    )


class ImagePreprocessor:
    """Default preprocessing step for scanned financial documents.

    Args:
        config: Preprocessing configuration controlling which steps run.
        min_skew: Smallest angle (degrees) worth correcting.
    """

    def __init__(self, config: PreprocessingConfig, min_skew: float = 0.5) -> None:
        self.config = config
        self.min_skew = min_skew

    def __call__(self, image: np.ndarray) -> np.ndarray:
        """Run the configured steps on one page image.

        Args:
            image: Page image as a numpy array (RGB, RGBA or grayscale).

        Returns:
            Processed single-channel image.
        """
        result = to_grayscale(image)
        if not self.config.enabled:
            return result

        if self.config.deskew_enabled:
            angle = estimate_skew(result)
            if abs(angle) >= self.min_skew:
                result = rotate(result, angle)
                logger.debug("Deskewed page by %.2f degrees", angle)

        if self.config.denoise_enabled:
            result = cv2.fastNlMeansDenoising(result, h=self.config.denoise_strength)

        if self.config.binarize_enabled:
            block = self.config.binarize_block_size
            if block % 2 == 0:
                block += 1
            result = cv2.adaptiveThreshold(
                result,
                255,
                cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
                cv2.THRESH_BINARY,
                block,
                10,
            )
        return result
