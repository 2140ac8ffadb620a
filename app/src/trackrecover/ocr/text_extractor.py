"""Text recognition helpers for the OCR fallback."""
from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod

from PIL import Image

try:  # pragma: no cover
    import pytesseract
except Exception:  # pragma: no cover
    pytesseract = None  # type: ignore

from ..settings import settings
from .models import RasterImage

logger = logging.getLogger(__name__)

ID_CHAR_WHITELIST = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789-_#=?&"
)


class TextExtractor(ABC):
    """Abstract text extractor interface."""

    @abstractmethod
    def extract(self, image: RasterImage, languages: str | None = None) -> str:
        raise NotImplementedError


class NoopTextExtractor(TextExtractor):
    """Fallback extractor that returns empty text."""

    def extract(self, image: RasterImage, languages: str | None = None) -> str:  # noqa: D401
        return ""


class TesseractTextExtractor(TextExtractor):
    """Wrapper around pytesseract biased towards identifier characters."""

    def __init__(
        self,
        *,
        languages: str | None = None,
        psm: int = 6,
        whitelist: str | None = ID_CHAR_WHITELIST,
    ) -> None:
        self.languages = languages or settings.ocr_languages
        self.psm = psm
        self.whitelist = whitelist
        self._binary_available = bool(shutil.which("tesseract"))
        if pytesseract is None or not self._binary_available:
            logger.warning("Tesseract binary or pytesseract missing; text extraction disabled")

    def _config(self) -> str:
        config = f"--psm {self.psm} -c preserve_interword_spaces=1"
        if self.whitelist:
            config += f" -c tessedit_char_whitelist={self.whitelist}"
        return config

    def _run_ocr(self, image: Image.Image, *, lang: str) -> str:
        return pytesseract.image_to_string(image, lang=lang, config=self._config())

    def extract(self, image: RasterImage, languages: str | None = None) -> str:
        if pytesseract is None or not self._binary_available:
            return ""
        try:
            return self._run_ocr(image.image, lang=languages or self.languages) or ""
        except Exception as exc:  # pragma: no cover
            logger.warning("Tesseract failed: %s", exc)
            return ""


def default_text_extractor() -> TextExtractor:
    if pytesseract is None or not shutil.which("tesseract"):
        return NoopTextExtractor()
    return TesseractTextExtractor()
