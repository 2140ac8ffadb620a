"""Paginated document access: rasterized pages and embedded text layers."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .models import RasterImage

logger = logging.getLogger(__name__)


class PageSourceError(RuntimeError):
    """Raised when a document cannot be opened or one of its pages cannot be rendered."""


class PageSource(ABC):
    """Read-only view over a paginated document.

    Implementations must render deterministically for a given
    ``(document, page, scale)`` and must not perform OCR.
    """

    @property
    @abstractmethod
    def page_count(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def rasterize_page(self, index: int, scale: float) -> RasterImage:
        """Render page ``index`` (0-based); ``scale`` 1 equals 72 dpi."""
        raise NotImplementedError

    @abstractmethod
    def page_text(self, index: int) -> str:
        """Return the embedded text of page ``index`` or ``""`` when it has none."""
        raise NotImplementedError

    def close(self) -> None:
        return None

    def __enter__(self) -> "PageSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class PdfiumPageSource(PageSource):
    def __init__(self, payload: bytes) -> None:
        pdfium = _require_pdfium()
        try:
            self._doc = pdfium.PdfDocument(payload)
        except pdfium.PdfiumError as exc:
            raise PageSourceError(f"Unable to open PDF document: {exc}") from exc

    @property
    def page_count(self) -> int:
        return len(self._doc)

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.page_count:
            raise PageSourceError(f"Page out of range: {index + 1} (1..{self.page_count})")

    def rasterize_page(self, index: int, scale: float) -> RasterImage:
        self._check_index(index)
        pdfium = _require_pdfium()
        try:
            page = self._doc[index]
            try:
                bitmap = page.render(scale=scale)
                pil_img = bitmap.to_pil().convert("RGB")
            finally:
                page.close()
        except (pdfium.PdfiumError, MemoryError, ValueError) as exc:
            raise PageSourceError(f"Unable to render page {index + 1} at scale {scale:g}: {exc}") from exc
        return RasterImage(pil_img)

    def page_text(self, index: int) -> str:
        self._check_index(index)
        pdfium = _require_pdfium()
        try:
            page = self._doc[index]
            try:
                textpage = page.get_textpage()
                try:
                    return textpage.get_text_range() or ""
                finally:
                    textpage.close()
            finally:
                page.close()
        except pdfium.PdfiumError as exc:
            logger.warning("No readable text layer on page %d: %s", index + 1, exc)
            return ""

    def close(self) -> None:
        self._doc.close()


def _require_pdfium():
    try:
        import pypdfium2 as pdfium  # type: ignore

        return pdfium
    except ImportError as e:
        raise RuntimeError("Missing dependency: pypdfium2 is required for PDF uploads.") from e


def open_page_source(payload: bytes) -> PageSource:
    return PdfiumPageSource(payload)
