"""Tracking number recovery pipeline orchestration."""
from __future__ import annotations

import logging
from typing import Callable

from ..enums import FailureReason, InputKind
from ..settings import settings
from .dispatch import classify_upload
from .identifier import extract_id
from .image_loader import ImageLoaderConfig, ImageLoaderError, load_image
from .models import Decoded, Failure, NeedsManualCrop, PipelineResult, RasterImage, Success
from .page_source import PageSource, PageSourceError, open_page_source
from .preprocessing import color_mask
from .run_context import RunContext
from .search import GeometricSearchEngine
from .text_extractor import TextExtractor, default_text_extractor
from .tracking_config import TrackingIdConfig, load_tracking_id_config

logger = logging.getLogger(__name__)

PDF_RENDER_SCALES: tuple[float, ...] = (5, 4, 3, 2)

UNSUPPORTED_MESSAGE = "Please upload an image or a PDF file."
UNREADABLE_IMAGE_MESSAGE = "The image could not be read. Make sure it contains a clear QR code or barcode."
UNREADABLE_DOCUMENT_MESSAGE = "The PDF file could not be opened."
EMPTY_DOCUMENT_MESSAGE = "The PDF file has no pages."
DOCUMENT_NOT_FOUND_MESSAGE = "No valid code was found in the pages of the PDF file."
MANUAL_CROP_IMAGE_MESSAGE = "Automatic reading failed. Select the area of the code and try again."
MANUAL_CROP_DOCUMENT_MESSAGE = "No code was found automatically. Select the area of the code and try reading it."
TIMEOUT_MESSAGE = "Reading the file took too long. Try again with a clearer photo."
CANCELLED_MESSAGE = "This upload was replaced by a newer one."
INTERNAL_MESSAGE = "An error occurred while analysing the file. Make sure it contains a clear QR code or barcode."

STOP_MESSAGES = {
    FailureReason.TIMEOUT: TIMEOUT_MESSAGE,
    FailureReason.CANCELLED: CANCELLED_MESSAGE,
}

PageSourceFactory = Callable[[bytes], PageSource]


class RecoveryPipeline:
    """Runs the recovery cascade for one upload and returns exactly one result.

    Raster images go through the geometric symbol search and, when that fails,
    are handed back for manual cropping. PDF pages are rasterized from the
    highest scale down and searched, with an OCR pass on the first rendering of
    every page; if no page yields an identifier, the embedded text layers are
    scanned before page 1 is offered for manual cropping.
    """

    def __init__(
        self,
        *,
        search_engine: GeometricSearchEngine | None = None,
        text_extractor: TextExtractor | None = None,
        page_source_factory: PageSourceFactory | None = None,
        loader_config: ImageLoaderConfig | None = None,
        max_pages: int | None = None,
        manual_crop_scale: float | None = None,
        ocr_languages: str | None = None,
    ) -> None:
        self.search_engine = search_engine or GeometricSearchEngine()
        self.text_extractor = text_extractor or default_text_extractor()
        self.page_source_factory = page_source_factory or open_page_source
        self.loader_config = loader_config or ImageLoaderConfig()
        self.max_pages = max_pages or settings.max_document_pages
        self.manual_crop_scale = manual_crop_scale or settings.manual_crop_render_scale
        self.ocr_languages = ocr_languages or settings.ocr_languages

    def run(
        self,
        payload: bytes,
        mime_type: str | None,
        *,
        config: TrackingIdConfig | None = None,
        context: RunContext | None = None,
    ) -> PipelineResult:
        ctx = context or RunContext.from_settings()
        try:
            cfg = config or load_tracking_id_config()
            kind = classify_upload(payload, mime_type)
            logger.info("Recovering tracking number from %s upload (%d bytes)", kind.value, len(payload))
            if kind is InputKind.RASTER:
                result = self._run_raster(payload, cfg, ctx)
            elif kind is InputKind.PAGINATED:
                result = self._run_document(payload, cfg, ctx)
            else:
                result = Failure(UNSUPPORTED_MESSAGE, FailureReason.UNSUPPORTED_TYPE)
        except Exception:
            logger.exception("Unexpected failure while recovering tracking number")
            return Failure(INTERNAL_MESSAGE, FailureReason.INTERNAL_ERROR)
        logger.info("Recovery finished with %s after %.2fs", type(result).__name__, ctx.elapsed)
        return result

    def recover_region(
        self,
        image: RasterImage,
        config: TrackingIdConfig,
        context: RunContext | None = None,
    ) -> Success | None:
        """Symbol search then plain OCR on one image; used for manual crops."""

        found = self._search_and_extract(image, config, context)
        if found:
            return found
        if context is not None and context.should_stop():
            return None
        return self._ocr_and_extract(image, config, method="ocr")

    def _run_raster(self, payload: bytes, config: TrackingIdConfig, context: RunContext) -> PipelineResult:
        try:
            loaded = load_image(payload, config=self.loader_config)
        except ImageLoaderError as exc:
            logger.warning("Rejected image upload: %s", exc)
            return Failure(UNREADABLE_IMAGE_MESSAGE, FailureReason.UNREADABLE_INPUT)

        found = self._search_and_extract(loaded.raster, config, context)
        if found:
            return found
        stopped = _stopped(context)
        if stopped:
            return stopped
        return NeedsManualCrop(image=loaded.raster, message=MANUAL_CROP_IMAGE_MESSAGE)

    def _run_document(self, payload: bytes, config: TrackingIdConfig, context: RunContext) -> PipelineResult:
        try:
            source = self.page_source_factory(payload)
        except PageSourceError as exc:
            logger.warning("Rejected document upload: %s", exc)
            return Failure(UNREADABLE_DOCUMENT_MESSAGE, FailureReason.UNREADABLE_INPUT)

        with source:
            pages = range(min(self.max_pages, source.page_count))
            if not pages:
                return Failure(EMPTY_DOCUMENT_MESSAGE, FailureReason.UNREADABLE_INPUT)

            for index in pages:
                found = self._search_page(source, index, config, context)
                if found:
                    return found
                stopped = _stopped(context)
                if stopped:
                    return stopped

            for index in pages:
                found = self._scan_text_layer(source, index, config)
                if found:
                    return found

            try:
                first_page = source.rasterize_page(0, self.manual_crop_scale)
            except PageSourceError as exc:
                logger.warning("Could not render page 1 for manual cropping: %s", exc)
                return Failure(DOCUMENT_NOT_FOUND_MESSAGE, FailureReason.NOT_FOUND)
            return NeedsManualCrop(image=first_page, message=MANUAL_CROP_DOCUMENT_MESSAGE)

    def _search_page(
        self,
        source: PageSource,
        index: int,
        config: TrackingIdConfig,
        context: RunContext,
    ) -> Success | None:
        for position, scale in enumerate(PDF_RENDER_SCALES):
            try:
                raster = source.rasterize_page(index, scale)
            except PageSourceError as exc:
                logger.warning("Skipping page %d: %s", index + 1, exc)
                return None

            found = self._search_and_extract(raster, config, context)
            if found:
                return found
            if context.should_stop():
                return None

            if position == 0:
                found = self._ocr_and_extract(color_mask(raster), config, method="ocr-color-mask")
                if found:
                    return found
                found = self._ocr_and_extract(raster, config, method="ocr")
                if found:
                    return found
        logger.debug("Page %d exhausted without a decodable symbol", index + 1)
        return None

    def _scan_text_layer(self, source: PageSource, index: int, config: TrackingIdConfig) -> Success | None:
        try:
            text = source.page_text(index)
        except PageSourceError as exc:
            logger.warning("Skipping text layer of page %d: %s", index + 1, exc)
            return None
        tracking_id = extract_id(text, config)
        if tracking_id:
            return Success(tracking_id=tracking_id, method="text-layer")
        return None

    def _search_and_extract(
        self,
        image: RasterImage,
        config: TrackingIdConfig,
        context: RunContext | None,
    ) -> Success | None:
        outcome = self.search_engine.search(image, context=context)
        if not isinstance(outcome, Decoded):
            return None
        tracking_id = extract_id(outcome.text, config)
        if tracking_id:
            return Success(tracking_id=tracking_id, method="symbol")
        logger.debug("Decoded symbol without a tracking number: %r", outcome.text[:80])
        return None

    def _ocr_and_extract(self, image: RasterImage, config: TrackingIdConfig, *, method: str) -> Success | None:
        text = self.text_extractor.extract(image, self.ocr_languages)
        tracking_id = extract_id(text, config)
        if tracking_id:
            return Success(tracking_id=tracking_id, method=method)
        return None


def _stopped(context: RunContext) -> Failure | None:
    reason = context.stop_reason
    if reason is None:
        return None
    return Failure(STOP_MESSAGES[reason], reason)


def run_pipeline(
    payload: bytes,
    mime_type: str | None,
    *,
    config: TrackingIdConfig | None = None,
    pipeline: RecoveryPipeline | None = None,
) -> PipelineResult:
    return (pipeline or RecoveryPipeline()).run(payload, mime_type, config=config)
