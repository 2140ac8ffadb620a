"""Barcode/QR decoding adapters built on OpenCV and zxing-cpp."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import cv2
import numpy as np
import zxingcpp

from .models import NOT_FOUND, Decoded, DecodeOutcome, RasterImage

logger = logging.getLogger(__name__)

MIN_DECODE_SIDE = 21  # smallest QR (version 1) in modules


class SymbolDecoder(ABC):
    """Decoder contract: return the first symbol's payload or ``NotFound``, never raise."""

    @abstractmethod
    def decode(self, image: RasterImage) -> DecodeOutcome:
        raise NotImplementedError


class NullSymbolDecoder(SymbolDecoder):
    """Decoder that never finds anything; used when OpenCV detectors are unavailable."""

    def decode(self, image: RasterImage) -> DecodeOutcome:  # noqa: D401
        return NOT_FOUND


class OpenCvSymbolDecoder(SymbolDecoder):
    """Tries QR, Aruco-assisted QR, then 1D barcodes on every call."""

    def __init__(self) -> None:
        self._qr = cv2.QRCodeDetector()
        aruco_cls = getattr(cv2, "QRCodeDetectorAruco", None)
        self._qr_aruco = aruco_cls() if aruco_cls is not None else None
        self._barcode = _make_barcode_detector()
        if self._barcode is None:
            logger.warning("OpenCV barcode module missing; only QR codes will be decoded")

    def decode(self, image: RasterImage) -> DecodeOutcome:
        if min(image.width, image.height) < MIN_DECODE_SIDE:
            return NOT_FOUND
        pixels = _to_bgr(image)
        for backend in (self._decode_qr, self._decode_qr_aruco, self._decode_barcode):
            try:
                text = backend(pixels)
            except Exception as exc:  # pragma: no cover
                logger.debug("%s failed: %s", backend.__name__, exc)
                continue
            if text:
                return Decoded(text)
        return NOT_FOUND

    def _decode_qr(self, pixels: np.ndarray) -> str | None:
        text, _points, _straight = self._qr.detectAndDecode(pixels)
        return text or None

    def _decode_qr_aruco(self, pixels: np.ndarray) -> str | None:
        if self._qr_aruco is None:
            return None
        text, _points, _straight = self._qr_aruco.detectAndDecode(pixels)
        return text or None

    def _decode_barcode(self, pixels: np.ndarray) -> str | None:
        if self._barcode is None:
            return None
        if hasattr(self._barcode, "detectAndDecodeWithType"):
            ok, decoded_info, _types, _points = self._barcode.detectAndDecodeWithType(pixels)
        else:
            ok, decoded_info, _types, _points = self._barcode.detectAndDecode(pixels)
        if not ok or decoded_info is None:
            return None
        for text in decoded_info:
            if text:
                return text
        return None


class ZxingSymbolDecoder(SymbolDecoder):
    """Covers the symbologies OpenCV lacks: PDF417, Aztec, Data Matrix and ITF among them."""

    def decode(self, image: RasterImage) -> DecodeOutcome:
        try:
            results = zxingcpp.read_barcodes(np.asarray(image.image.convert("L")))
        except Exception as exc:  # pragma: no cover
            logger.debug("zxing-cpp failed: %s", exc)
            return NOT_FOUND
        for result in results:
            if result.text:
                return Decoded(result.text)
        return NOT_FOUND


class ChainedSymbolDecoder(SymbolDecoder):
    """First decoder to find a symbol wins."""

    def __init__(self, decoders: list[SymbolDecoder]) -> None:
        self.decoders = decoders

    def decode(self, image: RasterImage) -> DecodeOutcome:
        for decoder in self.decoders:
            outcome = decoder.decode(image)
            if isinstance(outcome, Decoded):
                return outcome
        return NOT_FOUND


def _make_barcode_detector():
    barcode_module = getattr(cv2, "barcode", None)
    if barcode_module is None:
        return None
    try:
        return barcode_module.BarcodeDetector()
    except cv2.error as exc:  # pragma: no cover
        logger.warning("Could not create barcode detector: %s", exc)
        return None


def _to_bgr(image: RasterImage) -> np.ndarray:
    if image.mode == "L":
        return np.asarray(image.image)
    rgb = np.asarray(image.image.convert("RGB"))
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


def default_symbol_decoder() -> SymbolDecoder:
    return ChainedSymbolDecoder([OpenCvSymbolDecoder(), ZxingSymbolDecoder()])
