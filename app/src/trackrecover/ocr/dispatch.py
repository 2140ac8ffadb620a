"""Decide how an upload is processed from its MIME type (or its magic bytes)."""
from __future__ import annotations

from ..enums import InputKind

PDF_MIME = "application/pdf"
GENERIC_MIMES = {"", "application/octet-stream", "binary/octet-stream"}

_IMAGE_SIGNATURES: tuple[bytes, ...] = (
    b"\x89PNG\r\n\x1a\n",
    b"\xff\xd8\xff",
    b"GIF87a",
    b"GIF89a",
    b"BM",
    b"II*\x00",
    b"MM\x00*",
)


def sniff_kind(payload: bytes) -> InputKind:
    head = payload[:16]
    if head.lstrip(b"\x00\t\r\n ").startswith(b"%PDF-"):
        return InputKind.PAGINATED
    if head.startswith(b"RIFF") and head[8:12] == b"WEBP":
        return InputKind.RASTER
    if any(head.startswith(signature) for signature in _IMAGE_SIGNATURES):
        return InputKind.RASTER
    return InputKind.UNSUPPORTED


def classify_upload(payload: bytes, mime_type: str | None) -> InputKind:
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime == PDF_MIME:
        return InputKind.PAGINATED
    if mime.startswith("image/"):
        return InputKind.RASTER
    if mime in GENERIC_MIMES:
        return sniff_kind(payload)
    return InputKind.UNSUPPORTED
