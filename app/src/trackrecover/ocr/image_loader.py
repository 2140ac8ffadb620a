"""Utility helpers for loading, validating, and normalizing uploaded images."""
from __future__ import annotations

from dataclasses import dataclass, field
from hashlib import sha256
from io import BytesIO
from pathlib import Path
from typing import BinaryIO

from PIL import Image, ImageOps

from ..settings import settings
from .models import RasterImage


def _default_max_dimensions() -> tuple[int, int] | None:
    side = settings.max_image_side
    return (side, side) if side > 0 else None


@dataclass(frozen=True)
class ImageLoaderConfig:
    """Configuration knobs for the loader."""

    max_bytes: int = settings.max_upload_bytes
    allowed_formats: tuple[str, ...] = ("PNG", "JPEG", "GIF", "BMP", "TIFF", "WEBP")
    max_dimensions: tuple[int, int] | None = field(default_factory=_default_max_dimensions)


@dataclass(frozen=True)
class LoadedImage:
    """Container with normalized image data plus metadata."""

    raster: RasterImage
    raw_bytes: bytes
    format: str
    width: int
    height: int
    sha256: str
    source_path: Path | None = None


class ImageLoaderError(ValueError):
    """Raised when the loader encounters invalid input."""


def load_image(
    source: str | Path | bytes | BinaryIO,
    *,
    config: ImageLoaderConfig | None = None,
) -> LoadedImage:
    """Load and normalize an upload from disk, bytes, or file-like source."""

    cfg = config or ImageLoaderConfig()
    raw_bytes, source_path = _read_source(source, cfg.max_bytes)

    try:
        with Image.open(BytesIO(raw_bytes)) as img:
            original_format = (img.format or "").upper()
            if cfg.allowed_formats and original_format not in cfg.allowed_formats:
                raise ImageLoaderError(
                    f"Unsupported image format '{original_format or 'unknown'}'; "
                    f"expected one of {cfg.allowed_formats}"
                )

            normalized = _flatten(ImageOps.exif_transpose(img))
            if cfg.max_dimensions:
                normalized = _fit_within(normalized, cfg.max_dimensions)
            normalized.load()
    except (Image.UnidentifiedImageError, OSError) as exc:
        raise ImageLoaderError("Unable to decode image data") from exc

    digest = sha256(raw_bytes).hexdigest()
    return LoadedImage(
        raster=RasterImage(normalized),
        raw_bytes=raw_bytes,
        format=original_format or "",
        width=normalized.width,
        height=normalized.height,
        sha256=digest,
        source_path=source_path,
    )


def _fit_within(img: Image.Image, max_dimensions: tuple[int, int]) -> Image.Image:
    """Shrink to fit ``max_dimensions`` keeping the aspect ratio; never smooths."""

    max_w, max_h = max_dimensions
    if img.width <= max_w and img.height <= max_h:
        return img
    ratio = min(max_w / img.width, max_h / img.height)
    size = (max(1, int(img.width * ratio)), max(1, int(img.height * ratio)))
    return img.resize(size, Image.Resampling.NEAREST)


def _flatten(img: Image.Image) -> Image.Image:
    """Convert to RGB, compositing transparent pixels onto white."""

    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")
    return img.convert("RGB")


def _read_source(source: str | Path | bytes | BinaryIO, max_bytes: int) -> tuple[bytes, Path | None]:
    if isinstance(source, (str, Path)):
        path = Path(source)
        data = path.read_bytes()
        return _validate_size(data, max_bytes), path

    if isinstance(source, bytes):
        return _validate_size(source, max_bytes), None

    if hasattr(source, "read"):
        data = source.read()
        if isinstance(data, str):  # pragma: no cover
            data = data.encode()
        return _validate_size(data, max_bytes), None

    raise ImageLoaderError(f"Unsupported source type: {type(source)!r}")


def _validate_size(data: bytes, max_bytes: int) -> bytes:
    if len(data) > max_bytes:
        raise ImageLoaderError(
            f"Image payload exceeds {max_bytes} bytes (received {len(data)} bytes)"
        )
    return data
