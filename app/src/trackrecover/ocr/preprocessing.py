"""Pure pixel transforms used to generate alternate renderings of an upload.

All functions return a new ``RasterImage`` and never touch their input.
Resampling is always nearest-neighbour: smoothing blurs the module edges that
symbol decoders rely on.
"""
from __future__ import annotations

import math
from typing import Callable, Iterator

import numpy as np
from PIL import Image, ImageOps

from .models import RasterImage

THRESHOLD_LEVELS: tuple[int, ...] = (180, 160, 140, 120)
RIGHT_ANGLES: tuple[int, ...] = (0, 90, 180, 270)

# Clockwise canvas rotation expressed as Pillow transposes (which rotate counter-clockwise).
_CLOCKWISE_TRANSPOSE = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}

PixelPredicate = Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]


def scale(image: RasterImage, factor: float) -> RasterImage:
    if factor == 1:
        return image
    if factor <= 0:
        raise ValueError(f"Scale factor must be positive, got {factor}")
    width = max(1, math.floor(image.width * factor + 0.5))
    height = max(1, math.floor(image.height * factor + 0.5))
    return RasterImage(image.image.resize((width, height), Image.Resampling.NEAREST))


def rotate(image: RasterImage, angle: int) -> RasterImage:
    """Rotate clockwise by a right angle; 90/270 swap width and height."""

    angle %= 360
    if angle == 0:
        return image
    if angle not in _CLOCKWISE_TRANSPOSE:
        raise ValueError(f"Only right-angle rotations are supported, got {angle}")
    return RasterImage(image.image.transpose(_CLOCKWISE_TRANSPOSE[angle]))


def crop_tile(image: RasterImage, x: int, y: int, width: int, height: int) -> RasterImage:
    """Pixel-exact rectangular extraction clamped to the image bounds."""

    left = min(max(0, int(x)), image.width - 1)
    top = min(max(0, int(y)), image.height - 1)
    right = min(image.width, left + max(1, int(width)))
    bottom = min(image.height, top + max(1, int(height)))
    return RasterImage(image.image.crop((left, top, right, bottom)))


def tile_boxes(width: int, height: int, grid: int, overlap: float = 0.1) -> list[tuple[int, int, int, int]]:
    """Row-major ``(x, y, w, h)`` boxes of a ``grid x grid`` partition, each grown by ``overlap``."""

    tile_w = width // grid
    tile_h = height // grid
    boxes: list[tuple[int, int, int, int]] = []
    for row in range(grid):
        for col in range(grid):
            x = max(0, math.floor(col * tile_w - tile_w * overlap))
            y = max(0, math.floor(row * tile_h - tile_h * overlap))
            w = min(width - x, math.floor(tile_w * (1 + 2 * overlap)))
            h = min(height - y, math.floor(tile_h * (1 + 2 * overlap)))
            if w > 0 and h > 0:
                boxes.append((x, y, w, h))
    return boxes


def luminance(image: RasterImage) -> RasterImage:
    # Pillow's "L" conversion uses the ITU-R 601-2 weights 0.299/0.587/0.114.
    if image.mode == "L":
        return image
    return RasterImage(image.image.convert("RGB").convert("L"))


def grayscale_contrast_stretch(image: RasterImage) -> RasterImage:
    gray = np.asarray(luminance(image).image, dtype=np.float32)
    low, high = float(gray.min()), float(gray.max())
    spread = max(1.0, high - low)
    stretched = np.clip(np.rint((gray - low) * 255.0 / spread), 0, 255).astype(np.uint8)
    return RasterImage(Image.fromarray(stretched))


def threshold(image: RasterImage, level: int) -> RasterImage:
    gray = luminance(image)
    return RasterImage(gray.image.point(lambda value: 255 if value > level else 0))


def invert(image: RasterImage) -> RasterImage:
    return RasterImage(ImageOps.invert(luminance(image).image))


def is_magenta(red: np.ndarray, green: np.ndarray, blue: np.ndarray) -> np.ndarray:
    """Pink/magenta ink such as the ``#d63384`` used for printed tracking numbers."""

    return (
        (red > 150)
        & (blue > 70)
        & (green < 140)
        & (red - green > 40)
        & (blue - green > 10)
        & (red >= blue)
    )


def color_mask(image: RasterImage, predicate: PixelPredicate = is_magenta) -> RasterImage:
    """Paint matching pixels black and everything else white."""

    rgb = np.asarray(image.image.convert("RGB"), dtype=np.int16)
    matched = predicate(rgb[..., 0], rgb[..., 1], rgb[..., 2])
    mask = np.where(matched, 0, 255).astype(np.uint8)
    return RasterImage(Image.fromarray(mask))


def preprocess_variants(image: RasterImage) -> Iterator[tuple[str, RasterImage]]:
    """Lazily yield the contrast stretch plus the nine threshold and inversion renderings.

    Order: contrast stretch, each threshold level followed by its inversion,
    then the inverted grayscale image.
    """

    gray = luminance(image)
    yield "stretch", grayscale_contrast_stretch(gray)
    for level in THRESHOLD_LEVELS:
        binary = threshold(gray, level)
        yield f"threshold-{level}", binary
        yield f"threshold-{level}-inverted", invert(binary)
    yield "inverted", invert(gray)
