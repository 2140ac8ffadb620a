"""Value types shared by the recovery pipeline stages."""
from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import Union

from PIL import Image

from ..enums import FailureReason


@dataclass(frozen=True)
class RasterImage:
    """Immutable wrapper around a Pillow image.

    Every transform returns a new ``RasterImage``; the wrapped image is never
    modified after construction.
    """

    image: Image.Image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def mode(self) -> str:
        return self.image.mode

    def copy(self) -> "RasterImage":
        return RasterImage(self.image.copy())

    def to_png_bytes(self) -> bytes:
        buffer = BytesIO()
        self.image.save(buffer, "PNG")
        return buffer.getvalue()


@dataclass(frozen=True)
class SearchCandidate:
    """A rendering tried by the search engine, tagged with its transform chain."""

    scale: float = 1
    angle: int = 0
    tile: tuple[int, int, int, int] | None = None
    grid: int | None = None
    variant: str = "original"

    def describe(self) -> str:
        parts = [f"scale={self.scale:g}", f"angle={self.angle}"]
        if self.tile is not None:
            parts.append(f"grid={self.grid} tile={self.tile}")
        parts.append(f"variant={self.variant}")
        return " ".join(parts)


@dataclass(frozen=True)
class Decoded:
    text: str


@dataclass(frozen=True)
class NotFound:
    pass


DecodeOutcome = Union[Decoded, NotFound]
NOT_FOUND = NotFound()


@dataclass(frozen=True)
class CropRectangle:
    """User-selected region in display pixel space."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Success:
    tracking_id: str
    method: str = ""
    message: str = "Tracking number recovered."


@dataclass(frozen=True)
class NeedsManualCrop:
    image: RasterImage = field(repr=False)
    message: str

    def open_session(self, display_size: tuple[int, int] | None = None):
        from .crop import ManualCropSession

        return ManualCropSession(self.image, display_size=display_size)


@dataclass(frozen=True)
class Failure:
    message: str
    reason: FailureReason = FailureReason.NOT_FOUND


PipelineResult = Union[Success, NeedsManualCrop, Failure]
