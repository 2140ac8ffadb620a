"""Manual region selection fallback after automatic recovery fails."""
from __future__ import annotations

import logging
import math
import threading
from collections import OrderedDict
from uuid import uuid4

from ..enums import FailureReason
from .models import CropRectangle, Failure, PipelineResult, RasterImage
from .pipeline import INTERNAL_MESSAGE, RecoveryPipeline
from .preprocessing import crop_tile
from .run_context import RunContext
from .tracking_config import TrackingIdConfig, load_tracking_id_config

logger = logging.getLogger(__name__)

CROP_FAILED_MESSAGE = "The selected area could not be read. Try selecting a clearer area."


class CropSessionConsumedError(RuntimeError):
    """Raised when a crop session receives a second submission."""


class InvalidCropError(ValueError):
    """Raised when a crop rectangle has no area or lies outside the image."""


class ManualCropSession:
    """Holds one image and accepts exactly one crop submission.

    Rectangles arrive in display pixels (the size the image was shown at) and
    are mapped to natural pixels before cropping. Retrying needs a new session
    from :meth:`renew`.
    """

    def __init__(self, image: RasterImage, *, display_size: tuple[int, int] | None = None) -> None:
        self.image = image
        self.display_size = display_size or image.size
        self.session_id = uuid4().hex
        self._consumed = False
        self._lock = threading.Lock()

    @property
    def consumed(self) -> bool:
        return self._consumed

    def to_natural(
        self,
        rectangle: CropRectangle,
        display_size: tuple[int, int] | None = None,
    ) -> tuple[int, int, int, int]:
        display_w, display_h = display_size or self.display_size
        if display_w <= 0 or display_h <= 0:
            raise InvalidCropError(f"Invalid display size {display_w}x{display_h}")
        if rectangle.width <= 0 or rectangle.height <= 0:
            raise InvalidCropError("Crop rectangle must have a positive width and height")

        scale_x = self.image.width / display_w
        scale_y = self.image.height / display_h
        x = max(0, math.floor(rectangle.x * scale_x))
        y = max(0, math.floor(rectangle.y * scale_y))
        if x >= self.image.width or y >= self.image.height:
            raise InvalidCropError("Crop rectangle lies outside the image")
        width = min(self.image.width - x, max(1, math.floor(rectangle.width * scale_x)))
        height = min(self.image.height - y, max(1, math.floor(rectangle.height * scale_y)))
        return x, y, width, height

    def submit(
        self,
        rectangle: CropRectangle,
        *,
        pipeline: RecoveryPipeline | None = None,
        config: TrackingIdConfig | None = None,
        context: RunContext | None = None,
        display_size: tuple[int, int] | None = None,
    ) -> PipelineResult:
        box = self.to_natural(rectangle, display_size)
        with self._lock:
            if self._consumed:
                raise CropSessionConsumedError(f"Crop session {self.session_id} was already submitted")
            self._consumed = True

        pipeline = pipeline or RecoveryPipeline()
        ctx = context or RunContext.from_settings()
        try:
            cfg = config or load_tracking_id_config()
            region = crop_tile(self.image, *box)
            logger.info("Reading manual crop %s of %dx%d image", box, self.image.width, self.image.height)
            found = pipeline.recover_region(region, cfg, ctx)
        except Exception:
            logger.exception("Unexpected failure while reading manual crop")
            return Failure(INTERNAL_MESSAGE, FailureReason.INTERNAL_ERROR)
        if found:
            return found
        reason = ctx.stop_reason or FailureReason.NOT_FOUND
        return Failure(CROP_FAILED_MESSAGE, reason)

    def renew(self) -> "ManualCropSession":
        return ManualCropSession(self.image, display_size=self.display_size)


def submit_crop(session: ManualCropSession, rectangle: CropRectangle, **kwargs) -> PipelineResult:
    return session.submit(rectangle, **kwargs)


class CropSessionStore:
    """In-memory registry of open crop sessions, oldest evicted first."""

    def __init__(self, max_sessions: int = 256) -> None:
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, ManualCropSession] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, session: ManualCropSession) -> str:
        with self._lock:
            self._sessions[session.session_id] = session
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("Evicted crop session %s", evicted)
        return session.session_id

    def get(self, session_id: str) -> ManualCropSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
