"""Per-run wall-clock budget and staleness check."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from ..enums import FailureReason
from ..settings import settings


@dataclass
class RunContext:
    """Shared by every stage of one orchestrator run.

    ``is_current`` is polled to find out whether a newer run for the same
    client superseded this one; when it returns ``False`` the run is abandoned.
    """

    timeout_seconds: float | None = None
    is_current: Callable[[], bool] | None = None
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_settings(cls, *, is_current: Callable[[], bool] | None = None) -> "RunContext":
        return cls(timeout_seconds=settings.run_timeout_seconds, is_current=is_current)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def expired(self) -> bool:
        return self.timeout_seconds is not None and self.elapsed >= self.timeout_seconds

    @property
    def cancelled(self) -> bool:
        return self.is_current is not None and not self.is_current()

    @property
    def stop_reason(self) -> FailureReason | None:
        if self.cancelled:
            return FailureReason.CANCELLED
        if self.expired:
            return FailureReason.TIMEOUT
        return None

    def should_stop(self) -> bool:
        return self.stop_reason is not None
