"""Shared enumeration types for the recovery pipeline."""
from __future__ import annotations

from enum import Enum


class InputKind(str, Enum):
    RASTER = "raster"
    PAGINATED = "paginated"
    UNSUPPORTED = "unsupported"


class FailureReason(str, Enum):
    UNSUPPORTED_TYPE = "unsupported_type"
    UNREADABLE_INPUT = "unreadable_input"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    NEEDS_MANUAL_CROP = "needs_manual_crop"
    FAILURE = "failure"
