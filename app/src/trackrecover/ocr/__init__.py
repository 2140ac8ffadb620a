"""Tracking number recovery toolkit exports."""
from .crop import CropSessionStore, ManualCropSession, submit_crop
from .identifier import extract_id
from .models import (
    CropRectangle,
    Decoded,
    Failure,
    NeedsManualCrop,
    NotFound,
    PipelineResult,
    RasterImage,
    Success,
)
from .pipeline import RecoveryPipeline, run_pipeline
from .search import GeometricSearchEngine
from .tracking_config import TrackingIdConfig, load_tracking_id_config

__all__ = [
    "CropRectangle",
    "CropSessionStore",
    "Decoded",
    "Failure",
    "GeometricSearchEngine",
    "ManualCropSession",
    "NeedsManualCrop",
    "NotFound",
    "PipelineResult",
    "RasterImage",
    "RecoveryPipeline",
    "Success",
    "TrackingIdConfig",
    "extract_id",
    "load_tracking_id_config",
    "run_pipeline",
    "submit_crop",
]
