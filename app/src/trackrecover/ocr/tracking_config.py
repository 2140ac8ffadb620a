"""Operator-editable tracking identifier format, persisted as YAML."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from ..settings import settings

logger = logging.getLogger(__name__)


class TrackingIdConfig(BaseModel):
    """Prefix and date width of issued tracking numbers (e.g. ``ALF-20250101-AB12``)."""

    model_config = {"frozen": True}

    prefix: str = "ALF"
    date_digits: Literal[6, 8] = 8

    @field_validator("prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = value.strip().upper()
        if not value or not value.isascii() or not value.isalnum():
            raise ValueError("prefix must be a non-empty ASCII alphanumeric string")
        return value


def default_tracking_id_config() -> TrackingIdConfig:
    return TrackingIdConfig(
        prefix=settings.tracking_id_prefix,
        date_digits=settings.tracking_id_date_digits,
    )


def load_tracking_id_config(path: str | Path | None = None) -> TrackingIdConfig:
    """Read the persisted config afresh; fall back to defaults when absent or invalid."""

    config_path = Path(path or settings.tracking_config_path)
    if not config_path.is_file():
        return default_tracking_id_config()

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"expected a mapping, got {type(data).__name__}")
        defaults = default_tracking_id_config()
        return TrackingIdConfig(
            prefix=data.get("prefix", defaults.prefix),
            date_digits=data.get("date_digits", defaults.date_digits),
        )
    except (OSError, yaml.YAMLError, ValueError, ValidationError) as exc:
        logger.warning("Ignoring invalid tracking id config %s: %s", config_path, exc)
        return default_tracking_id_config()


def save_tracking_id_config(config: TrackingIdConfig, path: str | Path | None = None) -> Path:
    config_path = Path(path or settings.tracking_config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        yaml.safe_dump({"prefix": config.prefix, "date_digits": config.date_digits}),
        encoding="utf-8",
    )
    return config_path
