"""Application settings modeled via Pydantic."""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    tracking_config_path: str = Field("tracking_id.yaml", alias="TRACKING_CONFIG_PATH")
    tracking_id_prefix: str = Field("ALF", alias="TRACKING_ID_PREFIX")
    tracking_id_date_digits: int = Field(8, alias="TRACKING_ID_DATE_DIGITS")
    max_upload_bytes: int = Field(20 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")
    max_image_side: int = Field(0, alias="MAX_IMAGE_SIDE")
    max_document_pages: int = Field(5, alias="MAX_DOCUMENT_PAGES")
    manual_crop_render_scale: float = Field(4, alias="MANUAL_CROP_RENDER_SCALE")
    ocr_languages: str = Field("ara+eng", alias="OCR_LANGUAGES")
    run_timeout_seconds: float = Field(120, alias="RUN_TIMEOUT_SECONDS")
    search_max_candidates: int = Field(5000, alias="SEARCH_MAX_CANDIDATES")
    search_max_pixels: int = Field(36_000_000, alias="SEARCH_MAX_PIXELS")
    search_workers: int = Field(1, alias="SEARCH_WORKERS")
    max_tracked_clients: int = Field(1024, alias="MAX_TRACKED_CLIENTS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
