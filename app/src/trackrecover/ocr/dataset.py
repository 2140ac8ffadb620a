"""Utilities for working with sample upload sets."""
from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import yaml


@dataclass(frozen=True)
class UploadSample:
    """A receipt file to run through the pipeline, optionally with its known id."""

    path: Path
    mime_type: str | None = None
    expected_id: str | None = None
    note: str | None = None

    def read(self) -> bytes:
        return self.path.read_bytes()

    @property
    def resolved_mime_type(self) -> str | None:
        return self.mime_type or guess_mime_type(self.path)


def guess_mime_type(path: Path) -> str | None:
    mime, _encoding = mimetypes.guess_type(path.name)
    return mime


def load_manifest(
    manifest_path: str | Path,
    *,
    base_dir: str | Path | None = None,
) -> list[UploadSample]:
    """Load upload samples from a YAML manifest."""

    manifest = Path(manifest_path)
    if not manifest.is_file():
        raise FileNotFoundError(f"Manifest not found: {manifest}")

    base = Path(base_dir) if base_dir else manifest.parent
    data = yaml.safe_load(manifest.read_text()) or {}
    entries: Sequence[dict] = data.get("samples", [])
    samples: list[UploadSample] = []
    for entry in entries:
        file_name = entry.get("file")
        if not file_name:
            continue
        expected = entry.get("expected_id")
        samples.append(
            UploadSample(
                path=(base / file_name).resolve(),
                mime_type=entry.get("mime_type"),
                expected_id=str(expected).upper() if expected else None,
                note=entry.get("note"),
            )
        )
    return samples


def discover_samples(
    directory: str | Path,
    *,
    patterns: Iterable[str] = ("*.png", "*.jpg", "*.jpeg", "*.webp", "*.pdf"),
    note: str | None = None,
) -> list[UploadSample]:
    """Scan a directory for uploads without a manifest."""

    base = Path(directory)
    if not base.is_dir():
        raise NotADirectoryError(f"Sample directory not found: {base}")

    paths: list[Path] = []
    for pattern in patterns:
        paths.extend(sorted(base.glob(pattern)))

    return [UploadSample(path=path.resolve(), note=note) for path in paths]
