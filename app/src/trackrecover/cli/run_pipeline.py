"""CLI to run the recovery pipeline against files, a directory or a manifest."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable

from ..ocr.dataset import UploadSample, discover_samples, load_manifest
from ..ocr.models import Failure, NeedsManualCrop, PipelineResult, Success
from ..ocr.pipeline import RecoveryPipeline
from ..ocr.tracking_config import TrackingIdConfig, load_tracking_id_config


def collect_samples(inputs: Iterable[Path]) -> list[UploadSample]:
    samples: list[UploadSample] = []
    for path in inputs:
        if path.is_dir():
            samples.extend(discover_samples(path))
        elif path.suffix.lower() in {".yaml", ".yml"}:
            samples.extend(load_manifest(path))
        else:
            samples.append(UploadSample(path=path.resolve()))
    return samples


def describe_result(sample: UploadSample, result: PipelineResult) -> dict[str, object]:
    row: dict[str, object] = {"file": str(sample.path), "status": type(result).__name__}
    if isinstance(result, Success):
        row["tracking_id"] = result.tracking_id
        row["method"] = result.method
    elif isinstance(result, NeedsManualCrop):
        row["message"] = result.message
        row["image_size"] = [result.image.width, result.image.height]
    elif isinstance(result, Failure):
        row["reason"] = result.reason.value
        row["message"] = result.message
    if sample.expected_id:
        row["expected_id"] = sample.expected_id
        row["hit"] = isinstance(result, Success) and result.tracking_id == sample.expected_id
    if sample.note:
        row["note"] = sample.note
    return row


def run_samples(
    samples: Iterable[UploadSample],
    *,
    pipeline: RecoveryPipeline | None = None,
    config: TrackingIdConfig | None = None,
) -> list[dict[str, object]]:
    pipeline = pipeline or RecoveryPipeline()
    rows: list[dict[str, object]] = []
    for sample in samples:
        result = pipeline.run(sample.read(), sample.resolved_mime_type, config=config or load_tracking_id_config())
        rows.append(describe_result(sample, result))
    return rows


def main() -> None:  # pragma: no cover - thin CLI
    parser = argparse.ArgumentParser(description="Recover tracking numbers from receipt uploads")
    parser.add_argument("inputs", type=Path, nargs="+", help="Files, directories or YAML manifests")
    parser.add_argument("--limit", type=int, default=None, help="Optional limit on number of samples")
    parser.add_argument("--prefix", default=None, help="Override the tracking number prefix")
    parser.add_argument("--date-digits", type=int, choices=(6, 8), default=None, help="Override the date width")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = None
    if args.prefix or args.date_digits:
        base = load_tracking_id_config()
        config = TrackingIdConfig(
            prefix=args.prefix or base.prefix,
            date_digits=args.date_digits or base.date_digits,
        )

    samples = collect_samples(args.inputs)
    if args.limit is not None:
        samples = samples[: args.limit]

    for row in run_samples(samples, config=config):
        print(json.dumps(row, ensure_ascii=False))


if __name__ == "__main__":
    main()
