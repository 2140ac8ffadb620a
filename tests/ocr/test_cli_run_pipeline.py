from __future__ import annotations

import json
from io import BytesIO

from PIL import Image

from trackrecover.cli import run_pipeline as cli
from trackrecover.ocr.dataset import UploadSample
from trackrecover.ocr.models import NOT_FOUND, Decoded
from trackrecover.ocr.pipeline import RecoveryPipeline
from trackrecover.ocr.search import GeometricSearchEngine
from trackrecover.ocr.text_extractor import NoopTextExtractor


def _make_image_bytes(size=(100, 50), color=(100, 50, 200), fmt="PNG") -> bytes:
    image = Image.new("RGB", size, color)
    buffer = BytesIO()
    image.save(buffer, fmt)
    return buffer.getvalue()


class ScriptedEngine(GeometricSearchEngine):
    def __init__(self, outcome=NOT_FOUND) -> None:
        self.outcome = outcome

    def search(self, image, *, context=None, trace=None):
        return self.outcome


def _stub_pipeline(outcome=NOT_FOUND) -> RecoveryPipeline:
    return RecoveryPipeline(search_engine=ScriptedEngine(outcome), text_extractor=NoopTextExtractor())


def test_run_samples_reports_hits(tmp_path) -> None:
    hit = tmp_path / "hit.png"
    hit.write_bytes(_make_image_bytes())
    samples = [
        UploadSample(path=hit, expected_id="ALF-20250101-AB12CD", note="clean photo"),
        UploadSample(path=tmp_path / "notes.txt", mime_type="text/plain"),
    ]
    (tmp_path / "notes.txt").write_text("not an upload")

    rows = cli.run_samples(samples, pipeline=_stub_pipeline(Decoded("ALF-20250101-AB12CD")))

    assert rows[0]["status"] == "Success"
    assert rows[0]["tracking_id"] == "ALF-20250101-AB12CD"
    assert rows[0]["hit"] is True
    assert rows[0]["note"] == "clean photo"
    assert rows[1]["status"] == "Failure"
    assert rows[1]["reason"] == "unsupported_type"
    assert "hit" not in rows[1]


def test_collect_samples_from_mixed_inputs(tmp_path) -> None:
    folder = tmp_path / "uploads"
    folder.mkdir()
    (folder / "a.png").write_bytes(_make_image_bytes())
    single = tmp_path / "single.jpg"
    single.write_bytes(_make_image_bytes(fmt="JPEG"))

    samples = cli.collect_samples([folder, single])
    assert [sample.path.name for sample in samples] == ["a.png", "single.jpg"]


def test_run_pipeline_cli(tmp_path, monkeypatch, capsys):
    sample_dir = tmp_path / "receipts"
    sample_dir.mkdir()
    (sample_dir / "receipt_photo.png").write_bytes(_make_image_bytes())
    (sample_dir / "second.png").write_bytes(_make_image_bytes())

    manifest = sample_dir / "manifest.yaml"
    manifest.write_text(
        """
        samples:
          - file: receipt_photo.png
            expected_id: ALF-20250101-AB12CD
          - file: second.png
        """.strip()
    )

    monkeypatch.setattr(cli, "RecoveryPipeline", lambda: _stub_pipeline())
    monkeypatch.setattr("sys.argv", ["program", str(manifest), "--limit", "1", "--prefix", "req"])

    cli.main()
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    row = json.loads(lines[0])
    assert row["file"].endswith("receipt_photo.png")
    assert row["status"] == "NeedsManualCrop"
    assert row["image_size"] == [100, 50]
    assert row["hit"] is False
