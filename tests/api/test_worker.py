from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from uuid import uuid4

from PIL import Image

from trackrecover.enums import FailureReason
from trackrecover.ocr.models import NOT_FOUND, Decoded, Failure, Success
from trackrecover.ocr.pipeline import RecoveryPipeline
from trackrecover.ocr.search import GeometricSearchEngine
from trackrecover.ocr.text_extractor import NoopTextExtractor
from trackrecover.worker import (
    GenerationRegistry,
    RecoveryJob,
    enqueue_recovery_job,
    get_worker_state,
    latest_result,
    process_recovery_job,
    start_worker,
    stop_worker,
)


def _make_image_bytes(size=(60, 60), color=(255, 255, 255), fmt="PNG") -> bytes:
    image = Image.new("RGB", size, color)
    buffer = BytesIO()
    image.save(buffer, fmt)
    return buffer.getvalue()


class ScriptedEngine(GeometricSearchEngine):
    def __init__(self, outcome=NOT_FOUND) -> None:
        self.outcome = outcome
        self.calls = 0

    def search(self, image, *, context=None, trace=None):
        self.calls += 1
        if callable(self.outcome):
            return self.outcome(image)
        return self.outcome


def _pipeline(engine: ScriptedEngine) -> RecoveryPipeline:
    return RecoveryPipeline(search_engine=engine, text_extractor=NoopTextExtractor())


def test_registry_rejects_stale_commits() -> None:
    registry = GenerationRegistry()
    first = registry.next_generation("kiosk")
    second = registry.next_generation("kiosk")
    assert (first, second) == (1, 2)
    assert registry.is_current("kiosk", second)

    assert not registry.commit("kiosk", first, Failure("late"))
    assert registry.latest("kiosk") is None
    assert registry.commit("kiosk", second, Failure("fresh"))
    assert registry.latest("kiosk") == (2, Failure("fresh"))
    assert registry.current("other") == 0


def test_job_commits_result() -> None:
    registry = GenerationRegistry()
    job = RecoveryJob("kiosk", registry.next_generation("kiosk"), _make_image_bytes(), "image/png")
    result = process_recovery_job(
        job, pipeline=_pipeline(ScriptedEngine(Decoded("ALF-20250101-AB12CD"))), registry=registry
    )
    assert result == Success(tracking_id="ALF-20250101-AB12CD", method="symbol")
    assert registry.latest("kiosk") == (1, result)


def test_superseded_job_is_skipped() -> None:
    registry = GenerationRegistry()
    stale = RecoveryJob("kiosk", registry.next_generation("kiosk"), _make_image_bytes(), "image/png")
    registry.next_generation("kiosk")
    engine = ScriptedEngine()

    assert process_recovery_job(stale, pipeline=_pipeline(engine), registry=registry) is None
    assert engine.calls == 0


def test_job_superseded_mid_run_never_publishes() -> None:
    registry = GenerationRegistry()
    job = RecoveryJob("kiosk", registry.next_generation("kiosk"), _make_image_bytes(), "image/png")

    def newer_upload_arrives(image):
        registry.next_generation("kiosk")
        return Decoded("ALF-20250101-AB12CD")

    # Even a successful decode is dropped once a newer upload exists.
    assert process_recovery_job(job, pipeline=_pipeline(ScriptedEngine(newer_upload_arrives)), registry=registry) is None
    assert registry.latest("kiosk") is None


def test_cancelled_run_reports_cancellation_reason() -> None:
    registry = GenerationRegistry()
    job = RecoveryJob("kiosk", registry.next_generation("kiosk"), _make_image_bytes(), "image/png")
    seen: list[Failure] = []

    class SpyPipeline(RecoveryPipeline):
        def run(self, payload, mime_type, *, config=None, context=None):
            registry.next_generation("kiosk")
            result = super().run(payload, mime_type, config=config, context=context)
            seen.append(result)
            return result

    spy = SpyPipeline(search_engine=ScriptedEngine(), text_extractor=NoopTextExtractor())
    assert process_recovery_job(job, pipeline=spy, registry=registry) is None
    assert seen[0].reason is FailureReason.CANCELLED


def test_background_worker_processes_queue() -> None:
    client_id = f"kiosk-{uuid4().hex}"
    start_worker(pipeline=_pipeline(ScriptedEngine(Decoded("ALF-20250101-AB12CD"))))
    try:
        generation = enqueue_recovery_job(client_id, _make_image_bytes(), "image/png")
        deadline = time.monotonic() + 10
        while latest_result(client_id) is None and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        stop_worker()

    assert latest_result(client_id) == (generation, Success(tracking_id="ALF-20250101-AB12CD", method="symbol"))
    assert get_worker_state().running is False


def test_registry_forgets_least_recent_clients() -> None:
    registry = GenerationRegistry(max_clients=3)
    for index in range(5):
        client = f"kiosk-{index}"
        registry.commit(client, registry.next_generation(client), Failure("done"))

    assert len(registry) == 3
    assert registry.current("kiosk-0") == 0
    assert registry.latest("kiosk-0") is None
    assert registry.latest("kiosk-1") is None
    assert registry.latest("kiosk-4") == (1, Failure("done"))


def test_registry_keeps_recently_active_client() -> None:
    registry = GenerationRegistry(max_clients=2)
    registry.next_generation("kiosk-a")
    registry.next_generation("kiosk-b")
    registry.next_generation("kiosk-a")
    registry.next_generation("kiosk-c")

    assert registry.current("kiosk-a") == 2
    assert registry.current("kiosk-b") == 0


def test_unretained_result_is_returned_but_not_kept() -> None:
    registry = GenerationRegistry()
    pipeline = _pipeline(ScriptedEngine(Decoded("ALF-20250101-AB12CD")))
    first = RecoveryJob("kiosk", registry.next_generation("kiosk"), _make_image_bytes(), "image/png")
    assert isinstance(process_recovery_job(first, pipeline=pipeline, registry=registry), Success)
    assert registry.latest("kiosk") is not None

    second = RecoveryJob("kiosk", registry.next_generation("kiosk"), _make_image_bytes(), "image/png")
    result = process_recovery_job(second, pipeline=pipeline, registry=registry, retain=False)
    assert result == Success(tracking_id="ALF-20250101-AB12CD", method="symbol")
    # The older retained result is dropped too; it no longer describes the latest upload.
    assert registry.latest("kiosk") is None


def test_concurrent_jobs_are_all_counted() -> None:
    registry = GenerationRegistry()
    pipeline = _pipeline(ScriptedEngine(Decoded("ALF-20250101-AB12CD")))
    payload = _make_image_bytes()
    jobs = [
        RecoveryJob(f"kiosk-{index}", registry.next_generation(f"kiosk-{index}"), payload, "image/png")
        for index in range(40)
    ]
    before = get_worker_state().processed_jobs

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda job: process_recovery_job(job, pipeline=pipeline, registry=registry), jobs))

    assert all(isinstance(result, Success) for result in results)
    assert get_worker_state().processed_jobs - before == 40
