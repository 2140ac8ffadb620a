"""Background worker that runs queued uploads through the recovery pipeline."""
from __future__ import annotations

import logging
import queue
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from .ocr.models import PipelineResult
from .ocr.pipeline import RecoveryPipeline
from .ocr.run_context import RunContext
from .settings import settings

logger = logging.getLogger(__name__)


class GenerationRegistry:
    """Tracks the newest upload per client so stale runs cannot publish results.

    Only the ``max_clients`` most recently active clients are remembered; the
    least recently active one is forgotten together with its stored result.
    """

    def __init__(self, max_clients: int | None = None) -> None:
        self.max_clients = max_clients or settings.max_tracked_clients
        self._lock = threading.Lock()
        self._generations: OrderedDict[str, int] = OrderedDict()
        self._results: dict[str, tuple[int, PipelineResult]] = {}

    def next_generation(self, client_id: str) -> int:
        with self._lock:
            generation = self._generations.get(client_id, 0) + 1
            self._generations[client_id] = generation
            self._generations.move_to_end(client_id)
            while len(self._generations) > self.max_clients:
                evicted, _ = self._generations.popitem(last=False)
                self._results.pop(evicted, None)
                logger.debug("Forgot idle client %s", evicted)
            return generation

    def current(self, client_id: str) -> int:
        with self._lock:
            return self._generations.get(client_id, 0)

    def is_current(self, client_id: str, generation: int) -> bool:
        return self.current(client_id) == generation

    def commit(self, client_id: str, generation: int, result: PipelineResult, *, retain: bool = True) -> bool:
        """Accept ``result`` only if ``generation`` is still current; store it when ``retain``."""

        with self._lock:
            if self._generations.get(client_id, 0) != generation:
                return False
            if retain:
                self._results[client_id] = (generation, result)
            else:
                self._results.pop(client_id, None)
            return True

    def latest(self, client_id: str) -> tuple[int, PipelineResult] | None:
        with self._lock:
            return self._results.get(client_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._generations)


@dataclass
class WorkerState:
    running: bool = False
    processed_jobs: int = 0
    discarded_jobs: int = 0
    last_heartbeat: Optional[float] = None
    last_result_preview: Optional[dict[str, object]] = None
    thread: Optional[threading.Thread] = field(default=None, repr=False, compare=False)


@dataclass
class RecoveryJob:
    client_id: str
    generation: int
    payload: bytes = field(repr=False)
    mime_type: Optional[str] = None


_state = WorkerState()
_state_lock = threading.Lock()
_stop_event = threading.Event()
_job_queue: "queue.Queue[Optional[RecoveryJob]]" = queue.Queue()
_registry = GenerationRegistry()
_pipeline: Optional[RecoveryPipeline] = None


def _worker_loop(poll_interval: float = 5.0) -> None:
    logger.info("Worker loop started")
    global _pipeline
    if _pipeline is None:
        _pipeline = RecoveryPipeline()

    while not _stop_event.is_set():
        try:
            job = _job_queue.get(timeout=poll_interval)
        except queue.Empty:
            _state.last_heartbeat = time.time()
            continue

        try:
            if job is not None:
                process_recovery_job(job)
        except Exception as exc:  # pragma: no cover - log unexpected failures
            logger.exception("Failed processing job %s", job, exc_info=exc)
        finally:
            _job_queue.task_done()

    logger.info("Worker loop exiting")


def _count(counter: str) -> None:
    with _state_lock:
        setattr(_state, counter, getattr(_state, counter) + 1)


def process_recovery_job(
    job: RecoveryJob,
    *,
    pipeline: RecoveryPipeline | None = None,
    registry: GenerationRegistry | None = None,
    retain: bool = True,
) -> PipelineResult | None:
    """Run one job; returns ``None`` when a newer upload superseded it.

    With ``retain=False`` the result is only returned, not kept for
    ``/pipeline/result`` polling.
    """

    if registry is None:
        registry = _registry
    pipeline = pipeline or _pipeline
    if pipeline is None:
        logger.warning("Pipeline not initialized; skipping job")
        return None

    if not registry.is_current(job.client_id, job.generation):
        logger.info("Skipping superseded upload %s#%d", job.client_id, job.generation)
        _count("discarded_jobs")
        return None

    context = RunContext.from_settings(
        is_current=lambda: registry.is_current(job.client_id, job.generation)
    )
    result = pipeline.run(job.payload, job.mime_type, context=context)
    if not registry.commit(job.client_id, job.generation, result, retain=retain):
        logger.info("Discarding stale result for %s#%d", job.client_id, job.generation)
        _count("discarded_jobs")
        return None

    preview = {
        "client_id": job.client_id,
        "generation": job.generation,
        "result": type(result).__name__,
    }
    with _state_lock:
        _state.processed_jobs += 1
        _state.last_result_preview = preview
        _state.last_heartbeat = time.time()
    logger.info("Processed %s", preview)
    return result


def enqueue_recovery_job(client_id: str, payload: bytes, mime_type: str | None = None) -> int:
    """Queue an upload; any earlier upload from the same client becomes stale."""

    generation = _registry.next_generation(client_id)
    _job_queue.put(RecoveryJob(client_id=client_id, generation=generation, payload=payload, mime_type=mime_type))
    return generation


def latest_result(client_id: str) -> tuple[int, PipelineResult] | None:
    return _registry.latest(client_id)


def current_generation(client_id: str) -> int:
    return _registry.current(client_id)


def start_worker(pipeline: RecoveryPipeline | None = None) -> WorkerState:
    global _pipeline
    if _state.running:
        return _state
    if pipeline is not None:
        _pipeline = pipeline

    thread = threading.Thread(target=_worker_loop, name="trackrecover-worker", daemon=True)
    _stop_event.clear()
    thread.start()

    _state.running = True
    _state.thread = thread
    _state.last_heartbeat = time.time()
    return _state


def stop_worker() -> None:
    if not _state.running:
        return
    _stop_event.set()
    _job_queue.put(None)  # unblock queue
    if _state.thread and _state.thread.is_alive():
        _state.thread.join(timeout=5)
    _state.running = False
    _state.thread = None


def get_worker_state() -> WorkerState:
    return _state


def get_registry() -> GenerationRegistry:
    return _registry
