"""FastAPI application exposing upload recovery, manual cropping and the worker."""
from __future__ import annotations

import base64
import threading
from collections import OrderedDict
from functools import lru_cache
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .enums import FailureReason, ResultStatus
from .ocr.crop import CropSessionConsumedError, CropSessionStore, InvalidCropError
from .ocr.models import CropRectangle, Failure, NeedsManualCrop, PipelineResult, Success
from .ocr.pipeline import CANCELLED_MESSAGE, RecoveryPipeline
from .settings import settings
from .worker import (
    GenerationRegistry,
    RecoveryJob,
    enqueue_recovery_job,
    get_registry,
    get_worker_state,
    process_recovery_job,
    start_worker,
    stop_worker,
)

app = FastAPI(
    title="Tracking Number Recovery",
    description="Recovers lost tracking numbers from photos and PDFs of receipts.",
    version="0.1.0",
)

_crop_sessions = CropSessionStore()
# client_id -> (generation, result, body); one entry per client, least recently polled first
_published_sessions: "OrderedDict[str, tuple[int, PipelineResult, dict[str, object]]]" = OrderedDict()
_published_lock = threading.Lock()


class CropRequest(BaseModel):
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    display_width: float | None = Field(default=None, gt=0)
    display_height: float | None = Field(default=None, gt=0)


@lru_cache(maxsize=1)
def get_pipeline() -> RecoveryPipeline:
    return RecoveryPipeline()


def get_crop_sessions() -> CropSessionStore:
    return _crop_sessions


def get_generation_registry() -> GenerationRegistry:
    return get_registry()


@app.on_event("startup")
def startup_event() -> None:
    start_worker()


@app.on_event("shutdown")
def shutdown_event() -> None:
    stop_worker()


@app.get("/health", summary="Simple health probe")
def healthcheck() -> dict[str, object]:
    state = get_worker_state()
    return {
        "status": "ok" if state.running else "degraded",
        "processed_jobs": state.processed_jobs,
        "last_heartbeat": state.last_heartbeat,
    }


@app.get("/status/worker", summary="Worker state snapshot")
def worker_status() -> dict[str, object]:
    state = get_worker_state()
    return {
        "running": state.running,
        "processed_jobs": state.processed_jobs,
        "discarded_jobs": state.discarded_jobs,
        "last_heartbeat": state.last_heartbeat,
        "last_result_preview": state.last_result_preview,
    }


@app.post("/api/recover", summary="Recover a tracking number from an uploaded file")
async def recover_upload(
    file: UploadFile = File(...),
    client_id: str | None = Form(None),
    pipeline: RecoveryPipeline = Depends(get_pipeline),
    sessions: CropSessionStore = Depends(get_crop_sessions),
    registry: GenerationRegistry = Depends(get_generation_registry),
) -> dict[str, object]:
    """
    Run the recovery cascade synchronously on one upload.

    Accepts images (PNG, JPEG, WEBP, ...) and PDF files. The response ``status``
    is one of ``success`` (with ``tracking_id``), ``needs_manual_crop`` (with a
    ``session_id`` and the image to select a region on) or ``failure`` (with a
    ``reason`` and a human-readable ``message``).

    Passing the same ``client_id`` on a newer upload abandons any earlier
    upload of that client that is still running.
    """
    payload = await _read_upload(file)
    client = client_id or uuid4().hex
    job = RecoveryJob(
        client_id=client,
        generation=registry.next_generation(client),
        payload=payload,
        mime_type=file.content_type,
    )
    result = await run_in_threadpool(
        process_recovery_job, job, pipeline=pipeline, registry=registry, retain=False
    )
    if result is None:
        result = Failure(CANCELLED_MESSAGE, FailureReason.CANCELLED)
    return {"client_id": client, "generation": job.generation, **result_payload(result, sessions)}


@app.post("/api/crop/{session_id}", summary="Read a user-selected region of a failed upload")
async def submit_crop_region(
    session_id: str,
    request: CropRequest,
    pipeline: RecoveryPipeline = Depends(get_pipeline),
    sessions: CropSessionStore = Depends(get_crop_sessions),
) -> dict[str, object]:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Crop session not found: {session_id}")

    display_size = None
    if request.display_width and request.display_height:
        display_size = (request.display_width, request.display_height)
    rectangle = CropRectangle(x=request.x, y=request.y, width=request.width, height=request.height)
    try:
        result = await run_in_threadpool(
            session.submit, rectangle, pipeline=pipeline, display_size=display_size
        )
    except InvalidCropError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except CropSessionConsumedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    finally:
        if session.consumed:
            sessions.discard(session_id)

    body = result_payload(result, sessions)
    if isinstance(result, Failure):
        retry = session.renew()
        body["retry_session_id"] = sessions.add(retry)
    return body


@app.post("/pipeline/enqueue", summary="Queue an upload for background recovery")
async def pipeline_enqueue(
    file: UploadFile = File(...),
    client_id: str = Form(...),
) -> dict[str, object]:
    payload = await _read_upload(file)
    generation = enqueue_recovery_job(client_id, payload, file.content_type)
    return {"status": "queued", "client_id": client_id, "generation": generation}


@app.get("/pipeline/result/{client_id}", summary="Latest committed result of a client")
def pipeline_result(
    client_id: str,
    sessions: CropSessionStore = Depends(get_crop_sessions),
    registry: GenerationRegistry = Depends(get_generation_registry),
) -> dict[str, object]:
    latest = registry.latest(client_id)
    if latest is None:
        raise HTTPException(status_code=404, detail=f"No result for client: {client_id}")
    generation, result = latest
    body = _published_body(client_id, generation, result, sessions)
    return {
        "client_id": client_id,
        "generation": generation,
        "pending": registry.current(client_id) != generation,
        **body,
    }


def _published_body(
    client_id: str, generation: int, result: PipelineResult, sessions: CropSessionStore
) -> dict[str, object]:
    """Body served for a committed result, built once per generation."""

    with _published_lock:
        cached = _published_sessions.get(client_id)
        if cached is not None and cached[0] == generation and cached[1] is result:
            _published_sessions.move_to_end(client_id)
            return cached[2]
        body = result_payload(result, sessions)
        _published_sessions[client_id] = (generation, result, body)
        _published_sessions.move_to_end(client_id)
        while len(_published_sessions) > settings.max_tracked_clients:
            _published_sessions.popitem(last=False)
        return body


def result_payload(result: PipelineResult, sessions: CropSessionStore) -> dict[str, object]:
    if isinstance(result, Success):
        return {
            "status": ResultStatus.SUCCESS.value,
            "tracking_id": result.tracking_id,
            "method": result.method,
            "message": result.message,
        }
    if isinstance(result, NeedsManualCrop):
        session = result.open_session()
        return {
            "status": ResultStatus.NEEDS_MANUAL_CROP.value,
            "message": result.message,
            "session_id": sessions.add(session),
            "image": {
                "width": result.image.width,
                "height": result.image.height,
                "png_base64": base64.b64encode(result.image.to_png_bytes()).decode("ascii"),
            },
        }
    return {
        "status": ResultStatus.FAILURE.value,
        "reason": result.reason.value,
        "message": result.message,
    }


async def _read_upload(file: UploadFile) -> bytes:
    payload = await file.read(settings.max_upload_bytes + 1)
    if len(payload) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Upload exceeds {settings.max_upload_bytes} bytes",
        )
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return payload
