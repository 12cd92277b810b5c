from __future__ import annotations

"""
HTTP surface for the transcription job service.

Design intent:
- Keep handlers thin: validate input, bind the pipeline's progress sink to the registry.
- Stream job events over SSE until the terminal event closes the stream.
- Record job failure before the uploaded source is discarded.
"""

import asyncio
import json
import logging
import mimetypes
import time
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from transcriber.internal_core.config import ServiceConfig, load_config
from transcriber.internal_core.contracts import DEFAULT_MODEL, JobStatus, TranscriptionResult
from transcriber.internal_core.job_registry import JobRegistry, QueueSubscriber
from transcriber.pipeline import (
    TranscriptionInputError,
    TranscriptionPipeline,
    TranscriptionRequest,
)
from transcriber.providers import ProviderError, ProviderFactory, default_provider_factory


class JobCreateResponse(BaseModel):
    job_id: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    created_at: float
    progress: dict[str, Any] | None = None
    subscribers: int = Field(default=0, ge=0)


app = FastAPI(title="transcriber service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _configure_logging(cfg: ServiceConfig) -> None:
    level = getattr(logging, cfg.TRANSCRIBER_LOG_LEVEL.strip().upper(), logging.INFO)
    logging.getLogger("transcriber").setLevel(level)


def _get_config() -> ServiceConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, ServiceConfig):
        return existing
    created = load_config()
    _configure_logging(created)
    setattr(app.state, "config", created)
    return created


def _get_registry() -> JobRegistry:
    existing = getattr(app.state, "job_registry", None)
    if isinstance(existing, JobRegistry):
        return existing
    created = JobRegistry()
    setattr(app.state, "job_registry", created)
    return created


def _get_pipeline() -> TranscriptionPipeline:
    existing = getattr(app.state, "transcription_pipeline", None)
    if isinstance(existing, TranscriptionPipeline):
        return existing
    factory: ProviderFactory = getattr(app.state, "provider_factory", None) or default_provider_factory
    return TranscriptionPipeline(_get_config(), provider_factory=factory)


def _get_upload_dir() -> Path:
    resolved = _get_config().upload_dir_path()
    resolved.mkdir(parents=True, exist_ok=True)
    return resolved


def _sanitize_filename(filename: str) -> str:
    name = Path(str(filename or "")).name
    safe = "".join(ch if (ch.isalnum() or ch in {"_", "-", "."}) else "_" for ch in name)
    return (safe.strip("_") or "audio")[:128]


def _resolve_mime_type(content_type: str, filename: str) -> str:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type.startswith(("audio/", "video/")):
        return media_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "audio/mpeg"


def _parse_output_formats(raw: str) -> list[str]:
    text = (raw or "").strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="Invalid output_formats payload") from exc
        if not isinstance(parsed, list):
            raise HTTPException(status_code=400, detail="Invalid output_formats payload")
        return [str(item) for item in parsed]
    return [part.strip() for part in text.split(",") if part.strip()]


def _error_status(exc: ProviderError) -> int:
    code = exc.status_code
    if isinstance(code, int) and 400 <= code <= 599:
        return code
    return 500


def _discard_upload(upload_path: Path) -> None:
    try:
        upload_path.unlink(missing_ok=True)
    except OSError:
        logger.debug("failed to remove upload %s", upload_path, exc_info=True)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/jobs", response_model=JobCreateResponse)
async def create_job() -> JobCreateResponse:
    return JobCreateResponse(job_id=_get_registry().create())


@app.get("/api/jobs/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: str) -> JobStatusResponse:
    registry = _get_registry()
    record = registry.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return JobStatusResponse(
        job_id=record.job_id,
        status=record.status,
        created_at=record.created_at,
        progress=record.progress.to_payload() if record.progress else None,
        subscribers=registry.subscriber_count(job_id),
    )


@app.get("/api/jobs/{job_id}/events")
async def job_events(job_id: str) -> StreamingResponse:
    registry = _get_registry()
    if not registry.exists(job_id):
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    cfg = _get_config()
    subscriber = QueueSubscriber(
        keepalive_seconds=cfg.TRANSCRIBER_SSE_KEEPALIVE_SECONDS,
        retry_ms=cfg.TRANSCRIBER_SSE_RETRY_MS,
    )
    if not registry.attach(job_id, subscriber):
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    async def _frames() -> AsyncIterator[str]:
        try:
            async for frame in subscriber.iter_frames():
                yield frame
        finally:
            registry.detach(job_id, subscriber)

    return StreamingResponse(
        _frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@app.post("/api/transcribe", response_model=TranscriptionResult)
async def transcribe(
    request: Request,
    job_id: str = Query(default="", max_length=128),
    filename: str = Query(default="audio", max_length=255),
    model: str = Query(default=DEFAULT_MODEL, max_length=64),
    optimize: bool = Query(default=False),
    output_formats: str = Query(default="[]", max_length=256),
    agenda: str = Query(default="", max_length=20000),
    x_api_key: str | None = Header(default=None),
) -> TranscriptionResult:
    if not x_api_key:
        raise HTTPException(status_code=400, detail="Missing Gemini API key")

    payload = await request.body()
    if not payload:
        raise HTTPException(status_code=400, detail="Audio file is required")

    cfg = _get_config()
    if len(payload) > cfg.TRANSCRIBER_MAX_UPLOAD_BYTES:
        limit_mb = cfg.TRANSCRIBER_MAX_UPLOAD_BYTES / (1024 * 1024)
        raise HTTPException(status_code=413, detail=f"Uploaded file exceeds {limit_mb:.0f}MB limit.")

    registry = _get_registry()
    if not job_id or not registry.exists(job_id):
        raise HTTPException(status_code=400, detail="Invalid or missing job_id")

    formats = _parse_output_formats(output_formats)
    original_name = Path(filename).name or "audio"
    upload_path: Path | None = None

    try:
        upload_path = _get_upload_dir() / f"{int(time.time() * 1000)}-{_sanitize_filename(original_name)}"
        upload_path.write_bytes(payload)
        registry.set_status(job_id, "processing")
        registry.report_progress(
            job_id,
            {"phase": "upload", "status": "received", "message": "Upload received", "file_name": original_name},
        )
        pipeline_request = TranscriptionRequest(
            api_key=x_api_key,
            file_path=str(upload_path),
            output_formats=formats,
            mime_type=_resolve_mime_type(request.headers.get("content-type", ""), original_name),
            model=model,
            optimize=optimize,
            agenda=agenda,
            original_file_name=original_name,
            on_progress=lambda event: registry.report_progress(job_id, event),
        )
        result = await asyncio.to_thread(_get_pipeline().run, pipeline_request)
        registry.complete(job_id, {"file_name": result.original_file_name, "model": result.model_used})
        return result
    except TranscriptionInputError as exc:
        registry.fail(job_id, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ProviderError as exc:
        logger.warning("transcription failed job_id=%s code=%s: %s", job_id, exc.code, exc.message)
        registry.fail(job_id, exc)
        raise HTTPException(status_code=_error_status(exc), detail=exc.message) from exc
    except Exception as exc:
        logger.exception("transcription failed job_id=%s", job_id)
        registry.fail(job_id, exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Unexpected server error") from exc
    finally:
        if upload_path is not None:
            _discard_upload(upload_path)
