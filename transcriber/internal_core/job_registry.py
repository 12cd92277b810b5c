from __future__ import annotations

"""
Process-wide job registry with per-job progress fan-out.

Design intent:
- One record per job id, mutated only through registry operations.
- Events for one job reach every attached subscriber in call order.
- Terminal events are broadcast once, then subscribers are closed and the job is dropped.
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from .contracts import TERMINAL_STATUSES, JobRecord, JobStatus, ProgressEvent

logger = logging.getLogger(__name__)

UNKNOWN_FAILURE_MESSAGE = "Unknown transcription failure"


class Subscriber(Protocol):
    def send(self, event: str, payload: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


def format_sse(event: str, payload: Mapping[str, Any]) -> str:
    data = json.dumps(dict(payload), ensure_ascii=False)
    return f"event:{event}\ndata:{data}\n\n"


class QueueSubscriber:
    """Subscriber that buffers events for an SSE response body.

    `send`/`close` never block and may be called from any thread; items are handed to
    the owning event loop, so an idle stream holds no worker thread.
    Construct it inside the loop that will consume `iter_frames`.
    """

    def __init__(
        self,
        keepalive_seconds: float = 15.0,
        retry_ms: int = 5000,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._keepalive_seconds = float(keepalive_seconds)
        self._retry_ms = int(retry_ms)
        self._loop = loop or asyncio.get_running_loop()
        self._queue: "asyncio.Queue[Optional[tuple[str, Dict[str, Any]]]]" = asyncio.Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, event: str, payload: Dict[str, Any]) -> None:
        if self._closed.is_set():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (event, dict(payload)))

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def iter_frames(self) -> AsyncIterator[str]:
        yield f"retry: {self._retry_ms}\n\n"
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self._keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            if item is None:
                yield "event:close\ndata:{}\n\n"
                return
            event, payload = item
            yield format_sse(event, payload)


class _JobEntry:
    __slots__ = ("record", "lock", "removed")

    def __init__(self, record: JobRecord):
        self.record = record
        self.lock = threading.RLock()
        self.removed = False


ProgressFields = Union[ProgressEvent, Mapping[str, Any]]


class JobRegistry:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._jobs: Dict[str, _JobEntry] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}

    def create(self) -> str:
        job_id = uuid.uuid4().hex
        record = JobRecord(job_id=job_id, status="pending", created_at=self._clock())
        with self._lock:
            self._jobs[job_id] = _JobEntry(record)
        return job_id

    def exists(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def get(self, job_id: str) -> Optional[JobRecord]:
        entry = self._entry(job_id)
        if entry is None:
            return None
        with entry.lock:
            return entry.record.model_copy(deep=True)

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, ()))

    def set_status(
        self, job_id: str, status: JobStatus, metadata: Optional[Mapping[str, Any]] = None
    ) -> None:
        entry = self._entry(job_id)
        if entry is None:
            return
        with entry.lock:
            if entry.removed:
                return
            entry.record.status = status
            entry.record.status_metadata = {**dict(metadata or {}), "timestamp": self._clock()}

    def report_progress(self, job_id: str, fields: ProgressFields) -> None:
        entry = self._entry(job_id)
        if entry is None:
            return
        with entry.lock:
            if entry.removed:
                return
            if isinstance(fields, ProgressEvent):
                event = fields.model_copy(update={"timestamp": self._clock()})
            else:
                try:
                    event = ProgressEvent(**{**dict(fields), "timestamp": self._clock()})
                except ValidationError as exc:
                    logger.warning(
                        "dropping malformed progress event job_id=%s errors=%d", job_id, exc.error_count()
                    )
                    return
            entry.record.progress = event
            self._broadcast(job_id, "progress", event.to_payload())

    def complete(self, job_id: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        entry = self._entry(job_id)
        if entry is None:
            return
        with entry.lock:
            if entry.removed:
                return
            now = self._clock()
            entry.record.status = "completed"
            entry.record.completed_at = now
            entry.record.result_metadata = dict(metadata or {})
            self._broadcast(job_id, "completed", entry.record.result_metadata)
            self._retire(job_id, entry)
        logger.info("job completed job_id=%s", job_id)

    def fail(self, job_id: str, error: Union[BaseException, Mapping[str, Any], str, None]) -> None:
        entry = self._entry(job_id)
        if entry is None:
            return
        with entry.lock:
            if entry.removed:
                return
            entry.record.status = "failed"
            entry.record.error = self._error_info(error)
            self._broadcast(job_id, "job-error", entry.record.error)
            self._retire(job_id, entry)
        logger.info("job failed job_id=%s", job_id)

    def remove(self, job_id: str) -> None:
        entry = self._entry(job_id)
        if entry is None:
            return
        with entry.lock:
            if entry.removed:
                return
            self._retire(job_id, entry)

    def attach(self, job_id: str, subscriber: Subscriber) -> bool:
        entry = self._entry(job_id)
        if entry is None:
            return False
        with entry.lock:
            if entry.removed:
                return False
            record = entry.record
            if record.status in TERMINAL_STATUSES:
                event, payload = self._terminal_event(record)
                self._deliver(job_id, subscriber, event, payload)
                self._close(job_id, subscriber)
                return True
            if record.progress is not None:
                if not self._deliver(job_id, subscriber, "progress", record.progress.to_payload()):
                    return True
            with self._lock:
                self._subscribers.setdefault(job_id, []).append(subscriber)
        return True

    def detach(self, job_id: str, subscriber: Subscriber) -> None:
        with self._lock:
            subscribers = self._subscribers.get(job_id)
            if subscribers is None:
                return
            if subscriber in subscribers:
                subscribers.remove(subscriber)
            if not subscribers and job_id not in self._jobs:
                self._subscribers.pop(job_id, None)

    def _entry(self, job_id: str) -> Optional[_JobEntry]:
        with self._lock:
            return self._jobs.get(job_id)

    def _broadcast(self, job_id: str, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(job_id, ()))
        for subscriber in subscribers:
            if not self._deliver(job_id, subscriber, event, payload):
                self.detach(job_id, subscriber)

    def _deliver(self, job_id: str, subscriber: Subscriber, event: str, payload: Dict[str, Any]) -> bool:
        try:
            subscriber.send(event, dict(payload))
            return True
        except Exception:
            logger.debug("dropping subscriber job_id=%s event=%s", job_id, event, exc_info=True)
            self._close(job_id, subscriber)
            return False

    def _close(self, job_id: str, subscriber: Subscriber) -> None:
        try:
            subscriber.close()
        except Exception:
            logger.debug("subscriber close failed job_id=%s", job_id, exc_info=True)

    def _retire(self, job_id: str, entry: _JobEntry) -> None:
        entry.removed = True
        with self._lock:
            self._jobs.pop(job_id, None)
            subscribers = self._subscribers.pop(job_id, [])
        for subscriber in subscribers:
            self._close(job_id, subscriber)

    def _terminal_event(self, record: JobRecord) -> tuple[str, Dict[str, Any]]:
        if record.status == "completed":
            if record.result_metadata is not None:
                return "completed", dict(record.result_metadata)
            return "completed", dict(record.status_metadata)
        if record.error is not None:
            return "job-error", dict(record.error)
        return "job-error", {
            "message": str(record.status_metadata.get("message") or UNKNOWN_FAILURE_MESSAGE),
            "timestamp": record.status_metadata.get("timestamp", self._clock()),
        }

    def _error_info(self, error: Union[BaseException, Mapping[str, Any], str, None]) -> Dict[str, Any]:
        status_code: Optional[int] = None
        if isinstance(error, BaseException):
            message = str(error)
            status_code = getattr(error, "status_code", None)
        elif isinstance(error, Mapping):
            message = str(error.get("message") or "")
            status_code = error.get("status_code")
        else:
            message = str(error or "")
        info: Dict[str, Any] = {
            "message": message or UNKNOWN_FAILURE_MESSAGE,
            "timestamp": self._clock(),
        }
        coerced = _coerce_status_code(status_code)
        if coerced is not None:
            info["status_code"] = coerced
        return info


def _coerce_status_code(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
