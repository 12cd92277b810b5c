import asyncio
import threading
import time
from typing import Any

from transcriber.internal_core.contracts import ProgressEvent
from transcriber.internal_core.job_registry import JobRegistry, QueueSubscriber
from transcriber.providers.mock import failing_provider_error


class RecordingSubscriber:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.closed = False
        self.close_calls = 0

    def send(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class BrokenSubscriber(RecordingSubscriber):
    def send(self, event: str, payload: dict[str, Any]) -> None:
        raise BrokenPipeError("client went away")


def _fake_clock():
    ticks = iter(range(1000, 100000))
    return lambda: float(next(ticks))


def test_create_job_is_pending_without_progress() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    record = registry.get(job_id)
    assert registry.exists(job_id)
    assert record is not None
    assert record.status == "pending"
    assert record.progress is None


def test_progress_sequence_then_completed_then_close() -> None:
    registry = JobRegistry(clock=_fake_clock())
    job_id = registry.create()
    first = RecordingSubscriber()
    second = RecordingSubscriber()
    assert registry.attach(job_id, first)
    assert registry.attach(job_id, second)

    for done in range(3):
        registry.report_progress(
            job_id,
            {"phase": "transcribe", "status": "progress", "total_chunks": 3, "completed_chunks": done},
        )
    registry.complete(job_id, {"file_name": "talk.mp3", "model": "gemini-2.5-pro"})

    for subscriber in (first, second):
        assert subscriber.names() == ["progress", "progress", "progress", "completed"]
        assert [payload["completed_chunks"] for _, payload in subscriber.events[:3]] == [0, 1, 2]
        assert subscriber.events[-1][1] == {"file_name": "talk.mp3", "model": "gemini-2.5-pro"}
        assert subscriber.closed
        assert subscriber.close_calls == 1
    assert not registry.exists(job_id)
    assert registry.subscriber_count(job_id) == 0


def test_progress_events_are_timestamped() -> None:
    registry = JobRegistry(clock=lambda: 42.0)
    job_id = registry.create()
    subscriber = RecordingSubscriber()
    registry.attach(job_id, subscriber)
    registry.report_progress(job_id, ProgressEvent(phase="optimize", status="start", message="Optimizing"))

    _, payload = subscriber.events[0]
    assert payload["timestamp"] == 42.0
    assert payload["phase"] == "optimize"
    record = registry.get(job_id)
    assert record is not None and record.progress is not None
    assert record.progress.timestamp == 42.0


def test_attach_unknown_job_returns_false() -> None:
    registry = JobRegistry()
    subscriber = RecordingSubscriber()
    assert registry.attach("missing", subscriber) is False
    assert subscriber.events == []
    assert not subscriber.closed


def test_attach_after_completion_reports_not_found() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    registry.complete(job_id, {"file_name": "a.wav"})
    subscriber = RecordingSubscriber()
    assert registry.attach(job_id, subscriber) is False
    assert subscriber.events == []


def test_late_attach_replays_latest_progress_once() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    registry.report_progress(job_id, {"phase": "upload", "status": "received"})
    registry.report_progress(job_id, {"phase": "transcribe", "status": "start", "total_chunks": 2})

    late = RecordingSubscriber()
    assert registry.attach(job_id, late)
    assert late.names() == ["progress"]
    assert late.events[0][1]["phase"] == "transcribe"

    registry.report_progress(job_id, {"phase": "transcribe", "status": "done"})
    assert late.names() == ["progress", "progress"]


def test_attach_to_terminal_job_delivers_stored_event_and_closes() -> None:
    registry = JobRegistry(clock=lambda: 7.0)
    job_id = registry.create()
    registry.report_progress(job_id, {"phase": "finalize", "status": "done"})
    registry.set_status(job_id, "completed", {"file_name": "fast.wav"})

    subscriber = RecordingSubscriber()
    assert registry.attach(job_id, subscriber)
    assert subscriber.events == [("completed", {"file_name": "fast.wav", "timestamp": 7.0})]
    assert subscriber.closed
    assert registry.subscriber_count(job_id) == 0


def test_attach_to_failed_status_delivers_job_error() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    registry.set_status(job_id, "failed", {"message": "decoder crashed"})

    subscriber = RecordingSubscriber()
    assert registry.attach(job_id, subscriber)
    assert subscriber.names() == ["job-error"]
    assert subscriber.events[0][1]["message"] == "decoder crashed"
    assert subscriber.closed


def test_fail_broadcasts_single_job_error_with_status_code() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    subscriber = RecordingSubscriber()
    registry.attach(job_id, subscriber)

    registry.fail(job_id, failing_provider_error(status_code=429, message="quota exceeded"))
    registry.fail(job_id, RuntimeError("second failure"))
    registry.complete(job_id, {})

    assert subscriber.names() == ["job-error"]
    payload = subscriber.events[0][1]
    assert payload["message"] == "quota exceeded"
    assert payload["status_code"] == 429
    assert subscriber.close_calls == 1
    assert not registry.exists(job_id)


def test_fail_without_message_uses_generic_text() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    subscriber = RecordingSubscriber()
    registry.attach(job_id, subscriber)
    registry.fail(job_id, None)
    assert subscriber.events[0][1]["message"] == "Unknown transcription failure"


def test_operations_on_removed_job_are_silent_noops() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    registry.complete(job_id, {})

    registry.complete(job_id, {})
    registry.fail(job_id, RuntimeError("late"))
    registry.report_progress(job_id, {"phase": "format", "status": "start"})
    registry.set_status(job_id, "processing")
    registry.detach(job_id, RecordingSubscriber())
    registry.remove(job_id)
    assert registry.get(job_id) is None


def test_set_status_stamps_metadata() -> None:
    registry = JobRegistry(clock=lambda: 11.0)
    job_id = registry.create()
    registry.set_status(job_id, "processing", {"source": "upload"})
    record = registry.get(job_id)
    assert record is not None
    assert record.status == "processing"
    assert record.status_metadata == {"source": "upload", "timestamp": 11.0}


def test_broken_subscriber_is_dropped_without_affecting_others() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    broken = BrokenSubscriber()
    healthy = RecordingSubscriber()
    registry.attach(job_id, broken)
    registry.attach(job_id, healthy)

    registry.report_progress(job_id, {"phase": "transcribe", "status": "start"})
    registry.report_progress(job_id, {"phase": "transcribe", "status": "done"})

    assert healthy.names() == ["progress", "progress"]
    assert broken.closed
    assert registry.subscriber_count(job_id) == 1


def test_detach_stops_delivery_and_cleans_up_after_removal() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    leaving = RecordingSubscriber()
    staying = RecordingSubscriber()
    registry.attach(job_id, leaving)
    registry.attach(job_id, staying)

    registry.detach(job_id, leaving)
    registry.report_progress(job_id, {"phase": "upload", "status": "received"})
    assert leaving.events == []
    assert staying.names() == ["progress"]

    registry.remove(job_id)
    assert staying.closed
    assert staying.names() == ["progress"]
    registry.detach(job_id, staying)
    assert registry.subscriber_count(job_id) == 0


def test_concurrent_reports_reach_all_subscribers_in_same_order() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    subscribers = [RecordingSubscriber() for _ in range(3)]
    for subscriber in subscribers:
        registry.attach(job_id, subscriber)

    def _worker(worker_id: int) -> None:
        for i in range(50):
            registry.report_progress(
                job_id, {"phase": "transcribe", "status": "progress", "message": f"{worker_id}:{i}"}
            )

    threads = [threading.Thread(target=_worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    sequences = [[payload["message"] for _, payload in s.events] for s in subscribers]
    assert len(sequences[0]) == 200
    assert sequences[0] == sequences[1] == sequences[2]
    for worker_id in range(4):
        own = [m for m in sequences[0] if m.startswith(f"{worker_id}:")]
        assert own == [f"{worker_id}:{i}" for i in range(50)]


def test_fail_with_non_numeric_status_code_omits_it() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    subscriber = RecordingSubscriber()
    registry.attach(job_id, subscriber)

    registry.fail(job_id, {"message": "gateway hiccup", "status_code": "teapot"})

    assert subscriber.names() == ["job-error"]
    assert subscriber.events[0][1]["message"] == "gateway hiccup"
    assert "status_code" not in subscriber.events[0][1]
    assert not registry.exists(job_id)


def test_malformed_progress_fields_are_dropped() -> None:
    registry = JobRegistry()
    job_id = registry.create()
    subscriber = RecordingSubscriber()
    registry.attach(job_id, subscriber)

    registry.report_progress(job_id, {"phase": "upload", "status": "received", "bytes": 12})
    registry.report_progress(job_id, {"phase": "rendering"})
    registry.report_progress(job_id, {"phase": "upload", "status": "received"})

    assert subscriber.names() == ["progress"]
    record = registry.get(job_id)
    assert record is not None and record.progress is not None
    assert record.progress.phase == "upload"


def test_queue_subscriber_frames_end_with_close() -> None:
    async def _collect() -> list[str]:
        subscriber = QueueSubscriber(keepalive_seconds=5.0, retry_ms=2500)
        subscriber.send("progress", {"phase": "upload", "status": "received"})
        subscriber.send("completed", {"file_name": "a.wav"})
        subscriber.close()
        subscriber.send("progress", {"phase": "finalize"})
        return [frame async for frame in subscriber.iter_frames()]

    frames = asyncio.run(_collect())
    assert frames[0] == "retry: 2500\n\n"
    assert frames[1].startswith("event:progress\ndata:")
    assert '"phase": "upload"' in frames[1]
    assert frames[2] == 'event:completed\ndata:{"file_name": "a.wav"}\n\n'
    assert frames[3] == "event:close\ndata:{}\n\n"
    assert len(frames) == 4


def test_queue_subscriber_emits_keepalive_when_idle() -> None:
    async def _collect() -> list[str]:
        subscriber = QueueSubscriber(keepalive_seconds=0.01)
        frames = subscriber.iter_frames()
        seen = [await frames.__anext__(), await frames.__anext__()]
        subscriber.close()
        seen.append(await frames.__anext__())
        return seen

    retry, keepalive, closing = asyncio.run(_collect())
    assert retry.startswith("retry:")
    assert keepalive == ": keep-alive\n\n"
    assert closing == "event:close\ndata:{}\n\n"


def test_idle_streams_do_not_delay_delivery_to_another_job() -> None:
    async def _scenario() -> tuple[str, float, list[list[str]]]:
        idle = [QueueSubscriber(keepalive_seconds=30.0) for _ in range(64)]
        idle_frames: list[list[str]] = [[] for _ in idle]

        async def _drain(subscriber: QueueSubscriber, sink: list[str]) -> None:
            async for frame in subscriber.iter_frames():
                sink.append(frame)

        drains = [asyncio.create_task(_drain(s, sink)) for s, sink in zip(idle, idle_frames)]
        await asyncio.sleep(0)

        target = QueueSubscriber(keepalive_seconds=30.0)
        frames = target.iter_frames()
        assert (await frames.__anext__()).startswith("retry:")

        started = time.monotonic()
        sender = threading.Thread(
            target=target.send, args=("progress", {"phase": "transcribe", "status": "start"})
        )
        sender.start()
        frame = await asyncio.wait_for(frames.__anext__(), timeout=2.0)
        elapsed = time.monotonic() - started
        sender.join()

        for subscriber in idle:
            subscriber.close()
        await asyncio.gather(*drains)
        target.close()
        await frames.aclose()
        return frame, elapsed, idle_frames

    frame, elapsed, idle_frames = asyncio.run(_scenario())
    assert frame.startswith("event:progress\n")
    assert elapsed < 1.0
    assert all(sink[-1] == "event:close\ndata:{}\n\n" for sink in idle_frames)
