from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .base import ProviderError, TextGenerationProvider

Scripted = Union[str, BaseException]


class MockProvider(TextGenerationProvider):
    """Scripted provider for tests and offline runs.

    `transcripts` are consumed in order by `transcribe_audio`; `responses` map a
    generation task (optimize, markdown, notes, subtitle) to its reply. Exceptions
    in either are raised instead of returned.
    """

    def __init__(
        self,
        transcripts: Optional[Iterable[Scripted]] = None,
        responses: Optional[Mapping[str, Scripted]] = None,
    ) -> None:
        self._transcripts: List[Scripted] = list(transcripts or [])
        self._responses: Dict[str, Scripted] = dict(responses or {})
        self._counter = 0
        self._lock = threading.Lock()
        self.calls: List[Dict[str, Any]] = []

    def name(self) -> str:
        return "mock"

    def transcribe_audio(self, audio: bytes, mime_type: str, *, model: str, prompt: str) -> str:
        with self._lock:
            self._counter += 1
            self.calls.append(
                {"task": "transcribe", "model": model, "mime_type": mime_type, "bytes": len(audio)}
            )
            scripted = self._transcripts.pop(0) if self._transcripts else None
            counter = self._counter
        if scripted is None:
            return f"(mock) simulated transcript for chunk {counter}."
        return self._resolve(scripted)

    def generate_text(self, prompt: str, *, model: str, task: str = "rewrite") -> str:
        with self._lock:
            self.calls.append({"task": task, "model": model, "prompt": prompt})
            scripted = self._responses.get(task)
        if scripted is None:
            return f"(mock) {task} output"
        return self._resolve(scripted)

    def tasks(self) -> List[str]:
        with self._lock:
            return [str(call["task"]) for call in self.calls]

    @staticmethod
    def _resolve(scripted: Scripted) -> str:
        if isinstance(scripted, BaseException):
            raise scripted
        return scripted


def failing_provider_error(status_code: int = 429, message: str = "quota exceeded") -> ProviderError:
    return ProviderError("provider_api_error", message, "mock", status_code=status_code)
