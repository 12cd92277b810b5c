from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional


class ProviderError(RuntimeError):
    def __init__(
        self,
        code: str,
        message: str,
        provider_name: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name
        self.status_code = status_code


class TextGenerationProvider(ABC):
    @abstractmethod
    def transcribe_audio(self, audio: bytes, mime_type: str, *, model: str, prompt: str) -> str: ...

    @abstractmethod
    def generate_text(self, prompt: str, *, model: str, task: str = "rewrite") -> str: ...

    @abstractmethod
    def name(self) -> str: ...


ProviderFactory = Callable[[str], TextGenerationProvider]
