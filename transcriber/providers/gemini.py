from __future__ import annotations

import logging
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .base import ProviderError, TextGenerationProvider

logger = logging.getLogger(__name__)


class GeminiProvider(TextGenerationProvider):
    def __init__(self, api_key: str):
        if not api_key:
            raise ProviderError("missing_api_key", "A Gemini API key is required", "gemini")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return "gemini"

    def transcribe_audio(self, audio: bytes, mime_type: str, *, model: str, prompt: str) -> str:
        contents = [types.Part.from_bytes(data=audio, mime_type=mime_type), prompt]
        return self._generate(model, contents, task="transcribe")

    def generate_text(self, prompt: str, *, model: str, task: str = "rewrite") -> str:
        return self._generate(model, prompt, task=task)

    def _generate(self, model: str, contents: Any, *, task: str) -> str:
        logger.debug("gemini request model=%s task=%s", model, task)
        try:
            response = self._client.models.generate_content(model=model, contents=contents)
        except genai_errors.APIError as exc:
            raise ProviderError(
                "provider_api_error",
                str(exc.message or exc),
                self.name(),
                status_code=exc.code,
            ) from exc
        except Exception as exc:
            raise ProviderError(
                "provider_request_failed",
                f"Gemini request failed: {exc}",
                self.name(),
            ) from exc
        return (response.text or "").strip()
