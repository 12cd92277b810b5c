from __future__ import annotations

from .errors import FormatUnavailableError, TranscriptionInputError
from .transcription import (
    TranscriptionPipeline,
    TranscriptionRequest,
    ensure_model,
    normalize_formats,
)

__all__ = [
    "FormatUnavailableError",
    "TranscriptionInputError",
    "TranscriptionPipeline",
    "TranscriptionRequest",
    "ensure_model",
    "normalize_formats",
]
