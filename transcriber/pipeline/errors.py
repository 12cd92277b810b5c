from __future__ import annotations

from typing import Optional

from ..providers.base import ProviderError


class TranscriptionInputError(ValueError):
    """Raised for caller mistakes; never retried."""


class FormatUnavailableError(ProviderError):
    def __init__(self, output_format: str, message: str, status_code: Optional[int] = None):
        super().__init__("format_unavailable", message, "pipeline", status_code=status_code)
        self.output_format = output_format
