from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .contracts import DEFAULT_MODEL


def _project_root() -> Path:
    # transcriber/internal_core/config.py -> transcriber -> repo root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass(frozen=True)
class ServiceConfig:
    TRANSCRIBER_UPLOAD_DIR: str
    TRANSCRIBER_TMP_DIR: str
    TRANSCRIBER_MAX_UPLOAD_BYTES: int
    TRANSCRIBER_INLINE_AUDIO_BYTES: int
    TRANSCRIBER_SEGMENT_SECONDS: int
    TRANSCRIBER_SAMPLE_RATE: int
    TRANSCRIBER_DEFAULT_MODEL: str
    TRANSCRIBER_REWRITE_MODEL: str
    TRANSCRIBER_FORMAT_WORKERS: int
    TRANSCRIBER_SSE_KEEPALIVE_SECONDS: float
    TRANSCRIBER_SSE_RETRY_MS: int
    TRANSCRIBER_LOG_LEVEL: str

    def upload_dir_path(self, repo_root: Path | None = None) -> Path:
        return ((repo_root or _project_root()) / self.TRANSCRIBER_UPLOAD_DIR).resolve()

    def tmp_dir_path(self) -> Path:
        # An empty value means "use the system temp dir".
        if not self.TRANSCRIBER_TMP_DIR:
            return Path(tempfile.gettempdir())
        return Path(self.TRANSCRIBER_TMP_DIR).expanduser().resolve()

    @property
    def rewrite_model(self) -> str | None:
        model = self.TRANSCRIBER_REWRITE_MODEL.strip()
        return model or None

    def with_overrides(self, **overrides: Any) -> "ServiceConfig":
        return replace(self, **overrides)


def load_config() -> ServiceConfig:
    return ServiceConfig(
        TRANSCRIBER_UPLOAD_DIR=_getenv_str("TRANSCRIBER_UPLOAD_DIR", "uploads"),
        TRANSCRIBER_TMP_DIR=_getenv_str("TRANSCRIBER_TMP_DIR", ""),
        TRANSCRIBER_MAX_UPLOAD_BYTES=_getenv_int(
            "TRANSCRIBER_MAX_UPLOAD_BYTES", 150 * 1024 * 1024
        ),
        TRANSCRIBER_INLINE_AUDIO_BYTES=_getenv_int(
            "TRANSCRIBER_INLINE_AUDIO_BYTES", 24 * 1024 * 1024
        ),
        TRANSCRIBER_SEGMENT_SECONDS=_getenv_int("TRANSCRIBER_SEGMENT_SECONDS", 600),
        TRANSCRIBER_SAMPLE_RATE=_getenv_int("TRANSCRIBER_SAMPLE_RATE", 16000),
        TRANSCRIBER_DEFAULT_MODEL=_getenv_str("TRANSCRIBER_DEFAULT_MODEL", DEFAULT_MODEL),
        TRANSCRIBER_REWRITE_MODEL=_getenv_str("TRANSCRIBER_REWRITE_MODEL", "gemini-2.5-pro"),
        TRANSCRIBER_FORMAT_WORKERS=_getenv_int("TRANSCRIBER_FORMAT_WORKERS", 4),
        TRANSCRIBER_SSE_KEEPALIVE_SECONDS=_getenv_float(
            "TRANSCRIBER_SSE_KEEPALIVE_SECONDS", 15.0
        ),
        TRANSCRIBER_SSE_RETRY_MS=_getenv_int("TRANSCRIBER_SSE_RETRY_MS", 5000),
        TRANSCRIBER_LOG_LEVEL=_getenv_str("TRANSCRIBER_LOG_LEVEL", "INFO"),
    )
