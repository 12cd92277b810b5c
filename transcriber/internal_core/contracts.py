from __future__ import annotations

from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JobStatus = Literal["pending", "processing", "completed", "failed"]

ProgressPhase = Literal["upload", "transcribe", "optimize", "format", "finalize"]

OutputFormat = Literal["text", "notes", "markdown", "subtitle"]

SUPPORTED_FORMATS: tuple[str, ...] = ("text", "notes", "markdown", "subtitle")

# Older clients still send the SubRip extension as the format name.
FORMAT_ALIASES: Dict[str, str] = {"srt": "subtitle"}

SUPPORTED_MODELS: tuple[str, ...] = ("gemini-2.5-pro", "gemini-2.5-flash")

DEFAULT_MODEL = "gemini-2.5-pro"

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class ProgressEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    phase: ProgressPhase
    status: str = "progress"
    message: str = ""
    total_chunks: Optional[int] = Field(default=None, ge=0)
    completed_chunks: Optional[int] = Field(default=None, ge=0)
    format: Optional[str] = None
    file_name: Optional[str] = None
    timestamp: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


ProgressSink = Callable[[ProgressEvent], None]


class JobRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str
    status: JobStatus = "pending"
    created_at: float
    progress: Optional[ProgressEvent] = None
    status_metadata: Dict[str, Any] = Field(default_factory=dict)
    result_metadata: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    completed_at: Optional[float] = None


class TranscriptionResult(BaseModel):
    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    original_file_name: Optional[str] = None
    model_used: str
    raw_transcript: str
    optimized_transcript: Optional[str] = None
    outputs: Dict[str, str] = Field(default_factory=dict)


class SplitResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunk_paths: List[str] = Field(default_factory=list)
    temp_dir: str
