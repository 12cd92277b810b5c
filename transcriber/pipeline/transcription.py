from __future__ import annotations

"""
Multi-phase transcription pipeline.

Design intent:
- Route by upload size: one inline call, or sequential segment calls over split audio.
- Run the optional rewrite once, then synthesize every requested format concurrently.
- Report each phase through a single progress sink; never leave scratch files behind.
"""

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..formatting import build_approximate_srt, strip_code_fences
from ..internal_core.audio_utils import remove_directory, split_audio_file
from ..internal_core.config import ServiceConfig
from ..internal_core.contracts import (
    DEFAULT_MODEL,
    FORMAT_ALIASES,
    SUPPORTED_FORMATS,
    SUPPORTED_MODELS,
    ProgressEvent,
    ProgressSink,
    SplitResult,
    TranscriptionResult,
)
from ..providers import ProviderError, ProviderFactory, TextGenerationProvider, default_provider_factory
from . import prompts
from .errors import FormatUnavailableError, TranscriptionInputError

logger = logging.getLogger(__name__)

SEGMENT_MIME_TYPE = "audio/wav"

Splitter = Callable[..., SplitResult]


@dataclass
class TranscriptionRequest:
    api_key: str
    file_path: Optional[str]
    output_formats: Sequence[str]
    mime_type: str = "audio/mpeg"
    model: Optional[str] = None
    optimize: bool = False
    agenda: Optional[str] = None
    original_file_name: Optional[str] = None
    on_progress: Optional[ProgressSink] = field(default=None, repr=False)


def normalize_formats(formats: Any) -> List[str]:
    if isinstance(formats, str):
        formats = [formats]
    if not isinstance(formats, (list, tuple, set, frozenset)):
        return []
    unique: List[str] = []
    for item in formats:
        if not isinstance(item, str):
            continue
        name = item.strip().lower()
        name = FORMAT_ALIASES.get(name, name)
        if name in SUPPORTED_FORMATS and name not in unique:
            unique.append(name)
    return unique


def ensure_model(model: Optional[str], fallback: str = DEFAULT_MODEL) -> str:
    if model in SUPPORTED_MODELS:
        return str(model)
    return fallback if fallback in SUPPORTED_MODELS else DEFAULT_MODEL


class _ProgressReporter:
    def __init__(self, sink: Optional[ProgressSink]):
        self._sink = sink

    def __call__(self, phase: str, status: str, message: str, **fields: Any) -> None:
        if self._sink is None:
            return
        self._sink(ProgressEvent(phase=phase, status=status, message=message, **fields))


class TranscriptionPipeline:
    def __init__(
        self,
        cfg: ServiceConfig,
        provider_factory: ProviderFactory = default_provider_factory,
        splitter: Splitter = split_audio_file,
    ):
        self._cfg = cfg
        self._provider_factory = provider_factory
        self._splitter = splitter

    def run(self, request: TranscriptionRequest) -> TranscriptionResult:
        if not request.api_key:
            raise TranscriptionInputError("A Gemini API key is required")
        if not request.file_path:
            raise TranscriptionInputError("Audio file path is required")

        formats = normalize_formats(request.output_formats)
        if not formats:
            raise TranscriptionInputError("At least one output format must be selected")

        audio_path = Path(request.file_path)
        if not audio_path.is_file():
            raise TranscriptionInputError(f"Audio file not found: {audio_path}")

        selected_model = ensure_model(request.model, self._cfg.TRANSCRIBER_DEFAULT_MODEL)
        provider = self._provider_factory(request.api_key)
        report = _ProgressReporter(request.on_progress)
        logger.info(
            "transcription started model=%s formats=%s optimize=%s bytes=%d",
            selected_model,
            ",".join(formats),
            bool(request.optimize),
            audio_path.stat().st_size,
        )

        raw_transcript = self._transcribe(provider, selected_model, audio_path, request.mime_type, report)
        if not raw_transcript:
            raise ProviderError("empty_transcript", "Transcription returned empty result", provider.name())

        rewrite_model = self._cfg.rewrite_model
        improved = raw_transcript
        if request.optimize and rewrite_model:
            report("optimize", "start", "Optimizing transcript")
            optimized = provider.generate_text(
                prompts.with_transcript(prompts.OPTIMIZATION_PROMPT, raw_transcript),
                model=rewrite_model,
                task="optimize",
            )
            improved = optimized or raw_transcript
            report("optimize", "done", "Optimization finished")

        agenda = request.agenda.strip() if isinstance(request.agenda, str) else ""
        outputs = self._synthesize_formats(
            provider, rewrite_model, formats, raw_transcript, improved, agenda, report
        )

        report("finalize", "done", "Transcription finished")
        logger.info("transcription finished model=%s formats=%s", selected_model, ",".join(formats))
        return TranscriptionResult(
            original_file_name=request.original_file_name,
            model_used=selected_model,
            raw_transcript=raw_transcript,
            optimized_transcript=improved if request.optimize else None,
            outputs=outputs,
        )

    def _transcribe(
        self,
        provider: TextGenerationProvider,
        model: str,
        audio_path: Path,
        mime_type: str,
        report: _ProgressReporter,
    ) -> str:
        if audio_path.stat().st_size <= self._cfg.TRANSCRIBER_INLINE_AUDIO_BYTES:
            audio = audio_path.read_bytes()
            report("transcribe", "start", "Transcribing audio (1 segment)", total_chunks=1, completed_chunks=0)
            transcript = provider.transcribe_audio(
                audio, mime_type, model=model, prompt=prompts.TRANSCRIPTION_PROMPT
            )
            report("transcribe", "done", "Transcription complete (1/1)", total_chunks=1, completed_chunks=1)
            return transcript.strip()

        split = self._splitter(
            audio_path,
            self._cfg.TRANSCRIBER_SEGMENT_SECONDS,
            sample_rate=self._cfg.TRANSCRIBER_SAMPLE_RATE,
            scratch_root=self._cfg.tmp_dir_path(),
        )
        try:
            total = len(split.chunk_paths)
            if not total:
                raise ProviderError(
                    "no_segments", "Audio chunking failed to produce segments", provider.name()
                )
            logger.info("transcribing %d segments sequentially", total)

            report(
                "transcribe",
                "start",
                f"Transcribing audio ({total} segments)",
                total_chunks=total,
                completed_chunks=0,
            )
            texts: List[str] = []
            for index, chunk_path in enumerate(split.chunk_paths, start=1):
                text = provider.transcribe_audio(
                    Path(chunk_path).read_bytes(),
                    SEGMENT_MIME_TYPE,
                    model=model,
                    prompt=prompts.TRANSCRIPTION_PROMPT,
                ).strip()
                if text:
                    texts.append(text)
                else:
                    logger.info("segment %d/%d returned an empty transcript", index, total)
                report(
                    "transcribe",
                    "progress",
                    f"Transcribing: {index}/{total} segments done",
                    total_chunks=total,
                    completed_chunks=index,
                )
            report(
                "transcribe",
                "done",
                f"Transcription complete ({total}/{total})",
                total_chunks=total,
                completed_chunks=total,
            )
            return "\n\n".join(texts).strip()
        finally:
            remove_directory(split.temp_dir)

    def _synthesize_formats(
        self,
        provider: TextGenerationProvider,
        rewrite_model: Optional[str],
        formats: List[str],
        raw_transcript: str,
        transcript: str,
        agenda: str,
        report: _ProgressReporter,
    ) -> Dict[str, str]:
        def _one(output_format: str) -> str:
            report("format", "start", f"Generating {output_format}", format=output_format)
            text = self._synthesize(provider, rewrite_model, output_format, raw_transcript, transcript, agenda)
            report("format", "done", f"{output_format} ready", format=output_format)
            return text

        workers = max(1, min(len(formats), self._cfg.TRANSCRIBER_FORMAT_WORKERS))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="format") as pool:
            futures: Dict[str, Future[str]] = {fmt: pool.submit(_one, fmt) for fmt in formats}
            _, pending = wait(futures.values(), return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()

        for future in futures.values():
            if not future.cancelled() and future.exception() is not None:
                raise future.exception()  # type: ignore[misc]
        return {fmt: future.result() for fmt, future in futures.items()}

    def _synthesize(
        self,
        provider: TextGenerationProvider,
        rewrite_model: Optional[str],
        output_format: str,
        raw_transcript: str,
        transcript: str,
        agenda: str,
    ) -> str:
        if output_format == "text":
            return transcript

        if output_format == "markdown":
            if not rewrite_model:
                return transcript
            return provider.generate_text(
                prompts.with_transcript(prompts.MARKDOWN_PROMPT, transcript),
                model=rewrite_model,
                task="markdown",
            )

        if output_format == "notes":
            if not rewrite_model:
                raise FormatUnavailableError("notes", "Notes output requires the rewrite model")
            raw = provider.generate_text(
                prompts.build_notes_prompt(raw_transcript, agenda),
                model=rewrite_model,
                task="notes",
            )
            return strip_code_fences(raw)

        if output_format == "subtitle":
            return self._subtitle(provider, rewrite_model, transcript)

        raise TranscriptionInputError(f"Unsupported output format: {output_format}")

    def _subtitle(self, provider: TextGenerationProvider, rewrite_model: Optional[str], transcript: str) -> str:
        if not rewrite_model:
            return build_approximate_srt(transcript)
        try:
            candidate = provider.generate_text(
                prompts.with_transcript(prompts.SUBTITLE_PROMPT, transcript),
                model=rewrite_model,
                task="subtitle",
            )
        except ProviderError as exc:
            logger.warning("subtitle request failed, using local cues: %s", exc.message)
            return build_approximate_srt(transcript)

        cleaned = strip_code_fences(candidate)
        if "-->" in cleaned:
            return cleaned
        logger.info("subtitle response had no timing marker, using local cues")
        return build_approximate_srt(transcript)
