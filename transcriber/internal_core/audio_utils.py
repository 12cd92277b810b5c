from __future__ import annotations

"""
Audio normalization and fixed-length segmentation.

Design intent:
- Every segment is a self-contained mono 16-bit WAV a provider can accept on its own.
- All intermediate files live in one scratch directory the caller removes.
"""

import logging
import math
import shutil
import subprocess
import tempfile
import wave
from pathlib import Path
from typing import List, Optional, Tuple

from .contracts import SplitResult

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_SECONDS = 600
TARGET_SAMPLE_RATE = 16000
SAMPLE_WIDTH_BYTES = 2
SCRATCH_DIR_PREFIX = "transcriber-audio-"
NORMALIZED_NAME = "normalized.wav"


def load_wav_info(path: Path) -> Tuple[float, int, int]:
    with wave.open(str(path), "rb") as wf:
        rate = wf.getframerate()
        duration = wf.getnframes() / float(rate) if rate else 0.0
        return duration, rate, wf.getnchannels()


def write_tone_wav(
    path: Path, duration_sec: float, freq_hz: float = 440.0, sample_rate: int = TARGET_SAMPLE_RATE
) -> None:
    """Write a quiet sine tone; used for fixtures and smoke checks."""
    peak = int(0.15 * 32767)
    frame_count = int(duration_sec * sample_rate)
    step = 2.0 * math.pi * freq_hz / sample_rate
    pcm = bytearray()
    for i in range(frame_count):
        pcm += int(peak * math.sin(step * i)).to_bytes(2, byteorder="little", signed=True)
    _write_pcm_wav(path, bytes(pcm), sample_rate=sample_rate)


def _write_pcm_wav(path: Path, pcm: bytes, *, sample_rate: int, channels: int = 1) -> None:
    with wave.open(str(path), "wb") as out:
        out.setnchannels(channels)
        out.setsampwidth(SAMPLE_WIDTH_BYTES)
        out.setframerate(sample_rate)
        out.writeframes(pcm)


def _is_conforming_wav(path: Path, sample_rate: int) -> bool:
    if path.suffix.lower() != ".wav":
        return False
    try:
        with wave.open(str(path), "rb") as wf:
            shape = (wf.getframerate(), wf.getnchannels(), wf.getsampwidth())
    except (wave.Error, EOFError):
        return False
    return shape == (sample_rate, 1, SAMPLE_WIDTH_BYTES)


def _convert_with_ffmpeg(ffmpeg: str, source: Path, target: Path, sample_rate: int) -> None:
    cmd = [
        ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
        "-i", str(source),
        "-ac", "1", "-ar", str(sample_rate), "-sample_fmt", "s16",
        str(target),
    ]
    completed = subprocess.run(cmd, capture_output=True)
    if completed.returncode != 0:
        detail = completed.stderr.decode("utf-8", "ignore").strip()
        raise ValueError(f"Audio conversion failed via ffmpeg: {detail or 'unknown error'}")


def _convert_with_miniaudio(source: Path, target: Path, sample_rate: int) -> None:
    try:
        import miniaudio  # type: ignore
    except ImportError as exc:
        raise ValueError(
            "Audio conversion requires `ffmpeg` on PATH or the optional `miniaudio` package."
        ) from exc

    try:
        decoded = miniaudio.decode_file(
            str(source),
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=1,
            sample_rate=sample_rate,
        )
    except miniaudio.DecodeError as exc:
        raise ValueError(f"Audio conversion failed: {exc}") from exc
    _write_pcm_wav(target, decoded.samples.tobytes(), sample_rate=sample_rate)


def normalize_to_wav_mono(input_path: Path, out_dir: Path, *, sample_rate: int = TARGET_SAMPLE_RATE) -> Path:
    """
    Return a mono 16-bit WAV at `sample_rate` for `input_path`.

    Conforming WAV input is used in place. Anything else is converted into `out_dir`,
    through ffmpeg when it is on PATH and miniaudio otherwise.
    """
    if not input_path.is_file():
        raise ValueError(f"Audio file not found: {input_path}")
    if _is_conforming_wav(input_path, sample_rate):
        return input_path

    target = out_dir / NORMALIZED_NAME
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        _convert_with_ffmpeg(ffmpeg, input_path, target, sample_rate)
    else:
        logger.debug("ffmpeg not found; decoding %s with miniaudio", input_path.name)
        _convert_with_miniaudio(input_path, target, sample_rate)
    return target


def chunk_wav(path: Path, chunk_seconds: int, out_dir: Path) -> List[Path]:
    """Cut `path` into consecutive `chunk_seconds` pieces; the last one may be shorter."""
    if chunk_seconds <= 0:
        raise ValueError("chunk_seconds must be > 0")

    written: List[Path] = []
    with wave.open(str(path), "rb") as src:
        channels = src.getnchannels()
        rate = src.getframerate()
        if src.getsampwidth() != SAMPLE_WIDTH_BYTES:
            raise ValueError(f"Expected 16-bit PCM, got {src.getsampwidth() * 8}-bit: {path.name}")
        frames_per_chunk = max(1, chunk_seconds * rate)
        remaining = src.getnframes()
        while remaining > 0:
            pcm = src.readframes(min(frames_per_chunk, remaining))
            if not pcm:
                break
            remaining -= len(pcm) // (SAMPLE_WIDTH_BYTES * channels)
            chunk_path = out_dir / f"chunk_{len(written):03d}.wav"
            _write_pcm_wav(chunk_path, pcm, sample_rate=rate, channels=channels)
            written.append(chunk_path)
    return written


def split_audio_file(
    input_path: str | Path,
    segment_seconds: Optional[int] = None,
    *,
    sample_rate: int = TARGET_SAMPLE_RATE,
    scratch_root: Optional[str | Path] = None,
) -> SplitResult:
    """
    Split audio into ordered mono segments inside a fresh scratch directory.

    The caller owns the returned `temp_dir` and must remove it with `remove_directory`.
    On failure the scratch directory is removed before the error propagates.
    """
    seconds = int(segment_seconds or DEFAULT_SEGMENT_SECONDS)
    root = str(scratch_root) if scratch_root is not None else None
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    temp_dir = Path(tempfile.mkdtemp(prefix=SCRATCH_DIR_PREFIX, dir=root))

    try:
        wav_path = normalize_to_wav_mono(Path(input_path), temp_dir, sample_rate=sample_rate)
        chunks = chunk_wav(wav_path, seconds, temp_dir)
    except BaseException:
        remove_directory(temp_dir)
        raise

    logger.debug("split audio into %d segments dir=%s", len(chunks), temp_dir)
    return SplitResult(chunk_paths=[str(p) for p in chunks], temp_dir=str(temp_dir))


def remove_directory(dir_path: Optional[str | Path]) -> None:
    if not dir_path:
        return
    shutil.rmtree(dir_path, ignore_errors=True)
