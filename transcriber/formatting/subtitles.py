from __future__ import annotations

"""
Approximate SubRip cues from plain transcript text.

Design intent:
- Deterministic local fallback when the provider cannot return usable subtitles.
- Cues are laid back to back from zero with no gaps or overlaps.
"""

import math
import re

MAX_WORDS_PER_CUE = 18
SECONDS_PER_UNIT = 0.6
MIN_CUE_SECONDS = 3
CHARS_PER_UNIT = 6

_SENTENCE_RE = re.compile(r"[^.!?。！？\n]+[.!?。！？]?")
_WS_RE = re.compile(r"\s+")


def to_timecode(total_seconds: float) -> str:
    hours = int(total_seconds // 3600)
    minutes = int((total_seconds % 3600) // 60)
    seconds = int(total_seconds % 60)
    milliseconds = int((total_seconds % 1) * 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{milliseconds:03d}"


def split_into_chunks(text: str, max_words: int = MAX_WORDS_PER_CUE) -> list[str]:
    normalized = _WS_RE.sub(" ", text or "").strip()
    if not normalized:
        return []

    sentences = [s.strip() for s in _SENTENCE_RE.findall(normalized) if s.strip()]
    if not sentences:
        return [normalized]

    chunks: list[str] = []
    for sentence in sentences:
        words = sentence.split()
        if len(words) <= max_words:
            chunks.append(sentence)
            continue
        for i in range(0, len(words), max_words):
            chunks.append(" ".join(words[i : i + max_words]))
    return chunks


def estimate_duration_seconds(chunk: str) -> int:
    word_count = len(chunk.split())
    char_count = len(_WS_RE.sub("", chunk))
    effective_length = max(word_count, math.ceil(char_count / CHARS_PER_UNIT))
    # Half-up rounding, not banker's rounding.
    return max(MIN_CUE_SECONDS, math.floor(effective_length * SECONDS_PER_UNIT + 0.5))


def build_approximate_srt(transcript: str) -> str:
    chunks = split_into_chunks(transcript)
    if not chunks:
        return ""

    entries: list[str] = []
    cursor = 0
    for index, chunk in enumerate(chunks, start=1):
        end = cursor + estimate_duration_seconds(chunk)
        entries.append(f"{index}\n{to_timecode(cursor)} --> {to_timecode(end)}\n{chunk}\n")
        cursor = end

    return "\n".join(entries).strip()
