from __future__ import annotations

import re

_LANG_FENCE_RE = re.compile(r"```[a-zA-Z0-9+\-]*\n(.*?)\n```", flags=re.DOTALL)
_BARE_FENCE_RE = re.compile(r"```(.*?)```", flags=re.DOTALL)


def strip_code_fences(payload: str) -> str:
    """Return the body of a fenced block that wraps the whole response, trimmed."""
    trimmed = (payload or "").strip()

    match = _LANG_FENCE_RE.fullmatch(trimmed)
    if match:
        return match.group(1).strip()

    match = _BARE_FENCE_RE.fullmatch(trimmed)
    if match:
        return match.group(1).strip()

    return trimmed
