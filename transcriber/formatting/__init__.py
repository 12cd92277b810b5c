"""
Text shaping helpers for transcript outputs.

Design intent:
- Keep provider-response cleanup and local subtitle synthesis free of I/O.
- Give the pipeline deterministic fallbacks it can always rely on.
"""

from .fences import strip_code_fences
from .subtitles import build_approximate_srt

__all__ = ["build_approximate_srt", "strip_code_fences"]
