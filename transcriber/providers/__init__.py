from __future__ import annotations

"""
Text-generation provider boundary.

Design intent:
- Keep SDK-specific request/response handling out of the pipeline.
- Surface every upstream failure as `ProviderError` with the status code when known.
"""

from .base import ProviderError, ProviderFactory, TextGenerationProvider
from .mock import MockProvider


def default_provider_factory(api_key: str) -> TextGenerationProvider:
    from .gemini import GeminiProvider

    return GeminiProvider(api_key)


__all__ = [
    "MockProvider",
    "ProviderError",
    "ProviderFactory",
    "TextGenerationProvider",
    "default_provider_factory",
]
