"""Generative-AI provider clients."""

from keypool.services.provider.gemini_service import (
    EmptyResponseError,
    GeminiProviderClient,
    ProviderClient,
    ProviderError,
    ProviderTimeoutError,
)

__all__ = [
    "EmptyResponseError",
    "GeminiProviderClient",
    "ProviderClient",
    "ProviderError",
    "ProviderTimeoutError",
]
