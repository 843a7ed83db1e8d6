"""AI provider adapters.

Provides provider-agnostic interfaces for the two AI capabilities the
pipeline needs: speech-to-text and text rewriting.  A single backend
may implement both.

Usage::

    from speech_keyboard.providers import create_provider

    provider = create_provider("openai", api_key="sk-...")
    result = await provider.transcribe(audio_bytes, "memo.m4a", "audio/m4a")
"""

from __future__ import annotations

from typing import Any

from speech_keyboard.providers.base import (
    FailureKind,
    ProviderFailure,
    RewriteResult,
    SpeechProvider,
    SpeechToText,
    TextRewriter,
    TranscriptionResult,
)

__all__ = [
    "FailureKind",
    "ProviderFailure",
    "RewriteResult",
    "SpeechProvider",
    "SpeechToText",
    "TextRewriter",
    "TranscriptionResult",
    "PROVIDERS",
    "create_provider",
]


def _get_provider_class(name: str) -> type[SpeechProvider]:
    """Lazily import provider classes to avoid requiring all SDKs at once."""
    if name == "openai":
        from speech_keyboard.providers.openai import OpenAIProvider

        return OpenAIProvider
    raise ValueError(
        f"Unknown provider: {name!r}. "
        f"Available providers: {', '.join(PROVIDERS)}"
    )


PROVIDERS: dict[str, str] = {
    "openai": "speech_keyboard.providers.openai.OpenAIProvider",
}
"""Registry of available provider names."""


def create_provider(name: str, **kwargs: Any) -> SpeechProvider:
    """Create a provider instance by name.

    Parameters
    ----------
    name:
        Provider name.  Currently ``"openai"``.
    **kwargs:
        Provider-specific configuration passed to the constructor.

    Returns
    -------
    SpeechProvider
        An initialized provider implementing both capabilities.
    """
    cls = _get_provider_class(name)
    return cls(**kwargs)
