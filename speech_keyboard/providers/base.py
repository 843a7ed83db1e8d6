"""Provider capability interfaces and shared result types.

Two independent capabilities sit behind fixed contracts:

- ``SpeechToText`` -- audio bytes in, transcription text out.
- ``TextRewriter`` -- raw text plus optional style guidance in,
  rewritten text out.

Both return a tagged value instead of raising: either a success
dataclass or a ``ProviderFailure``.  Inspect ``result.ok`` to tell
them apart.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass


class FailureKind(str, enum.Enum):
    """Backend-agnostic classification of provider errors."""

    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    INVALID_CREDENTIALS = "invalid_credentials"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProviderFailure:
    """A failed provider call.

    Attributes
    ----------
    kind:
        Classification of the failure.
    message:
        Human-readable message safe to show to API callers.
    provider:
        Name of the provider that failed (e.g., ``"openai"``).
    operation:
        ``"transcription"`` or ``"text processing"``.
    """

    kind: FailureKind
    message: str
    provider: str
    operation: str

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class TranscriptionResult:
    """Output of a successful ``SpeechToText.transcribe()`` call.

    Attributes
    ----------
    text:
        Full transcription text.
    duration_seconds:
        Audio duration reported by the backend, or ``None`` if unknown.
    language:
        Detected language code (e.g., ``"en"``), or ``None`` if unknown.
    provider:
        Name of the provider that produced the result.
    """

    text: str
    duration_seconds: float | None = None
    language: str | None = None
    provider: str = ""

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class RewriteResult:
    """Output of a successful ``TextRewriter.rewrite()`` call.

    Attributes
    ----------
    rewritten_text:
        The corrected text.
    prompt_used:
        Style guidance actually applied, or the provider's default prompt
        when the caller supplied none.
    tokens_used:
        Consumption units reported by the backend, if any.
    model:
        Backend model identifier.
    processing_ms:
        Wall-clock time spent on the remote call.
    provider:
        Name of the provider that produced the result.
    """

    rewritten_text: str
    prompt_used: str
    tokens_used: int | None = None
    model: str | None = None
    processing_ms: int | None = None
    provider: str = ""

    @property
    def ok(self) -> bool:
        return True


class SpeechToText(ABC):
    """Abstract speech-to-text capability."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging and diagnostics."""
        ...

    @abstractmethod
    async def transcribe(
        self, audio: bytes, filename: str, mime_type: str
    ) -> TranscriptionResult | ProviderFailure:
        """Transcribe raw audio bytes to text.

        Parameters
        ----------
        audio:
            Raw audio file contents.
        filename:
            Original upload filename; backends use the extension to
            detect the container format.
        mime_type:
            MIME type of the upload (e.g., ``"audio/mpeg"``).

        Returns
        -------
        TranscriptionResult | ProviderFailure
            Never raises for backend errors.
        """
        ...


class TextRewriter(ABC):
    """Abstract text-rewrite capability."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging and diagnostics."""
        ...

    @property
    @abstractmethod
    def default_prompt(self) -> str:
        """Prompt reported as ``prompt_used`` when no guidance is given."""
        ...

    @abstractmethod
    async def rewrite(
        self, raw_text: str, style_guidance: str | None = None
    ) -> RewriteResult | ProviderFailure:
        """Rewrite raw transcription text.

        Parameters
        ----------
        raw_text:
            Text produced by speech-to-text.
        style_guidance:
            Optional caller-supplied instructions for tone or format.

        Returns
        -------
        RewriteResult | ProviderFailure
            Never raises for backend errors.
        """
        ...


class SpeechProvider(SpeechToText, TextRewriter):
    """A backend that implements both capabilities.

    The pipeline only depends on the two narrow interfaces; this
    combined base exists so a single backend can be created from
    configuration and handed to both slots.
    """
