"""OpenAI provider adapter.

Implements both ``SpeechToText`` (Whisper transcription API) and
``TextRewriter`` (chat completions in JSON mode) on top of the
``openai`` Python SDK.  Requires an ``OPENAI_API_KEY`` environment
variable or explicit ``api_key`` parameter.

Backend errors never escape this module: they are mapped by
:func:`classify_error` onto the fixed ``FailureKind`` taxonomy and
returned as ``ProviderFailure`` values.
"""

from __future__ import annotations

import json
import logging
import os
import time

import openai

from speech_keyboard.providers.base import (
    FailureKind,
    ProviderFailure,
    RewriteResult,
    SpeechProvider,
    TranscriptionResult,
)
from speech_keyboard.providers.prompts import (
    CORRECTED_FIELD,
    DEFAULT_PROMPT,
    build_rewrite_instructions,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openai"

TRANSCRIPTION = "transcription"
TEXT_PROCESSING = "text processing"

_ERROR_CODES: dict[str, FailureKind] = {
    "insufficient_quota": FailureKind.QUOTA_EXCEEDED,
    "rate_limit_exceeded": FailureKind.RATE_LIMITED,
    "invalid_api_key": FailureKind.INVALID_CREDENTIALS,
}

_MESSAGES: dict[FailureKind, str] = {
    FailureKind.QUOTA_EXCEEDED: "OpenAI API quota exceeded. Please check your billing.",
    FailureKind.RATE_LIMITED: "OpenAI API rate limit exceeded. Please try again later.",
    FailureKind.INVALID_CREDENTIALS: "Invalid OpenAI API key configuration.",
}


def _classify(exc: BaseException) -> FailureKind:
    if isinstance(exc, (openai.APITimeoutError, TimeoutError)):
        return FailureKind.TIMEOUT
    if isinstance(exc, openai.APIError):
        kind = _ERROR_CODES.get(exc.code or "")
        if kind is not None:
            return kind
        if isinstance(exc, openai.AuthenticationError):
            return FailureKind.INVALID_CREDENTIALS
        if isinstance(exc, openai.RateLimitError):
            return FailureKind.RATE_LIMITED
    return FailureKind.UNKNOWN


def classify_error(exc: BaseException, operation: str) -> ProviderFailure:
    """Map an exception from the OpenAI SDK onto a ``ProviderFailure``.

    The mapping is total: anything not recognized becomes
    ``FailureKind.UNKNOWN`` carrying the original error text.

    Parameters
    ----------
    exc:
        The exception raised by the SDK call.
    operation:
        Human-readable operation name used in messages.

    Returns
    -------
    ProviderFailure
        Classified failure with a caller-facing message.
    """
    kind = _classify(exc)
    if kind is FailureKind.TIMEOUT:
        message = f"{operation.capitalize()} request timed out. Please try again."
    elif kind is FailureKind.UNKNOWN:
        detail = exc.message if isinstance(exc, openai.APIError) else str(exc)
        message = detail or f"Unknown {operation} error occurred."
    else:
        message = _MESSAGES[kind]
    return ProviderFailure(
        kind=kind, message=message, provider=PROVIDER_NAME, operation=operation
    )


def _parse_corrected(content: str | None) -> str | None:
    """Extract the ``corrected`` field from a JSON rewrite response."""
    if not content:
        return None
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    corrected = parsed.get(CORRECTED_FIELD)
    if not isinstance(corrected, str) or not corrected.strip():
        return None
    return corrected


class OpenAIProvider(SpeechProvider):
    """OpenAI-backed speech-to-text and text-rewrite provider.

    Parameters
    ----------
    api_key:
        OpenAI API key.  Falls back to the ``OPENAI_API_KEY``
        environment variable if not provided.
    transcription_model:
        Whisper model used for transcription.
    rewrite_model:
        Chat model used for rewriting (e.g., ``"gpt-4o"``).
    language:
        Language hint passed to Whisper, or ``None`` to auto-detect.
    temperature:
        Sampling temperature for the rewrite model.
    timeout:
        Optional per-request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str | None = None,
        transcription_model: str = "whisper-1",
        rewrite_model: str = "gpt-4o",
        language: str | None = "en",
        temperature: float = 0.0,
        timeout: float | None = None,
        **kwargs: object,
    ) -> None:
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        if not self._api_key:
            raise ValueError(
                "OpenAI API key is required. Set OPENAI_API_KEY or pass api_key=."
            )
        self._transcription_model = transcription_model
        self._rewrite_model = rewrite_model
        self._language = language
        self._temperature = temperature
        self._timeout = timeout
        self._client: openai.AsyncOpenAI | None = None

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    @property
    def default_prompt(self) -> str:
        return DEFAULT_PROMPT

    def _get_client(self) -> openai.AsyncOpenAI:
        """Return a reusable async client, creating it on first call."""
        if self._client is None:
            if self._timeout is not None:
                self._client = openai.AsyncOpenAI(
                    api_key=self._api_key, timeout=self._timeout
                )
            else:
                self._client = openai.AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def transcribe(
        self, audio: bytes, filename: str, mime_type: str
    ) -> TranscriptionResult | ProviderFailure:
        """Transcribe audio with the Whisper API.

        Requests ``verbose_json`` so that the audio duration and detected
        language come back alongside the text.
        """
        logger.info(
            "Starting transcription for %s (%d bytes, %s)",
            filename,
            len(audio),
            mime_type,
        )
        request: dict[str, object] = {
            "file": (filename, audio, mime_type),
            "model": self._transcription_model,
            "response_format": "verbose_json",
        }
        if self._language:
            request["language"] = self._language

        started = time.monotonic()
        try:
            response = await self._get_client().audio.transcriptions.create(
                **request
            )
        except Exception as exc:
            failure = classify_error(exc, TRANSCRIPTION)
            logger.error(
                "Transcription failed for %s (%s): %s",
                filename,
                failure.kind.value,
                exc,
            )
            return failure

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Transcription completed in %dms for %s", elapsed_ms, filename)

        duration = getattr(response, "duration", None)
        return TranscriptionResult(
            text=response.text,
            duration_seconds=float(duration) if duration is not None else None,
            language=getattr(response, "language", None) or self._language,
            provider=PROVIDER_NAME,
        )

    async def rewrite(
        self, raw_text: str, style_guidance: str | None = None
    ) -> RewriteResult | ProviderFailure:
        """Rewrite a transcript with a chat model in JSON mode.

        An unreadable response (empty, not JSON, or without a non-empty
        ``corrected`` field) is reported as a failure so the caller can
        fall back to the raw text.
        """
        logger.info("Starting text processing for %d characters", len(raw_text))
        started = time.monotonic()
        try:
            response = await self._get_client().chat.completions.create(
                model=self._rewrite_model,
                response_format={"type": "json_object"},
                temperature=self._temperature,
                max_tokens=max(len(raw_text) * 2, 1000),
                messages=[
                    {
                        "role": "system",
                        "content": build_rewrite_instructions(style_guidance),
                    },
                    {"role": "user", "content": raw_text},
                ],
            )
        except Exception as exc:
            failure = classify_error(exc, TEXT_PROCESSING)
            logger.error(
                "Text processing failed (%s): %s", failure.kind.value, exc
            )
            return failure

        elapsed_ms = int((time.monotonic() - started) * 1000)
        content = response.choices[0].message.content if response.choices else None
        corrected = _parse_corrected(content)
        if corrected is None:
            logger.warning(
                "OpenAI returned an unreadable rewrite response: %r",
                (content or "")[:200],
            )
            return ProviderFailure(
                kind=FailureKind.UNKNOWN,
                message="Text processing returned an unreadable response.",
                provider=PROVIDER_NAME,
                operation=TEXT_PROCESSING,
            )

        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", None) if usage else None

        logger.info(
            "Text processing completed in %dms (model=%s, tokens=%s)",
            elapsed_ms,
            self._rewrite_model,
            tokens_used,
        )

        return RewriteResult(
            rewritten_text=corrected,
            prompt_used=style_guidance or DEFAULT_PROMPT,
            tokens_used=tokens_used,
            model=self._rewrite_model,
            processing_ms=elapsed_ms,
            provider=PROVIDER_NAME,
        )
