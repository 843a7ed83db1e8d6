"""Pipeline input and output types."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from speech_keyboard.providers.base import ProviderFailure


@dataclass(frozen=True)
class TranscriptionRequest:
    """Input to ``TranscriptionPipeline.run()``."""

    user_id: int | None
    """Trusted user identifier from the boundary layer."""

    audio: bytes | None
    """Raw audio file contents."""

    filename: str = "audio.wav"
    """Original upload filename."""

    mime_type: str = "audio/wav"
    """MIME type of the upload."""

    style_guidance: str | None = None
    """Optional caller instructions for the rewrite stage."""


class Outcome(str, enum.Enum):
    """The three observable pipeline outcomes."""

    COMPLETED = "completed"
    """Transcription and rewrite both succeeded."""

    DEGRADED = "degraded"
    """Transcription succeeded, rewrite failed; raw text returned."""

    FAILED = "failed"
    """Transcription failed; no text, nothing persisted."""


@dataclass(frozen=True)
class PipelineResult:
    """Output of ``TranscriptionPipeline.run()``."""

    outcome: Outcome

    raw_text: str | None = None
    """Speech-to-text output."""

    final_text: str | None = None
    """Rewritten text, or ``raw_text`` when the rewrite failed."""

    duration_seconds: float | None = None

    prompt_used: str | None = None
    """Guidance applied by a successful rewrite.

    After a failed rewrite this is the caller's guidance, or ``"default"``
    when none was given.
    """

    transcript_id: int | None = None
    """Id of the persisted transcript, or ``None`` if saving failed."""

    failure: ProviderFailure | None = None
    """The failed stage's error for ``DEGRADED`` and ``FAILED`` outcomes."""

    minutes_debited: int = 0

    metadata: dict[str, Any] = field(default_factory=dict)
    """Provider diagnostics (language, tokens used, model)."""

    @property
    def success(self) -> bool:
        return self.outcome is not Outcome.FAILED

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON body returned by the HTTP boundary."""
        if self.outcome is Outcome.FAILED:
            return {
                "success": False,
                "message": "Transcription failed",
                "error": self.failure.message if self.failure else None,
            }

        data: dict[str, Any] = {
            "transcriptId": self.transcript_id,
            "rawTranscript": self.raw_text,
            "finalText": self.final_text,
            "duration": self.duration_seconds,
        }
        if self.outcome is Outcome.DEGRADED:
            data["correctionFailed"] = True
            data["correctionError"] = self.failure.message if self.failure else None
        else:
            data["promptUsed"] = self.prompt_used
        return {"success": True, "data": data}
