"""TranscriptionPipeline -- transcription-correction orchestrator.

Wires speech-to-text, text rewriting, transcript persistence and
(optionally) balance metering into a single request flow::

    audio -> transcribe -> rewrite -> save transcript -> result

A rewrite failure degrades to the raw transcription instead of
failing the request.  A transcription failure stops the pipeline
before anything is persisted or debited.
"""

from __future__ import annotations

import logging
import math

from speech_keyboard.errors import (
    InsufficientBalanceError,
    InvalidInputError,
    PersistenceError,
)
from speech_keyboard.ledger import BalanceLedger
from speech_keyboard.models.result import Outcome, PipelineResult, TranscriptionRequest
from speech_keyboard.providers.base import (
    ProviderFailure,
    SpeechToText,
    TextRewriter,
)
from speech_keyboard.storage.repositories import TranscriptRepository

logger = logging.getLogger(__name__)

FALLBACK_PROMPT_MARKER = "default"
"""Stored as ``prompt_used`` when a rewrite fails without caller guidance."""

MINIMUM_BALANCE_MINUTES = 1


def minutes_used(duration_seconds: float | None) -> int:
    """Whole minutes billed for an audio duration, rounded up."""
    if not duration_seconds or duration_seconds <= 0:
        return 0
    return math.ceil(duration_seconds / 60)


class TranscriptionPipeline:
    """Stateless per-request orchestrator.

    Constructed once per process and shared by all request handlers.

    Parameters
    ----------
    transcriber:
        Speech-to-text capability.
    rewriter:
        Text-rewrite capability.
    transcripts:
        Repository used to persist each run.
    ledger:
        Balance ledger.  Only consulted when ``meter_usage`` is set.
    meter_usage:
        When ``True``, refuse requests from users with no remaining
        minutes and debit the minutes used after each transcription.
    """

    def __init__(
        self,
        transcriber: SpeechToText,
        rewriter: TextRewriter,
        transcripts: TranscriptRepository,
        ledger: BalanceLedger | None = None,
        meter_usage: bool = False,
    ) -> None:
        if meter_usage and ledger is None:
            raise ValueError("meter_usage requires a ledger")
        self._transcriber = transcriber
        self._rewriter = rewriter
        self._transcripts = transcripts
        self._ledger = ledger
        self._meter_usage = meter_usage

        logger.info(
            "TranscriptionPipeline initialized (stt=%s, rewrite=%s, metering=%s)",
            transcriber.name,
            rewriter.name,
            "enabled" if meter_usage else "disabled",
        )

    @property
    def meter_usage(self) -> bool:
        return self._meter_usage

    async def _gate(self, ledger: BalanceLedger, user_id: int) -> None:
        await ledger.replenish_if_expired(user_id)
        check = await ledger.check_balance(user_id, MINIMUM_BALANCE_MINUTES)
        if not check.has_balance:
            logger.info(
                "Refusing transcription for user %d (balance=%d)",
                user_id,
                check.current_balance,
            )
            raise InsufficientBalanceError(
                user_id, check.current_balance, MINIMUM_BALANCE_MINUTES
            )

    async def run(self, request: TranscriptionRequest) -> PipelineResult:
        """Transcribe, rewrite and persist one audio upload.

        Steps:
            1. Validate the request (audio and user id present)
            2. Optionally gate on the user's balance
            3. Speech-to-text; stop with ``FAILED`` on failure
            4. Rewrite; fall back to the raw text on failure
            5. Persist the transcript (best effort)
            6. Optionally debit the minutes used (best effort)

        Parameters
        ----------
        request:
            The upload and its caller-supplied options.

        Returns
        -------
        PipelineResult
            ``COMPLETED``, ``DEGRADED`` or ``FAILED``.

        Raises
        ------
        InvalidInputError
            If the audio or user id is missing.
        InsufficientBalanceError
            If metering is enabled and the user has no minutes left.
        LedgerNotFoundError
            If metering is enabled and the user has no ledger row.
        """
        if not request.audio:
            raise InvalidInputError("No audio file provided")
        if request.user_id is None:
            raise InvalidInputError("User ID is required")
        user_id = request.user_id

        logger.info(
            "Processing transcription and correction for file: %s for user: %d",
            request.filename,
            user_id,
        )

        ledger = self._ledger if self._meter_usage else None
        if ledger is not None:
            await self._gate(ledger, user_id)

        # Step 1: speech-to-text
        transcription = await self._transcriber.transcribe(
            request.audio, request.filename, request.mime_type
        )
        if isinstance(transcription, ProviderFailure):
            logger.warning(
                "Transcription failed for user %d: %s",
                user_id,
                transcription.message,
            )
            return PipelineResult(outcome=Outcome.FAILED, failure=transcription)

        raw_text = transcription.text

        # Step 2: rewrite
        rewrite = await self._rewriter.rewrite(raw_text, request.style_guidance)
        metadata: dict[str, object] = {"language": transcription.language}
        if isinstance(rewrite, ProviderFailure):
            logger.warning(
                "Rewrite failed for user %d; falling back to raw transcript: %s",
                user_id,
                rewrite.message,
            )
            outcome = Outcome.DEGRADED
            final_text = raw_text
            prompt_used = request.style_guidance or FALLBACK_PROMPT_MARKER
            failure: ProviderFailure | None = rewrite
        else:
            outcome = Outcome.COMPLETED
            final_text = rewrite.rewritten_text
            prompt_used = rewrite.prompt_used
            failure = None
            metadata["tokens_used"] = rewrite.tokens_used
            metadata["model"] = rewrite.model

        # Step 3: persist, never blocking the response
        transcript_id: int | None = None
        try:
            transcript = await self._transcripts.create(
                user_id=user_id,
                text_raw=raw_text,
                text_final=final_text,
                prompt_used=prompt_used,
                duration_secs=transcription.duration_seconds,
            )
            transcript_id = transcript.id
            logger.info("Saved transcript to database with ID: %d", transcript_id)
        except PersistenceError:
            logger.warning(
                "Failed to save transcript for user %d", user_id, exc_info=True
            )

        # Step 4: metering, also best effort once text exists
        debited = 0
        minutes = minutes_used(transcription.duration_seconds)
        if ledger is not None and minutes:
            try:
                await ledger.debit(user_id, minutes)
                debited = minutes
            except PersistenceError:
                logger.warning(
                    "Failed to debit %d minutes from user %d",
                    minutes,
                    user_id,
                    exc_info=True,
                )

        return PipelineResult(
            outcome=outcome,
            raw_text=raw_text,
            final_text=final_text,
            duration_seconds=transcription.duration_seconds,
            prompt_used=prompt_used,
            transcript_id=transcript_id,
            failure=failure,
            minutes_debited=debited,
            metadata=metadata,
        )
