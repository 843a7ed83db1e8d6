"""Speech Keyboard data models."""

from speech_keyboard.models.result import Outcome, PipelineResult, TranscriptionRequest
from speech_keyboard.models.subscription import (
    TIER_ALLOWANCE,
    BalanceCheck,
    LedgerSnapshot,
    Tier,
)

__all__ = [
    "BalanceCheck",
    "LedgerSnapshot",
    "Outcome",
    "PipelineResult",
    "TIER_ALLOWANCE",
    "Tier",
    "TranscriptionRequest",
]
