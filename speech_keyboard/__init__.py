"""Speech Keyboard -- audio transcription with AI correction and minute balances.

Public API re-exports for convenient access::

    from speech_keyboard import Settings, build_services, TranscriptionRequest
"""

__version__ = "1.0.0"

from speech_keyboard.config import Settings
from speech_keyboard.errors import (
    InsufficientBalanceError,
    InvalidInputError,
    LedgerNotFoundError,
    PersistenceError,
    ProviderError,
    SpeechKeyboardError,
)
from speech_keyboard.ledger import BalanceLedger
from speech_keyboard.models.result import Outcome, PipelineResult, TranscriptionRequest
from speech_keyboard.models.subscription import LedgerSnapshot, Tier
from speech_keyboard.pipeline import TranscriptionPipeline
from speech_keyboard.services import Services, build_services

__all__ = [
    "__version__",
    # Core
    "TranscriptionPipeline",
    "BalanceLedger",
    # Wiring
    "Settings",
    "Services",
    "build_services",
    # Models
    "TranscriptionRequest",
    "PipelineResult",
    "Outcome",
    "LedgerSnapshot",
    "Tier",
    # Errors
    "SpeechKeyboardError",
    "InvalidInputError",
    "ProviderError",
    "LedgerNotFoundError",
    "InsufficientBalanceError",
    "PersistenceError",
]
