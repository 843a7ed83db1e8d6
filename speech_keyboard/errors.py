"""Speech Keyboard error hierarchy.

All domain exceptions inherit from ``SpeechKeyboardError`` so callers
can catch a single base class while still handling specific error
types when needed.

Provider adapters do not raise for backend failures -- they return a
``ProviderFailure`` value (see ``speech_keyboard.providers.base``).
``ProviderError`` exists for callers that want to escalate such a
value into an exception.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from speech_keyboard.providers.base import ProviderFailure


class SpeechKeyboardError(Exception):
    """Base exception for all Speech Keyboard errors."""


class InvalidInputError(SpeechKeyboardError):
    """Raised when request data is missing or malformed."""


class ProviderError(SpeechKeyboardError):
    """Raised when a provider failure is escalated by a caller."""

    def __init__(self, failure: ProviderFailure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class LedgerNotFoundError(SpeechKeyboardError):
    """Raised when a user has no subscription ledger row.

    Every user is provisioned with a ledger row, so this indicates a
    data-integrity problem rather than a normal user-facing condition.
    """

    def __init__(self, user_id: int) -> None:
        super().__init__(f"Subscription not found for user {user_id}")
        self.user_id = user_id


class InsufficientBalanceError(SpeechKeyboardError):
    """Raised by the metering gate when a user's balance is too low."""

    def __init__(self, user_id: int, current_balance: int, required: int) -> None:
        super().__init__(
            f"User {user_id} has {current_balance} minute(s), {required} required"
        )
        self.user_id = user_id
        self.current_balance = current_balance
        self.required = required


class PersistenceError(SpeechKeyboardError):
    """Raised when the storage layer fails to read or write a record."""
