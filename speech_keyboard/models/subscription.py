"""Subscription tiers and ledger value types."""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import Any


class Tier(str, enum.Enum):
    """Subscription tier of a ledger."""

    FREE = "free"
    PREMIUM = "premium"


TIER_ALLOWANCE: dict[Tier, int] = {
    Tier.FREE: 10,
    Tier.PREMIUM: 1000,
}
"""Minutes added to a ledger on each monthly replenishment."""


def first_day_of_next_month(today: dt.date) -> dt.date:
    """Return the first day of the calendar month after ``today``."""
    if today.month == 12:
        return dt.date(today.year + 1, 1, 1)
    return dt.date(today.year, today.month + 1, 1)


@dataclass(frozen=True)
class BalanceCheck:
    """Outcome of ``BalanceLedger.check_balance()``."""

    has_balance: bool
    current_balance: int


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view of a user's ledger row."""

    user_id: int
    status: Tier
    balance: int
    expiry_date: dt.date | None
    subscribe_date: dt.datetime | None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape returned by the ledger endpoints."""
        return {
            "status": self.status.value,
            "balance": self.balance,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "subscribe_date": (
                self.subscribe_date.isoformat() if self.subscribe_date else None
            ),
        }
