"""BalanceLedger -- per-user transcription minute accounting.

Every mutation is a single ``UPDATE ... RETURNING`` statement so that
concurrent requests for the same user cannot lose updates to a stale
read.  Balances are never computed in process memory and written back.

Tiers replenish additively: on expiry the tier allowance is added to
whatever balance remains and the expiry moves to the first day of the
next calendar month.

``debit`` enforces no floor.  A balance may go negative; the metering
gate in ``TranscriptionPipeline`` refuses the next request instead.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import case, select, update

from speech_keyboard.errors import InvalidInputError, LedgerNotFoundError
from speech_keyboard.models.subscription import (
    TIER_ALLOWANCE,
    BalanceCheck,
    LedgerSnapshot,
    Tier,
    first_day_of_next_month,
)
from speech_keyboard.storage.database import Database
from speech_keyboard.storage.models import Subscription, User

logger = logging.getLogger(__name__)

_COLUMNS = (
    Subscription.user_id,
    Subscription.status,
    Subscription.balance,
    Subscription.expiry_date,
    Subscription.subscribe_date,
)


def _snapshot(row: Any) -> LedgerSnapshot:
    return LedgerSnapshot(
        user_id=row.user_id,
        status=Tier(row.status),
        balance=row.balance,
        expiry_date=row.expiry_date,
        subscribe_date=row.subscribe_date,
    )


def _require_positive(minutes: int) -> None:
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
        raise InvalidInputError(f"minutes must be a positive integer, got {minutes!r}")


class BalanceLedger:
    """Balance and tier operations over the ``subscriptions`` table.

    Parameters
    ----------
    database:
        Shared ``Database`` instance.
    today:
        Clock returning the current date.  Injected for tests.
    """

    def __init__(
        self,
        database: Database,
        today: Callable[[], dt.date] = dt.date.today,
    ) -> None:
        self._db = database
        self._today = today

    async def _apply(self, action: str, stmt: Any) -> LedgerSnapshot | None:
        """Execute a single-row update and return the new row, if any."""
        async with self._db.transaction(action) as session:
            result = await session.execute(
                stmt.returning(*_COLUMNS).execution_options(synchronize_session=False)
            )
            row = result.one_or_none()
        return _snapshot(row) if row is not None else None

    async def get_snapshot(self, user_id: int) -> LedgerSnapshot:
        """Return the user's current ledger row.

        Raises
        ------
        LedgerNotFoundError
            If the user has no ledger row.
        """
        async with self._db.transaction("read subscription") as session:
            result = await session.execute(
                select(*_COLUMNS).where(Subscription.user_id == user_id)
            )
            row = result.one_or_none()
        if row is None:
            logger.error(
                "Subscription not found for user %d - this should not happen", user_id
            )
            raise LedgerNotFoundError(user_id)
        return _snapshot(row)

    async def check_balance(self, user_id: int, required_minutes: int) -> BalanceCheck:
        """Report whether the user can afford ``required_minutes``.

        Read-only.

        Raises
        ------
        LedgerNotFoundError
            If the user has no ledger row.
        """
        snapshot = await self.get_snapshot(user_id)
        return BalanceCheck(
            has_balance=snapshot.balance >= required_minutes,
            current_balance=snapshot.balance,
        )

    async def debit(self, user_id: int, minutes: int) -> LedgerSnapshot:
        """Subtract ``minutes`` from the balance without a floor check.

        Raises
        ------
        InvalidInputError
            If ``minutes`` is not a positive integer.
        LedgerNotFoundError
            If the user has no ledger row.
        """
        _require_positive(minutes)
        snapshot = await self._apply(
            "debit balance",
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .values(balance=Subscription.balance - minutes),
        )
        if snapshot is None:
            raise LedgerNotFoundError(user_id)
        logger.info(
            "Deducted %d minutes from user %d, remaining: %d",
            minutes,
            user_id,
            snapshot.balance,
        )
        if snapshot.balance < 0:
            logger.warning("User %d is overdrawn (%d minutes)", user_id, snapshot.balance)
        return snapshot

    async def credit(self, user_id: int, minutes: int) -> LedgerSnapshot:
        """Add purchased ``minutes`` to the balance.

        Raises
        ------
        InvalidInputError
            If ``minutes`` is not a positive integer.
        LedgerNotFoundError
            If the user has no ledger row.
        """
        _require_positive(minutes)
        snapshot = await self._apply(
            "credit balance",
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .values(balance=Subscription.balance + minutes),
        )
        if snapshot is None:
            raise LedgerNotFoundError(user_id)
        logger.info(
            "Added %d minutes to user %d, new balance: %d",
            minutes,
            user_id,
            snapshot.balance,
        )
        return snapshot

    def _allowance_expr(self) -> Any:
        return case(
            (Subscription.status == Tier.PREMIUM.value, TIER_ALLOWANCE[Tier.PREMIUM]),
            else_=TIER_ALLOWANCE[Tier.FREE],
        )

    async def replenish_if_expired(self, user_id: int) -> LedgerSnapshot:
        """Add the tier allowance if the ledger's expiry date has passed.

        A ledger expiring today counts as expired.  Calling this again
        after a replenishment is a no-op until the new expiry date.

        Raises
        ------
        LedgerNotFoundError
            If the user has no ledger row.
        """
        today = self._today()
        snapshot = await self._apply(
            "replenish balance",
            update(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.expiry_date <= today,
            )
            .values(
                balance=Subscription.balance + self._allowance_expr(),
                expiry_date=first_day_of_next_month(today),
            ),
        )
        if snapshot is None:
            return await self.get_snapshot(user_id)
        logger.info(
            "Reset monthly balance for user %d, added %d minutes",
            user_id,
            TIER_ALLOWANCE[snapshot.status],
        )
        return snapshot

    async def replenish_all_expired(self) -> int:
        """Replenish every expired ledger in one statement.

        Returns
        -------
        int
            Number of ledgers replenished.
        """
        today = self._today()
        async with self._db.transaction("replenish expired balances") as session:
            result = await session.execute(
                update(Subscription)
                .where(Subscription.expiry_date <= today)
                .values(
                    balance=Subscription.balance + self._allowance_expr(),
                    expiry_date=first_day_of_next_month(today),
                )
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0
        logger.info("Replenished %d expired subscription(s)", count)
        return count

    async def change_tier(self, user_id: int, new_tier: Tier | str) -> LedgerSnapshot:
        """Move the ledger to ``new_tier``.

        Upgrading to premium adds the premium allowance to the existing
        balance.  Downgrading to free leaves the balance untouched.  In
        both cases the expiry moves to the first day of next month.
        Upgrading a ledger that is already premium changes nothing.

        Raises
        ------
        InvalidInputError
            If ``new_tier`` is not a known tier.
        LedgerNotFoundError
            If the user has no ledger row.
        """
        try:
            tier = Tier(new_tier)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown subscription tier: {new_tier!r}") from exc

        next_expiry = first_day_of_next_month(self._today())
        stmt = update(Subscription).where(Subscription.user_id == user_id)
        if tier is Tier.PREMIUM:
            stmt = stmt.where(Subscription.status != Tier.PREMIUM.value).values(
                status=tier.value,
                balance=Subscription.balance + TIER_ALLOWANCE[Tier.PREMIUM],
                expiry_date=next_expiry,
            )
        else:
            stmt = stmt.values(status=tier.value, expiry_date=next_expiry)

        async with self._db.transaction("change tier") as session:
            result = await session.execute(
                stmt.returning(*_COLUMNS).execution_options(synchronize_session=False)
            )
            row = result.one_or_none()
            if row is not None:
                await session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(subscription_status=tier.value)
                    .execution_options(synchronize_session=False)
                )

        if row is None:
            return await self.get_snapshot(user_id)
        logger.info("Changed user %d to %s tier", user_id, tier.value)
        return _snapshot(row)

    async def upgrade_to_premium(self, user_id: int) -> LedgerSnapshot:
        return await self.change_tier(user_id, Tier.PREMIUM)

    async def downgrade_to_free(self, user_id: int) -> LedgerSnapshot:
        return await self.change_tier(user_id, Tier.FREE)
