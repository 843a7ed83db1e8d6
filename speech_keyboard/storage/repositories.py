"""Record accessors over the ORM models.

Each repository exposes create / find-by-id / find-by-user for one
record type.  All storage faults surface as ``PersistenceError``.
"""

from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal

from sqlalchemy import select

from speech_keyboard.models.subscription import (
    TIER_ALLOWANCE,
    Tier,
    first_day_of_next_month,
)
from speech_keyboard.storage.database import Database
from speech_keyboard.storage.models import Prompt, Subscription, Transcript, User

logger = logging.getLogger(__name__)


class UserRepository:
    """Accounts and their one-to-one ledger rows."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def provision(
        self,
        external_uid: str,
        email: str | None = None,
        today: dt.date | None = None,
    ) -> User:
        """Create a user and its free-tier ledger row in one transaction.

        Parameters
        ----------
        external_uid:
            Subject id from the external auth provider.  Must be unique.
        email:
            Optional contact email.
        today:
            Reference date for the first expiry.  Defaults to today.
        """
        today = today or dt.date.today()
        async with self._db.transaction("provision user") as session:
            user = User(
                external_uid=external_uid,
                email=email,
                subscription_status=Tier.FREE.value,
            )
            session.add(user)
            await session.flush()
            session.add(
                Subscription(
                    user_id=user.id,
                    status=Tier.FREE.value,
                    balance=TIER_ALLOWANCE[Tier.FREE],
                    expiry_date=first_day_of_next_month(today),
                )
            )
        logger.info("Provisioned user %d (external_uid=%s)", user.id, external_uid)
        return user

    async def find_by_id(self, user_id: int) -> User | None:
        async with self._db.transaction("find user") as session:
            return await session.get(User, user_id)

    async def find_by_external_uid(self, external_uid: str) -> User | None:
        async with self._db.transaction("find user") as session:
            result = await session.execute(
                select(User).where(User.external_uid == external_uid)
            )
            return result.scalar_one_or_none()

    async def find_all(self) -> list[User]:
        async with self._db.transaction("find users") as session:
            result = await session.execute(select(User).order_by(User.id))
            return list(result.scalars().all())


class TranscriptRepository:
    """Transcripts written by the pipeline."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(
        self,
        user_id: int,
        text_raw: str,
        text_final: str,
        prompt_used: str | None,
        duration_secs: float | None = None,
        audio_url: str | None = None,
    ) -> Transcript:
        duration = (
            Decimal(str(round(duration_secs, 2))) if duration_secs is not None else None
        )
        async with self._db.transaction("create transcript") as session:
            transcript = Transcript(
                user_id=user_id,
                audio_url=audio_url,
                duration_secs=duration,
                text_raw=text_raw,
                text_final=text_final,
                prompt_used=prompt_used,
            )
            session.add(transcript)
            await session.flush()
        return transcript

    async def find_by_id(self, transcript_id: int) -> Transcript | None:
        async with self._db.transaction("find transcript") as session:
            return await session.get(Transcript, transcript_id)

    async def find_by_user(self, user_id: int) -> list[Transcript]:
        """Return a user's transcripts, newest first."""
        async with self._db.transaction("list transcripts") as session:
            result = await session.execute(
                select(Transcript)
                .where(Transcript.user_id == user_id)
                .order_by(Transcript.created_at.desc(), Transcript.id.desc())
            )
            return list(result.scalars().all())


class PromptRepository:
    """Style-guidance templates, read as plain strings by callers."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(
        self, title: str, content: str, user_id: int | None = None
    ) -> Prompt:
        """Create a prompt; prompts without an owner are system defaults."""
        async with self._db.transaction("create prompt") as session:
            prompt = Prompt(
                user_id=user_id,
                title=title,
                content=content,
                is_default=user_id is None,
            )
            session.add(prompt)
            await session.flush()
        return prompt

    async def find_by_id(self, prompt_id: int) -> Prompt | None:
        async with self._db.transaction("find prompt") as session:
            return await session.get(Prompt, prompt_id)

    async def find_by_user(self, user_id: int) -> list[Prompt]:
        """Return the system defaults followed by the user's own prompts."""
        async with self._db.transaction("list prompts") as session:
            result = await session.execute(
                select(Prompt)
                .where((Prompt.user_id == user_id) | Prompt.is_default.is_(True))
                .order_by(Prompt.is_default.desc(), Prompt.id)
            )
            return list(result.scalars().all())

    async def find_defaults(self) -> list[Prompt]:
        async with self._db.transaction("list default prompts") as session:
            result = await session.execute(
                select(Prompt).where(Prompt.is_default.is_(True)).order_by(Prompt.id)
            )
            return list(result.scalars().all())

    async def update(
        self,
        prompt_id: int,
        title: str | None = None,
        content: str | None = None,
    ) -> Prompt | None:
        """Change a prompt's title and/or content.

        Ownership and the default flag are fixed at creation.  Returns
        ``None`` if the prompt does not exist.
        """
        async with self._db.transaction("update prompt") as session:
            prompt = await session.get(Prompt, prompt_id)
            if prompt is None:
                return None
            if title is not None:
                prompt.title = title
            if content is not None:
                prompt.content = content
        return prompt

    async def delete(self, prompt_id: int) -> bool:
        """Delete a prompt; returns ``False`` if it did not exist."""
        async with self._db.transaction("delete prompt") as session:
            prompt = await session.get(Prompt, prompt_id)
            if prompt is None:
                return False
            await session.delete(prompt)
        logger.info("Deleted prompt %d", prompt_id)
        return True
