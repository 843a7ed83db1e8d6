"""Shared test fixtures and helpers for Speech Keyboard tests.

Provides stub providers, sample data factories, and a throwaway
SQLite database for storage and ledger tests.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from collections.abc import Iterator

import pytest
from sqlalchemy import update
from sqlalchemy.pool import NullPool

from speech_keyboard.providers.base import (
    FailureKind,
    ProviderFailure,
    RewriteResult,
    SpeechToText,
    TextRewriter,
    TranscriptionResult,
)
from speech_keyboard.storage import Database, UserRepository
from speech_keyboard.storage.models import Subscription, User


# ---------------------------------------------------------------------------
# Sample data factories
# ---------------------------------------------------------------------------


def make_transcription_result(
    text: str = "um so today we uh need to ship the thing",
    duration_seconds: float | None = 42.5,
    language: str | None = "en",
) -> TranscriptionResult:
    """Create a TranscriptionResult with sensible defaults."""
    return TranscriptionResult(
        text=text,
        duration_seconds=duration_seconds,
        language=language,
        provider="stub",
    )


def make_rewrite_result(
    rewritten_text: str = "Today we need to ship the thing.",
    prompt_used: str = "Be concise.",
    tokens_used: int | None = 57,
) -> RewriteResult:
    """Create a RewriteResult with sensible defaults."""
    return RewriteResult(
        rewritten_text=rewritten_text,
        prompt_used=prompt_used,
        tokens_used=tokens_used,
        model="stub-model",
        processing_ms=12,
        provider="stub",
    )


def make_failure(
    kind: FailureKind = FailureKind.RATE_LIMITED,
    message: str = "OpenAI API rate limit exceeded. Please try again later.",
    operation: str = "transcription",
) -> ProviderFailure:
    """Create a ProviderFailure with sensible defaults."""
    return ProviderFailure(
        kind=kind, message=message, provider="stub", operation=operation
    )


# ---------------------------------------------------------------------------
# Stub providers
# ---------------------------------------------------------------------------


class StubTranscriber(SpeechToText):
    """SpeechToText returning a canned result and recording calls."""

    def __init__(
        self, result: TranscriptionResult | ProviderFailure | None = None
    ) -> None:
        self.result = result or make_transcription_result()
        self.calls: list[tuple[bytes, str, str]] = []

    @property
    def name(self) -> str:
        return "stub-stt"

    async def transcribe(
        self, audio: bytes, filename: str, mime_type: str
    ) -> TranscriptionResult | ProviderFailure:
        self.calls.append((audio, filename, mime_type))
        return self.result


class StubRewriter(TextRewriter):
    """TextRewriter returning a canned result and recording calls.

    When no result is given, echoes the guidance back as ``prompt_used``
    the way a real backend does.
    """

    def __init__(
        self,
        result: RewriteResult | ProviderFailure | None = None,
        rewritten_text: str = "Today we need to ship the thing.",
    ) -> None:
        self.result = result
        self.rewritten_text = rewritten_text
        self.calls: list[tuple[str, str | None]] = []

    @property
    def name(self) -> str:
        return "stub-rewrite"

    @property
    def default_prompt(self) -> str:
        return "Stub default prompt."

    async def rewrite(
        self, raw_text: str, style_guidance: str | None = None
    ) -> RewriteResult | ProviderFailure:
        self.calls.append((raw_text, style_guidance))
        if self.result is not None:
            return self.result
        return make_rewrite_result(
            rewritten_text=self.rewritten_text,
            prompt_used=style_guidance or self.default_prompt,
        )


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------


def make_database(path: str) -> Database:
    """Create a file-backed SQLite database with its schema.

    ``NullPool`` keeps connections from outliving the event loop of
    each ``asyncio.run()`` call.
    """
    database = Database(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    asyncio.run(database.create_all())
    return database


@pytest.fixture()
def database(tmp_path) -> Iterator[Database]:
    """Provide a fresh SQLite database per test."""
    db = make_database(str(tmp_path / "speech_keyboard.db"))
    yield db
    asyncio.run(db.dispose())


async def provision_user(
    database: Database,
    external_uid: str = "auth0|user-1",
    today: dt.date = dt.date(2024, 3, 15),
) -> User:
    """Provision a user with a free-tier ledger."""
    return await UserRepository(database).provision(external_uid, today=today)


async def set_ledger(
    database: Database,
    user_id: int,
    **values: object,
) -> None:
    """Overwrite ledger columns directly, bypassing ``BalanceLedger``."""
    async with database.transaction("set ledger") as session:
        await session.execute(
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
