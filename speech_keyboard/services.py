"""Process-wide service wiring.

``build_services()`` constructs every long-lived collaborator exactly
once from ``Settings``.  Request handlers receive the resulting
``Services`` object; nothing is looked up from module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from speech_keyboard.config import Settings
from speech_keyboard.ledger import BalanceLedger
from speech_keyboard.pipeline import TranscriptionPipeline
from speech_keyboard.providers import SpeechProvider, create_provider
from speech_keyboard.storage import (
    Database,
    PromptRepository,
    TranscriptRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by all requests."""

    settings: Settings
    database: Database
    provider: SpeechProvider
    ledger: BalanceLedger
    users: UserRepository
    transcripts: TranscriptRepository
    prompts: PromptRepository
    pipeline: TranscriptionPipeline

    async def start(self) -> None:
        await self.database.create_all()

    async def close(self) -> None:
        await self.database.dispose()


def build_services(
    settings: Settings,
    provider: SpeechProvider | None = None,
    database: Database | None = None,
) -> Services:
    """Build the service graph.

    Parameters
    ----------
    settings:
        Process settings.
    provider:
        Pre-built provider.  If ``None``, one is created from
        ``settings.provider`` and ``settings.provider_options``.
    database:
        Pre-built database.  If ``None``, one is created from
        ``settings.database_url``.
    """
    if provider is None:
        provider = create_provider(settings.provider, **settings.provider_options)
    if database is None:
        database = Database(settings.database_url)

    ledger = BalanceLedger(database)
    transcripts = TranscriptRepository(database)
    pipeline = TranscriptionPipeline(
        transcriber=provider,
        rewriter=provider,
        transcripts=transcripts,
        ledger=ledger,
        meter_usage=settings.meter_usage,
    )

    logger.info(
        "Services built (provider=%s, metering=%s)",
        provider.name,
        settings.meter_usage,
    )

    return Services(
        settings=settings,
        database=database,
        provider=provider,
        ledger=ledger,
        users=UserRepository(database),
        transcripts=transcripts,
        prompts=PromptRepository(database),
        pipeline=pipeline,
    )
