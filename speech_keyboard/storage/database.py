"""Async database engine and session management."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from speech_keyboard.errors import PersistenceError
from speech_keyboard.storage.models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine and hands out transactional sessions.

    Usage::

        async with Database("sqlite+aiosqlite:///app.db") as db:
            async with db.transaction("load user") as session:
                ...

    Parameters
    ----------
    url:
        Async SQLAlchemy URL (``sqlite+aiosqlite://``,
        ``postgresql+asyncpg://``, ...).
    **engine_kwargs:
        Extra keyword arguments for ``create_async_engine``.
    """

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        self._url = url
        self._engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        if self._engine.dialect.name == "sqlite":
            event.listen(
                self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys
            )
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create any missing tables."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready (%s)", self._engine.url.render_as_string())

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction that commits on exit.

        Storage faults are re-raised as ``PersistenceError``; domain
        exceptions raised by the caller pass through unchanged after
        the transaction is rolled back.

        Parameters
        ----------
        action:
            Short description used in error messages (e.g.,
            ``"create transcript"``).
        """
        try:
            async with self._sessionmaker() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to {action}: {exc}") from exc

    async def __aenter__(self) -> Database:
        await self.create_all()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()
