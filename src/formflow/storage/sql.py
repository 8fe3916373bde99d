"""SQLAlchemy storage base: engine lifecycle and session handling."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from formflow.exceptions import StorageError

from .tables import Base

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///formflow.sqlite"


class StorageBase:
    """Base class for SQL storage with engine lifecycle helpers.

    Provides:
    - Engine creation from a URL, or adoption of an existing engine
    - Table creation on ``initialize()``
    - A transactional session context that maps driver errors to StorageError
    """

    def __init__(
        self,
        url: str | None = None,
        engine: AsyncEngine | None = None,
        echo: bool = False,
    ) -> None:
        """Initialize storage.

        Args:
            url: SQLAlchemy async database URL. Defaults to a local SQLite file.
            engine: Existing engine to use instead of creating one.
            echo: Log emitted SQL.
        """
        self._url = url or DEFAULT_DATABASE_URL
        self._echo = echo
        self._engine: AsyncEngine | None = engine
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, raising if not initialized."""
        if self._engine is None or self._sessions is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        return self._engine

    async def initialize(self) -> None:
        """Create the engine (if needed) and all tables."""
        if self._engine is None:
            kwargs: dict[str, Any] = {"echo": self._echo}
            if ":memory:" in self._url:
                # One shared connection, otherwise each checkout sees an empty database
                kwargs["poolclass"] = StaticPool
                kwargs["connect_args"] = {"check_same_thread": False}
            self._engine = create_async_engine(self._url, **kwargs)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create tables: {e}") from e

    async def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction committed on exit."""
        if self._sessions is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        try:
            async with self._sessions() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}") from e


__all__ = ["DEFAULT_DATABASE_URL", "StorageBase"]
