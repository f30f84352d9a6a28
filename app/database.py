"""Database utilities for the StreamCache service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .errors import StorageUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_pragmas)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )
        self._available = False

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def available(self) -> bool:
        """Whether the schema was created and the store may be used."""

        return self._available

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        from . import db_models  # noqa: F401  registers the mapped tables

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        self._available = True

    async def initialise(self, *, strict: bool = False) -> bool:
        """Create the schema, degrading to an unavailable store on failure."""

        try:
            await self.create_all()
        except (SQLAlchemyError, OSError) as exc:
            self._available = False
            if strict:
                raise StorageUnavailable(str(exc)) from exc
            logger.warning(
                "Local store could not be initialised, continuing without it: %s",
                exc,
            )
        return self._available

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            async with session.begin():
                yield session


def _enable_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
    finally:
        cursor.close()
