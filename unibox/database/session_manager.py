"""
Async database session manager.

One engine and session factory per process, created during app start-up and
disposed on shutdown. SQLite URLs use aiosqlite; PostgreSQL URLs are
normalized to the asyncpg driver.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

# Import models so that SQLModel.metadata knows every table
from unibox.database import models  # noqa: F401

logger = logging.getLogger("unibox.database.session_manager")


class DatabaseSessionManager:
    """
    Session manager for the conversation store.

    Example:
        manager = DatabaseSessionManager("sqlite+aiosqlite:///./unibox.db")
        await manager.initialize(create_schema=True)

        async with manager.get_session() as session:
            session.add(account)
            # Commits on success, rolls back on error

        await manager.cleanup()
    """

    def __init__(self, url: str, *, echo: bool = False):
        self.url = self._normalize_url(url)
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    @staticmethod
    def _normalize_url(url: str) -> str:
        """
        Normalize a database URL to an async driver.

        Raises:
            ValueError: If the scheme is not SQLite or PostgreSQL
        """
        if url.startswith(("sqlite+aiosqlite://", "postgresql+asyncpg://")):
            return url
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        raise ValueError(
            f"Unsupported database URL: {url}. "
            "Expected sqlite+aiosqlite://, postgresql:// or postgresql+asyncpg://"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseSessionManager not initialized")
        return self._engine

    def _create_engine(self) -> AsyncEngine:
        if self.is_sqlite:
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url or self.url.endswith("://"):
                # Share one connection so every session sees the same in-memory DB
                kwargs["poolclass"] = StaticPool
            engine = create_async_engine(self.url, echo=self.echo, **kwargs)

            @event.listens_for(engine.sync_engine, "connect")
            def _enable_foreign_keys(dbapi_connection, _record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine

        return create_async_engine(
            self.url,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=self.echo,
        )

    async def initialize(self, create_schema: bool = False) -> None:
        """Create the engine and session factory, optionally creating tables."""
        if self._engine is not None:
            logger.warning("DatabaseSessionManager already initialized")
            return

        self._engine = self._create_engine()
        self._session_maker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

        async with self._engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        if create_schema:
            await self.create_schema()

        logger.info(f"Database initialized ({self.url.split('://', 1)[0]})")

    async def create_schema(self) -> None:
        """Create all tables (idempotent)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database schema created")

    async def cleanup(self) -> None:
        """Dispose the engine and drop the session factory."""
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_maker = None

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Yield a session that commits on success and rolls back on error.

        Raises:
            RuntimeError: If the manager has not been initialized
        """
        if self._session_maker is None:
            raise RuntimeError("DatabaseSessionManager not initialized")

        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
