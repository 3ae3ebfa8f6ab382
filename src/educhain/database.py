"""Async SQLAlchemy engine and session management."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from educhain.config import Settings


class Database:
    """Owns one async engine and its session factory.

    Created by whoever owns the process lifecycle (the app lifespan, a test
    fixture) and passed to ``SqlStore``; nothing reaches it through module
    globals.
    """

    def __init__(self, url: str, *, pool_size: int = 20, max_overflow: int = 10) -> None:
        self.url = url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )

    async def connect(self) -> None:
        """Create the engine and session factory."""
        self._engine = create_async_engine(
            self.url,
            pool_size=self._pool_size,
            max_overflow=self._max_overflow,
            pool_pre_ping=True,
            echo=False,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def dispose(self) -> None:
        """Dispose of the engine."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._engine

    def session(self) -> AsyncSession:
        """Open a new session; use as ``async with db.session() as session``."""
        if self._session_factory is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._session_factory()
