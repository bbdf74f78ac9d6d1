"""Async database connection management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from orchestra.core.config import Settings, get_settings
from orchestra.persistence.orm import Base


def _engine_options(url: str, echo: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        if ":memory:" in url:
            # One shared connection, otherwise every checkout sees an empty database
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        return options

    options.update(
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )
    return options


class Database:
    """
    Owns the async engine and session maker for one database.

    Constructed explicitly and passed to the stores that need it.

    Example:
        >>> db = Database("sqlite+aiosqlite:///./orchestra.db")
        >>> await db.init_schema()
        >>> async with db.session() as session:
        ...     await session.execute(query)
    """

    def __init__(self, url: str | None = None, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.url = url or settings.database_url
        self._engine: AsyncEngine = create_async_engine(
            self.url,
            **_engine_options(self.url, settings.database_echo),
        )
        self._session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine created")

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session.

        Commits when the block exits normally, rolls back on error.

        Yields:
            AsyncSession instance.
        """
        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_schema(self) -> None:
        """Create all tables if they don't exist."""
        logger.info("Initializing database schema")

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database schema initialized")

    async def drop_schema(self) -> None:
        """
        Drop all database tables.

        WARNING: This will delete all data!
        """
        logger.warning("Dropping all database tables")

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        logger.info("All tables dropped")

    async def close(self) -> None:
        """Close database connections."""
        await self._engine.dispose()
        logger.info("Database connections closed")

    async def health_check(self) -> bool:
        """
        Check database connectivity.

        Returns:
            True if database is reachable.
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
