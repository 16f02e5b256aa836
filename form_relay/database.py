"""Database connection management for form-relay.

This module handles PostgreSQL connection pooling and session management
using SQLModel and asyncpg. A ``Database`` is constructed once at process start
and passed explicitly to whatever needs it; there is no module-level engine.
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Imported for its side effect of registering tables on SQLModel.metadata
from form_relay import models  # noqa: F401

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Convert provider URLs to the asyncpg dialect.

    Supabase and Railway hand out ``postgres://`` or ``postgresql://`` URLs but
    SQLAlchemy async requires ``postgresql+asyncpg://``.

    Args:
        database_url: Raw connection string

    Returns:
        Connection string usable by ``create_async_engine``

    Example:
        >>> normalize_database_url("postgres://u:p@db:5432/app")
        'postgresql+asyncpg://u:p@db:5432/app'
    """
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


class Database:
    """Owns the async engine and session factory for one process.

    Attributes:
        url: Normalized connection string
        engine: SQLAlchemy async engine
    """

    def __init__(self, database_url: str, *, engine: AsyncEngine | None = None):
        """Initialize the engine.

        Args:
            database_url: PostgreSQL connection string
            engine: Pre-built engine (tests inject their own)
        """
        self.url = normalize_database_url(database_url)
        if engine is None:
            engine = create_async_engine(
                self.url,
                echo=os.environ.get("DEBUG", "").lower() == "true",
                future=True,
                pool_size=10,
                max_overflow=5,
                pool_pre_ping=True,
            )
        self.engine = engine
        self._session_maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def create_tables(self) -> None:
        """Create database tables (and the submission_id unique index) if missing.

        Should be called on application startup.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database tables created/verified")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session bound to this database.

        Example:
            >>> async with database.session() as session:
            ...     await session.execute(select(Submission))
        """
        async with self._session_maker() as session:
            yield session

    async def ping(self) -> bool:
        """Check if the database is reachable.

        Returns:
            bool: True if a trivial query succeeds, False otherwise
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:  # noqa: BLE001
            logger.error(f"Database health check failed: {e}")
            return False

    async def dispose(self) -> None:
        """Close the connection pool.

        Should be called on application shutdown.
        """
        await self.engine.dispose()
        logger.info("Database connection pool closed")
