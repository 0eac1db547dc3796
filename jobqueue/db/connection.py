"""
Database connection management.
Handles the async SQLAlchemy engine shared by a process.
"""

import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from jobqueue.config import Settings
from jobqueue.errors import StartupError

logger = logging.getLogger(__name__)


class Datastore:
    """
    Owner of the process's database engine.

    Opened once at startup and closed by the shutdown coordinator after
    in-flight work has stopped.
    """

    def __init__(self, engine: AsyncEngine, ping_timeout: float = 2.0):
        self._engine = engine
        self._ping_timeout = ping_timeout

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @classmethod
    async def open(cls, settings: Settings) -> "Datastore":
        """
        Create the engine and verify the database answers.

        Raises:
            StartupError: If the database is unreachable within
                ``database_connect_timeout_seconds``.
        """
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
        datastore = cls(engine, ping_timeout=settings.health_check_timeout_seconds)

        try:
            async with asyncio.timeout(settings.database_connect_timeout_seconds):
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, TimeoutError) as e:
            await engine.dispose()
            raise StartupError(f"database unreachable: {e}") from e

        logger.info("Database connection initialized")
        return datastore

    async def ping(self) -> bool:
        """Return True if a trivial query succeeds within the ping timeout."""
        try:
            async with asyncio.timeout(self._ping_timeout):
                async with self._engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, TimeoutError) as e:
            logger.error(f"database health check failed: {e}")
            return False
        return True

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database connection closed")
