"""Database connection management"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from src.config import DATABASE_URL
from src.exceptions import ConnectionError

logger = logging.getLogger(__name__)


class Database:
    """
    Database connection pool manager

    One instance is created by the API lifespan and injected into the
    Postgres repository. There is no module-level instance.
    """

    def __init__(
        self,
        connection_string: str = DATABASE_URL,
        min_size: int = 2,
        max_size: int = 10
    ):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[AsyncConnectionPool] = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def init_pool(self) -> None:
        """Initialize connection pool"""
        logger.info("Initializing database connection pool")
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=self.min_size,
            max_size=self.max_size,
            open=False
        )
        await self._pool.open()

    async def close_pool(self) -> None:
        """Close connection pool"""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get database connection from pool (rows come back as dicts)"""
        if not self._pool:
            raise ConnectionError("Database pool not initialized", operation="connection")

        async with self._pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn
