"""
Database connection management using SQLAlchemy 2.0 async with aiosqlite.

Provides:
- SQLAlchemy AsyncEngine with the aiosqlite dialect
- ``PRAGMA foreign_keys=ON`` on every pooled connection
- Read and write transaction context managers
- SQLAlchemy failures surfaced as StorageError after rollback
"""

import contextlib
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from wbstrack.core.config import MEMORY_DB, DatabaseConfig
from wbstrack.core.exceptions import StorageError
from wbstrack.core.logging import get_logger

logger = get_logger("connection")


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class ConnectionPool:
    """
    SQLAlchemy 2.0 async connection pool for one SQLite database.

    Owned by the runtime; ``initialize()`` must be awaited before use and
    ``close()`` releases every pooled connection.
    """

    def __init__(self, db_path: str, max_connections: int = 5, echo: bool = False):
        """
        Initialize connection pool.

        Args:
            db_path: Path to SQLite database, or ``:memory:``
            max_connections: Maximum connections in pool
            echo: Echo SQL statements through SQLAlchemy logging
        """
        self.db_path = db_path
        self.max_connections = max_connections
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.stats: Dict[str, int] = {
            "read_transactions": 0,
            "write_transactions": 0,
            "failed_writes": 0,
        }

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "ConnectionPool":
        """Build a pool from database configuration."""
        return cls(config.db_path, max_connections=config.max_connections, echo=config.echo)

    @property
    def is_memory(self) -> bool:
        return self.db_path == MEMORY_DB

    async def initialize(self) -> None:
        """Create the async engine."""
        if self.engine is not None:
            return

        logger.info(
            "Initializing SQLAlchemy async engine",
            db_path=self.db_path,
            max_connections=self.max_connections,
        )

        engine_kwargs: Dict[str, Any] = {
            "echo": self.echo,
            "connect_args": {"check_same_thread": False},
        }

        if self.is_memory:
            database_url = "sqlite+aiosqlite:///:memory:"
            engine_kwargs["poolclass"] = StaticPool
        else:
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            database_url = f"sqlite+aiosqlite:///{path}"
            engine_kwargs["pool_size"] = self.max_connections
            engine_kwargs["max_overflow"] = 0
            engine_kwargs["pool_pre_ping"] = True

        self.engine = create_async_engine(database_url, **engine_kwargs)
        event.listen(self.engine.sync_engine, "connect", _enable_foreign_keys)

        logger.info("SQLAlchemy async engine initialized")

    async def close(self) -> None:
        """Dispose the engine and all connections."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            logger.info("Connection pool closed", stats=self.stats)

    async def __aenter__(self) -> "ConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise StorageError(
                "Connection pool not initialized",
                error_code="POOL_NOT_INITIALIZED",
            )
        return self.engine

    @contextlib.asynccontextmanager
    async def read_transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Get async connection for read operations.

        Yields:
            AsyncConnection for read queries
        """
        engine = self._require_engine()
        try:
            async with engine.connect() as conn:
                self.stats["read_transactions"] += 1
                yield conn
        except SQLAlchemyError as e:
            logger.error("Read transaction failed", error=str(e))
            raise StorageError(f"Read failed: {e}") from e

    @contextlib.asynccontextmanager
    async def write_transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Get async connection wrapped in a transaction.

        Commits on normal exit; any exception rolls back every statement
        issued on the connection before propagating.

        Yields:
            AsyncConnection with automatic transaction management
        """
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                self.stats["write_transactions"] += 1
                yield conn
        except SQLAlchemyError as e:
            self.stats["failed_writes"] += 1
            logger.error("Write transaction failed", error=str(e))
            raise StorageError(f"Write failed: {e}") from e
        except Exception:
            self.stats["failed_writes"] += 1
            raise

    async def health_check(self) -> bool:
        """
        Perform database health check.

        Returns:
            True if database is accessible
        """
        try:
            async with self.read_transaction() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except StorageError as e:
            logger.error("Health check failed", error=str(e))
            return False
