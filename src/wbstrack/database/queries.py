"""
Shared helpers for stores built on async SQLAlchemy Core.

Every store method accepts an optional ``conn``. When given, the statement
joins the caller's transaction; otherwise the store opens its own read
connection or write transaction from the pool.
"""

import contextlib
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.database.connection import ConnectionPool


class BaseStore:
    """Base class for stores with common operations."""

    def __init__(self, pool: ConnectionPool):
        """
        Initialize store.

        Args:
            pool: Connection pool for database operations
        """
        self.pool = pool

    def generate_id(self) -> str:
        """Generate unique identifier for entities."""
        return str(uuid4())

    @staticmethod
    def now() -> datetime:
        return datetime.now()

    @contextlib.asynccontextmanager
    async def _reading(self, conn: Optional[AsyncConnection] = None) -> AsyncIterator[AsyncConnection]:
        if conn is not None:
            yield conn
            return
        async with self.pool.read_transaction() as own:
            yield own

    @contextlib.asynccontextmanager
    async def _writing(self, conn: Optional[AsyncConnection] = None) -> AsyncIterator[AsyncConnection]:
        if conn is not None:
            yield conn
            return
        async with self.pool.write_transaction() as own:
            yield own

    @staticmethod
    def row_to_dict(row: Optional[Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        return dict(row._mapping)

    @staticmethod
    def rows_to_dicts(rows: List[Row]) -> List[Dict[str, Any]]:
        return [dict(row._mapping) for row in rows]
