"""Database layer: connection pool, schema, migrations and store helpers."""

from wbstrack.database.connection import ConnectionPool
from wbstrack.database.migrations import Migration, MigrationRunner, create_database_schema
from wbstrack.database.queries import BaseStore

__all__ = [
    "ConnectionPool",
    "Migration",
    "MigrationRunner",
    "create_database_schema",
    "BaseStore",
]
