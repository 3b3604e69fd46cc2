"""
Database migration system for wbstrack.

Applies schema changes incrementally and records applied versions in the
``schema_version`` table.
"""

from typing import Awaitable, Callable, List, Set, Tuple

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.core.exceptions import StorageError
from wbstrack.core.logging import get_logger
from wbstrack.database.connection import ConnectionPool
from wbstrack.database.schema import get_table_creation_order, metadata, schema_version

logger = get_logger("migrations")

MigrationStep = Callable[[AsyncConnection], Awaitable[None]]


class Migration:
    """Single database migration definition."""

    def __init__(self, version: str, description: str, up: MigrationStep):
        """
        Initialize migration.

        Args:
            version: Migration version (e.g., "001", "002")
            description: Human-readable description
            up: Coroutine applying the migration on a connection
        """
        self.version = version
        self.description = description
        self.up = up

    async def apply(self, conn: AsyncConnection) -> None:
        """Apply migration and record it in schema_version."""
        logger.info("Applying migration", version=self.version, description=self.description)

        await self.up(conn)

        await conn.execute(
            schema_version.insert().values(version=self.version, description=self.description)
        )


async def _create_core_tables(conn: AsyncConnection) -> None:
    await conn.run_sync(metadata.create_all, tables=get_table_creation_order())


class MigrationRunner:
    """Runs database migrations in order."""

    def __init__(self, pool: ConnectionPool):
        """
        Initialize migration runner.

        Args:
            pool: Database connection pool
        """
        self.pool = pool
        self._migrations: List[Migration] = [
            Migration("001", "Create WBS task, artifact and dependency tables", up=_create_core_tables),
        ]

    @property
    def migrations(self) -> List[Migration]:
        return list(self._migrations)

    async def run_migrations(self) -> int:
        """
        Run all pending migrations in one transaction.

        Returns:
            Number of migrations applied
        """
        async with self.pool.write_transaction() as conn:
            await conn.run_sync(metadata.create_all, tables=[schema_version])
            applied_versions = await self._get_applied_versions(conn)

            pending = [m for m in self._migrations if m.version not in applied_versions]
            if not pending:
                logger.debug("No pending migrations")
                return 0

            for migration in pending:
                await migration.apply(conn)

        logger.info("Applied migrations", count=len(pending))
        return len(pending)

    async def _get_applied_versions(self, conn: AsyncConnection) -> Set[str]:
        result = await conn.execute(select(schema_version.c.version))
        return {row[0] for row in result.fetchall()}

    async def get_migration_status(self) -> List[Tuple[str, str, bool]]:
        """
        Get status of all migrations.

        Returns:
            List of (version, description, applied) tuples
        """
        async with self.pool.write_transaction() as conn:
            await conn.run_sync(metadata.create_all, tables=[schema_version])
            applied_versions = await self._get_applied_versions(conn)

        return [
            (m.version, m.description, m.version in applied_versions)
            for m in self._migrations
        ]

    async def verify_schema(self) -> bool:
        """
        Verify every expected table exists and foreign keys are consistent.

        Returns:
            True if schema is valid
        """
        async with self.pool.read_transaction() as conn:
            result = await conn.execute(
                text("SELECT name FROM sqlite_master WHERE type='table'")
            )
            existing_tables = {row[0] for row in result.fetchall()}

            expected_tables = {table.name for table in get_table_creation_order()}
            missing_tables = expected_tables - existing_tables
            if missing_tables:
                logger.error("Missing database tables", missing=sorted(missing_tables))
                return False

            violations = (await conn.execute(text("PRAGMA foreign_key_check"))).fetchall()
            if violations:
                logger.error("Foreign key violations", count=len(violations))
                return False

        return True


async def create_database_schema(pool: ConnectionPool) -> None:
    """
    Apply pending migrations and verify the resulting schema.

    Args:
        pool: Database connection pool
    """
    runner = MigrationRunner(pool)
    await runner.run_migrations()

    if not await runner.verify_schema():
        raise StorageError(
            "Database schema verification failed",
            error_code="SCHEMA_INVALID",
        )
