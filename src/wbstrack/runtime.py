"""
Process-level wiring for wbstrack.

WbsRuntime owns the connection pool and builds every store, the status
engine and the lifecycle service on start. Use it as an async context
manager tied to process start/stop::

    async with WbsRuntime(WbsConfig()) as runtime:
        task = await runtime.service.create_task("Write report")
"""

from typing import Optional

from wbstrack.core.config import WbsConfig
from wbstrack.core.exceptions import StorageError
from wbstrack.core.logging import configure_logging, get_logger
from wbstrack.database.connection import ConnectionPool
from wbstrack.database.migrations import create_database_schema
from wbstrack.tasks.artifacts import ArtifactAssignmentStore, ArtifactStore
from wbstrack.tasks.conditions import CompletionConditionStore
from wbstrack.tasks.dependencies import DependencyGraphStore
from wbstrack.tasks.engine import StatusEngine
from wbstrack.tasks.hierarchy import TaskHierarchyStore
from wbstrack.tasks.service import TaskLifecycleService

logger = get_logger("runtime")


class WbsRuntime:
    """Owns the pool and the component graph for one database."""

    def __init__(self, config: Optional[WbsConfig] = None, configure_logs: bool = True):
        """
        Initialize runtime.

        Args:
            config: Configuration; loaded from the environment when omitted
            configure_logs: Install structlog processors on start
        """
        self.config = config or WbsConfig()
        self.configure_logs = configure_logs
        self.pool = ConnectionPool.from_config(self.config.database)
        self._service: Optional[TaskLifecycleService] = None

    async def start(self) -> "WbsRuntime":
        """Configure logging, open the pool, migrate and build components."""
        if self._service is not None:
            return self

        if self.configure_logs:
            configure_logging(self.config.logging)

        await self.pool.initialize()
        try:
            await create_database_schema(self.pool)
        except StorageError:
            await self.pool.close()
            raise

        artifacts = ArtifactStore(self.pool)
        assignments = ArtifactAssignmentStore(self.pool, artifacts)
        conditions = CompletionConditionStore(self.pool)
        dependencies = DependencyGraphStore(self.pool, artifacts)
        hierarchy = TaskHierarchyStore(self.pool, dependencies, assignments, conditions)
        engine = StatusEngine(self.pool, hierarchy, dependencies, assignments, conditions)

        self._service = TaskLifecycleService(
            self.pool,
            hierarchy=hierarchy,
            dependencies=dependencies,
            artifacts=artifacts,
            assignments=assignments,
            conditions=conditions,
            engine=engine,
        )
        logger.info(
            "wbstrack runtime started",
            environment=self.config.environment,
            db_path=self.config.database.db_path,
        )
        return self

    async def stop(self) -> None:
        """Close the pool; the runtime can be started again afterwards."""
        self._service = None
        await self.pool.close()
        logger.info("wbstrack runtime stopped")

    @property
    def started(self) -> bool:
        return self._service is not None

    @property
    def service(self) -> TaskLifecycleService:
        if self._service is None:
            raise RuntimeError("WbsRuntime is not started")
        return self._service

    @property
    def engine(self) -> StatusEngine:
        return self.service.engine

    async def __aenter__(self) -> "WbsRuntime":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
