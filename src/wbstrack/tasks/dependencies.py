"""
Precedence edges between tasks.

An edge ``from_task_id -> to_task_id`` means the "to" task waits for the
"from" task. From a task's point of view, incoming edges lead to its
dependees and outgoing edges lead to its dependents. Cycles in this graph
are allowed; only the parent/child tree is kept acyclic.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.core.exceptions import NotFoundError, ValidationError
from wbstrack.core.logging import get_logger
from wbstrack.database.queries import BaseStore
from wbstrack.database.schema import dependencies, dependency_artifacts, tasks
from wbstrack.tasks.artifacts import ArtifactStore
from wbstrack.tasks.models import DependencyArtifactLink, DependencyEdge, DependencyInput

logger = get_logger("dependencies")


class DependencyGraphStore(BaseStore):
    """Persists dependency edges and their ordered artifact links."""

    def __init__(self, pool, catalog: ArtifactStore):
        super().__init__(pool)
        self.catalog = catalog

    # ========================================================================
    # EDGE CRUD
    # ========================================================================

    async def create(
        self,
        from_task_id: str,
        to_task_id: str,
        artifact_ids: Optional[Iterable[str]] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> DependencyEdge:
        """
        Create an edge with its artifact links in one transaction.

        Args:
            from_task_id: Upstream task (must finish first)
            to_task_id: Downstream task (waits)
            artifact_ids: Artifacts handed over along the edge, in order

        Returns:
            Created edge

        Raises:
            NotFoundError: Either endpoint task does not exist
            ValidationError: Unknown artifacts, or the pair already exists
        """
        artifact_ids = list(artifact_ids or [])
        edge_id = self.generate_id()
        now = self.now()

        async with self._writing(conn) as c:
            await self._validate(from_task_id, to_task_id, artifact_ids, c)
            await c.execute(
                dependencies.insert().values(
                    id=edge_id,
                    from_task_id=from_task_id,
                    to_task_id=to_task_id,
                    created_at=now,
                )
            )
            await self._sync_links(edge_id, artifact_ids, c)
            edge = await self.get_by_id(edge_id, conn=c)

        logger.info("Created dependency", dependency_id=edge_id, from_task_id=from_task_id, to_task_id=to_task_id)
        return edge

    async def update(
        self,
        edge_id: str,
        from_task_id: str,
        to_task_id: str,
        artifact_ids: Optional[Iterable[str]] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> DependencyEdge:
        """Re-point an edge and replace all of its artifact links."""
        artifact_ids = list(artifact_ids or [])

        async with self._writing(conn) as c:
            existing = await c.execute(select(dependencies.c.id).where(dependencies.c.id == edge_id))
            if existing.first() is None:
                raise NotFoundError(
                    f"Dependency not found: {edge_id}",
                    entity_type="dependency",
                    entity_id=edge_id,
                )
            await self._validate(from_task_id, to_task_id, artifact_ids, c, exclude_edge_id=edge_id)
            await c.execute(
                update(dependencies)
                .where(dependencies.c.id == edge_id)
                .values(from_task_id=from_task_id, to_task_id=to_task_id)
            )
            await self._sync_links(edge_id, artifact_ids, c)
            edge = await self.get_by_id(edge_id, conn=c)

        logger.info("Updated dependency", dependency_id=edge_id)
        return edge

    async def delete(self, edge_id: str, conn: Optional[AsyncConnection] = None) -> bool:
        async with self._writing(conn) as c:
            result = await c.execute(delete(dependencies).where(dependencies.c.id == edge_id))
        return result.rowcount > 0

    async def get_by_id(self, edge_id: str, conn: Optional[AsyncConnection] = None) -> Optional[DependencyEdge]:
        """Return the edge with its artifact links ordered by position."""
        async with self._reading(conn) as c:
            result = await c.execute(select(dependencies).where(dependencies.c.id == edge_id))
            row = result.first()
            if row is None:
                return None
            links = await c.execute(
                select(dependency_artifacts)
                .where(dependency_artifacts.c.dependency_id == edge_id)
                .order_by(dependency_artifacts.c.order_index)
            )
            artifact_links = [DependencyArtifactLink(**link._mapping) for link in links.fetchall()]
        return DependencyEdge(**row._mapping, artifacts=artifact_links)

    # ========================================================================
    # NEIGHBOURS
    # ========================================================================

    async def dependees_of(self, task_id: str, conn: Optional[AsyncConnection] = None) -> List[str]:
        """Upstream task ids the given task waits for."""
        query = (
            select(dependencies.c.from_task_id)
            .where(dependencies.c.to_task_id == task_id)
            .order_by(dependencies.c.created_at)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            return [row[0] for row in result.fetchall()]

    async def dependents_of(self, task_id: str, conn: Optional[AsyncConnection] = None) -> List[str]:
        """Downstream task ids waiting for the given task."""
        query = (
            select(dependencies.c.to_task_id)
            .where(dependencies.c.from_task_id == task_id)
            .order_by(dependencies.c.created_at)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            return [row[0] for row in result.fetchall()]

    async def collect_for_tasks(
        self, task_ids: Iterable[str], conn: Optional[AsyncConnection] = None
    ) -> Dict[str, Dict[str, List[str]]]:
        """
        Batch neighbour lookup for listings.

        Returns:
            ``{task_id: {"dependees": [...], "dependents": [...]}}`` with every
            requested id present
        """
        ids = list(dict.fromkeys(task_ids))
        result_map: Dict[str, Dict[str, List[str]]] = {
            task_id: {"dependees": [], "dependents": []} for task_id in ids
        }
        if not ids:
            return result_map

        query = (
            select(dependencies.c.from_task_id, dependencies.c.to_task_id)
            .where(or_(dependencies.c.from_task_id.in_(ids), dependencies.c.to_task_id.in_(ids)))
            .order_by(dependencies.c.created_at)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            rows = result.fetchall()

        for from_id, to_id in rows:
            if from_id in result_map:
                result_map[from_id]["dependents"].append(to_id)
            if to_id in result_map:
                result_map[to_id]["dependees"].append(from_id)
        return result_map

    async def replace_dependees(
        self,
        task_id: str,
        items: Iterable[DependencyInput],
        conn: Optional[AsyncConnection] = None,
    ) -> List[DependencyEdge]:
        """Full-replace of the incoming edges of ``task_id``."""
        items = list(items)
        async with self._writing(conn) as c:
            await c.execute(delete(dependencies).where(dependencies.c.to_task_id == task_id))
            edges = [
                await self.create(item.task_id, task_id, item.artifacts, conn=c)
                for item in items
            ]
        return edges

    # ========================================================================
    # INTERNALS
    # ========================================================================

    async def _validate(
        self,
        from_task_id: str,
        to_task_id: str,
        artifact_ids: List[str],
        conn: AsyncConnection,
        exclude_edge_id: Optional[str] = None,
    ) -> None:
        for side, task_id in (("from_task_id", from_task_id), ("to_task_id", to_task_id)):
            result = await conn.execute(select(tasks.c.id).where(tasks.c.id == task_id))
            if result.first() is None:
                raise NotFoundError(
                    f"Task not found ({side}): {task_id}",
                    entity_type="task",
                    entity_id=task_id,
                    context={"side": side},
                )

        missing = await self.catalog.missing(artifact_ids, conn=conn)
        if missing:
            raise ValidationError(
                f"Artifacts not found: {', '.join(missing)}",
                field="artifacts",
                context={"missing_artifact_ids": missing},
            )

        query = select(dependencies.c.id).where(
            dependencies.c.from_task_id == from_task_id,
            dependencies.c.to_task_id == to_task_id,
        )
        if exclude_edge_id is not None:
            query = query.where(dependencies.c.id != exclude_edge_id)
        duplicate = await conn.execute(query)
        if duplicate.first() is not None:
            raise ValidationError(
                "Dependency already exists",
                field="to_task_id",
                context={"from_task_id": from_task_id, "to_task_id": to_task_id},
            )

    async def _sync_links(self, edge_id: str, artifact_ids: List[str], conn: AsyncConnection) -> None:
        await conn.execute(
            delete(dependency_artifacts).where(dependency_artifacts.c.dependency_id == edge_id)
        )
        if not artifact_ids:
            return
        now = self.now()
        await conn.execute(
            dependency_artifacts.insert(),
            [
                {
                    "id": self.generate_id(),
                    "dependency_id": edge_id,
                    "artifact_id": artifact_id,
                    "order_index": index,
                    "created_at": now,
                }
                for index, artifact_id in enumerate(artifact_ids)
            ],
        )
