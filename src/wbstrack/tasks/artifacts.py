"""
Artifact catalog and per-task artifact assignments.

ArtifactStore owns the ``artifacts`` table. ArtifactAssignmentStore owns
``task_artifacts`` and rewrites a task's assignments with a full-replace
sync: delete the existing rows for the key, then insert the new list in
order.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from wbstrack.core.logging import get_logger
from wbstrack.database.queries import BaseStore
from wbstrack.database.schema import artifacts, task_artifacts
from wbstrack.tasks.models import Artifact, ArtifactAssignment, ArtifactRole, TaskArtifactInput

logger = get_logger("artifacts")


class ArtifactStore(BaseStore):
    """CRUD operations for the artifact catalog."""

    async def create(
        self,
        title: str,
        uri: Optional[str] = None,
        description: Optional[str] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> Artifact:
        """
        Create a catalog artifact.

        Args:
            title: Unique artifact title
            uri: Optional location of the artifact
            description: Optional free text

        Returns:
            Created artifact

        Raises:
            ValidationError: If the title is blank or already used
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Artifact title is required", field="title")

        artifact_id = self.generate_id()
        now = self.now()
        async with self._writing(conn) as c:
            await self._ensure_title_free(title, c)
            await c.execute(
                artifacts.insert().values(
                    id=artifact_id,
                    title=title,
                    uri=uri,
                    description=description,
                    created_at=now,
                    updated_at=now,
                    version=1,
                )
            )
            created = await self.get(artifact_id, conn=c)

        logger.info("Created artifact", artifact_id=artifact_id, title=title)
        return created

    async def get(self, artifact_id: str, conn: Optional[AsyncConnection] = None) -> Optional[Artifact]:
        async with self._reading(conn) as c:
            result = await c.execute(select(artifacts).where(artifacts.c.id == artifact_id))
            row = result.first()
        return Artifact(**row._mapping) if row else None

    async def list(self, conn: Optional[AsyncConnection] = None) -> List[Artifact]:
        """List every artifact ordered by title."""
        async with self._reading(conn) as c:
            result = await c.execute(select(artifacts).order_by(artifacts.c.title))
            return [Artifact(**row._mapping) for row in result.fetchall()]

    async def update(
        self,
        artifact_id: str,
        title: Optional[str] = None,
        uri: Optional[str] = None,
        description: Optional[str] = None,
        if_version: Optional[int] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> Artifact:
        """
        Update artifact fields that are not None.

        Raises:
            NotFoundError: Unknown artifact
            ConflictError: ``if_version`` does not match the stored version
            ValidationError: Title blank or taken by another artifact
        """
        async with self._writing(conn) as c:
            current = await self.get(artifact_id, conn=c)
            if current is None:
                raise NotFoundError(
                    f"Artifact not found: {artifact_id}",
                    entity_type="artifact",
                    entity_id=artifact_id,
                )
            if if_version is not None and current.version != if_version:
                raise ConflictError(
                    "Artifact was modified by another operation",
                    entity_id=artifact_id,
                    expected_version=if_version,
                    actual_version=current.version,
                )

            values: Dict[str, Any] = {}
            if title is not None:
                title = title.strip()
                if not title:
                    raise ValidationError("Artifact title is required", field="title")
                if title != current.title:
                    await self._ensure_title_free(title, c)
                values["title"] = title
            if uri is not None:
                values["uri"] = uri
            if description is not None:
                values["description"] = description

            values["updated_at"] = self.now()
            values["version"] = current.version + 1
            await c.execute(
                update(artifacts).where(artifacts.c.id == artifact_id).values(**values)
            )
            updated = await self.get(artifact_id, conn=c)

        logger.info("Updated artifact", artifact_id=artifact_id, version=updated.version)
        return updated

    async def delete(self, artifact_id: str, conn: Optional[AsyncConnection] = None) -> bool:
        async with self._writing(conn) as c:
            result = await c.execute(delete(artifacts).where(artifacts.c.id == artifact_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted artifact", artifact_id=artifact_id)
        return deleted

    async def missing(self, artifact_ids: Iterable[str], conn: Optional[AsyncConnection] = None) -> List[str]:
        """
        Return the ids (in first-seen order) that have no catalog row.
        """
        wanted = list(dict.fromkeys(artifact_ids))
        if not wanted:
            return []
        async with self._reading(conn) as c:
            result = await c.execute(select(artifacts.c.id).where(artifacts.c.id.in_(wanted)))
            found = {row[0] for row in result.fetchall()}
        return [artifact_id for artifact_id in wanted if artifact_id not in found]

    async def _ensure_title_free(self, title: str, conn: AsyncConnection) -> None:
        result = await conn.execute(select(artifacts.c.id).where(artifacts.c.title == title))
        if result.first() is not None:
            raise ValidationError("Artifact title already exists", field="title", value=title)


class ArtifactAssignmentStore(BaseStore):
    """Persists which artifacts are attached to a task, per role."""

    def __init__(self, pool, catalog: ArtifactStore):
        super().__init__(pool)
        self.catalog = catalog

    async def sync(
        self,
        task_id: str,
        items: Iterable[TaskArtifactInput],
        role: Optional[ArtifactRole] = None,
        timestamp: Optional[datetime] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> List[ArtifactAssignment]:
        """
        Replace a task's assignments.

        Args:
            task_id: Owning task
            items: Assignments in the order they should be stored
            role: Replace only this role's set (each item is stored under it);
                None replaces every role and keeps each item's own role
            timestamp: created/updated timestamp for the new rows

        Returns:
            Stored assignments for the task

        Raises:
            NotFoundError: An item references an unknown artifact
        """
        items = list(items)
        timestamp = timestamp or self.now()

        async with self._writing(conn) as c:
            missing = await self.catalog.missing([item.artifact_id for item in items], conn=c)
            if missing:
                raise NotFoundError(
                    f"Artifact not found: {', '.join(missing)}",
                    entity_type="artifact",
                    entity_id=missing[0],
                    context={"missing_artifact_ids": missing},
                )

            stmt = delete(task_artifacts).where(task_artifacts.c.task_id == task_id)
            if role is not None:
                stmt = stmt.where(task_artifacts.c.role == role.value)
            await c.execute(stmt)

            next_index: Dict[ArtifactRole, int] = {}
            rows = []
            for item in items:
                item_role = role or item.role
                index = next_index.get(item_role, 0)
                next_index[item_role] = index + 1
                rows.append(
                    {
                        "id": self.generate_id(),
                        "task_id": task_id,
                        "artifact_id": item.artifact_id,
                        "role": item_role.value,
                        "crud_operations": item.crud_operations,
                        "order_index": index,
                        "created_at": timestamp,
                        "updated_at": timestamp,
                    }
                )
            if rows:
                await c.execute(task_artifacts.insert(), rows)

            collected = await self.collect([task_id], conn=c)

        logger.debug("Synced task artifacts", task_id=task_id, role=role, count=len(rows))
        return collected[task_id]

    async def collect(
        self, task_ids: Iterable[str], conn: Optional[AsyncConnection] = None
    ) -> Dict[str, List[ArtifactAssignment]]:
        """Batch read; every requested id is a key, possibly with an empty list."""
        ids = list(dict.fromkeys(task_ids))
        result_map: Dict[str, List[ArtifactAssignment]] = {task_id: [] for task_id in ids}
        if not ids:
            return result_map

        query = (
            select(
                task_artifacts,
                artifacts.c.title.label("artifact_title"),
                artifacts.c.uri.label("artifact_uri"),
                artifacts.c.description.label("artifact_description"),
                artifacts.c.created_at.label("artifact_created_at"),
                artifacts.c.updated_at.label("artifact_updated_at"),
                artifacts.c.version.label("artifact_version"),
            )
            .join(artifacts, artifacts.c.id == task_artifacts.c.artifact_id)
            .where(task_artifacts.c.task_id.in_(ids))
            .order_by(task_artifacts.c.task_id, task_artifacts.c.role, task_artifacts.c.order_index)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            rows = result.fetchall()

        for row in rows:
            result_map[row.task_id].append(self._row_to_assignment(row._mapping))
        return result_map

    async def task_ids_for_artifact(
        self, artifact_id: str, conn: Optional[AsyncConnection] = None
    ) -> List[str]:
        """Ids of the tasks holding the artifact in any role."""
        query = (
            select(task_artifacts.c.task_id)
            .where(task_artifacts.c.artifact_id == artifact_id)
            .order_by(task_artifacts.c.task_id)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            return list(dict.fromkeys(row[0] for row in result.fetchall()))

    def _row_to_assignment(self, data: Dict[str, Any]) -> ArtifactAssignment:
        return ArtifactAssignment(
            id=data["id"],
            task_id=data["task_id"],
            artifact_id=data["artifact_id"],
            role=data["role"],
            crud_operations=data["crud_operations"],
            order_index=data["order_index"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            artifact=Artifact(
                id=data["artifact_id"],
                title=data["artifact_title"],
                uri=data["artifact_uri"],
                description=data["artifact_description"],
                created_at=data["artifact_created_at"],
                updated_at=data["artifact_updated_at"],
                version=data["artifact_version"],
            ),
        )
