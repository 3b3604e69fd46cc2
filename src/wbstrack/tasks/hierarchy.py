"""
Task rows and the parent/child tree.

TaskHierarchyStore owns the ``tasks`` table. It assembles full Task models
by batch-collecting dependency neighbours, artifact assignments and
completion conditions from the sibling stores, and it validates moves so
the tree never acquires a cycle.
"""

from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy import delete, func, literal_column, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from wbstrack.core.logging import get_logger
from wbstrack.database.queries import BaseStore
from wbstrack.database.schema import tasks
from wbstrack.tasks.artifacts import ArtifactAssignmentStore
from wbstrack.tasks.conditions import CompletionConditionStore
from wbstrack.tasks.dependencies import DependencyGraphStore
from wbstrack.tasks.models import Task, TaskStatus, TaskSummary

logger = get_logger("hierarchy")

_CREATION_ORDER = (tasks.c.created_at, literal_column("tasks.rowid"))
TASK_FIELDS = ("title", "description", "details", "parent_id", "assignee", "estimate")


def is_filled(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def initial_status(fields: Mapping[str, Any]) -> TaskStatus:
    """A new task starts pending only when title, description and estimate are set."""
    if all(is_filled(fields.get(name)) for name in ("title", "description", "estimate")):
        return TaskStatus.PENDING
    return TaskStatus.DRAFT


class TaskHierarchyStore(BaseStore):
    """Task persistence, tree navigation and move validation."""

    def __init__(
        self,
        pool,
        dependencies: DependencyGraphStore,
        assignments: ArtifactAssignmentStore,
        conditions: CompletionConditionStore,
    ):
        super().__init__(pool)
        self.dependencies = dependencies
        self.assignments = assignments
        self.conditions = conditions

    # ========================================================================
    # CREATE / READ
    # ========================================================================

    async def create(self, fields: Mapping[str, Any], conn: Optional[AsyncConnection] = None) -> Task:
        """
        Insert a task row at version 1.

        Args:
            fields: title (required), description, details, parent_id,
                assignee, estimate

        Returns:
            Created task

        Raises:
            ValidationError: Title missing
            NotFoundError: ``parent_id`` given but unknown
        """
        values = {name: fields.get(name) for name in TASK_FIELDS}
        if values["title"] is None:
            raise ValidationError("Task title is required", field="title")

        task_id = self.generate_id()
        now = self.now()
        status = initial_status(values)

        async with self._writing(conn) as c:
            parent_id = values["parent_id"]
            if parent_id is not None and await self.get_row(parent_id, conn=c) is None:
                raise NotFoundError(
                    f"Parent task not found: {parent_id}",
                    entity_type="task",
                    entity_id=parent_id,
                )
            await c.execute(
                tasks.insert().values(
                    id=task_id,
                    status=status.value,
                    created_at=now,
                    updated_at=now,
                    version=1,
                    **values,
                )
            )
            task = await self.get(task_id, conn=c)

        logger.info("Created task", task_id=task_id, parent_id=values["parent_id"], status=status.value)
        return task

    async def get_row(self, task_id: str, conn: Optional[AsyncConnection] = None) -> Optional[Dict[str, Any]]:
        async with self._reading(conn) as c:
            result = await c.execute(select(tasks).where(tasks.c.id == task_id))
            return self.row_to_dict(result.first())

    async def get_rows(self, task_ids: Iterable[str], conn: Optional[AsyncConnection] = None) -> List[Dict[str, Any]]:
        """Rows for the ids that exist, in creation order."""
        ids = list(dict.fromkeys(task_ids))
        if not ids:
            return []
        async with self._reading(conn) as c:
            result = await c.execute(select(tasks).where(tasks.c.id.in_(ids)).order_by(*_CREATION_ORDER))
            return self.rows_to_dicts(result.fetchall())

    async def child_rows(self, task_id: str, conn: Optional[AsyncConnection] = None) -> List[Dict[str, Any]]:
        async with self._reading(conn) as c:
            result = await c.execute(
                select(tasks).where(tasks.c.parent_id == task_id).order_by(*_CREATION_ORDER)
            )
            return self.rows_to_dicts(result.fetchall())

    async def get(self, task_id: str, conn: Optional[AsyncConnection] = None) -> Optional[Task]:
        """Task with one level of children, neighbours, artifacts and conditions."""
        async with self._reading(conn) as c:
            row = await self.get_row(task_id, conn=c)
            if row is None:
                return None
            children = await self.child_rows(task_id, conn=c)
            assembled = await self._assemble([row], c)
        task = assembled[0]
        task.children = [self._to_summary(child) for child in children]
        return task

    async def list_children(
        self,
        parent_id: Optional[str] = None,
        status_filter: Optional[str] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> List[Task]:
        """
        Direct children of ``parent_id`` (roots when None) in creation order.

        Args:
            parent_id: Parent task, or None for root tasks
            status_filter: Case-insensitive status to keep
        """
        query = select(tasks)
        if parent_id is None:
            query = query.where(tasks.c.parent_id.is_(None))
        else:
            query = query.where(tasks.c.parent_id == parent_id)
        if status_filter:
            query = query.where(func.lower(tasks.c.status) == status_filter.strip().lower())
        query = query.order_by(*_CREATION_ORDER)

        async with self._reading(conn) as c:
            result = await c.execute(query)
            rows = self.rows_to_dicts(result.fetchall())
            return await self._assemble(rows, c)

    async def leaf_list(
        self,
        parent_id: Optional[str] = None,
        status_filter: Optional[str] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> List[Task]:
        """
        Zero-child tasks in the subtree below ``parent_id`` (whole forest when None).

        An unknown ``parent_id`` yields an empty list.
        """
        wanted = status_filter.strip().lower() if status_filter else None

        async with self._reading(conn) as c:
            if parent_id is not None:
                if await self.get_row(parent_id, conn=c) is None:
                    return []
                frontier = await self.child_rows(parent_id, conn=c)
            else:
                result = await c.execute(
                    select(tasks).where(tasks.c.parent_id.is_(None)).order_by(*_CREATION_ORDER)
                )
                frontier = self.rows_to_dicts(result.fetchall())

            leaves: List[Dict[str, Any]] = []
            visited: Set[str] = set()
            queue = deque(frontier)
            while queue:
                row = queue.popleft()
                if row["id"] in visited:
                    continue
                visited.add(row["id"])
                children = await self.child_rows(row["id"], conn=c)
                if children:
                    queue.extend(children)
                elif wanted is None or row["status"].lower() == wanted:
                    leaves.append(row)

            return await self._assemble(leaves, c)

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    async def move(
        self,
        task_id: str,
        new_parent_id: Optional[str],
        conn: Optional[AsyncConnection] = None,
    ) -> Task:
        """
        Re-parent a task (None makes it a root) and bump its version.

        Moving to the current parent changes nothing.

        Raises:
            NotFoundError: Unknown task
            ValidationError: Self-parent, missing parent or descendant cycle
        """
        async with self._writing(conn) as c:
            row = await self.get_row(task_id, conn=c)
            if row is None:
                raise NotFoundError(f"Task not found: {task_id}", entity_type="task", entity_id=task_id)

            if row["parent_id"] != new_parent_id:
                await self._validate_move(task_id, new_parent_id, c)
                await c.execute(
                    update(tasks)
                    .where(tasks.c.id == task_id)
                    .values(
                        parent_id=new_parent_id,
                        updated_at=self.now(),
                        version=tasks.c.version + 1,
                    )
                )
                logger.info("Moved task", task_id=task_id, from_parent=row["parent_id"], to_parent=new_parent_id)

            return await self.get(task_id, conn=c)

    async def delete(self, task_id: str, conn: Optional[AsyncConnection] = None) -> bool:
        """Delete a task; descendants and related rows go with it via cascades."""
        async with self._writing(conn) as c:
            result = await c.execute(delete(tasks).where(tasks.c.id == task_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted task", task_id=task_id)
        return deleted

    async def update_fields(
        self,
        task_id: str,
        values: Mapping[str, Any],
        expected_version: int,
        conn: Optional[AsyncConnection] = None,
    ) -> int:
        """
        Compare-and-set update of task columns; bumps version by one.

        Returns:
            New version

        Raises:
            NotFoundError: Unknown task
            ConflictError: Stored version differs from ``expected_version``
        """
        stmt = (
            update(tasks)
            .where(tasks.c.id == task_id, tasks.c.version == expected_version)
            .values(updated_at=self.now(), version=tasks.c.version + 1, **values)
        )
        async with self._writing(conn) as c:
            result = await c.execute(stmt)
            if result.rowcount == 0:
                row = await self.get_row(task_id, conn=c)
                if row is None:
                    raise NotFoundError(f"Task not found: {task_id}", entity_type="task", entity_id=task_id)
                raise ConflictError(
                    "Task was modified by another operation",
                    entity_id=task_id,
                    expected_version=expected_version,
                    actual_version=row["version"],
                )
        return expected_version + 1

    async def set_status(
        self, task_id: str, status: TaskStatus, conn: Optional[AsyncConnection] = None
    ) -> bool:
        """Persist a status decision; the version is left alone."""
        async with self._writing(conn) as c:
            result = await c.execute(
                update(tasks)
                .where(tasks.c.id == task_id)
                .values(status=TaskStatus(status).value, updated_at=self.now())
            )
        return result.rowcount > 0

    # ========================================================================
    # AGENT QUERIES
    # ========================================================================

    async def oldest_in_progress_id(self, conn: Optional[AsyncConnection] = None) -> Optional[str]:
        query = (
            select(tasks.c.id)
            .where(tasks.c.status == TaskStatus.IN_PROGRESS.value)
            .order_by(tasks.c.updated_at)
            .limit(1)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            return result.scalar()

    async def pending_leaf_ids(self, conn: Optional[AsyncConnection] = None) -> List[str]:
        """Pending tasks without children, oldest first."""
        child = tasks.alias("child")
        has_children = select(child.c.id).where(child.c.parent_id == tasks.c.id).exists()
        query = (
            select(tasks.c.id)
            .where(tasks.c.status == TaskStatus.PENDING.value, ~has_children)
            .order_by(*_CREATION_ORDER)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            return [row[0] for row in result.fetchall()]

    # ========================================================================
    # INTERNALS
    # ========================================================================

    async def _validate_move(self, task_id: str, new_parent_id: Optional[str], conn: AsyncConnection) -> None:
        if new_parent_id is None:
            return
        if new_parent_id == task_id:
            raise ValidationError("A task cannot be its own parent", field="parent_id", value=new_parent_id)

        target = await self.get_row(new_parent_id, conn=conn)
        if target is None:
            raise ValidationError("Parent task not found", field="parent_id", value=new_parent_id)

        # Start from the target's own parent: moving under a direct child must be caught too.
        visited: Set[str] = {new_parent_id}
        current = target["parent_id"]
        while current is not None and current not in visited:
            if current == task_id:
                raise ValidationError(
                    "Cannot move a task under its own descendant",
                    field="parent_id",
                    value=new_parent_id,
                )
            visited.add(current)
            row = await self.get_row(current, conn=conn)
            current = row["parent_id"] if row else None

    async def _assemble(self, rows: List[Dict[str, Any]], conn: AsyncConnection) -> List[Task]:
        if not rows:
            return []
        ids = [row["id"] for row in rows]

        counts_result = await conn.execute(
            select(tasks.c.parent_id, func.count(tasks.c.id))
            .where(tasks.c.parent_id.in_(ids))
            .group_by(tasks.c.parent_id)
        )
        child_counts = {parent_id: count for parent_id, count in counts_result.fetchall()}

        neighbours = await self.dependencies.collect_for_tasks(ids, conn=conn)
        related_ids = {
            other
            for bucket in neighbours.values()
            for other in bucket["dependees"] + bucket["dependents"]
        }
        related = {row["id"]: self._to_summary(row) for row in await self.get_rows(related_ids, conn=conn)}
        artifacts_by_task = await self.assignments.collect(ids, conn=conn)
        conditions_by_task = await self.conditions.collect(ids, conn=conn)

        assembled = []
        for row in rows:
            bucket = neighbours[row["id"]]
            assembled.append(
                Task(
                    **row,
                    child_count=child_counts.get(row["id"], 0),
                    dependees=[related[i] for i in bucket["dependees"] if i in related],
                    dependents=[related[i] for i in bucket["dependents"] if i in related],
                    artifacts=artifacts_by_task[row["id"]],
                    completion_conditions=conditions_by_task[row["id"]],
                )
            )
        return assembled

    @staticmethod
    def _to_summary(row: Mapping[str, Any]) -> TaskSummary:
        return TaskSummary(
            id=row["id"],
            parent_id=row["parent_id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            estimate=row["estimate"],
            version=row["version"],
        )
