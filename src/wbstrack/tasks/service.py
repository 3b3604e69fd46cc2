"""
Task lifecycle service.

Top-level orchestrator used by transports and tools:

- multi-table writes run in one pool write transaction, so a failure leaves
  nothing behind
- ``if_version`` gives callers optimistic concurrency on updates
- statuses are recomputed after commit, best-effort, never inside the write
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from wbstrack.core.logging import get_logger
from wbstrack.database.connection import ConnectionPool
from wbstrack.tasks.artifacts import ArtifactAssignmentStore, ArtifactStore
from wbstrack.tasks.conditions import CompletionConditionStore
from wbstrack.tasks.dependencies import DependencyGraphStore
from wbstrack.tasks.engine import StatusEngine, StatusInput
from wbstrack.tasks.hierarchy import TaskHierarchyStore
from wbstrack.tasks.models import (
    Artifact,
    ArtifactRole,
    AuditResult,
    CompletionReview,
    DependencyEdge,
    StatusDecision,
    Task,
    TaskChildRecords,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
)

logger = get_logger("service")

ModelT = TypeVar("ModelT", bound=BaseModel)

_ROLE_KEYS = (
    ("deliverables", ArtifactRole.DELIVERABLE),
    ("prerequisites", ArtifactRole.PREREQUISITE),
)


def parse_payload(model: Type[ModelT], data: Union[ModelT, Mapping[str, Any]]) -> ModelT:
    """Validate a caller payload, reporting problems as ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"Invalid {model.__name__} payload: {first.get('msg', str(e))}",
            field=field or None,
        ) from e


class TaskLifecycleService:
    """Caller-facing operations on the WBS."""

    def __init__(
        self,
        pool: ConnectionPool,
        hierarchy: TaskHierarchyStore,
        dependencies: DependencyGraphStore,
        artifacts: ArtifactStore,
        assignments: ArtifactAssignmentStore,
        conditions: CompletionConditionStore,
        engine: StatusEngine,
    ):
        self.pool = pool
        self.hierarchy = hierarchy
        self.dependencies = dependencies
        self.artifacts = artifacts
        self.assignments = assignments
        self.conditions = conditions
        self.engine = engine

    # ========================================================================
    # TASKS
    # ========================================================================

    async def create_task(
        self,
        title: str,
        description: Optional[str] = None,
        details: Optional[str] = None,
        parent_id: Optional[str] = None,
        assignee: Optional[str] = None,
        estimate: Optional[str] = None,
        *,
        dependencies: Optional[List[Any]] = None,
        artifacts: Optional[List[Any]] = None,
        deliverables: Optional[List[Any]] = None,
        prerequisites: Optional[List[Any]] = None,
        completion_conditions: Optional[List[Any]] = None,
    ) -> Task:
        """
        Create a task together with its child records.

        Args:
            title: Task title
            description: What the task is about
            details: Implementation details
            parent_id: Parent task, None for a root task
            assignee: Who works on it
            estimate: Free-text effort estimate
            dependencies: Tasks this one waits for, as ids or
                ``{"taskId": ..., "artifacts": [...]}`` mappings
            artifacts: Assignments carrying their own role
            deliverables: Assignments stored as deliverables
            prerequisites: Assignments stored as prerequisites
            completion_conditions: Descriptions or ``{"description": ...}``

        Returns:
            Created task after status recomputation

        Raises:
            NotFoundError: Unknown parent, dependee or assigned artifact
            ValidationError: Invalid payload or unknown dependency artifacts
        """
        data: Dict[str, Any] = {
            "title": title,
            "description": description,
            "details": details,
            "parent_id": parent_id,
            "assignee": assignee,
            "estimate": estimate,
        }
        optional = {
            "dependencies": dependencies,
            "artifacts": artifacts,
            "deliverables": deliverables,
            "prerequisites": prerequisites,
            "completion_conditions": completion_conditions,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return await self.create_task_from(parse_payload(TaskCreate, data))

    async def create_task_from(self, payload: Union[TaskCreate, Mapping[str, Any]]) -> Task:
        """Create a task from a TaskCreate payload or a plain mapping."""
        payload = parse_payload(TaskCreate, payload)

        async with self.pool.write_transaction() as conn:
            task = await self.hierarchy.create(payload.task_fields(), conn=conn)
            await self._sync_child_records(task.id, payload, conn)

        await self._recompute_quietly(task.id)
        return await self.hierarchy.get(task.id)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self.hierarchy.get(task_id)

    async def list_tasks(self, parent_id: Optional[str] = None, status: Optional[str] = None) -> List[Task]:
        return await self.hierarchy.list_children(parent_id, status)

    async def leaf_task_list(self, parent_id: Optional[str] = None, status: Optional[str] = None) -> List[Task]:
        return await self.hierarchy.leaf_list(parent_id, status)

    async def list_draft_tasks(self, parent_id: Optional[str] = None) -> List[Task]:
        """Draft tasks directly under ``parent_id`` (roots when None)."""
        return await self.hierarchy.list_children(parent_id, TaskStatus.DRAFT.value)

    async def update_task(
        self,
        task_id: str,
        updates: Union[TaskUpdate, Mapping[str, Any]],
        if_version: Optional[int] = None,
    ) -> Task:
        """
        Apply a partial update.

        Only keys present in ``updates`` change; present child-record keys
        are fully replaced. The version goes up by exactly one and a
        ``status`` key is handed to the status engine as the requested status.

        Raises:
            NotFoundError: Unknown task
            ConflictError: ``if_version`` (argument or payload) is stale
            ValidationError: Invalid payload
        """
        payload = parse_payload(TaskUpdate, updates)
        expected = if_version if if_version is not None else payload.if_version

        current = await self.hierarchy.get_row(task_id)
        if current is None:
            raise NotFoundError(f"Task not found: {task_id}", entity_type="task", entity_id=task_id)
        if expected is not None and current["version"] != expected:
            raise ConflictError(
                "Task was modified by another operation",
                entity_id=task_id,
                expected_version=expected,
                actual_version=current["version"],
            )

        values = payload.field_values()
        if "title" in values and values["title"] is None:
            raise ValidationError("Task title cannot be cleared", field="title")

        async with self.pool.write_transaction() as conn:
            version = await self.hierarchy.update_fields(
                task_id, values, expected_version=current["version"], conn=conn
            )
            await self._sync_child_records(task_id, payload, conn)

        logger.info("Updated task", task_id=task_id, version=version, fields=sorted(payload.model_fields_set))

        requested = payload.status if "status" in payload.model_fields_set else None
        await self._recompute_quietly(task_id, requested)
        return await self.hierarchy.get(task_id)

    async def move_task(self, task_id: str, new_parent_id: Optional[str]) -> Task:
        """
        Re-parent a task and recompute the affected branches.

        Raises:
            NotFoundError: Unknown task
            ValidationError: Self-parent, missing parent or descendant cycle
        """
        current = await self.hierarchy.get_row(task_id)
        if current is None:
            raise NotFoundError(f"Task not found: {task_id}", entity_type="task", entity_id=task_id)
        old_parent_id = current["parent_id"]

        async with self.pool.write_transaction() as conn:
            await self.hierarchy.move(task_id, new_parent_id, conn=conn)

        await self._recompute_quietly(task_id, current["status"])
        if old_parent_id and old_parent_id != new_parent_id:
            await self._recompute_quietly(old_parent_id)
        return await self.hierarchy.get(task_id)

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and its subtree; False when it does not exist."""
        current = await self.hierarchy.get_row(task_id)
        if current is None:
            return False
        dependents = await self.dependencies.dependents_of(task_id)

        async with self.pool.write_transaction() as conn:
            deleted = await self.hierarchy.delete(task_id, conn=conn)

        if current["parent_id"]:
            await self._recompute_quietly(current["parent_id"])
        for dependent_id in dependents:
            await self._recompute_quietly(dependent_id)
        return deleted

    async def update_task_status(
        self, task_id: str, status: StatusInput = None, force: bool = False
    ) -> StatusDecision:
        """Explicit status transition; never changes the task version."""
        return await self.engine.recompute(task_id, status, force=force, visited=set())

    async def import_tasks(self, items: Iterable[Mapping[str, Any]]) -> List[Task]:
        """Create each mapping in order; earlier items stay if a later one fails."""
        created = []
        for item in items:
            created.append(await self.create_task_from(item))
        logger.info("Imported tasks", count=len(created))
        return created

    # ========================================================================
    # DEPENDENCIES
    # ========================================================================

    async def create_dependency(
        self, from_task_id: str, to_task_id: str, artifact_ids: Optional[List[str]] = None
    ) -> DependencyEdge:
        async with self.pool.write_transaction() as conn:
            edge = await self.dependencies.create(from_task_id, to_task_id, artifact_ids, conn=conn)
        await self._recompute_quietly(to_task_id)
        return edge

    async def update_dependency(
        self,
        dependency_id: str,
        from_task_id: str,
        to_task_id: str,
        artifact_ids: Optional[List[str]] = None,
    ) -> DependencyEdge:
        previous = await self.dependencies.get_by_id(dependency_id)
        if previous is None:
            raise NotFoundError(
                f"Dependency not found: {dependency_id}",
                entity_type="dependency",
                entity_id=dependency_id,
            )
        async with self.pool.write_transaction() as conn:
            edge = await self.dependencies.update(
                dependency_id, from_task_id, to_task_id, artifact_ids, conn=conn
            )
        for task_id in dict.fromkeys([previous.to_task_id, to_task_id]):
            await self._recompute_quietly(task_id)
        return edge

    async def delete_dependency(self, dependency_id: str) -> bool:
        previous = await self.dependencies.get_by_id(dependency_id)
        if previous is None:
            return False
        deleted = await self.dependencies.delete(dependency_id)
        await self._recompute_quietly(previous.to_task_id)
        return deleted

    async def get_dependency(self, dependency_id: str) -> Optional[DependencyEdge]:
        return await self.dependencies.get_by_id(dependency_id)

    # ========================================================================
    # ARTIFACT CATALOG
    # ========================================================================

    async def create_artifact(
        self, title: str, uri: Optional[str] = None, description: Optional[str] = None
    ) -> Artifact:
        return await self.artifacts.create(title, uri=uri, description=description)

    async def get_artifact(self, artifact_id: str) -> Optional[Artifact]:
        return await self.artifacts.get(artifact_id)

    async def list_artifacts(self) -> List[Artifact]:
        return await self.artifacts.list()

    async def update_artifact(
        self,
        artifact_id: str,
        title: Optional[str] = None,
        uri: Optional[str] = None,
        description: Optional[str] = None,
        if_version: Optional[int] = None,
    ) -> Artifact:
        return await self.artifacts.update(
            artifact_id, title=title, uri=uri, description=description, if_version=if_version
        )

    async def delete_artifact(self, artifact_id: str) -> bool:
        """Delete a catalog artifact and recompute the tasks that held it."""
        async with self.pool.write_transaction() as conn:
            affected = await self.assignments.task_ids_for_artifact(artifact_id, conn=conn)
            deleted = await self.artifacts.delete(artifact_id, conn=conn)

        for task_id in affected:
            await self._recompute_quietly(task_id)
        return deleted

    # ========================================================================
    # AGENT MODE
    # ========================================================================

    async def get_next_task(self) -> Optional[Task]:
        """
        Pick the task an agent should work on.

        Returns the oldest in-progress task when there is one. Otherwise the
        first leaf pending task (creation order) whose dependees all exist and
        are completed is forced to in-progress and returned.
        """
        in_progress_id = await self.hierarchy.oldest_in_progress_id()
        if in_progress_id is not None:
            return await self.hierarchy.get(in_progress_id)

        for task_id in await self.hierarchy.pending_leaf_ids():
            dependee_ids = await self.dependencies.dependees_of(task_id)
            if not await self._dependees_completed(dependee_ids):
                continue
            await self.engine.recompute(task_id, TaskStatus.IN_PROGRESS, force=True)
            logger.info("Claimed next task", task_id=task_id)
            return await self.hierarchy.get(task_id)

        return None

    async def request_completion(
        self, task_id: str, audits: Iterable[Union[AuditResult, Mapping[str, Any]]]
    ) -> CompletionReview:
        """
        Complete a task if every completion condition has an approving audit.

        Raises:
            NotFoundError: Unknown task
        """
        task = await self.hierarchy.get(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", entity_type="task", entity_id=task_id)

        approved = {
            audit.id
            for audit in (parse_payload(AuditResult, a) for a in audits)
            if audit.ok
        }
        outstanding = [c for c in task.completion_conditions if c.id not in approved]
        if outstanding:
            logger.info("Completion request rejected", task_id=task_id, outstanding=len(outstanding))
            return CompletionReview(
                accepted=False,
                task=task,
                completion_conditions=task.completion_conditions,
                outstanding=outstanding,
            )

        await self.engine.recompute(task_id, TaskStatus.COMPLETED, force=True)
        completed = await self.hierarchy.get(task_id)
        return CompletionReview(
            accepted=True,
            task=completed,
            completion_conditions=completed.completion_conditions,
        )

    # ========================================================================
    # INTERNALS
    # ========================================================================

    async def _sync_child_records(
        self, task_id: str, payload: TaskChildRecords, conn: AsyncConnection
    ) -> None:
        present = payload.model_fields_set
        timestamp = self.hierarchy.now()

        if "dependencies" in present:
            await self.dependencies.replace_dependees(task_id, payload.dependencies or [], conn=conn)
        if "artifacts" in present:
            await self.assignments.sync(task_id, payload.artifacts or [], timestamp=timestamp, conn=conn)
        for key, role in _ROLE_KEYS:
            if key in present:
                await self.assignments.sync(
                    task_id, getattr(payload, key) or [], role=role, timestamp=timestamp, conn=conn
                )
        if "completion_conditions" in present:
            await self.conditions.sync(
                task_id, payload.completion_conditions or [], timestamp=timestamp, conn=conn
            )

    async def _dependees_completed(self, dependee_ids: List[str]) -> bool:
        if not dependee_ids:
            return True
        rows = await self.hierarchy.get_rows(dependee_ids)
        if len(rows) != len(set(dependee_ids)):
            return False
        return all(row["status"] == TaskStatus.COMPLETED.value for row in rows)

    async def _recompute_quietly(self, task_id: str, requested: StatusInput = None) -> None:
        try:
            await self.engine.recompute(task_id, requested, visited=set())
        except Exception as e:
            logger.error("Status recomputation failed", task_id=task_id, error=str(e))
