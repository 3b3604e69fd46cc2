"""
Status engine for WBS tasks.

A task's status is recomputed from current data on every call rather than
advanced through a transition table. ``decide`` is a pure read; ``recompute``
persists the decision and walks up the ancestor chain.

Decision rules, evaluated in order:

1. Unknown task -> requested or draft (TASK_NOT_FOUND)
2. Any resolved dependee not completed -> pending (WAITING_DEPENDEES)
3. With children: a draft child -> draft; else an in-progress child ->
   in-progress; else (no requested status) all completed -> completed;
   else a pending child -> pending; otherwise continue with rule 4
4. Missing title/description/details/estimate, completion conditions or
   artifacts -> draft (MISSING_REQUIRED_FIELDS)
5. Requested or pending (FALLBACK)
"""

from typing import Any, Dict, List, Optional, Set, Union

from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.core.exceptions import ValidationError
from wbstrack.core.logging import get_logger
from wbstrack.database.connection import ConnectionPool
from wbstrack.tasks.artifacts import ArtifactAssignmentStore
from wbstrack.tasks.conditions import CompletionConditionStore
from wbstrack.tasks.dependencies import DependencyGraphStore
from wbstrack.tasks.hierarchy import TaskHierarchyStore, is_filled
from wbstrack.tasks.models import ReasonCode, StatusDecision, TaskStatus

logger = get_logger("engine")

StatusInput = Union[TaskStatus, str, None]

REQUIRED_FIELDS = ("title", "description", "details", "estimate")


def coerce_status(value: StatusInput) -> Optional[TaskStatus]:
    """Convert a caller-supplied status to the enum; None passes through."""
    if value is None or isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value).strip().lower())
    except ValueError as e:
        raise ValidationError(
            f"Unknown task status: {value}",
            field="status",
            value=value,
        ) from e


def decide_for_children(
    child_statuses: List[TaskStatus], requested: Optional[TaskStatus]
) -> Optional[StatusDecision]:
    """Rule 3; None means no child rule applies."""
    if not child_statuses:
        return None
    if TaskStatus.DRAFT in child_statuses:
        return StatusDecision(status=TaskStatus.DRAFT, reason=ReasonCode.CHILD_HAS_DRAFT)
    if TaskStatus.IN_PROGRESS in child_statuses:
        return StatusDecision(status=TaskStatus.IN_PROGRESS, reason=ReasonCode.CHILD_IN_PROGRESS)
    if requested is None and all(s == TaskStatus.COMPLETED for s in child_statuses):
        return StatusDecision(status=TaskStatus.COMPLETED, reason=ReasonCode.ALL_CHILDREN_COMPLETED)
    if TaskStatus.PENDING in child_statuses:
        return StatusDecision(status=TaskStatus.PENDING, reason=ReasonCode.CHILD_HAS_PENDING)
    # Requested status with every child completed: no child rule applies.
    return None


class StatusEngine:
    """Decides, persists and propagates task statuses."""

    def __init__(
        self,
        pool: ConnectionPool,
        hierarchy: TaskHierarchyStore,
        dependencies: DependencyGraphStore,
        assignments: ArtifactAssignmentStore,
        conditions: CompletionConditionStore,
    ):
        self.pool = pool
        self.hierarchy = hierarchy
        self.dependencies = dependencies
        self.assignments = assignments
        self.conditions = conditions

    async def decide(
        self,
        task_id: str,
        requested_status: StatusInput = None,
        conn: Optional[AsyncConnection] = None,
    ) -> StatusDecision:
        """
        Evaluate the decision rules for one task without writing anything.

        Args:
            task_id: Task to evaluate
            requested_status: Status the caller would like, if any
            conn: Optional connection to read through

        Returns:
            Decided status and reason code
        """
        requested = coerce_status(requested_status)
        if conn is not None:
            return await self._decide(task_id, requested, conn)
        async with self.pool.read_transaction() as own:
            return await self._decide(task_id, requested, own)

    async def _decide(
        self, task_id: str, requested: Optional[TaskStatus], conn: AsyncConnection
    ) -> StatusDecision:
        row = await self.hierarchy.get_row(task_id, conn=conn)
        if row is None:
            return StatusDecision(status=requested or TaskStatus.DRAFT, reason=ReasonCode.TASK_NOT_FOUND)

        dependee_ids = await self.dependencies.dependees_of(task_id, conn=conn)
        dependees = await self.hierarchy.get_rows(dependee_ids, conn=conn)
        if any(d["status"] != TaskStatus.COMPLETED.value for d in dependees):
            return StatusDecision(status=TaskStatus.PENDING, reason=ReasonCode.WAITING_DEPENDEES)

        children = await self.hierarchy.child_rows(task_id, conn=conn)
        child_decision = decide_for_children([TaskStatus(c["status"]) for c in children], requested)
        if child_decision is not None:
            return child_decision

        if not self._has_required_fields(row):
            return StatusDecision(status=TaskStatus.DRAFT, reason=ReasonCode.MISSING_REQUIRED_FIELDS)
        conditions = (await self.conditions.collect([task_id], conn=conn))[task_id]
        artifacts = (await self.assignments.collect([task_id], conn=conn))[task_id]
        if not conditions or not artifacts:
            return StatusDecision(status=TaskStatus.DRAFT, reason=ReasonCode.MISSING_REQUIRED_FIELDS)

        return StatusDecision(status=requested or TaskStatus.PENDING, reason=ReasonCode.FALLBACK)

    @staticmethod
    def _has_required_fields(row: Dict[str, Any]) -> bool:
        return all(is_filled(row.get(name)) for name in REQUIRED_FIELDS)

    async def recompute(
        self,
        task_id: str,
        requested_status: StatusInput = None,
        force: bool = False,
        visited: Optional[Set[str]] = None,
    ) -> StatusDecision:
        """
        Decide, persist and propagate a task's status.

        Args:
            task_id: Task to recompute
            requested_status: Status the caller asks for
            force: Apply ``requested_status`` directly, skipping the rules
            visited: Ids already handled in this propagation chain

        Returns:
            Decision for ``task_id`` (ancestor decisions are not returned)

        Raises:
            ValidationError: ``requested_status`` is not a known status
        """
        requested = coerce_status(requested_status)
        visited = set() if visited is None else visited

        row = await self.hierarchy.get_row(task_id)
        if task_id in visited:
            current = TaskStatus(row["status"]) if row else None
            logger.warning("Status propagation revisited task", task_id=task_id)
            return StatusDecision(
                status=requested or current or TaskStatus.DRAFT,
                reason=ReasonCode.CYCLE_DETECTED,
            )
        visited.add(task_id)

        if force and requested is not None:
            decision = StatusDecision(status=requested, reason=ReasonCode.FORCED)
        else:
            decision = await self.decide(task_id, requested)

        if row is None:
            return decision

        await self.hierarchy.set_status(task_id, decision.status)
        logger.debug(
            "Recomputed task status",
            task_id=task_id,
            status=decision.status.value,
            reason=decision.reason.value,
        )

        parent_id = row["parent_id"]
        if parent_id:
            try:
                await self.recompute(parent_id, visited=visited)
            except Exception as e:
                logger.error(
                    "Parent status propagation failed",
                    task_id=task_id,
                    parent_id=parent_id,
                    error=str(e),
                )

        return decision
