"""
Task Management Models for wbstrack

Core Components:
- Task / TaskSummary: WBS nodes as returned to callers
- DependencyEdge: precedence edge with ordered artifact links
- Artifact / ArtifactAssignment: artifact catalog and per-task roles
- CompletionCondition: ordered free-text acceptance criteria
- StatusDecision: outcome of a status evaluation with its reason code
- *Input / TaskCreate / TaskUpdate: caller payloads (snake_case or camelCase)
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    """Task lifecycle status"""
    DRAFT = "draft"
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class ArtifactRole(str, Enum):
    """Role of an artifact attached to a task"""
    DELIVERABLE = "deliverable"
    PREREQUISITE = "prerequisite"


class ReasonCode(str, Enum):
    """Why the status engine chose a status"""
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    WAITING_DEPENDEES = "WAITING_DEPENDEES"
    CHILD_HAS_DRAFT = "CHILD_HAS_DRAFT"
    CHILD_IN_PROGRESS = "CHILD_IN_PROGRESS"
    ALL_CHILDREN_COMPLETED = "ALL_CHILDREN_COMPLETED"
    CHILD_HAS_PENDING = "CHILD_HAS_PENDING"
    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
    FALLBACK = "FALLBACK"
    FORCED = "FORCED"
    CYCLE_DETECTED = "CYCLE_DETECTED"


class StatusDecision(BaseModel):
    """Status chosen for a task and the rule that produced it."""

    model_config = ConfigDict(frozen=True)

    status: TaskStatus
    reason: ReasonCode


# ============================================================================
# STORED ENTITIES
# ============================================================================

class Artifact(BaseModel):
    """Catalog entry referenced by assignments and dependency links."""

    id: str
    title: str
    uri: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1


class ArtifactAssignment(BaseModel):
    """An artifact attached to a task under a role."""

    id: str
    task_id: str
    artifact_id: str
    role: ArtifactRole
    crud_operations: Optional[str] = None
    order_index: int = 0
    artifact: Optional[Artifact] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CompletionCondition(BaseModel):
    id: str
    task_id: str
    description: str
    order_index: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DependencyArtifactLink(BaseModel):
    id: str
    dependency_id: str
    artifact_id: str
    order_index: int = 0
    created_at: Optional[datetime] = None


class DependencyEdge(BaseModel):
    """Precedence edge: ``from_task_id`` must finish before ``to_task_id``."""

    id: str
    from_task_id: str
    to_task_id: str
    created_at: Optional[datetime] = None
    artifacts: List[DependencyArtifactLink] = Field(default_factory=list)

    @property
    def artifact_ids(self) -> List[str]:
        return [link.artifact_id for link in self.artifacts]


class TaskSummary(BaseModel):
    """Compact view of a related task (child, dependee or dependent)."""

    id: str
    parent_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    estimate: Optional[str] = None
    version: int = 1


class Task(BaseModel):
    """
    WBS node with its directly related records.

    ``children`` holds one level of summaries; ``child_count`` is filled for
    both detail and listing reads.
    """

    id: str
    parent_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    details: Optional[str] = None
    assignee: Optional[str] = None
    status: TaskStatus = TaskStatus.DRAFT
    estimate: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    child_count: int = 0
    children: List[TaskSummary] = Field(default_factory=list)
    dependees: List[TaskSummary] = Field(default_factory=list)
    dependents: List[TaskSummary] = Field(default_factory=list)
    artifacts: List[ArtifactAssignment] = Field(default_factory=list)
    completion_conditions: List[CompletionCondition] = Field(default_factory=list)

    @property
    def deliverables(self) -> List[ArtifactAssignment]:
        return [a for a in self.artifacts if a.role == ArtifactRole.DELIVERABLE]

    @property
    def prerequisites(self) -> List[ArtifactAssignment]:
        return [a for a in self.artifacts if a.role == ArtifactRole.PREREQUISITE]

    @property
    def is_leaf(self) -> bool:
        return self.child_count == 0


# ============================================================================
# CALLER PAYLOADS
# ============================================================================

class InputModel(BaseModel):
    """Base for payloads accepting snake_case or camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TaskArtifactInput(InputModel):
    artifact_id: str
    role: ArtifactRole = ArtifactRole.DELIVERABLE
    crud_operations: Optional[str] = None


class CompletionConditionInput(InputModel):
    description: str = ""


class DependencyInput(InputModel):
    """Upstream task the owning task waits for, with optional artifact links."""

    task_id: str
    artifacts: List[str] = Field(default_factory=list)

    @field_validator("artifacts", mode="before")
    @classmethod
    def flatten_artifact_refs(cls, v: Any) -> Any:
        """Accept bare ids or ``{"artifactId": ...}`` mappings."""
        if not isinstance(v, list):
            return v
        refs = []
        for item in v:
            if isinstance(item, dict):
                refs.append(item.get("artifactId") or item.get("artifact_id") or item.get("id"))
            else:
                refs.append(item)
        return refs


def _coerce_conditions(v: Any) -> Any:
    if isinstance(v, list):
        return [{"description": item} if isinstance(item, str) else item for item in v]
    return v


class TaskChildRecords(InputModel):
    """Child-record keys shared by create and update payloads."""

    dependencies: Optional[List[DependencyInput]] = None
    artifacts: Optional[List[TaskArtifactInput]] = None
    deliverables: Optional[List[TaskArtifactInput]] = None
    prerequisites: Optional[List[TaskArtifactInput]] = None
    completion_conditions: Optional[List[CompletionConditionInput]] = None

    @field_validator("completion_conditions", mode="before")
    @classmethod
    def accept_plain_strings(cls, v: Any) -> Any:
        return _coerce_conditions(v)

    @field_validator("dependencies", mode="before")
    @classmethod
    def accept_bare_task_ids(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"task_id": item} if isinstance(item, str) else item for item in v]
        return v


class TaskCreate(TaskChildRecords):
    """Payload for creating a task (also used by bulk import)."""

    title: str
    description: Optional[str] = None
    details: Optional[str] = None
    parent_id: Optional[str] = None
    assignee: Optional[str] = None
    estimate: Optional[str] = None

    def task_fields(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "parent_id": self.parent_id,
            "assignee": self.assignee,
            "estimate": self.estimate,
        }


class TaskUpdate(TaskChildRecords):
    """
    Partial update payload.

    Only keys the caller actually supplied are applied; use
    ``model_fields_set`` rather than ``None`` checks to detect presence.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None
    assignee: Optional[str] = None
    estimate: Optional[str] = None
    status: Optional[TaskStatus] = None
    if_version: Optional[int] = None

    SCALAR_FIELDS: ClassVar[Tuple[str, ...]] = ("title", "description", "details", "assignee", "estimate")

    def field_values(self) -> Dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.SCALAR_FIELDS
            if name in self.model_fields_set
        }


class AuditResult(InputModel):
    """Agent verdict on one completion condition."""

    id: str
    ok: bool = False


class CompletionReview(BaseModel):
    """Outcome of an agent completion request."""

    accepted: bool
    task: Optional[Task] = None
    completion_conditions: List[CompletionCondition] = Field(default_factory=list)
    outstanding: List[CompletionCondition] = Field(default_factory=list)
