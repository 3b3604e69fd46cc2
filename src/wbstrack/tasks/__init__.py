"""
Task lifecycle for wbstrack.

Stores for the task tree, dependency graph, artifacts and completion
conditions, the status engine, and the service that orchestrates them.
"""

from wbstrack.tasks.artifacts import ArtifactAssignmentStore, ArtifactStore
from wbstrack.tasks.conditions import CompletionConditionStore
from wbstrack.tasks.dependencies import DependencyGraphStore
from wbstrack.tasks.engine import StatusEngine
from wbstrack.tasks.hierarchy import TaskHierarchyStore
from wbstrack.tasks.models import (
    Artifact,
    ArtifactAssignment,
    ArtifactRole,
    AuditResult,
    CompletionCondition,
    CompletionReview,
    DependencyArtifactLink,
    DependencyEdge,
    DependencyInput,
    ReasonCode,
    StatusDecision,
    Task,
    TaskArtifactInput,
    TaskCreate,
    TaskStatus,
    TaskSummary,
    TaskUpdate,
)
from wbstrack.tasks.service import TaskLifecycleService

__all__ = [
    # Stores
    "ArtifactStore",
    "ArtifactAssignmentStore",
    "CompletionConditionStore",
    "DependencyGraphStore",
    "TaskHierarchyStore",
    # Engine and service
    "StatusEngine",
    "TaskLifecycleService",
    # Models
    "Artifact",
    "ArtifactAssignment",
    "ArtifactRole",
    "AuditResult",
    "CompletionCondition",
    "CompletionReview",
    "DependencyArtifactLink",
    "DependencyEdge",
    "DependencyInput",
    "ReasonCode",
    "StatusDecision",
    "Task",
    "TaskArtifactInput",
    "TaskCreate",
    "TaskStatus",
    "TaskSummary",
    "TaskUpdate",
]
