"""
Database schema definition using SQLAlchemy Core.

Defines the tables, indexes and constraints of the WBS store. Core (not ORM)
keeps rows as plain mappings that the stores convert into pydantic models.
"""

from sqlalchemy import (
    TIMESTAMP,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

# Metadata container for all tables
metadata = MetaData()

TASK_STATUSES = ("draft", "pending", "in-progress", "completed")
ARTIFACT_ROLES = ("deliverable", "prerequisite")

# ============================================================================
# TASK TREE
# ============================================================================

tasks = Table(
    "tasks",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "parent_id",
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("details", Text),
    Column("assignee", Text),
    Column(
        "status",
        String(20),
        CheckConstraint(
            "status IN ('draft', 'pending', 'in-progress', 'completed')",
            name="ck_tasks_status",
        ),
        nullable=False,
        default="draft",
    ),
    Column("estimate", Text),
    Column("created_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Column("version", Integer, nullable=False, default=1),
    Index("idx_tasks_parent", "parent_id"),
    Index("idx_tasks_status", "status"),
)

# ============================================================================
# ARTIFACT CATALOG AND ASSIGNMENTS
# ============================================================================

artifacts = Table(
    "artifacts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", Text, nullable=False, unique=True),
    Column("uri", Text),
    Column("description", Text),
    Column("created_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Column("version", Integer, nullable=False, default=1),
)

task_artifacts = Table(
    "task_artifacts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "task_id",
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "artifact_id",
        String(36),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "role",
        String(20),
        CheckConstraint(
            "role IN ('deliverable', 'prerequisite')",
            name="ck_task_artifacts_role",
        ),
        nullable=False,
    ),
    Column("crud_operations", Text),
    Column("order_index", Integer, nullable=False, default=0),
    Column("created_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Index("idx_task_artifacts_task_role", "task_id", "role", "order_index"),
)

task_completion_conditions = Table(
    "task_completion_conditions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "task_id",
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("description", Text, nullable=False),
    Column("order_index", Integer, nullable=False, default=0),
    Column("created_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Index("idx_completion_conditions_task", "task_id", "order_index"),
)

# ============================================================================
# DEPENDENCY GRAPH
# ============================================================================

dependencies = Table(
    "dependencies",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "from_task_id",
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "to_task_id",
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("created_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    UniqueConstraint("from_task_id", "to_task_id", name="uq_dependencies_pair"),
    Index("idx_dependencies_from", "from_task_id"),
    Index("idx_dependencies_to", "to_task_id"),
)

dependency_artifacts = Table(
    "dependency_artifacts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "dependency_id",
        String(36),
        ForeignKey("dependencies.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "artifact_id",
        String(36),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("order_index", Integer, nullable=False, default=0),
    Column("created_at", TIMESTAMP, nullable=False, server_default=func.current_timestamp()),
    Index("idx_dependency_artifacts_dep", "dependency_id", "order_index"),
)

# ============================================================================
# SYSTEM TABLES
# ============================================================================

schema_version = Table(
    "schema_version",
    metadata,
    Column("version", String(20), primary_key=True),
    Column("description", Text),
    Column("applied_at", TIMESTAMP, server_default=func.current_timestamp()),
)


def get_table_creation_order() -> list[Table]:
    """
    Get tables in creation order respecting foreign keys.

    Returns:
        Ordered list of tables for creation
    """
    return [
        schema_version,
        tasks,
        artifacts,
        task_artifacts,
        task_completion_conditions,
        dependencies,
        dependency_artifacts,
    ]
