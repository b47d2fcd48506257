"""
Rollout Planner - Pydantic Schemas
===================================

Wire representation of plans and rollouts.

Spec configs and restore sources are tagged unions. The schemas accept any
combination so that a malformed union reaches the compiler, which rejects
it with a categorized error before any task is built.
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rollout_planner.core.models import TaskType


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps without an offset are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==========================================================================
# Enums (wire only)
# ==========================================================================

class ChangeType(str, enum.Enum):
    """Database change type of a ChangeDatabaseConfig."""
    TYPE_UNSPECIFIED = "TYPE_UNSPECIFIED"
    BASELINE = "BASELINE"
    MIGRATE = "MIGRATE"
    MIGRATE_SDL = "MIGRATE_SDL"
    MIGRATE_GHOST = "MIGRATE_GHOST"
    BRANCH = "BRANCH"
    DATA = "DATA"


class TaskStatusView(str, enum.Enum):
    """Externally visible task status; SKIPPED is RUNNING with the skip flag."""
    STATUS_UNSPECIFIED = "STATUS_UNSPECIFIED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    SKIPPED = "SKIPPED"


class RollbackSQLStatusView(str, enum.Enum):
    ROLLBACK_SQL_STATUS_UNSPECIFIED = "ROLLBACK_SQL_STATUS_UNSPECIFIED"
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


# ==========================================================================
# Plan Schemas
# ==========================================================================

class CreateDatabaseConfig(BaseSchema):
    """Create a new database on an instance."""

    # Format: instances/{instance}
    target: str = ""
    database: str = ""
    # Seed collection/table; required for MongoDB where a database only
    # materializes on first write.
    table: str = ""
    character_set: str = ""
    collation: str = ""
    # ClickHouse only: ON CLUSTER <cluster>
    cluster: str = ""
    # Postgres / Redshift owner role
    owner: str = ""
    # Format: instances/{instance}/databases/{database}/backups/{backup}
    # Not read by the compiler; kept so stored plans round-trip unchanged.
    backup: str = ""
    labels: dict[str, str] = Field(default_factory=dict)


class RollbackDetail(BaseSchema):
    """Provenance of a generated rollback statement."""

    # Format: projects/{project}/rollouts/{rollout}/stages/{stage}/tasks/{task}
    rollback_from_task: str = ""
    # Format: projects/{project}/reviews/{review}
    rollback_from_review: str = ""


class ChangeDatabaseConfig(BaseSchema):
    """Run a sheet against an existing database."""

    # Format: instances/{instance}/databases/{database}
    target: str = ""
    # Format: projects/{project}/sheets/{sheet}
    sheet: str = ""
    type: ChangeType = ChangeType.TYPE_UNSPECIFIED
    schema_version: str = ""
    rollback_enabled: bool = False
    rollback_detail: Optional[RollbackDetail] = None


class RestoreDatabaseConfig(BaseSchema):
    """
    Restore a database from a backup or to a point in time.

    Exactly one of `backup` / `point_in_time` must be set. When
    `create_database_config` is present the restore goes into a brand-new
    database, otherwise it happens in place.
    """

    # Format: instances/{instance}/databases/{database}
    target: str = ""
    create_database_config: Optional[CreateDatabaseConfig] = None
    backup: Optional[str] = None
    point_in_time: Optional[datetime] = None

    @field_validator("point_in_time")
    @classmethod
    def validate_point_in_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class PlanSpec(BaseSchema):
    """One atomic intended change, identified by a client-generated id."""

    id: str = ""
    earliest_allowed_time: Optional[datetime] = None
    create_database_config: Optional[CreateDatabaseConfig] = None
    change_database_config: Optional[ChangeDatabaseConfig] = None
    restore_database_config: Optional[RestoreDatabaseConfig] = None

    @field_validator("earliest_allowed_time")
    @classmethod
    def validate_earliest_allowed_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def configs(self) -> list[BaseSchema]:
        return [
            config
            for config in (
                self.create_database_config,
                self.change_database_config,
                self.restore_database_config,
            )
            if config is not None
        ]


class PlanStep(BaseSchema):
    """Specs realized within a single deployment environment."""

    specs: list[PlanSpec] = Field(default_factory=list)


class PlanBody(BaseSchema):
    """Plan fields supplied by the caller on create and update."""

    title: str = ""
    description: str = ""
    steps: list[PlanStep] = Field(default_factory=list)


class Plan(PlanBody):
    """Plan as returned to callers."""

    # Format: projects/{project}/plans/{plan}
    name: str
    uid: str
    review: str = ""
    rollout: str = ""


class PlanListResponse(BaseSchema):
    """Schema for paginated plan list."""

    items: list[Plan]
    total: int
    page: int
    page_size: int
    pages: int


# ==========================================================================
# Rollout Schemas
# ==========================================================================

class DatabaseCreatePayload(BaseSchema):
    project: str = ""
    database: str = ""
    table: str = ""
    sheet: str = ""
    character_set: str = ""
    collation: str = ""
    labels: dict[str, str] = Field(default_factory=dict)


class SchemaBaselinePayload(BaseSchema):
    schema_version: str = ""


class SchemaUpdatePayload(BaseSchema):
    sheet: str = ""
    schema_version: str = ""


class DataUpdatePayload(BaseSchema):
    sheet: str = ""
    schema_version: str = ""
    rollback_enabled: bool = False
    rollback_sql_status: RollbackSQLStatusView = RollbackSQLStatusView.ROLLBACK_SQL_STATUS_UNSPECIFIED
    rollback_error: str = ""
    rollback_sheet: str = ""
    rollback_from_review: str = ""
    rollback_from_task: str = ""


class BackupPayload(BaseSchema):
    backup: str = ""


class RestoreRestorePayload(BaseSchema):
    # Format: instances/{instance}/databases/{database}; empty for in-place restore
    target: str = ""
    backup: Optional[str] = None
    point_in_time: Optional[datetime] = None


class RolloutTask(BaseSchema):
    """Task as returned to callers."""

    name: str
    uid: str
    title: str
    spec_id: str = ""
    status: TaskStatusView
    type: TaskType
    blocked_by_tasks: list[str] = Field(default_factory=list)
    target: str = ""
    database_create: Optional[DatabaseCreatePayload] = None
    database_schema_baseline: Optional[SchemaBaselinePayload] = None
    database_schema_update: Optional[SchemaUpdatePayload] = None
    database_data_update: Optional[DataUpdatePayload] = None
    database_backup: Optional[BackupPayload] = None
    database_restore_restore: Optional[RestoreRestorePayload] = None


class RolloutStage(BaseSchema):
    name: str
    uid: str
    environment: str
    title: str
    tasks: list[RolloutTask] = Field(default_factory=list)


class Rollout(BaseSchema):
    """Compiled pipeline as returned to callers."""

    name: str
    uid: str
    plan: str = ""
    title: str
    stages: list[RolloutStage] = Field(default_factory=list)


# ==========================================================================
# Generic Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
