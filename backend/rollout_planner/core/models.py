"""
Rollout Planner - Database Models
==================================

SQLAlchemy models for all entities.

Environment, Project, Instance, DataSource, Database, Sheet and Backup are
metadata owned by other subsystems; the planner only reads them (and writes
system-artifact sheets). Plan, Pipeline, Stage, Task and TaskDAG are the
rows produced by plan compilation.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rollout_planner.core.database import Base


# ==========================================================================
# Enums
# ==========================================================================

class Engine(str, enum.Enum):
    """Database engine of an instance."""
    MYSQL = "MYSQL"
    TIDB = "TIDB"
    MARIADB = "MARIADB"
    OCEANBASE = "OCEANBASE"
    MSSQL = "MSSQL"
    POSTGRES = "POSTGRES"
    REDSHIFT = "REDSHIFT"
    CLICKHOUSE = "CLICKHOUSE"
    SNOWFLAKE = "SNOWFLAKE"
    SPANNER = "SPANNER"
    ORACLE = "ORACLE"
    SQLITE = "SQLITE"
    MONGODB = "MONGODB"


class DataSourceType(str, enum.Enum):
    """Connection role of a data source."""
    ADMIN = "ADMIN"
    READ_ONLY = "READ_ONLY"


class SheetSource(str, enum.Enum):
    """Who authored a sheet."""
    USER = "USER"
    SYSTEM_ARTIFACT = "SYSTEM_ARTIFACT"  # Generated by the planner itself


class BackupStatus(str, enum.Enum):
    """Backup lifecycle status."""
    PENDING_CREATE = "PENDING_CREATE"
    DONE = "DONE"
    FAILED = "FAILED"


class TaskType(str, enum.Enum):
    """Kind of work a task performs."""
    GENERAL = "GENERAL"
    DATABASE_CREATE = "DATABASE_CREATE"
    DATABASE_SCHEMA_BASELINE = "DATABASE_SCHEMA_BASELINE"
    DATABASE_SCHEMA_UPDATE = "DATABASE_SCHEMA_UPDATE"
    DATABASE_SCHEMA_UPDATE_SDL = "DATABASE_SCHEMA_UPDATE_SDL"
    DATABASE_SCHEMA_UPDATE_GHOST_SYNC = "DATABASE_SCHEMA_UPDATE_GHOST_SYNC"
    DATABASE_SCHEMA_UPDATE_GHOST_CUTOVER = "DATABASE_SCHEMA_UPDATE_GHOST_CUTOVER"
    DATABASE_DATA_UPDATE = "DATABASE_DATA_UPDATE"
    DATABASE_BACKUP = "DATABASE_BACKUP"
    DATABASE_RESTORE_RESTORE = "DATABASE_RESTORE_RESTORE"
    DATABASE_RESTORE_CUTOVER = "DATABASE_RESTORE_CUTOVER"


class TaskStatus(str, enum.Enum):
    """
    Task execution status.

    PENDING_APPROVAL → PENDING → RUNNING → DONE | FAILED | CANCELED

    The planner only ever creates tasks in PENDING_APPROVAL; every later
    transition belongs to the execution runtime.
    """
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


class RollbackSQLStatus(str, enum.Enum):
    """Progress of rollback statement generation for a DML task."""
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


# Task types whose payload points at a user sheet that UpdatePlan may replace.
SHEET_BEARING_TASK_TYPES = frozenset({
    TaskType.DATABASE_SCHEMA_UPDATE,
    TaskType.DATABASE_SCHEMA_UPDATE_SDL,
    TaskType.DATABASE_SCHEMA_UPDATE_GHOST_SYNC,
    TaskType.DATABASE_DATA_UPDATE,
})


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Metadata Models (read-only for the planner)
# ==========================================================================

class Environment(Base, TimestampMixin):
    """Deployment environment, e.g. "Test" or "Prod"."""

    __tablename__ = "environments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    resource_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Environment {self.resource_id}>"


class Project(Base, TimestampMixin):
    """Project owning plans, databases and sheets."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    resource_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    tenant_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Project {self.resource_id}>"


class Instance(Base, TimestampMixin):
    """Database server instance."""

    __tablename__ = "instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    resource_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    engine: Mapped[Engine] = mapped_column(Enum(Engine), nullable=False)
    environment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("environments.id"),
        nullable=False,
    )

    # Relationships
    environment: Mapped["Environment"] = relationship(lazy="selectin")
    data_sources: Mapped[list["DataSource"]] = relationship(
        back_populates="instance",
        lazy="selectin",
    )

    def admin_data_source(self) -> Optional["DataSource"]:
        for data_source in self.data_sources:
            if data_source.type == DataSourceType.ADMIN:
                return data_source
        return None

    def __repr__(self) -> str:
        return f"<Instance {self.resource_id} ({self.engine.value})>"


class DataSource(Base, TimestampMixin):
    """Connection descriptor for an instance."""

    __tablename__ = "data_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[DataSourceType] = mapped_column(
        Enum(DataSourceType),
        default=DataSourceType.ADMIN,
        nullable=False,
    )
    username: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    password: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    host: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    port: Mapped[str] = mapped_column(String(10), default="", nullable=False)

    # Relationships
    instance: Mapped["Instance"] = relationship(back_populates="data_sources")

    def __repr__(self) -> str:
        return f"<DataSource {self.type.value} {self.username}@{self.host}>"


class Database(Base, TimestampMixin):
    """A database living on an instance and assigned to a project."""

    __tablename__ = "databases"
    __table_args__ = (UniqueConstraint("instance_id", "name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("instances.id"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    environment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("environments.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    instance: Mapped["Instance"] = relationship(lazy="selectin")
    project: Mapped["Project"] = relationship(lazy="selectin")
    environment: Mapped["Environment"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<Database {self.name}>"


class Sheet(Base, TimestampMixin):
    """Stored SQL text referenced by change tasks."""

    __tablename__ = "sheets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    creator_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    statement: Mapped[str] = mapped_column(Text, default="", nullable=False)
    source: Mapped[SheetSource] = mapped_column(
        Enum(SheetSource),
        default=SheetSource.USER,
        nullable=False,
    )

    # Relationships
    project: Mapped["Project"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<Sheet {self.id} {self.name[:50]}>"


class Backup(Base, TimestampMixin):
    """Backup of a database, addressable by name within that database."""

    __tablename__ = "backups"
    __table_args__ = (UniqueConstraint("database_id", "name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    database_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("databases.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[BackupStatus] = mapped_column(
        Enum(BackupStatus),
        default=BackupStatus.DONE,
        nullable=False,
    )

    # Relationships
    database: Mapped["Database"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<Backup {self.name}>"


# ==========================================================================
# Plan & Rollout Models
# ==========================================================================

class Plan(Base, TimestampMixin):
    """
    Declarative change plan.

    `config` holds {"steps": [...]} in the wire shape of PlanStep. The plan
    is never deleted; only its steps are rewritten by UpdatePlan.
    """

    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    pipeline_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("pipelines.id"),
        nullable=True,
        unique=True,
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    config: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    creator_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updater_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    project: Mapped["Project"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<Plan {self.id} {self.name[:50]}>"


class Pipeline(Base, TimestampMixin):
    """Compiled, persisted execution graph of a plan."""

    __tablename__ = "pipelines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    creator_id: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<Pipeline {self.id}>"


class Stage(Base, TimestampMixin):
    """One environment's ordered task list within a pipeline."""

    __tablename__ = "stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pipeline_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    environment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("environments.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    creator_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    environment: Mapped["Environment"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<Stage {self.id} {self.name}>"


class Task(Base, TimestampMixin):
    """
    One concrete executable unit.

    `payload` is the variant-specific body keyed by task type. Every payload
    carries `spec_id` (may be empty) and `skipped`.
    """

    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pipeline_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("instances.id"),
        nullable=False,
    )
    database_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("databases.id"),
        nullable=True,
    )
    database_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[TaskType] = mapped_column(Enum(TaskType), nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus),
        default=TaskStatus.PENDING_APPROVAL,
        nullable=False,
        index=True,
    )
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    earliest_allowed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    creator_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updater_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    instance: Mapped["Instance"] = relationship(lazy="selectin")
    database: Mapped[Optional["Database"]] = relationship(lazy="selectin")

    @property
    def spec_id(self) -> str:
        return (self.payload or {}).get("spec_id", "")

    def __repr__(self) -> str:
        return f"<Task {self.id} {self.type.value}>"


class TaskDAG(Base, TimestampMixin):
    """Edge meaning `from_task` blocks `to_task` within one pipeline."""

    __tablename__ = "task_dags"
    __table_args__ = (UniqueConstraint("from_task_id", "to_task_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pipeline_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    )
    to_task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<TaskDAG {self.from_task_id} -> {self.to_task_id}>"
