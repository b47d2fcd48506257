"""
Spec Expander - turns one plan spec into task drafts.

Each expansion returns its drafts plus dependency edges expressed as
indices into its own draft list; the stage compiler shifts them into the
stage's index space. The stage environment is threaded through every
call: the first spec fixes it and any later spec resolving elsewhere
fails with EnvironmentMismatchError.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from rollout_planner.core import resource_names
from rollout_planner.core.compiler.probe import PROBED_ENGINES, CasePolicyProbe
from rollout_planner.core.compiler.statements import (
    check_character_set_collation_owner,
    generate_create_statement,
)
from rollout_planner.core.config import settings
from rollout_planner.core.errors import (
    EnvironmentMismatchError,
    InternalError,
    InvalidInputError,
    NotFoundError,
)
from rollout_planner.core.license import Feature, LicenseService
from rollout_planner.core.models import (
    Database,
    Engine,
    Environment,
    Instance,
    Project,
    RollbackSQLStatus,
    Sheet,
    SheetSource,
    TaskStatus,
    TaskType,
)
from rollout_planner.core.schemas import (
    ChangeDatabaseConfig,
    ChangeType,
    CreateDatabaseConfig,
    PlanSpec,
    RestoreDatabaseConfig,
    RollbackDetail,
)
from rollout_planner.core.store import RolloutStore

logger = logging.getLogger(__name__)


# ==========================================================================
# Drafts
# ==========================================================================

@dataclass
class TaskDraft:
    """A task before it has a pipeline, a stage or an id."""

    instance_id: int
    database_id: Optional[int]
    database_name: str
    name: str
    type: TaskType
    payload: dict
    earliest_allowed_at: Optional[datetime] = None
    status: TaskStatus = TaskStatus.PENDING_APPROVAL


@dataclass(frozen=True)
class TaskEdge:
    """`from_index` blocks `to_index`; both index a draft list."""

    from_index: int
    to_index: int


@dataclass
class Expansion:
    tasks: list[TaskDraft] = field(default_factory=list)
    edges: list[TaskEdge] = field(default_factory=list)
    environment: Optional[Environment] = None


def register_environment(
    current: Optional[Environment],
    candidate: Environment,
) -> Environment:
    """
    Fold `candidate` into the stage environment.

    First write wins; a different environment afterwards is a conflict.
    """
    if current is None:
        return candidate
    if current.resource_id != candidate.resource_id:
        raise EnvironmentMismatchError(
            f"all databases in a step should be in the same environment, "
            f"found {current.resource_id!r} and {candidate.resource_id!r}"
        )
    return current


# ==========================================================================
# Expander
# ==========================================================================

class SpecExpander:
    """
    Expands specs into task drafts.

    Spec → tasks:
    - create database → DATABASE_CREATE
    - change database → one task per change type, two for gh-ost
    - restore database → create + restore, or restore + cutover
    """

    def __init__(
        self,
        store: RolloutStore,
        license_service: LicenseService,
        probe: CasePolicyProbe,
    ):
        self.store = store
        self.license = license_service
        self.probe = probe

    async def expand(
        self,
        spec: PlanSpec,
        project: Project,
        environment: Optional[Environment] = None,
    ) -> Expansion:
        """
        Expand a single spec.

        Args:
            spec: The spec to expand
            project: Project the plan belongs to
            environment: Stage environment registered so far, if any

        Returns:
            Drafts, local edges and the stage environment after this spec
        """
        if spec.earliest_allowed_time is not None and not self.license.is_feature_enabled(
            Feature.TASK_SCHEDULE_TIME
        ):
            raise InvalidInputError(Feature.TASK_SCHEDULE_TIME.access_error_message())

        if spec.create_database_config is not None:
            return await self._expand_create(spec, spec.create_database_config, project, environment)
        if spec.change_database_config is not None:
            return await self._expand_change(spec, spec.change_database_config, environment)
        if spec.restore_database_config is not None:
            return await self._expand_restore(spec, spec.restore_database_config, project, environment)

        raise InvalidInputError(f"spec {spec.id!r} has no config")

    # ======================================================================
    # Create database
    # ======================================================================

    async def _expand_create(
        self,
        spec: PlanSpec,
        config: CreateDatabaseConfig,
        project: Project,
        environment: Optional[Environment],
    ) -> Expansion:
        if not config.database:
            raise InvalidInputError("database name is required")

        instance = await self._get_instance(config.target)
        if instance.engine == Engine.ORACLE:
            raise InvalidInputError("creating Oracle database is not supported")

        environment = register_environment(environment, instance.environment)

        if instance.engine == Engine.MONGODB and not config.table:
            raise InvalidInputError("collection name is required for MongoDB")

        check_character_set_collation_owner(
            instance.engine,
            config.character_set,
            config.collation,
            config.owner,
        )
        labels = self._convert_labels(config.labels)

        if project.tenant_mode and not self.license.is_feature_enabled(Feature.MULTI_TENANCY):
            raise InvalidInputError(Feature.MULTI_TENANCY.access_error_message())

        admin = instance.admin_data_source()
        if admin is None:
            raise InternalError(f"admin data source not found for instance {instance.title!r}")

        database_name = config.database
        if instance.engine == Engine.SNOWFLAKE:
            database_name = database_name.upper()
        elif instance.engine in PROBED_ENGINES:
            policy = await self.probe.probe(instance, admin)
            if policy is not None:
                database_name = policy.apply(database_name)

        statement = generate_create_statement(
            instance.engine,
            config,
            database_name,
            admin.username,
        )
        sheet = await self.store.create_sheet(
            project_id=project.id,
            creator_id=settings.SYSTEM_BOT_ID,
            name=f"Sheet for creating database {database_name}",
            statement=statement,
            source=SheetSource.SYSTEM_ARTIFACT,
        )
        logger.debug(f"Created sheet {sheet.id} for database {database_name} on {instance.resource_id}")

        payload = {
            "spec_id": spec.id,
            "skipped": False,
            "project_id": project.id,
            "database_name": database_name,
            "table_name": config.table,
            "character_set": config.character_set,
            "collation": config.collation,
            "labels": labels,
            "sheet_id": sheet.id,
        }
        task = TaskDraft(
            instance_id=instance.id,
            database_id=None,
            database_name=database_name,
            name=f"Create database {database_name}",
            type=TaskType.DATABASE_CREATE,
            payload=payload,
            earliest_allowed_at=spec.earliest_allowed_time,
        )
        return Expansion(tasks=[task], environment=environment)

    @staticmethod
    def _convert_labels(labels: dict[str, str]) -> list[dict[str, str]]:
        if len(labels) > settings.DATABASE_LABEL_SIZE_MAX:
            raise InvalidInputError(
                f"database labels are up to a maximum of {settings.DATABASE_LABEL_SIZE_MAX}"
            )
        return [{"key": key, "value": labels[key]} for key in sorted(labels)]

    # ======================================================================
    # Change database
    # ======================================================================

    async def _expand_change(
        self,
        spec: PlanSpec,
        config: ChangeDatabaseConfig,
        environment: Optional[Environment],
    ) -> Expansion:
        instance, database = await self._get_database(config.target)
        environment = register_environment(environment, database.environment)

        def draft(name: str, task_type: TaskType, payload: dict) -> TaskDraft:
            return TaskDraft(
                instance_id=instance.id,
                database_id=database.id,
                database_name=database.name,
                name=name,
                type=task_type,
                payload={"spec_id": spec.id, "skipped": False, **payload},
                earliest_allowed_at=spec.earliest_allowed_time,
            )

        label = f'database "{database.name}"'

        if config.type == ChangeType.BASELINE:
            task = draft(
                f"Establish baseline for {label}",
                TaskType.DATABASE_SCHEMA_BASELINE,
                {"schema_version": config.schema_version},
            )
            return Expansion(tasks=[task], environment=environment)

        if config.type == ChangeType.MIGRATE:
            sheet = await self.get_sheet(config.sheet)
            task = draft(
                f"DDL(schema) for {label}",
                TaskType.DATABASE_SCHEMA_UPDATE,
                {"sheet_id": sheet.id, "schema_version": config.schema_version},
            )
            return Expansion(tasks=[task], environment=environment)

        if config.type == ChangeType.MIGRATE_SDL:
            sheet = await self.get_sheet(config.sheet)
            task = draft(
                f"SDL for {label}",
                TaskType.DATABASE_SCHEMA_UPDATE_SDL,
                {"sheet_id": sheet.id, "schema_version": config.schema_version},
            )
            return Expansion(tasks=[task], environment=environment)

        if config.type == ChangeType.MIGRATE_GHOST:
            sheet = await self.get_sheet(config.sheet)
            sync = draft(
                f"Update schema gh-ost sync for {label}",
                TaskType.DATABASE_SCHEMA_UPDATE_GHOST_SYNC,
                {"sheet_id": sheet.id, "schema_version": config.schema_version},
            )
            cutover = draft(
                f"Update schema gh-ost cutover for {label}",
                TaskType.DATABASE_SCHEMA_UPDATE_GHOST_CUTOVER,
                {},
            )
            # sync blocks cutover
            return Expansion(
                tasks=[sync, cutover],
                edges=[TaskEdge(0, 1)],
                environment=environment,
            )

        if config.type == ChangeType.DATA:
            sheet = await self.get_sheet(config.sheet)
            payload = {
                "sheet_id": sheet.id,
                "schema_version": config.schema_version,
                "rollback_enabled": config.rollback_enabled,
                "rollback_sql_status": RollbackSQLStatus.PENDING.value,
            }
            if config.rollback_detail is not None:
                payload.update(await self._resolve_rollback_detail(config.rollback_detail))
            task = draft(f"DML(data) for {label}", TaskType.DATABASE_DATA_UPDATE, payload)
            return Expansion(tasks=[task], environment=environment)

        raise InvalidInputError(f"unsupported change database config type {config.type.value}")

    async def _resolve_rollback_detail(self, detail: RollbackDetail) -> dict:
        review_project, review_id = resource_names.parse_review(detail.rollback_from_review)
        task_project, _, _, task_id = resource_names.parse_task(detail.rollback_from_task)

        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"task {detail.rollback_from_task!r} not found")

        return {
            "rollback_from_review_id": review_id,
            "rollback_from_review": resource_names.review_name(review_project, review_id),
            "rollback_from_task_id": task.id,
            "rollback_from_task": resource_names.task_name(
                task_project, task.pipeline_id, task.stage_id, task.id
            ),
        }

    # ======================================================================
    # Restore database
    # ======================================================================

    async def _expand_restore(
        self,
        spec: PlanSpec,
        config: RestoreDatabaseConfig,
        project: Project,
        environment: Optional[Environment],
    ) -> Expansion:
        if bool(config.backup) == (config.point_in_time is not None):
            raise InvalidInputError(
                "exactly one of backup and point_in_time must be set in restore database config"
            )

        instance, database = await self._get_database(config.target)
        if database.project_id != project.id:
            raise InvalidInputError(
                f"database {database.name!r} is not in project {project.resource_id!r}"
            )
        environment = register_environment(environment, database.environment)

        source = await self._resolve_restore_source(config)
        restore_payload = {
            "spec_id": spec.id,
            "skipped": False,
            "project_id": project.id,
            **source,
        }

        def draft(name: str, task_type: TaskType, payload: dict) -> TaskDraft:
            return TaskDraft(
                instance_id=instance.id,
                database_id=database.id,
                database_name=database.name,
                name=name,
                type=task_type,
                payload=payload,
                earliest_allowed_at=spec.earliest_allowed_time,
            )

        if config.create_database_config is not None:
            # Restore into a brand-new database.
            created = await self._expand_create(
                spec,
                config.create_database_config,
                project,
                environment,
            )
            create_task = created.tasks[0]
            restore_payload["target_instance_id"] = create_task.instance_id
            restore_payload["database_name"] = create_task.database_name
            restore = draft(
                f'Restore to new database "{create_task.database_name}"',
                TaskType.DATABASE_RESTORE_RESTORE,
                restore_payload,
            )
            return Expansion(
                tasks=[create_task, restore],
                edges=[TaskEdge(0, 1)],
                environment=created.environment,
            )

        # In place: restore into a shadow database, then swap.
        restore = draft(
            f'Restore to PITR database "{database.name}"',
            TaskType.DATABASE_RESTORE_RESTORE,
            restore_payload,
        )
        cutover = draft(
            f'Swap PITR and the original database "{database.name}"',
            TaskType.DATABASE_RESTORE_CUTOVER,
            {"spec_id": spec.id, "skipped": False},
        )
        return Expansion(
            tasks=[restore, cutover],
            edges=[TaskEdge(0, 1)],
            environment=environment,
        )

    async def _resolve_restore_source(self, config: RestoreDatabaseConfig) -> dict:
        if config.point_in_time is not None:
            return {"point_in_time_ts": int(config.point_in_time.timestamp())}

        instance_id, database_name, backup_name = resource_names.parse_backup(config.backup)
        database = await self.store.get_database(instance_id, database_name)
        if database is None:
            raise NotFoundError(
                f"failed to find database {database_name!r} where backup {config.backup!r} is created"
            )
        backup = await self.store.get_backup(database.id, backup_name)
        if backup is None:
            raise NotFoundError(f"failed to find backup {config.backup!r}")
        return {"backup_id": backup.id}

    # ======================================================================
    # Lookups
    # ======================================================================

    async def _get_instance(self, target: str) -> Instance:
        instance_id = resource_names.parse_instance(target)
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"instance {instance_id!r} not found")
        return instance

    async def _get_database(self, target: str) -> tuple[Instance, Database]:
        instance_id, database_name = resource_names.parse_database(target)
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"instance {instance_id!r} not found")
        database = await self.store.get_database(instance_id, database_name)
        if database is None:
            raise NotFoundError(f"database {database_name!r} not found")
        return instance, database

    async def get_sheet(self, name: str) -> Sheet:
        """Resolve a sheet resource name; also used when replacing sheets."""
        _, sheet_id = resource_names.parse_sheet(name)
        sheet = await self.store.get_sheet(sheet_id)
        if sheet is None:
            raise NotFoundError(f"sheet {name!r} not found")
        return sheet
