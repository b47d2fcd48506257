"""
Rollout Materializer - persists pipeline drafts and reads them back.

`materialize` writes inside the caller's unit of work and only flushes;
the caller commits once or rolls everything back. `rehydrate` turns the
persisted rows into the wire Rollout.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional, Sequence

from rollout_planner.core import resource_names
from rollout_planner.core.compiler.stages import PipelineDraft
from rollout_planner.core.errors import InternalError
from rollout_planner.core.models import (
    Pipeline,
    Plan,
    RollbackSQLStatus,
    Stage,
    Task,
    TaskDAG,
    TaskStatus,
    TaskType,
)
from rollout_planner.core.schemas import (
    BackupPayload,
    DatabaseCreatePayload,
    DataUpdatePayload,
    RestoreRestorePayload,
    RollbackSQLStatusView,
    Rollout,
    RolloutStage,
    RolloutTask,
    SchemaBaselinePayload,
    SchemaUpdatePayload,
    TaskStatusView,
)
from rollout_planner.core.store import RolloutStore

logger = logging.getLogger(__name__)


_STATUS_VIEWS = {
    TaskStatus.PENDING_APPROVAL: TaskStatusView.PENDING_APPROVAL,
    TaskStatus.PENDING: TaskStatusView.PENDING,
    TaskStatus.RUNNING: TaskStatusView.RUNNING,
    TaskStatus.DONE: TaskStatusView.DONE,
    TaskStatus.FAILED: TaskStatusView.FAILED,
    TaskStatus.CANCELED: TaskStatusView.CANCELED,
}

_ROLLBACK_STATUS_VIEWS = {
    RollbackSQLStatus.PENDING.value: RollbackSQLStatusView.PENDING,
    RollbackSQLStatus.DONE.value: RollbackSQLStatusView.DONE,
    RollbackSQLStatus.FAILED.value: RollbackSQLStatusView.FAILED,
}


def render_task_status(status: TaskStatus, skipped: bool) -> TaskStatusView:
    """A skipped task is stored as RUNNING and shown as SKIPPED."""
    if status == TaskStatus.RUNNING and skipped:
        return TaskStatusView.SKIPPED
    return _STATUS_VIEWS.get(status, TaskStatusView.STATUS_UNSPECIFIED)


def render_rollback_sql_status(value: Optional[str]) -> RollbackSQLStatusView:
    return _ROLLBACK_STATUS_VIEWS.get(value, RollbackSQLStatusView.ROLLBACK_SQL_STATUS_UNSPECIFIED)


class RolloutMaterializer:
    """Writes pipeline drafts and converts persisted pipelines to Rollouts."""

    def __init__(self, store: RolloutStore):
        self.store = store

    # ======================================================================
    # Write path
    # ======================================================================

    async def materialize(self, draft: PipelineDraft, creator_id: int) -> Pipeline:
        """
        Create the pipeline, its stages, tasks and task edges.

        Args:
            draft: Compiled pipeline draft
            creator_id: Principal creating the pipeline

        Returns:
            The flushed Pipeline row

        Raises:
            InternalError: the draft does not line up with what was written
        """
        pipeline = await self.store.create_pipeline(draft.name, creator_id)

        stages = await self.store.create_stages([
            Stage(
                pipeline_id=pipeline.id,
                environment_id=stage.environment.id,
                name=stage.name,
                creator_id=creator_id,
            )
            for stage in draft.stages
        ])
        if len(stages) != len(draft.stages):
            raise InternalError(
                f"expected {len(draft.stages)} stages to be created, got {len(stages)}"
            )

        edge_count = 0
        for stage, stage_draft in zip(stages, draft.stages):
            tasks = await self.store.create_tasks([
                Task(
                    pipeline_id=pipeline.id,
                    stage_id=stage.id,
                    instance_id=task.instance_id,
                    database_id=task.database_id,
                    database_name=task.database_name,
                    name=task.name,
                    type=task.type,
                    status=task.status,
                    payload=task.payload,
                    earliest_allowed_at=task.earliest_allowed_at,
                    creator_id=creator_id,
                    updater_id=creator_id,
                )
                for task in stage_draft.tasks
            ])

            edges = []
            for edge in stage_draft.edges:
                for index in (edge.from_index, edge.to_index):
                    if not 0 <= index < len(tasks):
                        raise InternalError(
                            f"task index {index} out of range for stage {stage.name!r} "
                            f"with {len(tasks)} tasks"
                        )
                edges.append(TaskDAG(
                    pipeline_id=pipeline.id,
                    from_task_id=tasks[edge.from_index].id,
                    to_task_id=tasks[edge.to_index].id,
                ))
            if edges:
                await self.store.create_task_dags(edges)
            edge_count += len(edges)

        logger.info(
            f"Materialized pipeline {pipeline.id} with {len(stages)} stage(s) "
            f"and {edge_count} task edge(s)"
        )
        return pipeline

    # ======================================================================
    # Read path
    # ======================================================================

    async def rehydrate(
        self,
        project: str,
        pipeline: Pipeline,
        stages: Sequence[Stage],
        tasks: Sequence[Task],
        edges: Sequence[TaskDAG],
        plan: Optional[Plan] = None,
    ) -> Rollout:
        """
        Build the wire Rollout of a persisted pipeline.

        Every stage and task reference must resolve within the same
        pipeline; a dangling one is an integrity failure.
        """
        stage_by_id = {stage.id: stage for stage in stages}
        task_by_id = {task.id: task for task in tasks}

        blocked_by: dict[int, list[int]] = defaultdict(list)
        for edge in edges:
            for task_id in (edge.from_task_id, edge.to_task_id):
                if task_id not in task_by_id:
                    raise InternalError(
                        f"task edge {edge.from_task_id} -> {edge.to_task_id} references "
                        f"task {task_id} outside pipeline {pipeline.id}"
                    )
            blocked_by[edge.to_task_id].append(edge.from_task_id)

        for task in tasks:
            if task.stage_id not in stage_by_id:
                raise InternalError(
                    f"task {task.id} references stage {task.stage_id} outside pipeline {pipeline.id}"
                )

        rollout_stages = {
            stage.id: RolloutStage(
                name=resource_names.stage_name(project, pipeline.id, stage.id),
                uid=str(stage.id),
                environment=resource_names.environment_name(stage.environment.resource_id),
                title=stage.name,
            )
            for stage in stages
        }

        for task in tasks:
            rollout_task = await self._convert_task(project, task)
            rollout_task.blocked_by_tasks = [
                self._task_name(project, task_by_id[blocker_id])
                for blocker_id in blocked_by.get(task.id, [])
            ]
            rollout_stages[task.stage_id].tasks.append(rollout_task)

        return Rollout(
            name=resource_names.rollout_name(project, pipeline.id),
            uid=str(pipeline.id),
            plan=resource_names.plan_name(project, plan.id) if plan is not None else "",
            title=pipeline.name,
            stages=[rollout_stages[stage.id] for stage in stages],
        )

    @staticmethod
    def _task_name(project: str, task: Task) -> str:
        return resource_names.task_name(project, task.pipeline_id, task.stage_id, task.id)

    async def _convert_task(self, project: str, task: Task) -> RolloutTask:
        payload = task.payload or {}

        if task.type == TaskType.DATABASE_CREATE:
            target = resource_names.instance_name(task.instance.resource_id)
        else:
            if task.database is None:
                raise InternalError(f"task {task.id} of type {task.type.value} has no database")
            target = resource_names.database_name(
                task.instance.resource_id, task.database.name
            )

        rollout_task = RolloutTask(
            name=self._task_name(project, task),
            uid=str(task.id),
            title=task.name,
            spec_id=payload.get("spec_id", ""),
            status=render_task_status(task.status, payload.get("skipped", False)),
            type=task.type,
            target=target,
        )

        if task.type == TaskType.DATABASE_CREATE:
            rollout_task.database_create = DatabaseCreatePayload(
                project=resource_names.project_name(project),
                database=payload.get("database_name", ""),
                table=payload.get("table_name", ""),
                sheet=await self._sheet_name(payload.get("sheet_id")),
                character_set=payload.get("character_set", ""),
                collation=payload.get("collation", ""),
                labels={label["key"]: label["value"] for label in payload.get("labels", [])},
            )
        elif task.type == TaskType.DATABASE_SCHEMA_BASELINE:
            rollout_task.database_schema_baseline = SchemaBaselinePayload(
                schema_version=payload.get("schema_version", ""),
            )
        elif task.type in (
            TaskType.DATABASE_SCHEMA_UPDATE,
            TaskType.DATABASE_SCHEMA_UPDATE_SDL,
            TaskType.DATABASE_SCHEMA_UPDATE_GHOST_SYNC,
        ):
            rollout_task.database_schema_update = SchemaUpdatePayload(
                sheet=await self._sheet_name(payload.get("sheet_id")),
                schema_version=payload.get("schema_version", ""),
            )
        elif task.type == TaskType.DATABASE_DATA_UPDATE:
            rollback_sheet = ""
            if payload.get("rollback_sheet_id"):
                rollback_sheet = await self._sheet_name(payload["rollback_sheet_id"])
            rollout_task.database_data_update = DataUpdatePayload(
                sheet=await self._sheet_name(payload.get("sheet_id")),
                schema_version=payload.get("schema_version", ""),
                rollback_enabled=payload.get("rollback_enabled", False),
                rollback_sql_status=render_rollback_sql_status(payload.get("rollback_sql_status")),
                rollback_error=payload.get("rollback_error", ""),
                rollback_sheet=rollback_sheet,
                rollback_from_review=payload.get("rollback_from_review", ""),
                rollback_from_task=payload.get("rollback_from_task", ""),
            )
        elif task.type == TaskType.DATABASE_BACKUP:
            rollout_task.database_backup = BackupPayload(
                backup=await self._backup_name(payload.get("backup_id")),
            )
        elif task.type == TaskType.DATABASE_RESTORE_RESTORE:
            rollout_task.database_restore_restore = await self._convert_restore(task, payload)
        elif task.type in (
            TaskType.DATABASE_SCHEMA_UPDATE_GHOST_CUTOVER,
            TaskType.DATABASE_RESTORE_CUTOVER,
        ):
            pass
        else:
            raise InternalError(f"task type {task.type.value} is not supported")

        return rollout_task

    async def _convert_restore(self, task: Task, payload: dict) -> RestoreRestorePayload:
        has_backup = payload.get("backup_id") is not None
        has_point_in_time = payload.get("point_in_time_ts") is not None
        if has_backup == has_point_in_time:
            raise InternalError(
                f"restore task {task.id} must carry exactly one of backup and point in time"
            )
        if ("target_instance_id" in payload) != ("database_name" in payload):
            raise InternalError(
                f"restore task {task.id} must carry both or neither of target instance and database name"
            )

        restore = RestoreRestorePayload()
        if "target_instance_id" in payload:
            instance = await self.store.get_instance_by_id(payload["target_instance_id"])
            if instance is None:
                raise InternalError(f"target instance {payload['target_instance_id']} not found")
            restore.target = resource_names.database_name(
                instance.resource_id, payload["database_name"]
            )
        if has_backup:
            restore.backup = await self._backup_name(payload["backup_id"])
        else:
            restore.point_in_time = datetime.fromtimestamp(
                payload["point_in_time_ts"], tz=timezone.utc
            )
        return restore

    async def _sheet_name(self, sheet_id: Optional[int]) -> str:
        if sheet_id is None:
            raise InternalError("task payload has no sheet")
        sheet = await self.store.get_sheet(sheet_id)
        if sheet is None:
            raise InternalError(f"sheet {sheet_id} not found")
        return resource_names.sheet_name(sheet.project.resource_id, sheet.id)

    async def _backup_name(self, backup_id: Optional[int]) -> str:
        if backup_id is None:
            raise InternalError("task payload has no backup")
        backup = await self.store.get_backup_by_id(backup_id)
        if backup is None:
            raise InternalError(f"backup {backup_id} not found")
        database = backup.database
        return resource_names.backup_name(
            database.instance.resource_id, database.name, backup.name
        )
