"""
Rollout Store - typed lookups and row creation over an AsyncSession.

Getters return None when a row is missing; callers decide whether that is
a NotFound for the request. Writers only add and flush: committing or
rolling back is the caller's unit of work.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rollout_planner.core.models import (
    Backup,
    Database,
    Environment,
    Instance,
    Pipeline,
    Plan,
    Project,
    Sheet,
    SheetSource,
    Stage,
    Task,
    TaskDAG,
)

logger = logging.getLogger(__name__)


def _select(model):
    # Rows already in the identity map get their selectin relationships
    # reloaded too; async sessions cannot lazy-load them later.
    return select(model).execution_options(populate_existing=True)


class RolloutStore:
    """Persistence boundary of the planner."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ======================================================================
    # Metadata lookups
    # ======================================================================

    async def get_project(self, resource_id: str) -> Optional[Project]:
        result = await self.db.execute(
            _select(Project).where(Project.resource_id == resource_id)
        )
        return result.scalar_one_or_none()

    async def get_project_by_id(self, project_id: int) -> Optional[Project]:
        return await self.db.get(Project, project_id, populate_existing=True)

    async def get_environment(self, resource_id: str) -> Optional[Environment]:
        result = await self.db.execute(
            _select(Environment).where(Environment.resource_id == resource_id)
        )
        return result.scalar_one_or_none()

    async def get_instance(self, resource_id: str) -> Optional[Instance]:
        result = await self.db.execute(
            _select(Instance).where(Instance.resource_id == resource_id)
        )
        return result.scalar_one_or_none()

    async def get_database(self, instance_resource_id: str, name: str) -> Optional[Database]:
        result = await self.db.execute(
            _select(Database)
            .join(Instance, Database.instance_id == Instance.id)
            .where(
                Instance.resource_id == instance_resource_id,
                Database.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def get_sheet(self, sheet_id: int) -> Optional[Sheet]:
        return await self.db.get(Sheet, sheet_id, populate_existing=True)

    async def get_backup(self, database_id: int, name: str) -> Optional[Backup]:
        result = await self.db.execute(
            _select(Backup).where(
                Backup.database_id == database_id,
                Backup.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def get_backup_by_id(self, backup_id: int) -> Optional[Backup]:
        return await self.db.get(Backup, backup_id, populate_existing=True)

    async def get_instance_by_id(self, instance_id: int) -> Optional[Instance]:
        return await self.db.get(Instance, instance_id, populate_existing=True)

    async def create_sheet(
        self,
        project_id: int,
        creator_id: int,
        name: str,
        statement: str,
        source: SheetSource = SheetSource.USER,
    ) -> Sheet:
        sheet = Sheet(
            project_id=project_id,
            creator_id=creator_id,
            name=name,
            statement=statement,
            source=source,
        )
        self.db.add(sheet)
        await self.db.flush()
        return sheet

    # ======================================================================
    # Plans
    # ======================================================================

    async def get_plan(self, plan_id: int, for_update: bool = False) -> Optional[Plan]:
        query = _select(Plan).where(Plan.id == plan_id)
        if for_update:
            # Serializes concurrent UpdatePlan calls on dialects with row locks.
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_plan_by_pipeline(self, pipeline_id: int) -> Optional[Plan]:
        result = await self.db.execute(
            _select(Plan).where(Plan.pipeline_id == pipeline_id)
        )
        return result.scalar_one_or_none()

    async def list_plans(
        self,
        project_id: int,
        page: int,
        page_size: int,
    ) -> tuple[Sequence[Plan], int]:
        query = _select(Plan).where(Plan.project_id == project_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Plan.id.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return result.scalars().all(), total

    async def create_plan(
        self,
        project_id: int,
        pipeline_id: Optional[int],
        name: str,
        description: str,
        config: dict,
        creator_id: int,
    ) -> Plan:
        plan = Plan(
            project_id=project_id,
            pipeline_id=pipeline_id,
            name=name,
            description=description,
            config=config,
            creator_id=creator_id,
            updater_id=creator_id,
        )
        self.db.add(plan)
        await self.db.flush()
        return plan

    async def update_plan_config(self, plan: Plan, config: dict, updater_id: int) -> Plan:
        plan.config = config
        plan.updater_id = updater_id
        await self.db.flush()
        return plan

    # ======================================================================
    # Pipelines
    # ======================================================================

    async def get_pipeline(self, pipeline_id: int) -> Optional[Pipeline]:
        return await self.db.get(Pipeline, pipeline_id, populate_existing=True)

    async def create_pipeline(self, name: str, creator_id: int) -> Pipeline:
        pipeline = Pipeline(name=name, creator_id=creator_id)
        self.db.add(pipeline)
        await self.db.flush()
        return pipeline

    async def create_stages(self, stages: list[Stage]) -> list[Stage]:
        self.db.add_all(stages)
        await self.db.flush()
        return stages

    async def list_stages(self, pipeline_id: int) -> Sequence[Stage]:
        result = await self.db.execute(
            _select(Stage).where(Stage.pipeline_id == pipeline_id).order_by(Stage.id)
        )
        return result.scalars().all()

    async def create_tasks(self, tasks: list[Task]) -> list[Task]:
        self.db.add_all(tasks)
        await self.db.flush()
        return tasks

    async def get_task(self, task_id: int) -> Optional[Task]:
        return await self.db.get(Task, task_id, populate_existing=True)

    async def list_tasks(self, pipeline_id: int) -> Sequence[Task]:
        result = await self.db.execute(
            _select(Task).where(Task.pipeline_id == pipeline_id).order_by(Task.id)
        )
        return result.scalars().all()

    async def update_task_sheet(self, task: Task, sheet_id: int, updater_id: int) -> Task:
        # JSON columns only track reassignment, not in-place mutation.
        task.payload = {**task.payload, "sheet_id": sheet_id}
        task.updater_id = updater_id
        await self.db.flush()
        logger.info(f"Task {task.id} now points at sheet {sheet_id}")
        return task

    async def create_task_dags(self, edges: list[TaskDAG]) -> list[TaskDAG]:
        self.db.add_all(edges)
        await self.db.flush()
        return edges

    async def list_task_dags(self, pipeline_id: int) -> Sequence[TaskDAG]:
        result = await self.db.execute(
            _select(TaskDAG).where(TaskDAG.pipeline_id == pipeline_id).order_by(TaskDAG.id)
        )
        return result.scalars().all()
