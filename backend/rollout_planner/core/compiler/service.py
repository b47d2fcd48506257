"""
Rollout Service - plan and rollout operations.

Each write operation is one unit of work: compile, persist, commit. Any
failure rolls the session back, so a partial pipeline or a half-applied
sheet replacement never becomes visible.
"""

import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rollout_planner.core import resource_names
from rollout_planner.core.compiler.differ import diff_specs
from rollout_planner.core.compiler.expander import SpecExpander
from rollout_planner.core.compiler.materializer import RolloutMaterializer
from rollout_planner.core.compiler.probe import CasePolicyProbe
from rollout_planner.core.compiler.stages import PlanCompiler, validate_steps
from rollout_planner.core.errors import (
    InternalError,
    InvalidInputError,
    NotFoundError,
    RolloutError,
)
from rollout_planner.core.license import LicenseService
from rollout_planner.core.models import SHEET_BEARING_TASK_TYPES, Pipeline, Project
from rollout_planner.core.models import Plan as PlanRow
from rollout_planner.core.schemas import (
    Plan,
    PlanBody,
    PlanListResponse,
    PlanStep,
    Rollout,
)
from rollout_planner.core.store import RolloutStore

logger = logging.getLogger(__name__)

UPDATE_MASK_STEPS = "steps"


class PipelineAnnouncer:
    """
    Told about every pipeline created by CreatePlan.

    The default implementation only logs; issue and notification
    subsystems hook in by overriding `pipeline_created`.
    """

    async def pipeline_created(self, project: Project, plan: PlanRow, pipeline: Pipeline) -> None:
        logger.info(
            f"Pipeline {pipeline.id} created for plan {plan.id} in project {project.resource_id}"
        )


class RolloutService:
    """
    Facade over plan compilation and rollout reads.

    Operations:
    - create_plan: compile steps, persist pipeline and plan
    - update_plan: replace sheets of existing specs
    - get_plan / list_plans
    - get_rollout: rehydrate a persisted pipeline
    """

    def __init__(
        self,
        db: AsyncSession,
        license_service: Optional[LicenseService] = None,
        probe: Optional[CasePolicyProbe] = None,
        announcer: Optional[PipelineAnnouncer] = None,
    ):
        self.db = db
        self.store = RolloutStore(db)
        self.license = license_service or LicenseService()
        self.probe = probe or CasePolicyProbe()
        self.announcer = announcer or PipelineAnnouncer()
        self.expander = SpecExpander(self.store, self.license, self.probe)
        self.compiler = PlanCompiler(self.expander)
        self.materializer = RolloutMaterializer(self.store)

    @asynccontextmanager
    async def _unit_of_work(self, action: str) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except RolloutError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise InternalError(f"failed to {action}") from e

    # ======================================================================
    # Plans
    # ======================================================================

    async def create_plan(self, project_id: str, body: PlanBody, principal_id: int) -> Plan:
        """
        Compile and persist a new plan together with its pipeline.

        Args:
            project_id: Resource id of the owning project
            body: Title, description and steps
            principal_id: Creator of the plan and its pipeline

        Returns:
            The created plan
        """
        project = await self._get_project(project_id)

        async with self._unit_of_work("create plan"):
            draft = await self.compiler.compile(body.steps, project)
            pipeline = await self.materializer.materialize(draft, principal_id)
            plan = await self.store.create_plan(
                project_id=project.id,
                pipeline_id=pipeline.id,
                name=body.title,
                description=body.description,
                config=self._steps_config(body.steps),
                creator_id=principal_id,
            )

        await self.announcer.pipeline_created(project, plan, pipeline)
        logger.info(f"Created plan {plan.id} with pipeline {pipeline.id} in project {project.resource_id}")
        return self._to_plan(project, plan)

    async def update_plan(
        self,
        project_id: str,
        plan_id: int,
        body: PlanBody,
        update_mask: str,
        principal_id: int,
    ) -> Plan:
        """
        Replace the sheets of existing specs.

        Only `steps` may be updated, specs may be neither added nor removed,
        and at least one spec must point at a new sheet.
        """
        paths = [path.strip() for path in update_mask.split(",") if path.strip()]
        if not paths:
            raise InvalidInputError("update_mask must be set")
        for path in paths:
            if path != UPDATE_MASK_STEPS:
                raise InvalidInputError(f"invalid update_mask path {path!r}")

        project = await self._get_project(project_id)
        validate_steps(body.steps)

        async with self._unit_of_work("update plan"):
            plan = await self.store.get_plan(plan_id, for_update=True)
            if plan is None or plan.project_id != project.id:
                raise NotFoundError(
                    f"plan {resource_names.plan_name(project.resource_id, plan_id)!r} not found"
                )

            diff = diff_specs(self._load_steps(plan), body.steps)
            if diff.removed:
                raise InvalidInputError("cannot remove specs from plan")
            if diff.added:
                raise InvalidInputError("cannot add specs to plan")
            if not diff.updated:
                raise InvalidInputError("no specs updated")

            # Resolve every new sheet before touching any task.
            new_sheets = {
                spec.id: await self.expander.get_sheet(spec.change_database_config.sheet)
                for spec in diff.updated
            }

            if plan.pipeline_id is not None:
                for task in await self.store.list_tasks(plan.pipeline_id):
                    if task.type not in SHEET_BEARING_TASK_TYPES:
                        continue
                    sheet = new_sheets.get(task.spec_id)
                    if sheet is not None:
                        await self.store.update_task_sheet(task, sheet.id, principal_id)

            await self.store.update_plan_config(
                plan,
                self._steps_config(body.steps),
                principal_id,
            )

        logger.info(f"Updated {len(diff.updated)} spec(s) of plan {plan.id}")
        return self._to_plan(project, plan)

    async def get_plan(self, project_id: str, plan_id: int) -> Plan:
        project = await self._get_project(project_id)
        plan = await self.store.get_plan(plan_id)
        if plan is None or plan.project_id != project.id:
            raise NotFoundError(
                f"plan {resource_names.plan_name(project.resource_id, plan_id)!r} not found"
            )
        return self._to_plan(project, plan)

    async def list_plans(self, project_id: str, page: int = 1, page_size: int = 20) -> PlanListResponse:
        project = await self._get_project(project_id)
        plans, total = await self.store.list_plans(project.id, page, page_size)
        return PlanListResponse(
            items=[self._to_plan(project, plan) for plan in plans],
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total > 0 else 1,
        )

    # ======================================================================
    # Rollouts
    # ======================================================================

    async def get_rollout(self, project_id: str, rollout_id: int) -> Rollout:
        project = await self._get_project(project_id)
        rollout = resource_names.rollout_name(project.resource_id, rollout_id)

        pipeline = await self.store.get_pipeline(rollout_id)
        if pipeline is None:
            raise NotFoundError(f"rollout {rollout!r} not found")
        plan = await self.store.get_plan_by_pipeline(pipeline.id)
        if plan is None or plan.project_id != project.id:
            raise NotFoundError(f"rollout {rollout!r} not found")

        try:
            stages = await self.store.list_stages(pipeline.id)
            tasks = await self.store.list_tasks(pipeline.id)
            edges = await self.store.list_task_dags(pipeline.id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load rollout {rollout}: {e}")
            raise InternalError(f"failed to load rollout {rollout!r}") from e

        return await self.materializer.rehydrate(
            project.resource_id,
            pipeline,
            stages,
            tasks,
            edges,
            plan=plan,
        )

    # ======================================================================
    # Helpers
    # ======================================================================

    async def _get_project(self, project_id: str) -> Project:
        project = await self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"project {project_id!r} not found")
        return project

    @staticmethod
    def _steps_config(steps: list[PlanStep]) -> dict:
        return {"steps": [step.model_dump(mode="json", exclude_none=True) for step in steps]}

    @staticmethod
    def _load_steps(plan: PlanRow) -> list[PlanStep]:
        return [PlanStep.model_validate(step) for step in (plan.config or {}).get("steps", [])]

    def _to_plan(self, project: Project, plan: PlanRow) -> Plan:
        return Plan(
            name=resource_names.plan_name(project.resource_id, plan.id),
            uid=str(plan.id),
            title=plan.name,
            description=plan.description,
            steps=self._load_steps(plan),
            rollout=(
                resource_names.rollout_name(project.resource_id, plan.pipeline_id)
                if plan.pipeline_id is not None
                else ""
            ),
        )
