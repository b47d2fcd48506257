"""
Stage and Plan Compiler.

A step compiles into one stage: its specs are expanded in order into a
single flat draft list, with each spec's local edges shifted into the
stage's index space. Stages keep step order and never share edges.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from rollout_planner.core.compiler.expander import (
    SpecExpander,
    TaskDraft,
    TaskEdge,
)
from rollout_planner.core.errors import InternalError, InvalidInputError
from rollout_planner.core.models import Environment, Project
from rollout_planner.core.schemas import PlanStep

logger = logging.getLogger(__name__)

PIPELINE_NAME = "Rollout Pipeline"


@dataclass
class StageDraft:
    environment: Environment
    name: str
    tasks: list[TaskDraft] = field(default_factory=list)
    edges: list[TaskEdge] = field(default_factory=list)


@dataclass
class PipelineDraft:
    name: str
    stages: list[StageDraft] = field(default_factory=list)


def translate_edges(edges: list[TaskEdge], offset: int) -> list[TaskEdge]:
    """Shift edge indices by `offset`."""
    return [TaskEdge(edge.from_index + offset, edge.to_index + offset) for edge in edges]


def stage_title(environment: Environment) -> str:
    return f"{environment.title} Stage"


def validate_steps(steps: list[PlanStep]) -> None:
    """
    Reject malformed steps before anything is expanded.

    Spec ids must be non-empty and unique across the whole plan, and each
    spec must carry exactly one config. Targets may repeat.
    """
    seen: set[str] = set()
    for step in steps:
        for spec in step.specs:
            if not spec.id:
                raise InvalidInputError("spec id is required")
            if spec.id in seen:
                raise InvalidInputError(f"duplicate spec id {spec.id!r}")
            seen.add(spec.id)
            if len(spec.configs()) != 1:
                raise InvalidInputError(
                    f"spec {spec.id!r} must set exactly one of create_database_config, "
                    "change_database_config and restore_database_config"
                )


async def compile_step(
    expander: SpecExpander,
    step: PlanStep,
    project: Project,
) -> Optional[StageDraft]:
    """
    Compile one step into a stage draft.

    Returns None when the step produces no tasks.
    """
    environment: Optional[Environment] = None
    tasks: list[TaskDraft] = []
    edges: list[TaskEdge] = []

    for spec in step.specs:
        expansion = await expander.expand(spec, project, environment)
        environment = expansion.environment
        # Offset is the task count before this spec's drafts are appended.
        edges.extend(translate_edges(expansion.edges, len(tasks)))
        tasks.extend(expansion.tasks)

    if not tasks:
        return None
    if environment is None:
        raise InternalError("step produced tasks without registering an environment")

    return StageDraft(
        environment=environment,
        name=stage_title(environment),
        tasks=tasks,
        edges=edges,
    )


class PlanCompiler:
    """Compiles plan steps into a pipeline draft."""

    def __init__(self, expander: SpecExpander):
        self.expander = expander

    async def compile(self, steps: list[PlanStep], project: Project) -> PipelineDraft:
        validate_steps(steps)

        draft = PipelineDraft(name=PIPELINE_NAME)
        for index, step in enumerate(steps):
            stage = await compile_step(self.expander, step, project)
            if stage is None:
                logger.debug(f"Step {index} of project {project.resource_id} produced no tasks")
                continue
            draft.stages.append(stage)

        if not draft.stages:
            raise InvalidInputError("no database matched for deployment")

        logger.info(
            f"Compiled {len(draft.stages)} stage(s) with "
            f"{sum(len(s.tasks) for s in draft.stages)} task(s) for project {project.resource_id}"
        )
        return draft
