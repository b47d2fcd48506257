"""
Rollout Planner - Stage Compiler Tests
=======================================

Edge translation, step validation and stage compilation.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rollout_planner.core.compiler.expander import SpecExpander, TaskEdge
from rollout_planner.core.compiler.stages import (
    PIPELINE_NAME,
    PlanCompiler,
    compile_step,
    translate_edges,
    validate_steps,
)
from rollout_planner.core.errors import EnvironmentMismatchError, InvalidInputError
from rollout_planner.core.models import Sheet, TaskType
from rollout_planner.core.schemas import PlanStep
from tests.conftest import Metadata


def step(*specs: dict) -> PlanStep:
    return PlanStep.model_validate({"specs": list(specs)})


def change_spec(spec_id: str, target: str, sheet: str, change_type: str = "MIGRATE") -> dict:
    return {
        "id": spec_id,
        "change_database_config": {"target": target, "sheet": sheet, "type": change_type},
    }


# ==========================================================================
# Edge Translation
# ==========================================================================

class TestTranslateEdges:
    """Tests for shifting spec-local edges into stage index space."""

    def test_offset(self):
        assert translate_edges([TaskEdge(0, 1)], 3) == [TaskEdge(3, 4)]

    def test_zero_offset_is_identity(self):
        edges = [TaskEdge(0, 1), TaskEdge(1, 2)]
        assert translate_edges(edges, 0) == edges

    def test_empty(self):
        assert translate_edges([], 7) == []

    def test_concatenation_keeps_edges_inside_their_spec(self):
        """Specs producing [2, 1, 2] tasks give edges (0,1) and (3,4)."""
        sizes = [2, 1, 2]
        edges: list[TaskEdge] = []
        total = 0
        for size in sizes:
            local = [TaskEdge(0, 1)] if size == 2 else []
            edges.extend(translate_edges(local, total))
            total += size

        assert edges == [TaskEdge(0, 1), TaskEdge(3, 4)]

    @pytest.mark.parametrize("sizes", [[1], [2, 2], [1, 2, 1, 2], [2, 1, 1, 1, 2, 2]])
    def test_translated_edges_stay_in_range(self, sizes: list[int]):
        total = 0
        for size in sizes:
            local = [TaskEdge(i, i + 1) for i in range(size - 1)]
            for edge in translate_edges(local, total):
                assert total <= edge.from_index < edge.to_index < total + size
            total += size


# ==========================================================================
# Step Validation
# ==========================================================================

class TestValidateSteps:
    """Tests for rejecting malformed steps before expansion."""

    def test_missing_spec_id(self):
        with pytest.raises(InvalidInputError, match="spec id is required"):
            validate_steps([step({"change_database_config": {"target": "x"}})])

    def test_duplicate_spec_id_across_steps(self):
        spec = change_spec("a", "instances/i/databases/d", "projects/p/sheets/1")
        with pytest.raises(InvalidInputError, match="duplicate spec id"):
            validate_steps([step(spec), step(spec)])

    def test_spec_without_config(self):
        with pytest.raises(InvalidInputError, match="exactly one"):
            validate_steps([step({"id": "a"})])

    def test_spec_with_two_configs(self):
        with pytest.raises(InvalidInputError, match="exactly one"):
            validate_steps([step({
                "id": "a",
                "create_database_config": {"target": "instances/i", "database": "d"},
                "change_database_config": {"target": "instances/i/databases/d"},
            })])

    def test_repeated_targets_are_allowed(self):
        validate_steps([step(
            change_spec("a", "instances/i/databases/d", "projects/p/sheets/1"),
            change_spec("b", "instances/i/databases/d", "projects/p/sheets/2"),
        )])


# ==========================================================================
# Stage Compilation
# ==========================================================================

class TestCompileStep:
    """Tests for compiling a step into one stage draft."""

    async def test_ghost_then_migrate_then_ghost(
        self, expander: SpecExpander, metadata: Metadata
    ):
        sheet = f"projects/shop/sheets/{metadata.sheet1.id}"
        target = "instances/mysql-test/databases/orders"
        stage = await compile_step(
            expander,
            step(
                change_spec("a", target, sheet, "MIGRATE_GHOST"),
                change_spec("b", target, sheet),
                change_spec("c", target, sheet, "MIGRATE_GHOST"),
            ),
            metadata.project,
        )

        assert stage is not None
        assert stage.name == "Test Stage"
        assert stage.environment.resource_id == "test"
        assert [t.type for t in stage.tasks] == [
            TaskType.DATABASE_SCHEMA_UPDATE_GHOST_SYNC,
            TaskType.DATABASE_SCHEMA_UPDATE_GHOST_CUTOVER,
            TaskType.DATABASE_SCHEMA_UPDATE,
            TaskType.DATABASE_SCHEMA_UPDATE_GHOST_SYNC,
            TaskType.DATABASE_SCHEMA_UPDATE_GHOST_CUTOVER,
        ]
        assert stage.edges == [TaskEdge(0, 1), TaskEdge(3, 4)]

    async def test_empty_step(self, expander: SpecExpander, metadata: Metadata):
        assert await compile_step(expander, step(), metadata.project) is None

    async def test_environment_mismatch(
        self, expander: SpecExpander, metadata: Metadata
    ):
        sheet = f"projects/shop/sheets/{metadata.sheet1.id}"
        with pytest.raises(EnvironmentMismatchError):
            await compile_step(
                expander,
                step(
                    change_spec("a", "instances/mysql-test/databases/orders", sheet),
                    change_spec("b", "instances/mysql-prod/databases/orders", sheet),
                ),
                metadata.project,
            )


class TestPlanCompiler:
    """Tests for compiling whole plans."""

    async def test_one_stage_per_step_in_order(
        self, expander: SpecExpander, metadata: Metadata
    ):
        sheet = f"projects/shop/sheets/{metadata.sheet1.id}"
        draft = await PlanCompiler(expander).compile(
            [
                step(change_spec("a", "instances/mysql-test/databases/orders", sheet)),
                step(),
                step(change_spec("b", "instances/mysql-prod/databases/orders", sheet)),
            ],
            metadata.project,
        )

        assert draft.name == PIPELINE_NAME
        assert [s.name for s in draft.stages] == ["Test Stage", "Prod Stage"]

    async def test_no_tasks_at_all(self, expander: SpecExpander, metadata: Metadata):
        with pytest.raises(InvalidInputError, match="no database matched for deployment"):
            await PlanCompiler(expander).compile([step(), step()], metadata.project)

    async def test_compilation_is_deterministic(
        self, expander: SpecExpander, metadata: Metadata, db_session: AsyncSession
    ):
        steps = [step(
            {
                "id": "create",
                "create_database_config": {
                    "target": "instances/mysql-test",
                    "database": "inventory",
                    "character_set": "utf8mb4",
                    "collation": "utf8mb4_bin",
                    "labels": {"tier": "gold", "app": "shop"},
                },
            },
            change_spec(
                "ghost",
                "instances/mysql-test/databases/orders",
                f"projects/shop/sheets/{metadata.sheet1.id}",
                "MIGRATE_GHOST",
            ),
        )]
        compiler = PlanCompiler(expander)

        first = await compiler.compile(steps, metadata.project)
        second = await compiler.compile(steps, metadata.project)

        def shape(draft):
            return [
                (
                    [(t.name, t.type, {k: v for k, v in t.payload.items() if k != "sheet_id"})
                     for t in stage.tasks],
                    stage.edges,
                )
                for stage in draft.stages
            ]

        assert shape(first) == shape(second)
        statements = (await db_session.execute(
            select(Sheet.statement).where(Sheet.name == "Sheet for creating database inventory")
        )).scalars().all()
        assert len(statements) == 2
        assert statements[0] == statements[1]
        count = await db_session.scalar(select(func.count()).select_from(Sheet))
        assert count == 4
