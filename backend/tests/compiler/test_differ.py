"""
Rollout Planner - Plan Differ Tests
====================================
"""

from rollout_planner.core.compiler.differ import diff_specs, is_spec_sheet_updated
from rollout_planner.core.schemas import PlanSpec, PlanStep


def spec(spec_id: str, sheet: str = "projects/p/sheets/1") -> PlanSpec:
    return PlanSpec.model_validate({
        "id": spec_id,
        "change_database_config": {
            "target": "instances/i/databases/d",
            "sheet": sheet,
            "type": "MIGRATE",
        },
    })


def steps(*specs: PlanSpec) -> list[PlanStep]:
    return [PlanStep(specs=list(specs))]


class TestDiffSpecs:
    """Tests for comparing plan versions by spec id."""

    def test_sheet_change_is_an_update(self):
        diff = diff_specs(
            steps(spec("a"), spec("b")),
            steps(spec("a", "projects/p/sheets/2"), spec("b")),
        )
        assert diff.removed == []
        assert diff.added == []
        assert [s.id for s in diff.updated] == ["a"]
        assert diff.updated[0].change_database_config.sheet == "projects/p/sheets/2"

    def test_removed(self):
        diff = diff_specs(steps(spec("a"), spec("b")), steps(spec("a")))
        assert [s.id for s in diff.removed] == ["b"]
        assert diff.added == []
        assert diff.updated == []

    def test_added(self):
        diff = diff_specs(steps(spec("a")), steps(spec("a"), spec("c")))
        assert [s.id for s in diff.added] == ["c"]

    def test_moving_between_steps_is_not_a_change(self):
        old = [PlanStep(specs=[spec("a")]), PlanStep(specs=[spec("b")])]
        new = [PlanStep(specs=[spec("a"), spec("b")])]
        diff = diff_specs(old, new)
        assert (diff.removed, diff.added, diff.updated) == ([], [], [])

    def test_identical(self):
        diff = diff_specs(steps(spec("a")), steps(spec("a")))
        assert (diff.removed, diff.added, diff.updated) == ([], [], [])


class TestIsSpecSheetUpdated:
    """Only change-database sheets count."""

    def test_create_specs_never_update(self):
        create = PlanSpec.model_validate({
            "id": "a",
            "create_database_config": {"target": "instances/i", "database": "d"},
        })
        assert is_spec_sheet_updated(create, spec("a")) is False
        assert is_spec_sheet_updated(spec("a"), create) is False

    def test_other_fields_ignored(self):
        old = spec("a")
        new = spec("a")
        new.change_database_config.schema_version = "v2"
        assert is_spec_sheet_updated(old, new) is False
