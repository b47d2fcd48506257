"""
Plan Differ - compares the specs of two plan versions by spec id.
"""

from dataclasses import dataclass, field

from rollout_planner.core.schemas import PlanSpec, PlanStep


@dataclass
class SpecDiff:
    removed: list[PlanSpec] = field(default_factory=list)
    added: list[PlanSpec] = field(default_factory=list)
    updated: list[PlanSpec] = field(default_factory=list)


def _specs_by_id(steps: list[PlanStep]) -> dict[str, PlanSpec]:
    return {spec.id: spec for step in steps for spec in step.specs}


def is_spec_sheet_updated(old: PlanSpec, new: PlanSpec) -> bool:
    """Only the change-database sheet counts as an update."""
    old_change = old.change_database_config
    new_change = new.change_database_config
    if old_change is None or new_change is None:
        return False
    return old_change.sheet != new_change.sheet


def diff_specs(old_steps: list[PlanStep], new_steps: list[PlanStep]) -> SpecDiff:
    """
    Diff two step lists.

    `removed` keeps the old order; `added` and `updated` keep the new
    order and carry the new spec.
    """
    old_specs = _specs_by_id(old_steps)
    new_specs = _specs_by_id(new_steps)

    diff = SpecDiff()
    for spec_id, spec in old_specs.items():
        if spec_id not in new_specs:
            diff.removed.append(spec)
    for spec_id, spec in new_specs.items():
        old = old_specs.get(spec_id)
        if old is None:
            diff.added.append(spec)
        elif is_spec_sheet_updated(old, spec):
            diff.updated.append(spec)
    return diff
