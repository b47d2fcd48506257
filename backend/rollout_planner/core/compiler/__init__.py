"""
Plan Compiler
=============

Turns a plan's steps into a persisted rollout pipeline and reads it back.

Components:
- SpecExpander: one spec → task drafts with local dependency edges
- PlanCompiler: steps → one stage draft per step
- RolloutMaterializer: writes drafts, rehydrates persisted pipelines
- RolloutService: plan and rollout operations as units of work
- CasePolicyProbe: lower_case_table_names lookup for MySQL-family instances
"""

from rollout_planner.core.compiler.expander import SpecExpander
from rollout_planner.core.compiler.materializer import RolloutMaterializer
from rollout_planner.core.compiler.probe import CasePolicy, CasePolicyProbe
from rollout_planner.core.compiler.service import PipelineAnnouncer, RolloutService
from rollout_planner.core.compiler.stages import PlanCompiler

__all__ = [
    "SpecExpander",
    "PlanCompiler",
    "RolloutMaterializer",
    "RolloutService",
    "PipelineAnnouncer",
    "CasePolicy",
    "CasePolicyProbe",
]
