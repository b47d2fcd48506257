"""
Resource name formatting and parsing.

Names look like "projects/{project}/plans/{plan}"; numeric segments are
row ids, the others are resource ids.
"""

from rollout_planner.core.errors import InvalidInputError

PROJECTS = "projects"
PLANS = "plans"
ROLLOUTS = "rollouts"
STAGES = "stages"
TASKS = "tasks"
REVIEWS = "reviews"
SHEETS = "sheets"
INSTANCES = "instances"
DATABASES = "databases"
BACKUPS = "backups"
ENVIRONMENTS = "environments"


def _segments(name: str, *collections: str) -> list[str]:
    """Return the id segments of `name`, checking the collection segments."""
    parts = name.split("/")
    if len(parts) != 2 * len(collections):
        raise InvalidInputError(
            f"invalid resource name {name!r}, expected {_pattern(collections)}"
        )
    ids = []
    for i, collection in enumerate(collections):
        if parts[2 * i] != collection or not parts[2 * i + 1]:
            raise InvalidInputError(
                f"invalid resource name {name!r}, expected {_pattern(collections)}"
            )
        ids.append(parts[2 * i + 1])
    return ids


def _pattern(collections: tuple[str, ...]) -> str:
    return "/".join(f"{c}/{{{c[:-1]}}}" for c in collections)


def _uid(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidInputError(f"invalid id {value!r} in resource name {name!r}") from None


# ==========================================================================
# Parsing
# ==========================================================================

def parse_project(name: str) -> str:
    return _segments(name, PROJECTS)[0]


def parse_plan(name: str) -> tuple[str, int]:
    project, plan = _segments(name, PROJECTS, PLANS)
    return project, _uid(name, plan)


def parse_rollout(name: str) -> tuple[str, int]:
    project, rollout = _segments(name, PROJECTS, ROLLOUTS)
    return project, _uid(name, rollout)


def parse_task(name: str) -> tuple[str, int, int, int]:
    """Return (project, rollout id, stage id, task id)."""
    project, rollout, stage, task = _segments(name, PROJECTS, ROLLOUTS, STAGES, TASKS)
    return project, _uid(name, rollout), _uid(name, stage), _uid(name, task)


def parse_review(name: str) -> tuple[str, int]:
    project, review = _segments(name, PROJECTS, REVIEWS)
    return project, _uid(name, review)


def parse_sheet(name: str) -> tuple[str, int]:
    project, sheet = _segments(name, PROJECTS, SHEETS)
    return project, _uid(name, sheet)


def parse_instance(name: str) -> str:
    return _segments(name, INSTANCES)[0]


def parse_database(name: str) -> tuple[str, str]:
    instance, database = _segments(name, INSTANCES, DATABASES)
    return instance, database


def parse_backup(name: str) -> tuple[str, str, str]:
    instance, database, backup = _segments(name, INSTANCES, DATABASES, BACKUPS)
    return instance, database, backup


# ==========================================================================
# Formatting
# ==========================================================================

def project_name(project: str) -> str:
    return f"{PROJECTS}/{project}"


def plan_name(project: str, plan_id: int) -> str:
    return f"{PROJECTS}/{project}/{PLANS}/{plan_id}"


def rollout_name(project: str, pipeline_id: int) -> str:
    return f"{PROJECTS}/{project}/{ROLLOUTS}/{pipeline_id}"


def stage_name(project: str, pipeline_id: int, stage_id: int) -> str:
    return f"{rollout_name(project, pipeline_id)}/{STAGES}/{stage_id}"


def task_name(project: str, pipeline_id: int, stage_id: int, task_id: int) -> str:
    return f"{stage_name(project, pipeline_id, stage_id)}/{TASKS}/{task_id}"


def review_name(project: str, review_id: int) -> str:
    return f"{PROJECTS}/{project}/{REVIEWS}/{review_id}"


def sheet_name(project: str, sheet_id: int) -> str:
    return f"{PROJECTS}/{project}/{SHEETS}/{sheet_id}"


def instance_name(instance: str) -> str:
    return f"{INSTANCES}/{instance}"


def database_name(instance: str, database: str) -> str:
    return f"{INSTANCES}/{instance}/{DATABASES}/{database}"


def backup_name(instance: str, database: str, backup: str) -> str:
    return f"{database_name(instance, database)}/{BACKUPS}/{backup}"


def environment_name(environment: str) -> str:
    return f"{ENVIRONMENTS}/{environment}"
