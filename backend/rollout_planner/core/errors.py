"""
Rollout Planner - Error Taxonomy
=================================

Categorized failures raised by plan compilation and the rollout store.
The API layer maps each category to an HTTP status; nothing here knows
about HTTP.
"""

from fastapi import status


class RolloutError(Exception):
    """Base class for all categorized rollout planner failures."""

    code: str = "INTERNAL_ERROR"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidInputError(RolloutError):
    """Malformed or unsupported request; nothing was persisted."""

    code = "INVALID_ARGUMENT"
    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(RolloutError):
    """A referenced instance, database, sheet, backup, project or plan is missing."""

    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class EnvironmentMismatchError(RolloutError):
    """The specs of one step resolve to more than one environment."""

    code = "ENVIRONMENT_MISMATCH"
    http_status = status.HTTP_409_CONFLICT


class InternalError(RolloutError):
    """Store, marshaling or data-integrity failure. Never retried."""

    code = "INTERNAL_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
