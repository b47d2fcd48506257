"""
Rollout Planner - Core Package
==============================

Core business logic, models, and schemas.
"""

from rollout_planner.core.config import settings
from rollout_planner.core.database import Base, get_db

__all__ = ["Base", "get_db", "settings"]
