"""
Rollout Planner - API Package
=============================

FastAPI application and routers.
"""
