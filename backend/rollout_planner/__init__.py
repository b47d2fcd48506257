"""
Rollout Planner
===============

Compiles declarative database change plans into staged rollout pipelines.
"""

__version__ = "0.1.0"
