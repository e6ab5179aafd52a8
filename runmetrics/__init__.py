"""
Task-run metrics API.

Time-bucketed aggregation queries over the task_runs_v2 table, exposed to the
dashboard through an authenticated FastAPI route.

CHANGELOG:
- 2026-10-06: Initial creation (STORY-101)
"""

__version__ = "0.1.0"
