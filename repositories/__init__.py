# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# STATUS: Core - Database access layer
# PURPOSE: Data access for tasks, runs and activities
# CREATED: 19 OCT 2026
# ============================================================================
"""
Repositories Module

Provides database access for the dispatch engine.
Uses psycopg3 async with connection pooling.

Usage:
    from repositories import TaskRepository, RunRepository

    pool = await get_pool()
    task_repo = TaskRepository(pool)
    task = await task_repo.get(task_id)
"""

from .database import get_pool, init_pool, close_pool
from .task_repo import TaskRepository
from .run_repo import RunRepository
from .activity_repo import ActivityRepository

__all__ = [
    "get_pool",
    "init_pool",
    "close_pool",
    "TaskRepository",
    "RunRepository",
    "ActivityRepository",
]
