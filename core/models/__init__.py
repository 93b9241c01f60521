# ============================================================================
# MODELS MODULE
# ============================================================================
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 19 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Models define SQL metadata via __sql_* ClassVar attributes for DDL generation.

Single Source of Truth Pattern:
    - Pydantic models define structure
    - PydanticToSQL reads __sql_* metadata
    - PostgreSQL schema generated from models
"""

from core.models.task import Task, MUTABLE_FIELDS
from core.models.run import TaskRun, RunError
from core.models.activity import Activity, ActivityAction, ActivityEventType, ActivityAgent

__all__ = [
    # Task
    "Task",
    "MUTABLE_FIELDS",
    # Run
    "TaskRun",
    "RunError",
    # Activity
    "Activity",
    "ActivityAction",
    "ActivityEventType",
    "ActivityAgent",
]
