# ============================================================================
# CORE MODULE
# ============================================================================
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors and models
# CREATED: 19 OCT 2026
# ============================================================================

from core.contracts import TaskStatus, RunStatus, TaskPriority, ActivitySeverity
from core.errors import (
    ErrorCode,
    DispatchError,
    TaskNotFoundError,
    RunNotFoundError,
    NoRunningRunError,
    InvalidStateError,
)
from core.models import Task, TaskRun, Activity

__all__ = [
    # Enums
    "TaskStatus",
    "RunStatus",
    "TaskPriority",
    "ActivitySeverity",
    "ErrorCode",
    # Errors
    "DispatchError",
    "TaskNotFoundError",
    "RunNotFoundError",
    "NoRunningRunError",
    "InvalidStateError",
    # Models
    "Task",
    "TaskRun",
    "Activity",
]
