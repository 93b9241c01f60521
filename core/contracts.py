# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# STATUS: Foundation - Core enums and base contracts
# PURPOSE: Status enums and identity contracts for the dispatch engine
# CREATED: 19 OCT 2026
# EXPORTS: TaskStatus, RunStatus, TaskPriority, ActivitySeverity, TaskData
# DEPENDENCIES: enum, pydantic
# ============================================================================
"""
Base contracts for the dispatch engine.

These define the status vocabularies that cross boundaries:
- SQL (PostgreSQL CHECK constraints)
- HTTP (request/response schemas)
- Python (state machine checks)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Timezone-aware current time; all engine timestamps are UTC."""
    return datetime.now(timezone.utc)


# ============================================================================
# STATUS ENUMS
# ============================================================================

class TaskStatus(str, Enum):
    """
    Task lifecycle states.

    State transitions:
        CREATED  -> ASSIGNED -> IN_PROGRESS -> COMPLETED
                                            -> FAILED
        CREATED|ASSIGNED -> REVIEW -> ASSIGNED|IN_PROGRESS  (approval)
        FAILED -> CREATED  (external retry)
    """
    CREATED = "created"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    FAILED = "failed"

    def is_dispatchable(self) -> bool:
        """Check if a dispatch attempt may start from this state."""
        return self in DISPATCHABLE_STATUSES

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


DISPATCHABLE_STATUSES = (TaskStatus.CREATED, TaskStatus.ASSIGNED)


class RunStatus(str, Enum):
    """
    Task run states.

    State transitions:
        RUNNING -> COMPLETED
                -> FAILED
                -> TIMEOUT
    """
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self is not RunStatus.RUNNING


class TaskPriority(str, Enum):
    """Task priority levels."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ActivitySeverity(str, Enum):
    """Severity of an audit activity."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# ============================================================================
# BASE DATA CONTRACTS
# ============================================================================

class TaskData(BaseModel):
    """
    Essential task identity - the minimum fields that define a task.
    """
    task_id: str = Field(..., max_length=64, description="Opaque task identifier")
    customer_id: Optional[str] = Field(default=None, max_length=64)
    executor: str = Field(default="local:echo", max_length=128)

    model_config = {"frozen": False}


__all__ = [
    "utc_now",
    "TaskStatus",
    "RunStatus",
    "TaskPriority",
    "ActivitySeverity",
    "DISPATCHABLE_STATUSES",
    "TaskData",
]
