# ============================================================================
# ACTIVITY AUDIT MODEL
# ============================================================================
# STATUS: Core model - Append-only audit trail
# PURPOSE: Record every task/run state transition for observability
# CREATED: 19 OCT 2026
# EXPORTS: Activity, ActivityAction, ActivityEventType, ActivityAgent
# DEPENDENCIES: pydantic, enum
# ============================================================================
"""
Activity Audit Model

Activity rows are written by the engine and never read back by it.
Operators query them to answer "what happened to this task?".
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, ClassVar
from pydantic import BaseModel, Field

from core.contracts import ActivitySeverity, utc_now


class ActivityAction(str, Enum):
    """What happened."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_TIMEOUT = "run_timeout"

    # Dispatch guards
    RATE_LIMITED = "rate_limited"

    # Task lifecycle (external actions)
    TASK_CREATED = "task_created"
    TASK_APPROVED = "task_approved"
    TASK_RETRY = "task_retry"

    # Callback validation
    SCHEMA_MISMATCH = "schema_mismatch"


class ActivityEventType(str, Enum):
    """Coarse grouping used by activity feeds."""
    TASK = "task"
    TASK_RUN = "task_run"
    RATE_LIMIT = "rate_limit"
    SCHEMA_VALIDATION = "schema_validation"


class ActivityAgent:
    """Agent names used for engine-generated activities."""
    DISPATCHER = "system:dispatcher"
    CALLBACK = "system:callback"
    REAPER = "system:reaper"
    VALIDATOR = "system:validator"
    RECOVERY = "system:recovery"


class Activity(BaseModel):
    """
    One audit record.

    Maps to: dispatch.activities table
    """

    # =========================================================================
    # SQL DDL METADATA (Used by PydanticToSQL generator)
    # =========================================================================
    __sql_table__: ClassVar[str] = "activities"
    __sql_schema__: ClassVar[str] = "dispatch"
    __sql_primary_key__: ClassVar[List[str]] = ["activity_id"]
    __sql_serial_columns__: ClassVar[List[str]] = ["activity_id"]
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_activities_customer", ["customer_id"], "customer_id IS NOT NULL"),
        ("idx_activities_action", ["action"]),
        {"name": "idx_activities_created", "columns": ["created_at"], "descending": True},
    ]

    activity_id: Optional[int] = Field(
        default=None,
        description="Auto-increment primary key (SERIAL)"
    )
    customer_id: Optional[str] = Field(default=None, max_length=64)
    agent: str = Field(..., max_length=128)
    action: ActivityAction
    event_type: ActivityEventType
    severity: ActivitySeverity = Field(default=ActivitySeverity.INFO)
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Activity", "ActivityAction", "ActivityEventType", "ActivityAgent"]
