# ============================================================================
# TASK MODEL
# ============================================================================
# STATUS: Core model - Unit of requested work
# PURPOSE: Task record, its state machine and approval gate
# CREATED: 19 OCT 2026
# EXPORTS: Task
# DEPENDENCIES: pydantic
# ============================================================================
"""
Task Model

Task = a unit of work requested by a producer (API caller, chat tool).

Key concept:
- Task = WHAT was asked (title, input, executor)
- TaskRun = one ATTEMPT at doing it (see core.models.run)

A task is dispatched zero or more times; each dispatch creates one
TaskRun. The task itself is never deleted by the engine.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, ClassVar
from pydantic import Field, computed_field

from core.contracts import TaskData, TaskPriority, TaskStatus, utc_now


# Fields an update may touch. Title is immutable after creation.
MUTABLE_FIELDS = frozenset({
    "status",
    "assigned_agent",
    "output",
    "priority",
    "description",
})


class Task(TaskData):
    """
    A unit of requested work.

    Maps to: dispatch.tasks table
    Primary Key: task_id

    Lifecycle:
        1. Created with status=CREATED (or ASSIGNED / REVIEW by the producer)
        2. REVIEW tasks wait for approval -> ASSIGNED or IN_PROGRESS
        3. Dispatch moves CREATED/ASSIGNED -> IN_PROGRESS and creates a run
        4. Executor result, callback or reaper -> COMPLETED / FAILED
        5. External retry may move FAILED -> CREATED
    """

    # =========================================================================
    # SQL DDL METADATA (Used by PydanticToSQL generator)
    # =========================================================================
    __sql_table__: ClassVar[str] = "tasks"
    __sql_schema__: ClassVar[str] = "dispatch"
    __sql_primary_key__: ClassVar[List[str]] = ["task_id"]
    __sql_foreign_keys__: ClassVar[Dict[str, str]] = {
        "parent_task_id": "dispatch.tasks(task_id)",
    }
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_tasks_status", ["status"]),
        ("idx_tasks_agent", ["assigned_agent"], "assigned_agent IS NOT NULL"),
        ("idx_tasks_parent", ["parent_task_id"], "parent_task_id IS NOT NULL"),
        ("idx_tasks_customer", ["customer_id"], "customer_id IS NOT NULL"),
        ("idx_tasks_executor", ["executor"]),
    ]

    task_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        max_length=64,
        description="Opaque task identifier",
    )

    # Hierarchy
    parent_task_id: Optional[str] = Field(default=None, max_length=64)

    # Request
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=10000)
    assigned_agent: Optional[str] = Field(default=None, max_length=128)
    priority: TaskPriority = Field(default=TaskPriority.NORMAL)
    status: TaskStatus = Field(default=TaskStatus.CREATED)

    # Payloads
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)

    # Approval gate
    approved_by: Optional[str] = Field(default=None, max_length=128)
    approved_at: Optional[datetime] = None

    # Set only when a dispatch attempt was throttled
    rate_limited_at: Optional[datetime] = None
    rate_limit_reason: Optional[str] = Field(default=None, max_length=64)

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def is_dispatchable(self) -> bool:
        """Check if a dispatch attempt may start."""
        return self.status.is_dispatchable()

    @property
    def executor_backend(self) -> str:
        """Backend prefix of the executor (``claw`` for ``claw:research``)."""
        return self.executor.split(":", 1)[0]

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        """
        Validate if a status transition is allowed.

        Valid transitions:
            CREATED -> ASSIGNED, IN_PROGRESS, REVIEW
            ASSIGNED -> IN_PROGRESS, REVIEW
            REVIEW -> ASSIGNED, IN_PROGRESS (approval)
            IN_PROGRESS -> COMPLETED, FAILED
            FAILED -> CREATED (retry)
            COMPLETED -> (none, terminal)
        """
        if self.status == new_status:
            return True

        allowed = {
            TaskStatus.CREATED: {TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.REVIEW},
            TaskStatus.ASSIGNED: {TaskStatus.IN_PROGRESS, TaskStatus.REVIEW},
            TaskStatus.REVIEW: {TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS},
            TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED},
            TaskStatus.FAILED: {TaskStatus.CREATED},
            TaskStatus.COMPLETED: set(),
        }

        return new_status in allowed.get(self.status, set())

    def approval_target_status(self) -> TaskStatus:
        """Status an approved REVIEW task moves to."""
        if self.assigned_agent:
            return TaskStatus.IN_PROGRESS
        return TaskStatus.ASSIGNED

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe dict for API responses and dispatch results."""
        return self.model_dump(mode="json")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Task", "MUTABLE_FIELDS"]
