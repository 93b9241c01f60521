# ============================================================================
# TASK RUN MODEL
# ============================================================================
# STATUS: Core model - One execution attempt of a task
# PURPOSE: Run record, structured run errors and terminal bookkeeping
# CREATED: 19 OCT 2026
# EXPORTS: TaskRun, RunError
# DEPENDENCIES: pydantic
# ============================================================================
"""
Task Run Model

TaskRun = one execution attempt of a Task.

Runs are immutable records of what was attempted:
- executor and input are SNAPSHOTS taken at dispatch time
- once ended_at is set the run is terminal and is never written again

Finalized by exactly one of:
- the dispatcher (sync executor, or immediate dispatch-time failure)
- the callback ingestor (async executors)
- the reaper (timeout)
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, ClassVar
from pydantic import BaseModel, Field, computed_field

from core.contracts import RunStatus, utc_now
from core.errors import ErrorCode


class RunError(BaseModel):
    """Structured run error: code + message."""
    code: str = Field(..., max_length=64)
    message: str = Field(default="", max_length=2000)

    @classmethod
    def of(cls, code: ErrorCode, message: str) -> "RunError":
        return cls(code=code.value, message=message[:2000])


class TaskRun(BaseModel):
    """
    One execution attempt of a Task.

    Maps to: dispatch.task_runs table
    Primary Key: run_id
    Unique: (task_id, run_number)
    """

    # =========================================================================
    # SQL DDL METADATA (Used by PydanticToSQL generator)
    # =========================================================================
    __sql_table__: ClassVar[str] = "task_runs"
    __sql_schema__: ClassVar[str] = "dispatch"
    __sql_primary_key__: ClassVar[List[str]] = ["run_id"]
    __sql_foreign_keys__: ClassVar[Dict[str, str]] = {
        "task_id": "dispatch.tasks(task_id)",
    }
    __sql_indexes__: ClassVar[List[tuple]] = [
        {"name": "idx_task_runs_task_number", "columns": ["task_id", "run_number"], "unique": True},
        ("idx_task_runs_task_queued", ["task_id", "queued_at"]),
        ("idx_task_runs_running", ["started_at"], "status = 'running'"),
        ("idx_task_runs_executor_queued", ["executor", "queued_at"]),
    ]

    # Identity
    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()), max_length=64)
    task_id: str = Field(..., max_length=64)
    run_number: int = Field(..., ge=1)

    # Snapshot of the task at dispatch time
    executor: str = Field(..., max_length=128)
    input_snapshot: Dict[str, Any] = Field(default_factory=dict)

    status: RunStatus = Field(default=RunStatus.RUNNING)
    worker_id: Optional[str] = Field(default=None, max_length=128)

    # Result
    output: Dict[str, Any] = Field(default_factory=dict)
    error: Dict[str, Any] = Field(default_factory=dict)
    metrics: Dict[str, Any] = Field(default_factory=dict)

    # Timestamps
    queued_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """A run with ended_at set must not be mutated again."""
        return self.ended_at is not None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.get("code") if self.error else None

    def duration_ms(self, until: Optional[datetime] = None) -> Optional[int]:
        """Milliseconds between start and ``until`` (default: now)."""
        if not self.started_at:
            return None
        end_time = until or self.ended_at or utc_now()
        return max(0, int((end_time - self.started_at).total_seconds() * 1000))

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe dict for API responses and dispatch results."""
        return self.model_dump(mode="json")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["TaskRun", "RunError"]
