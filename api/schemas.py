# ============================================================================
# API SCHEMAS
# ============================================================================
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 19 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API. Task and run bodies in responses
are the models' JSON snapshots.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.contracts import TaskPriority, TaskStatus


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class TaskCreate(BaseModel):
    """Request to create a task."""
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    customer_id: Optional[str] = Field(None, max_length=64)
    parent_task_id: Optional[str] = Field(None, max_length=64)
    assigned_agent: Optional[str] = Field(None, max_length=128)
    executor: Optional[str] = Field(
        None,
        max_length=128,
        description="'<backend>:<variant>', default local:echo",
    )
    priority: TaskPriority = TaskPriority.NORMAL
    status: TaskStatus = TaskStatus.CREATED
    input: Dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "title": "Research agent frameworks",
                    "customer_id": "cust-001",
                    "executor": "claw:research",
                    "input": {"topic": "agent frameworks", "depth": "brief"},
                }
            ]
        }
    }


class TaskUpdate(BaseModel):
    """Partial update. Title is immutable and rejected."""
    model_config = ConfigDict(extra="forbid")

    status: Optional[TaskStatus] = None
    assigned_agent: Optional[str] = Field(None, max_length=128)
    output: Optional[Dict[str, Any]] = None
    priority: Optional[TaskPriority] = None
    description: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ApproveRequest(BaseModel):
    approved_by: str = Field(..., min_length=1, max_length=128)


class DispatchRequest(BaseModel):
    worker_id: Optional[str] = Field(None, max_length=128)


class CallbackRequest(BaseModel):
    """Completion report from a webhook executor."""
    task_id: str = Field(..., min_length=1)
    run_id: str = Field(..., min_length=1)
    success: bool
    output: Optional[Dict[str, Any]] = None
    error: Optional[Union[str, Dict[str, Any]]] = None


class RetryRequest(BaseModel):
    """Retry a failed task, identified by the task or one of its runs."""
    task_id: Optional[str] = None
    run_id: Optional[str] = None

    @model_validator(mode="after")
    def require_identifier(self) -> "RetryRequest":
        if not self.task_id and not self.run_id:
            raise ValueError("task_id or run_id is required")
        return self


class ProgressStep(BaseModel):
    id: str
    name: str
    status: Literal["pending", "running", "completed", "failed"]


class ProgressData(BaseModel):
    percent: Optional[float] = Field(None, ge=0, le=100)
    current_step: Optional[str] = None
    steps: Optional[List[ProgressStep]] = None


class ProgressRequest(BaseModel):
    """Progress report from a running executor."""
    progress: ProgressData


class ReaperRunRequest(BaseModel):
    older_than_minutes: Optional[int] = Field(None, ge=0)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class TaskEnvelope(BaseModel):
    task: Dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: List[Dict[str, Any]]
    paging: Dict[str, int]


class ChildrenResponse(BaseModel):
    children: List[Dict[str, Any]]
    count: int


class RunListResponse(BaseModel):
    runs: List[Dict[str, Any]]


class DispatchResponse(BaseModel):
    message: str
    task: Dict[str, Any]
    run: Dict[str, Any]


class DispatchFailureResponse(BaseModel):
    error: str
    error_code: Optional[str] = None
    task: Dict[str, Any] = Field(default_factory=dict)
    run: Dict[str, Any] = Field(default_factory=dict)
    rate_limited: bool = False
    rate_limit_reason: Optional[str] = None
    rate_limit_scope: Optional[str] = None


class ProgressResponse(BaseModel):
    progress: Optional[Dict[str, Any]] = None
    run_status: Optional[str] = None


class ProgressUpdateResponse(BaseModel):
    success: bool
    run_id: str
    progress: Dict[str, Any]


class ReaperRunResponse(BaseModel):
    message: str
    reaped: int
    failed: int = 0
    run_ids: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None


__all__ = [
    "TaskCreate",
    "TaskUpdate",
    "ApproveRequest",
    "DispatchRequest",
    "CallbackRequest",
    "RetryRequest",
    "ProgressStep",
    "ProgressData",
    "ProgressRequest",
    "ReaperRunRequest",
    "TaskEnvelope",
    "TaskListResponse",
    "ChildrenResponse",
    "RunListResponse",
    "DispatchResponse",
    "DispatchFailureResponse",
    "ProgressResponse",
    "ProgressUpdateResponse",
    "ReaperRunResponse",
    "ErrorResponse",
]
