# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# STATUS: Foundation - Error codes and service exceptions
# PURPOSE: Shared error vocabulary for dispatch, callbacks and the reaper
# CREATED: 19 OCT 2026
# EXPORTS: ErrorCode, RateLimitReason, RateLimitScope, DispatchError, ...
# DEPENDENCIES: enum
# ============================================================================
"""
Error Taxonomy

Two kinds of failure leave the engine:

- Precondition failures (task missing, task not dispatchable, run missing)
  are raised as DispatchError subclasses before anything is written.
- Execution failures (transport, allowlist, unknown executor) are never
  raised. They are written to the run and task and returned in a
  DispatchResult, so the failure is recorded even if the caller drops it.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes."""
    INVALID_STATE = "invalid_state"
    RATE_LIMITED = "rate_limited"
    EXECUTOR_NOT_ALLOWED = "executor_not_allowed"
    EXECUTOR_NOT_CONFIGURED = "executor_not_configured"
    UNKNOWN_EXECUTOR = "unknown_executor"
    TRANSPORT_FAILURE = "transport_failure"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    PERSISTENCE_FAILURE = "persistence_failure"
    CALLBACK_FAILURE = "callback_failure"


class RateLimitReason(str, Enum):
    """Why the limiter declined a dispatch."""
    CONCURRENT_LIMIT = "concurrent_limit"
    HOURLY_LIMIT = "hourly_limit"
    LIMITER_ERROR = "limiter_error"


class RateLimitScope(str, Enum):
    """Which population a limit was counted over."""
    CUSTOMER = "customer"
    GLOBAL = "global"


class DispatchError(Exception):
    """Base class for synchronous precondition failures."""

    code: ErrorCode = ErrorCode.INVALID_STATE

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {"error": self.code.value, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class TaskNotFoundError(DispatchError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}", {"task_id": task_id})
        self.task_id = task_id


class RunNotFoundError(DispatchError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, run_id: str, task_id: Optional[str] = None):
        details = {"run_id": run_id}
        if task_id:
            details["task_id"] = task_id
        super().__init__(f"Run not found: {run_id}", details)
        self.run_id = run_id


class NoRunningRunError(DispatchError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, task_id: str):
        super().__init__(f"No running run found for task: {task_id}", {"task_id": task_id})
        self.task_id = task_id


class InvalidStateError(DispatchError):
    """Raised when an entity is not in a state that allows the operation."""
    code = ErrorCode.INVALID_STATE

    def __init__(self, message: str, current_status: Optional[str] = None, **details):
        if current_status is not None:
            details["current_status"] = current_status
        super().__init__(message, details)
        self.current_status = current_status


__all__ = [
    "ErrorCode",
    "RateLimitReason",
    "RateLimitScope",
    "DispatchError",
    "TaskNotFoundError",
    "RunNotFoundError",
    "NoRunningRunError",
    "InvalidStateError",
]
