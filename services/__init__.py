# ============================================================================
# SERVICES MODULE
# ============================================================================
# STATUS: Core - Business logic layer
# PURPOSE: Dispatch, callbacks, rate limiting, task management, activity log
# CREATED: 19 OCT 2026
# ============================================================================
"""
Services Module

Services coordinate repositories and executors.

Usage:
    from services import Dispatcher, TaskService

    dispatcher = Dispatcher(pool, config, http_client=client)
    result = await dispatcher.dispatch(task_id)
"""

from .activity_service import ActivityService
from .rate_limiter import RateLimiter, RateLimitResult
from .dispatcher import Dispatcher, DispatchResult
from .callback_service import CallbackService, CallbackResult
from .task_service import TaskService
from .output_schemas import ResearchOutput, validate_output

__all__ = [
    "ActivityService",
    "RateLimiter",
    "RateLimitResult",
    "Dispatcher",
    "DispatchResult",
    "CallbackService",
    "CallbackResult",
    "TaskService",
    "ResearchOutput",
    "validate_output",
]
