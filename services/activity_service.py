# ============================================================================
# ACTIVITY SERVICE
# ============================================================================
# STATUS: Core - Audit event emission
# PURPOSE: Emit activity records at every task/run state transition
# CREATED: 19 OCT 2026
# ============================================================================
"""
Activity Service

Provides methods to emit audit activities at key lifecycle points.
Activities are fire-and-forget - failures are logged but don't propagate,
so a broken audit table never blocks a dispatch, callback or sweep.
"""

import logging
from typing import Any, Dict, Optional

from psycopg_pool import AsyncConnectionPool

from core.contracts import ActivitySeverity
from core.models import (
    Activity,
    ActivityAction,
    ActivityAgent,
    ActivityEventType,
    Task,
    TaskRun,
)
from repositories import ActivityRepository

logger = logging.getLogger(__name__)


class ActivityService:
    """Service for emitting audit activities."""

    def __init__(
        self,
        pool: Optional[AsyncConnectionPool],
        repo: Optional[ActivityRepository] = None,
    ):
        """
        Initialize activity service.

        Args:
            pool: Database connection pool
            repo: Repository override (tests)
        """
        self.pool = pool
        self._repo = repo or ActivityRepository(pool)

    # =========================================================================
    # CORE EMIT METHOD
    # =========================================================================

    async def emit(
        self,
        action: ActivityAction,
        event_type: ActivityEventType,
        agent: str,
        customer_id: Optional[str] = None,
        severity: ActivitySeverity = ActivitySeverity.INFO,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Activity]:
        """
        Emit an activity. Fire-and-forget - logs errors but doesn't raise.

        Returns:
            Created Activity or None if emission failed
        """
        try:
            activity = Activity(
                customer_id=customer_id,
                agent=agent,
                action=action,
                event_type=event_type,
                severity=severity,
                details=details or {},
            )
            created = await self._repo.create(activity)
            logger.debug(f"Activity emitted: {action.value} by {agent}")
            return created

        except Exception as e:
            logger.warning(f"Failed to emit activity {action.value}: {e}")
            return None

    # =========================================================================
    # RUN LIFECYCLE
    # =========================================================================

    async def emit_run_event(
        self,
        action: ActivityAction,
        task: Task,
        run: TaskRun,
        agent: str = ActivityAgent.DISPATCHER,
        severity: ActivitySeverity = ActivitySeverity.INFO,
        **details: Any,
    ) -> Optional[Activity]:
        """Emit run_started / run_completed / run_failed / run_timeout."""
        verb = action.value.replace("run_", "")
        return await self.emit(
            action=action,
            event_type=ActivityEventType.TASK_RUN,
            agent=agent,
            customer_id=task.customer_id,
            severity=severity,
            details={
                "task_id": task.task_id,
                "run_id": run.run_id,
                "message": f"Task run {verb}",
                "executor": run.executor,
                **details,
            },
        )

    # =========================================================================
    # DISPATCH GUARDS
    # =========================================================================

    async def emit_rate_limited(
        self,
        task: Task,
        reason: str,
        scope: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Activity]:
        """Emit rate_limited (warn)."""
        return await self.emit(
            action=ActivityAction.RATE_LIMITED,
            event_type=ActivityEventType.RATE_LIMIT,
            agent=ActivityAgent.DISPATCHER,
            customer_id=task.customer_id,
            severity=ActivitySeverity.WARN,
            details={
                "task_id": task.task_id,
                "reason": reason,
                "scope": scope,
                "executor": task.executor,
                "message": f"Task dispatch rate limited: {reason}",
                **(details or {}),
            },
        )

    # =========================================================================
    # CALLBACK VALIDATION
    # =========================================================================

    async def emit_schema_mismatch(
        self,
        task: Task,
        run: TaskRun,
        errors: Any,
    ) -> Optional[Activity]:
        """Emit schema_mismatch (warn). Advisory only."""
        return await self.emit(
            action=ActivityAction.SCHEMA_MISMATCH,
            event_type=ActivityEventType.SCHEMA_VALIDATION,
            agent=ActivityAgent.VALIDATOR,
            customer_id=task.customer_id,
            severity=ActivitySeverity.WARN,
            details={
                "task_id": task.task_id,
                "run_id": run.run_id,
                "executor": run.executor,
                "message": f"Callback output did not match the expected {run.executor} schema",
                "errors": errors,
            },
        )

    # =========================================================================
    # TASK LIFECYCLE
    # =========================================================================

    async def emit_task_event(
        self,
        action: ActivityAction,
        task: Task,
        agent: str,
        message: str,
        **details: Any,
    ) -> Optional[Activity]:
        """Emit task_created / task_approved / task_retry."""
        return await self.emit(
            action=action,
            event_type=ActivityEventType.TASK,
            agent=agent,
            customer_id=task.customer_id,
            details={
                "task_id": task.task_id,
                "status": task.status.value,
                "message": message,
                **details,
            },
        )
