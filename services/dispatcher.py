# ============================================================================
# DISPATCHER
# ============================================================================
# STATUS: Core - One dispatch attempt for one task
# PURPOSE: Validate, rate limit, claim, execute and record the outcome
# CREATED: 19 OCT 2026
# ============================================================================
"""
Dispatcher

dispatch(task_id, worker_id) runs one attempt:

    1. Load the task (TaskNotFoundError if missing)
    2. Reject unless status is created/assigned (invalid_state, no writes)
    3. Rate limit restricted executors (rate_limited, annotation only, no run)
    4. Claim: conditional transition to in_progress + run insert, one transaction
    5. Emit run_started
    6. Hand the run to the executor selected by prefix
    7. Record the outcome: completed / failed are written to run and task
       together; accepted (webhook) leaves both waiting for the callback

Execution failures are recorded and returned, never raised. Precondition
failures return before anything is written.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from psycopg_pool import AsyncConnectionPool
from pydantic import BaseModel, Field

from core.config import DispatchConfig
from core.contracts import ActivitySeverity, RunStatus, TaskStatus, utc_now
from core.errors import ErrorCode, TaskNotFoundError
from core.logging import log_checkpoint, log_context
from core.models import ActivityAction, Task, TaskRun
from executors import ExecutionOutcome, ExecutorContext, OutcomeKind, get_executor
from repositories import RunRepository, TaskRepository
from .activity_service import ActivityService
from .rate_limiter import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)


class DispatchResult(BaseModel):
    """Outcome of one dispatch attempt, with the best-known snapshots."""
    success: bool
    task: Dict[str, Any] = Field(default_factory=dict)
    run: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    rate_limited: bool = False
    rate_limit_reason: Optional[str] = None
    rate_limit_scope: Optional[str] = None

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        task: Optional[Task] = None,
        run: Optional[TaskRun] = None,
        **extra: Any,
    ) -> "DispatchResult":
        return cls(
            success=False,
            task=task.snapshot() if task else {},
            run=run.snapshot() if run else {},
            error=message,
            error_code=code.value,
            **extra,
        )


class Dispatcher:
    """Runs dispatch attempts."""

    def __init__(
        self,
        pool: Optional[AsyncConnectionPool],
        config: DispatchConfig,
        activity_service: Optional[ActivityService] = None,
        rate_limiter: Optional[RateLimiter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        task_repo: Optional[TaskRepository] = None,
        run_repo: Optional[RunRepository] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            pool: Database connection pool
            config: Engine configuration
            activity_service: Audit emitter (default: built from pool)
            rate_limiter: Admission control (default: built from config)
            http_client: Shared client for webhook executors
            task_repo: Repository override (tests)
            run_repo: Repository override (tests)
        """
        self.pool = pool
        self.config = config
        self._tasks = task_repo or TaskRepository(pool)
        self._runs = run_repo or RunRepository(pool)
        self.activities = activity_service or ActivityService(pool)
        self.rate_limiter = rate_limiter or RateLimiter(self._runs, config)
        self.http_client = http_client

    async def dispatch(self, task_id: str, worker_id: Optional[str] = None) -> DispatchResult:
        """
        Attempt to start one run of a task.

        Raises:
            TaskNotFoundError: task does not exist
        """
        worker_id = worker_id or self.config.default_worker_id

        task = await self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        with log_context(
            task_id=task.task_id,
            customer_id=task.customer_id,
            executor=task.executor,
            worker_id=worker_id,
        ):
            if not task.status.is_dispatchable():
                return self._invalid_state(task)

            verdict = await self.rate_limiter.check_limits(task.customer_id, task.executor)
            if not verdict.allowed:
                return await self._record_rate_limited(task, verdict)

            claimed = await self._tasks.claim_for_dispatch(task_id, worker_id)
            if claimed is None:
                # Lost a race with another dispatcher or an external update
                current = await self._tasks.get(task_id)
                if current is None:
                    raise TaskNotFoundError(task_id)
                return self._invalid_state(current)

            task, run = claimed
            with log_context(run_id=run.run_id):
                log_checkpoint("run_started", {"run_number": run.run_number}, logger=logger)
                await self.activities.emit_run_event(
                    ActivityAction.RUN_STARTED,
                    task,
                    run,
                    worker_id=worker_id,
                    run_number=run.run_number,
                )

                outcome = await self._execute(task, run)
                return await self._record_outcome(task, run, outcome)

    # =========================================================================
    # PRECONDITION FAILURES
    # =========================================================================

    def _invalid_state(self, task: Task) -> DispatchResult:
        message = (
            f"Cannot dispatch task with status '{task.status.value}'. "
            f"Expected 'assigned' or 'created'."
        )
        logger.info(message)
        return DispatchResult.failure(ErrorCode.INVALID_STATE, message, task=task)

    async def _record_rate_limited(self, task: Task, verdict: RateLimitResult) -> DispatchResult:
        reason = verdict.reason.value
        scope = verdict.scope.value

        updated = await self._tasks.mark_rate_limited(task.task_id, reason)
        await self.activities.emit_rate_limited(task, reason, scope, verdict.details)
        log_checkpoint("rate_limited", {"reason": reason, "scope": scope, **verdict.details}, logger=logger)

        return DispatchResult.failure(
            ErrorCode.RATE_LIMITED,
            f"Rate limited: {reason}",
            task=updated or task,
            rate_limited=True,
            rate_limit_reason=reason,
            rate_limit_scope=scope,
        )

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def _execute(self, task: Task, run: TaskRun) -> ExecutionOutcome:
        executor = get_executor(run.executor)
        ctx = ExecutorContext(
            task=task,
            run=run,
            config=self.config,
            http_client=self.http_client,
        )
        try:
            return await executor.execute(ctx)
        except Exception as e:
            # Adapters report failures as outcomes; this is a bug in one of them
            logger.exception(f"Executor {type(executor).__name__} raised for run {run.run_id}")
            return ExecutionOutcome.failed(ErrorCode.TRANSPORT_FAILURE, f"Executor error: {e}")

    async def _record_outcome(
        self,
        task: Task,
        run: TaskRun,
        outcome: ExecutionOutcome,
    ) -> DispatchResult:
        if outcome.kind == OutcomeKind.ACCEPTED:
            logger.info(f"Run {run.run_id} accepted by {run.executor}; awaiting callback")
            return DispatchResult(success=True, task=task.snapshot(), run=run.snapshot())

        ended_at = utc_now()
        metrics = {"duration_ms": run.duration_ms(ended_at)}

        if outcome.kind == OutcomeKind.COMPLETED:
            finalized = await self._runs.finalize(
                run.run_id,
                RunStatus.COMPLETED,
                output=outcome.output,
                metrics=metrics,
                task_status=TaskStatus.COMPLETED,
                task_output=outcome.output,
                ended_at=ended_at,
            )
        else:
            finalized = await self._runs.finalize(
                run.run_id,
                RunStatus.FAILED,
                error=outcome.error.model_dump(),
                metrics=metrics,
                task_status=TaskStatus.FAILED,
                ended_at=ended_at,
            )

        final_run, final_task = await self._resolve_final(run, task, finalized)

        if outcome.kind == OutcomeKind.COMPLETED:
            log_checkpoint("run_completed", metrics, logger=logger)
            await self.activities.emit_run_event(
                ActivityAction.RUN_COMPLETED, final_task, final_run, **metrics
            )
            return DispatchResult(success=True, task=final_task.snapshot(), run=final_run.snapshot())

        log_checkpoint("run_failed", {"error_code": outcome.error.code, **metrics}, logger=logger)
        await self.activities.emit_run_event(
            ActivityAction.RUN_FAILED,
            final_task,
            final_run,
            severity=ActivitySeverity.ERROR,
            error=outcome.error.message,
            error_code=outcome.error.code,
            **metrics,
        )
        return DispatchResult(
            success=False,
            task=final_task.snapshot(),
            run=final_run.snapshot(),
            error=outcome.error.message,
            error_code=outcome.error.code,
        )

    async def _resolve_final(self, run: TaskRun, task: Task, finalized):
        """Snapshots after a terminal write; re-read whatever the write didn't return."""
        if finalized is None:
            logger.warning(f"Run {run.run_id} was already terminal when the outcome arrived")
            final_run = await self._runs.get(run.run_id) or run
            final_task = await self._tasks.get(task.task_id) or task
            return final_run, final_task

        final_run, final_task = finalized
        if final_task is None:
            final_task = await self._tasks.get(task.task_id) or task
        return final_run, final_task


__all__ = ["Dispatcher", "DispatchResult"]
