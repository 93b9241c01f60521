# ============================================================================
# CALLBACK SERVICE
# ============================================================================
# STATUS: Core - Asynchronous completion reports
# PURPOSE: Finalize runs and tasks reported by webhook executors
# CREATED: 19 OCT 2026
# ============================================================================
"""
Callback Service

Webhook executors report completion with
{task_id, run_id, success, output?, error?}.

Rules:
- The run must exist and belong to task_id, else RunNotFoundError (404)
- A terminal run is never re-written: InvalidStateError (409)
- Run and task are finalized in one transaction
- Output of executors with a known schema is checked after the fact;
  a mismatch only produces a warning activity
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from psycopg_pool import AsyncConnectionPool

from core.contracts import ActivitySeverity, RunStatus, TaskStatus, utc_now
from core.errors import ErrorCode, InvalidStateError, RunNotFoundError
from core.logging import log_checkpoint, log_context
from core.models import ActivityAction, ActivityAgent, RunError
from repositories import RunRepository
from .activity_service import ActivityService
from .output_schemas import validate_output

logger = logging.getLogger(__name__)


@dataclass
class CallbackResult:
    """Summary returned to the reporting executor."""
    task_id: str
    run_id: str
    status: str
    message: str
    schema_issues: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "message": self.message,
            "task_id": self.task_id,
            "run_id": self.run_id,
            "status": self.status,
        }
        if self.schema_issues:
            result["schema_warning"] = self.schema_issues
        return result


def normalize_error(error: Union[str, Dict[str, Any], None], success: bool) -> Dict[str, Any]:
    """Reported error -> stored {code, message}."""
    if success and not error:
        return {}
    if isinstance(error, dict):
        return RunError(
            code=str(error.get("code") or ErrorCode.CALLBACK_FAILURE.value),
            message=str(error.get("message") or ""),
        ).model_dump()
    return RunError.of(
        ErrorCode.CALLBACK_FAILURE,
        error or "Executor reported failure",
    ).model_dump()


class CallbackService:
    """Ingests completion callbacks."""

    def __init__(
        self,
        pool: Optional[AsyncConnectionPool],
        activity_service: Optional[ActivityService] = None,
        run_repo: Optional[RunRepository] = None,
    ):
        self.pool = pool
        self._runs = run_repo or RunRepository(pool)
        self.activities = activity_service or ActivityService(pool)

    async def ingest(
        self,
        task_id: str,
        run_id: str,
        success: bool,
        output: Optional[Dict[str, Any]] = None,
        error: Union[str, Dict[str, Any], None] = None,
        source: str = "webhook",
    ) -> CallbackResult:
        """
        Finalize a run from a completion report.

        Raises:
            RunNotFoundError: run missing or not a run of task_id
            InvalidStateError: run already terminal
        """
        with log_context(task_id=task_id, run_id=run_id, operation=f"{source}_callback"):
            pair = await self._runs.get_with_task(run_id)
            if pair is None or pair[0].task_id != task_id:
                raise RunNotFoundError(run_id, task_id)

            run, task = pair
            if run.is_terminal:
                raise InvalidStateError(
                    f"Run {run_id} is already {run.status.value}",
                    current_status=run.status.value,
                    run_id=run_id,
                )

            output = output or {}
            issues = None
            if success and output:
                issues = validate_output(run.executor, output)
                if issues:
                    logger.warning(f"Output schema mismatch for {run.executor}: {issues}")

            ended_at = utc_now()
            metrics = {"duration_ms": run.duration_ms(ended_at)}
            run_status = RunStatus.COMPLETED if success else RunStatus.FAILED
            task_status = TaskStatus.COMPLETED if success else TaskStatus.FAILED
            stored_error = normalize_error(error, success)

            finalized = await self._runs.finalize(
                run_id,
                run_status,
                output=output,
                error=stored_error,
                metrics=metrics,
                task_status=task_status,
                task_output=output,
                ended_at=ended_at,
            )
            if finalized is None:
                # Reaper or a duplicate callback got there first
                current = await self._runs.get(run_id)
                raise InvalidStateError(
                    f"Run {run_id} was finalized concurrently",
                    current_status=current.status.value if current else None,
                    run_id=run_id,
                )

            final_run, final_task = finalized
            if issues:
                await self.activities.emit_schema_mismatch(final_task or task, final_run, issues)

            if final_task is None:
                logger.warning(f"Task {task_id} was no longer in_progress; only the run was finalized")

            action = ActivityAction.RUN_COMPLETED if success else ActivityAction.RUN_FAILED
            log_checkpoint(action.value, {"source": source, **metrics}, logger=logger)

            detail: Dict[str, Any] = {"output": output} if success else {"error": stored_error.get("message")}
            await self.activities.emit_run_event(
                action,
                final_task or task,
                final_run,
                agent=ActivityAgent.CALLBACK,
                severity=ActivitySeverity.INFO if success else ActivitySeverity.ERROR,
                source=source,
                **detail,
                **metrics,
            )

            return CallbackResult(
                task_id=task_id,
                run_id=run_id,
                status=run_status.value,
                message="Task completed" if success else "Task failed",
                schema_issues=issues,
            )


__all__ = ["CallbackService", "CallbackResult", "normalize_error"]
