# ============================================================================
# RUN REAPER
# ============================================================================
# STATUS: Core - Background recovery loop
# PURPOSE: Force-terminate runs stuck in running past the run timeout
# CREATED: 19 OCT 2026
# ============================================================================
"""
Run Reaper

A run that never hears back from its executor (lost callback, crash between
claim and execution) stays RUNNING forever. The reaper converges those runs:

    - run  -> timeout, ended_at, error {code: timeout}, duration metric
    - task -> failed, only if still in_progress
    - run_timeout activity (agent system:reaper)

Runs on a fixed interval as a background task of the API process and can be
triggered on demand (POST /api/v1/admin/reaper/run).

Errors on one run are logged and skipped; the sweep continues. Terminal runs
are never re-written, so repeated sweeps are idempotent.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from psycopg_pool import AsyncConnectionPool

from core.config import DispatchConfig
from core.contracts import ActivitySeverity, RunStatus, TaskStatus, utc_now
from core.errors import ErrorCode
from core.logging import log_checkpoint, log_context
from core.models import ActivityAction, ActivityAgent, RunError, TaskRun
from repositories import RunRepository
from services import ActivityService

logger = logging.getLogger(__name__)


@dataclass
class ReaperResult:
    """Summary of one sweep."""
    reaped: int = 0
    failed: int = 0
    run_ids: List[str] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reaped": self.reaped,
            "failed": self.failed,
            "run_ids": self.run_ids,
            "message": self.message,
        }


class Reaper:
    """Periodic sweep over stuck runs."""

    def __init__(
        self,
        pool: Optional[AsyncConnectionPool],
        config: DispatchConfig,
        activity_service: Optional[ActivityService] = None,
        run_repo: Optional[RunRepository] = None,
        batch_size: int = 500,
    ):
        """
        Initialize reaper.

        Args:
            pool: Database connection pool
            config: Interval and run timeout
            activity_service: Audit emitter (default: built from pool)
            run_repo: Repository override (tests)
            batch_size: Max runs reaped per sweep
        """
        self.pool = pool
        self.config = config
        self._runs = run_repo or RunRepository(pool)
        self.activities = activity_service or ActivityService(pool)
        self.batch_size = batch_size

        self._running = False
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

        # Metrics
        self._started_at: Optional[datetime] = None
        self._sweeps = 0
        self._total_reaped = 0
        self._errors = 0
        self._last_sweep_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running and self._loop_task is not None and not self._loop_task.done()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            logger.warning("Reaper already running")
            return

        self._running = True
        self._started_at = utc_now()
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._loop(), name="run-reaper")

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it."""
        if not self._running:
            return

        logger.info("Stopping reaper")
        self._running = False
        self._stop_event.set()

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

    async def _loop(self) -> None:
        interval = self.config.reaper_interval_seconds
        logger.info(
            f"Starting reaper loop (interval={interval}s, "
            f"timeout={self.config.run_timeout_minutes}m)"
        )

        while not self._stop_event.is_set():
            try:
                result = await self.sweep()
                if result.reaped or result.failed:
                    logger.info(result.message)
            except Exception as e:
                self._errors += 1
                logger.error(f"Reaper sweep error: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

        logger.info("Reaper loop stopped")

    # =========================================================================
    # SWEEP
    # =========================================================================

    async def sweep(self, timeout_minutes: Optional[int] = None) -> ReaperResult:
        """
        Reap runs that started more than ``timeout_minutes`` ago
        (default: configured run timeout).
        """
        minutes = self.config.run_timeout_minutes if timeout_minutes is None else timeout_minutes
        now = utc_now()
        cutoff = now - timedelta(minutes=minutes)

        stuck = await self._runs.find_stuck(cutoff, limit=self.batch_size)
        result = ReaperResult()

        for run in stuck:
            try:
                if await self._reap(run, minutes):
                    result.reaped += 1
                    result.run_ids.append(run.run_id)
            except Exception as e:
                result.failed += 1
                self._errors += 1
                logger.error(f"Failed to reap run {run.run_id}: {e}")

        self._sweeps += 1
        self._total_reaped += result.reaped
        self._last_sweep_at = now

        result.message = f"Reaped {result.reaped} stuck run(s) older than {minutes} minutes"
        if result.failed:
            result.message += f"; {result.failed} failed"
        return result

    async def sweep_once(self, older_than_minutes: Optional[int] = None) -> ReaperResult:
        """On-demand sweep with an explicit age threshold."""
        if older_than_minutes is not None and older_than_minutes < 0:
            raise ValueError("older_than_minutes must be >= 0")
        return await self.sweep(timeout_minutes=older_than_minutes)

    async def _reap(self, run: TaskRun, minutes: int) -> bool:
        """Time out one run. False if something else finalized it first."""
        with log_context(task_id=run.task_id, run_id=run.run_id, executor=run.executor, operation="reap"):
            ended_at = utc_now()
            metrics = {"duration_ms": run.duration_ms(ended_at)}
            error = RunError.of(ErrorCode.TIMEOUT, f"Run timed out after {minutes} minutes")

            finalized = await self._runs.finalize(
                run.run_id,
                RunStatus.TIMEOUT,
                error=error.model_dump(),
                metrics=metrics,
                task_status=TaskStatus.FAILED,
                ended_at=ended_at,
            )
            if finalized is None:
                logger.debug("Run finalized before reaper reached it")
                return False

            final_run, final_task = finalized
            if final_task is None:
                pair = await self._runs.get_with_task(run.run_id)
                if pair is None:
                    logger.warning("Parent task missing for timed out run")
                    return True
                final_task = pair[1]

            log_checkpoint("run_timeout", {"timeout_minutes": minutes, **metrics}, logger=logger)
            await self.activities.emit_run_event(
                ActivityAction.RUN_TIMEOUT,
                final_task,
                final_run,
                agent=ActivityAgent.REAPER,
                severity=ActivitySeverity.WARN,
                error=error.message,
                error_code=error.code,
                **metrics,
            )
            return True

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def stats(self) -> Dict[str, Any]:
        """Get reaper statistics."""
        return {
            "running": self.is_running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "interval_seconds": self.config.reaper_interval_seconds,
            "run_timeout_minutes": self.config.run_timeout_minutes,
            "sweeps": self._sweeps,
            "total_reaped": self._total_reaped,
            "errors": self._errors,
            "last_sweep_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
        }


__all__ = ["Reaper", "ReaperResult"]
