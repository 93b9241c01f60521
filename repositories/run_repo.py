# ============================================================================
# TASK RUN REPOSITORY
# ============================================================================
# STATUS: Core - TaskRun reads, terminal writes and limiter counts
# PURPOSE: Database access for the task_runs table
# CREATED: 19 OCT 2026
# ============================================================================
"""
Task Run Repository

Runs are created by TaskRepository.claim_for_dispatch (same transaction as
the task transition). This repository reads them, finalizes them and
counts them for the rate limiter.

Finalization is conditional on ended_at IS NULL: a terminal run is never
written again, so a late callback racing the reaper has exactly one winner.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import RunStatus, TaskStatus, utc_now
from core.models import Task, TaskRun
from .database import TABLE_RUNS, TABLE_TASKS
from .task_repo import TaskRepository

logger = logging.getLogger(__name__)


class RunRepository:
    """Repository for TaskRun entities."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def get(self, run_id: str) -> Optional[TaskRun]:
        """Get a run by ID."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE run_id = %s").format(TABLE_RUNS),
                (run_id,),
            )
            row = await result.fetchone()
            return self._row_to_run(row) if row else None

    async def get_with_task(self, run_id: str) -> Optional[Tuple[TaskRun, Task]]:
        """
        Get a run together with its parent task.

        Returns:
            (run, task) or None if the run does not exist
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT row_to_json(r.*) AS run, row_to_json(t.*) AS task
                FROM {} r
                JOIN {} t ON t.task_id = r.task_id
                WHERE r.run_id = %s
                """).format(TABLE_RUNS, TABLE_TASKS),
                (run_id,),
            )
            row = await result.fetchone()
            if row is None:
                return None
            return self._row_to_run(row["run"]), TaskRepository._row_to_task(row["task"])

    async def list_for_task(self, task_id: str, limit: int = 100) -> List[TaskRun]:
        """Runs of one task, newest first."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE task_id = %s
                ORDER BY run_number DESC
                LIMIT %s
                """).format(TABLE_RUNS),
                (task_id, limit),
            )
            rows = await result.fetchall()
            return [self._row_to_run(row) for row in rows]

    async def get_latest_for_task(self, task_id: str) -> Optional[TaskRun]:
        """Highest-numbered run of a task, or None if it never ran."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE task_id = %s
                ORDER BY run_number DESC
                LIMIT 1
                """).format(TABLE_RUNS),
                (task_id,),
            )
            row = await result.fetchone()
            return self._row_to_run(row) if row else None

    async def merge_progress(self, task_id: str, progress: Dict[str, Any]) -> Optional[TaskRun]:
        """
        Merge {"progress": progress} into the output of the task's latest running run.

        Only a run with status RUNNING and ended_at IS NULL is written, so a
        run finalized between the lookup and the write is left alone.

        Returns:
            Updated TaskRun, or None if the task has no running run
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {runs}
                SET output = COALESCE(output, '{{}}'::jsonb) || %(patch)s
                WHERE run_id = (
                    SELECT run_id FROM {runs}
                    WHERE task_id = %(task_id)s AND status = %(running)s AND ended_at IS NULL
                    ORDER BY run_number DESC
                    LIMIT 1
                )
                AND status = %(running)s AND ended_at IS NULL
                RETURNING *
                """).format(runs=TABLE_RUNS),
                {
                    "task_id": task_id,
                    "running": RunStatus.RUNNING.value,
                    "patch": Json({"progress": progress}),
                },
            )
            row = await result.fetchone()
            return self._row_to_run(row) if row else None

    async def list_recent(
        self,
        statuses: Optional[Sequence[RunStatus]] = None,
        executor_prefix: Optional[str] = None,
        limit: int = 50,
    ) -> List[TaskRun]:
        """
        Recent runs across all tasks, newest queued first.

        Args:
            statuses: Only runs in one of these statuses
            executor_prefix: Only runs whose executor starts with this
            limit: Maximum rows
        """
        conditions = []
        params: List[Any] = []

        if statuses:
            conditions.append(sql.SQL("status = ANY(%s)"))
            params.append([RunStatus(s).value for s in statuses])
        if executor_prefix:
            conditions.append(sql.SQL("executor LIKE %s"))
            params.append(_like_prefix(executor_prefix))

        where = sql.SQL("")
        if conditions:
            where = sql.SQL("WHERE ") + sql.SQL(" AND ").join(conditions)
        params.append(limit)

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {} {}
                ORDER BY queued_at DESC
                LIMIT %s
                """).format(TABLE_RUNS, where),
                params,
            )
            rows = await result.fetchall()
            return [self._row_to_run(row) for row in rows]

    async def find_stuck(self, cutoff: datetime, limit: int = 500) -> List[TaskRun]:
        """Runs still RUNNING that started before cutoff, oldest first."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE status = %s AND ended_at IS NULL AND started_at < %s
                ORDER BY started_at ASC
                LIMIT %s
                """).format(TABLE_RUNS),
                (RunStatus.RUNNING.value, cutoff, limit),
            )
            rows = await result.fetchall()
            return [self._row_to_run(row) for row in rows]

    async def finalize(
        self,
        run_id: str,
        status: RunStatus,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
        task_status: Optional[TaskStatus] = None,
        task_output: Optional[Dict[str, Any]] = None,
        ended_at: Optional[datetime] = None,
    ) -> Optional[Tuple[TaskRun, Optional[Task]]]:
        """
        Write a run's terminal state and, in the same transaction, its task's.

        The run update only applies while ended_at IS NULL. The task update
        only applies while the task is IN_PROGRESS, so a task that was
        retried or otherwise moved on is left alone.

        Args:
            run_id: Run identifier
            status: Terminal run status
            output: Run output
            error: Run error {code, message}
            metrics: Run metrics (duration_ms)
            task_status: Terminal task status (None = leave task untouched)
            task_output: Task output (None = keep current output)
            ended_at: Override end time (default now)

        Returns:
            (run, task_or_None), or None if the run is missing or already terminal
        """
        if not RunStatus(status).is_terminal():
            raise ValueError(f"finalize requires a terminal status, got {status}")

        ended_at = ended_at or utc_now()

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            async with conn.transaction():
                result = await conn.execute(
                    sql.SQL("""
                    UPDATE {}
                    SET status = %(status)s,
                        output = %(output)s,
                        error = %(error)s,
                        metrics = metrics || %(metrics)s,
                        ended_at = %(ended_at)s
                    WHERE run_id = %(run_id)s AND ended_at IS NULL
                    RETURNING *
                    """).format(TABLE_RUNS),
                    {
                        "run_id": run_id,
                        "status": RunStatus(status).value,
                        "output": Json(output or {}),
                        "error": Json(error or {}),
                        "metrics": Json(metrics or {}),
                        "ended_at": ended_at,
                    },
                )
                run_row = await result.fetchone()
                if run_row is None:
                    return None

                task_row = None
                if task_status is not None:
                    assignments = [sql.SQL("status = %(task_status)s")]
                    params: Dict[str, Any] = {
                        "task_id": run_row["task_id"],
                        "task_status": TaskStatus(task_status).value,
                        "in_progress": TaskStatus.IN_PROGRESS.value,
                    }
                    if task_output is not None:
                        assignments.append(sql.SQL("output = %(task_output)s"))
                        params["task_output"] = Json(task_output)

                    result = await conn.execute(
                        sql.SQL("""
                        UPDATE {} SET {}, updated_at = NOW()
                        WHERE task_id = %(task_id)s AND status = %(in_progress)s
                        RETURNING *
                        """).format(TABLE_TASKS, sql.SQL(", ").join(assignments)),
                        params,
                    )
                    task_row = await result.fetchone()

        run = self._row_to_run(run_row)
        task = TaskRepository._row_to_task(task_row) if task_row else None
        logger.info(
            f"Run {run_id} finalized: {run.status.value}"
            + (f", task -> {task.status.value}" if task else "")
        )
        return run, task

    # =========================================================================
    # RATE LIMITER COUNTS
    # =========================================================================

    async def count_running_for_customer(self, customer_id: str, executor_prefix: str) -> int:
        """RUNNING runs of this customer's tasks whose executor has the prefix."""
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                SELECT COUNT(*) FROM {} r
                JOIN {} t ON t.task_id = r.task_id
                WHERE t.customer_id = %s AND r.status = %s AND r.executor LIKE %s
                """).format(TABLE_RUNS, TABLE_TASKS),
                (customer_id, RunStatus.RUNNING.value, _like_prefix(executor_prefix)),
            )
            row = await result.fetchone()
            return int(row[0])

    async def count_queued_since(
        self,
        since: datetime,
        executor_prefix: str,
        customer_id: Optional[str] = None,
    ) -> int:
        """Runs with the executor prefix queued at or after since (optionally per customer)."""
        if customer_id:
            query = sql.SQL("""
                SELECT COUNT(*) FROM {} r
                JOIN {} t ON t.task_id = r.task_id
                WHERE r.queued_at >= %s AND r.executor LIKE %s AND t.customer_id = %s
            """).format(TABLE_RUNS, TABLE_TASKS)
            params = (since, _like_prefix(executor_prefix), customer_id)
        else:
            query = sql.SQL("""
                SELECT COUNT(*) FROM {}
                WHERE queued_at >= %s AND executor LIKE %s
            """).format(TABLE_RUNS)
            params = (since, _like_prefix(executor_prefix))

        async with self.pool.connection() as conn:
            result = await conn.execute(query, params)
            row = await result.fetchone()
            return int(row[0])

    @staticmethod
    def _row_to_run(row: Dict[str, Any]) -> TaskRun:
        """Convert database row to TaskRun model."""
        data = dict(row)
        for key in ("input_snapshot", "output", "error", "metrics"):
            data[key] = data.get(key) or {}
        return TaskRun.model_validate(data)


def _like_prefix(prefix: str) -> str:
    """LIKE pattern matching strings that start with prefix."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"
