# ============================================================================
# TASK REPOSITORY
# ============================================================================
# STATUS: Core - Task CRUD and dispatch claim
# PURPOSE: Database access for the tasks table
# CREATED: 19 OCT 2026
# ============================================================================
"""
Task Repository

CRUD operations for tasks plus the atomic dispatch claim.

Every status write is conditional on the status the caller expects, so two
concurrent writers cannot both succeed. A None return means the condition
did not hold (or the task does not exist); callers re-read to find out why.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import DISPATCHABLE_STATUSES, RunStatus, TaskStatus, utc_now
from core.models import MUTABLE_FIELDS, Task, TaskRun
from .database import TABLE_RUNS, TABLE_TASKS

logger = logging.getLogger(__name__)

DEFAULT_EXECUTOR = "local:echo"


class TaskRepository:
    """Repository for Task entities."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def create(self, task: Task) -> Task:
        """
        Insert a new task.

        Args:
            task: Task instance (task_id already assigned)

        Returns:
            Task as stored
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    task_id, customer_id, parent_task_id, title, description,
                    assigned_agent, executor, priority, status, input, output,
                    created_at, updated_at
                ) VALUES (
                    %(task_id)s, %(customer_id)s, %(parent_task_id)s, %(title)s,
                    %(description)s, %(assigned_agent)s, %(executor)s,
                    %(priority)s, %(status)s, %(input)s, %(output)s,
                    %(created_at)s, %(updated_at)s
                )
                RETURNING *
                """).format(TABLE_TASKS),
                {
                    "task_id": task.task_id,
                    "customer_id": task.customer_id,
                    "parent_task_id": task.parent_task_id,
                    "title": task.title,
                    "description": task.description,
                    "assigned_agent": task.assigned_agent,
                    "executor": task.executor,
                    "priority": task.priority.value,
                    "status": task.status.value,
                    "input": Json(task.input),
                    "output": Json(task.output),
                    "created_at": task.created_at,
                    "updated_at": task.updated_at,
                },
            )
            row = await result.fetchone()
            logger.info(f"Task created: {task.task_id} executor={task.executor}")
            return self._row_to_task(row)

    async def get(self, task_id: str) -> Optional[Task]:
        """Get a task by ID."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE task_id = %s").format(TABLE_TASKS),
                (task_id,),
            )
            row = await result.fetchone()
            return self._row_to_task(row) if row else None

    async def list(
        self,
        customer_id: Optional[str] = None,
        assigned_agent: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        priority: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Task]:
        """
        List tasks, newest first.

        All filters are optional and combined with AND.
        """
        conditions = []
        params: List[Any] = []

        if customer_id:
            conditions.append(sql.SQL("customer_id = %s"))
            params.append(customer_id)
        if assigned_agent:
            conditions.append(sql.SQL("assigned_agent = %s"))
            params.append(assigned_agent)
        if status:
            conditions.append(sql.SQL("status = %s"))
            params.append(TaskStatus(status).value)
        if priority:
            conditions.append(sql.SQL("priority = %s"))
            params.append(str(getattr(priority, "value", priority)))

        where = sql.SQL("")
        if conditions:
            where = sql.SQL("WHERE ") + sql.SQL(" AND ").join(conditions)

        params.extend([limit, offset])

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {} {}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """).format(TABLE_TASKS, where),
                params,
            )
            rows = await result.fetchall()
            return [self._row_to_task(row) for row in rows]

    async def list_children(self, parent_task_id: str) -> List[Task]:
        """Sub-tasks of a task, oldest first."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE parent_task_id = %s
                ORDER BY created_at ASC
                """).format(TABLE_TASKS),
                (parent_task_id,),
            )
            rows = await result.fetchall()
            return [self._row_to_task(row) for row in rows]

    async def update_fields(
        self,
        task_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TaskStatus] = None,
    ) -> Optional[Task]:
        """
        Update mutable fields of a task.

        Title and executor are never written here.

        Args:
            task_id: Task identifier
            changes: Field -> new value (only MUTABLE_FIELDS)
            expected_status: If given, update only while the task is in this status

        Returns:
            Updated Task, or None if not found / status changed underneath
        """
        illegal = set(changes) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Fields not updatable: {sorted(illegal)}")
        if not changes:
            return await self.get(task_id)

        assignments = []
        params: Dict[str, Any] = {"task_id": task_id}
        for name, value in changes.items():
            assignments.append(sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name)))
            if name == "output":
                params[name] = Json(value or {})
            else:
                params[name] = getattr(value, "value", value)

        condition = sql.SQL("")
        if expected_status is not None:
            condition = sql.SQL(" AND status = %(expected_status)s")
            params["expected_status"] = TaskStatus(expected_status).value

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET {}, updated_at = NOW()
                WHERE task_id = %(task_id)s{}
                RETURNING *
                """).format(TABLE_TASKS, sql.SQL(", ").join(assignments), condition),
                params,
            )
            row = await result.fetchone()
            return self._row_to_task(row) if row else None

    async def claim_for_dispatch(
        self,
        task_id: str,
        worker_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[Tuple[Task, TaskRun]]:
        """
        Atomically move a dispatchable task to IN_PROGRESS and open a run.

        Runs in one transaction:
        1. Conditional UPDATE on status IN (created, assigned), row-locking the task
        2. INSERT the run with run_number = MAX(run_number) + 1 for that task

        Concurrent claims on the same task serialize on the row lock; the
        loser sees zero rows updated. The unique (task_id, run_number) index
        backs this up.

        Returns:
            (task, run) on success, None if the task was not dispatchable
        """
        now = now or utc_now()
        run_id = str(uuid.uuid4())

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            async with conn.transaction():
                result = await conn.execute(
                    sql.SQL("""
                    UPDATE {} SET status = %s, updated_at = NOW()
                    WHERE task_id = %s AND status = ANY(%s)
                    RETURNING *
                    """).format(TABLE_TASKS),
                    (
                        TaskStatus.IN_PROGRESS.value,
                        task_id,
                        [s.value for s in DISPATCHABLE_STATUSES],
                    ),
                )
                task_row = await result.fetchone()
                if task_row is None:
                    return None

                result = await conn.execute(
                    sql.SQL("""
                    INSERT INTO {runs} (
                        run_id, task_id, run_number, executor, status, worker_id,
                        input_snapshot, output, error, metrics, queued_at, started_at
                    )
                    SELECT
                        %(run_id)s, %(task_id)s, COALESCE(MAX(run_number), 0) + 1,
                        %(executor)s, %(status)s, %(worker_id)s, %(input_snapshot)s,
                        '{{}}'::jsonb, '{{}}'::jsonb, '{{}}'::jsonb, %(now)s, %(now)s
                    FROM {runs}
                    WHERE task_id = %(task_id)s
                    RETURNING *
                    """).format(runs=TABLE_RUNS),
                    {
                        "run_id": run_id,
                        "task_id": task_id,
                        "executor": task_row["executor"] or DEFAULT_EXECUTOR,
                        "status": RunStatus.RUNNING.value,
                        "worker_id": worker_id,
                        "input_snapshot": Json(task_row["input"] or {}),
                        "now": now,
                    },
                )
                run_row = await result.fetchone()

        task = self._row_to_task(task_row)
        run = TaskRun.model_validate(run_row)
        logger.info(f"Task {task_id} claimed by {worker_id}: run #{run.run_number} ({run.run_id})")
        return task, run

    async def mark_rate_limited(
        self,
        task_id: str,
        reason: str,
        at: Optional[datetime] = None,
    ) -> Optional[Task]:
        """Record a throttled dispatch attempt. Status is left unchanged."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET rate_limited_at = %s, rate_limit_reason = %s, updated_at = NOW()
                WHERE task_id = %s
                RETURNING *
                """).format(TABLE_TASKS),
                (at or utc_now(), getattr(reason, "value", reason), task_id),
            )
            row = await result.fetchone()
            return self._row_to_task(row) if row else None

    async def set_status(
        self,
        task_id: str,
        status: TaskStatus,
        output: Optional[Dict[str, Any]] = None,
        expected_statuses: Optional[Sequence[TaskStatus]] = None,
    ) -> Optional[Task]:
        """
        Set task status, and output when given.

        Args:
            expected_statuses: If given, update only from one of these statuses

        Returns:
            Updated Task, or None if not found / not in an expected status
        """
        assignments = [sql.SQL("status = %(status)s")]
        params: Dict[str, Any] = {"task_id": task_id, "status": TaskStatus(status).value}
        if output is not None:
            assignments.append(sql.SQL("output = %(output)s"))
            params["output"] = Json(output)

        condition = sql.SQL("")
        if expected_statuses:
            condition = sql.SQL(" AND status = ANY(%(expected)s)")
            params["expected"] = [TaskStatus(s).value for s in expected_statuses]

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET {}, updated_at = NOW()
                WHERE task_id = %(task_id)s{}
                RETURNING *
                """).format(TABLE_TASKS, sql.SQL(", ").join(assignments), condition),
                params,
            )
            row = await result.fetchone()
            return self._row_to_task(row) if row else None

    async def approve(
        self,
        task_id: str,
        approved_by: str,
        target_status: TaskStatus,
        at: Optional[datetime] = None,
    ) -> Optional[Task]:
        """Move a REVIEW task to target_status. None if not in REVIEW."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET status = %s, approved_by = %s, approved_at = %s, updated_at = NOW()
                WHERE task_id = %s AND status = %s
                RETURNING *
                """).format(TABLE_TASKS),
                (
                    TaskStatus(target_status).value,
                    approved_by,
                    at or utc_now(),
                    task_id,
                    TaskStatus.REVIEW.value,
                ),
            )
            row = await result.fetchone()
            return self._row_to_task(row) if row else None

    async def reset_for_retry(self, task_id: str) -> Optional[Task]:
        """Move a FAILED task back to CREATED and clear its output."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET status = %s, output = '{{}}'::jsonb, updated_at = NOW()
                WHERE task_id = %s AND status = %s
                RETURNING *
                """).format(TABLE_TASKS),
                (TaskStatus.CREATED.value, task_id, TaskStatus.FAILED.value),
            )
            row = await result.fetchone()
            return self._row_to_task(row) if row else None

    @staticmethod
    def _row_to_task(row: Dict[str, Any]) -> Task:
        """Convert database row to Task model."""
        data = dict(row)
        data["executor"] = data.get("executor") or DEFAULT_EXECUTOR
        data["input"] = data.get("input") or {}
        data["output"] = data.get("output") or {}
        return Task.model_validate(data)
