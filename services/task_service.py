# ============================================================================
# TASK SERVICE
# ============================================================================
# STATUS: Core - Task management
# PURPOSE: Create, read, update, approve and retry tasks; run history and progress
# CREATED: 19 OCT 2026
# ============================================================================
"""
Task Service

Everything a producer or operator does to a task outside of dispatch:

- create / get / list / update (title is immutable, status follows the
  task state machine)
- approve: REVIEW -> IN_PROGRESS (agent assigned) or ASSIGNED
- retry: FAILED -> CREATED, output cleared (by task id or by one of its runs)
- run history for one task and recent runs across tasks
- progress reported by a running executor, read back from the latest run
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from psycopg_pool import AsyncConnectionPool

from core.contracts import RunStatus, TaskPriority, TaskStatus
from core.errors import InvalidStateError, NoRunningRunError, RunNotFoundError, TaskNotFoundError
from core.logging import log_context
from core.models import ActivityAction, ActivityAgent, MUTABLE_FIELDS, Task, TaskRun
from repositories import RunRepository, TaskRepository
from .activity_service import ActivityService

logger = logging.getLogger(__name__)


class TaskService:
    """Service for task management."""

    def __init__(
        self,
        pool: Optional[AsyncConnectionPool],
        activity_service: Optional[ActivityService] = None,
        task_repo: Optional[TaskRepository] = None,
        run_repo: Optional[RunRepository] = None,
    ):
        self.pool = pool
        self._tasks = task_repo or TaskRepository(pool)
        self._runs = run_repo or RunRepository(pool)
        self.activities = activity_service or ActivityService(pool)

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_task(
        self,
        title: str,
        customer_id: Optional[str] = None,
        parent_task_id: Optional[str] = None,
        description: Optional[str] = None,
        assigned_agent: Optional[str] = None,
        executor: Optional[str] = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        status: TaskStatus = TaskStatus.CREATED,
        input: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """
        Create a task.

        Producers may create directly into CREATED, ASSIGNED or REVIEW.

        Raises:
            InvalidStateError: initial status not allowed
            TaskNotFoundError: parent_task_id does not exist
        """
        status = TaskStatus(status)
        if status not in (TaskStatus.CREATED, TaskStatus.ASSIGNED, TaskStatus.REVIEW):
            raise InvalidStateError(
                f"Tasks cannot be created in status '{status.value}'",
                current_status=status.value,
            )

        if parent_task_id and await self._tasks.get(parent_task_id) is None:
            raise TaskNotFoundError(parent_task_id)

        task = Task(
            title=title,
            customer_id=customer_id,
            parent_task_id=parent_task_id,
            description=description,
            assigned_agent=assigned_agent,
            executor=executor or "local:echo",
            priority=priority,
            status=status,
            input=input or {},
        )
        created = await self._tasks.create(task)

        with log_context(task_id=created.task_id, customer_id=created.customer_id):
            logger.info(f"Task created: '{created.title}' ({created.executor}, {created.status.value})")
            await self.activities.emit_task_event(
                ActivityAction.TASK_CREATED,
                created,
                agent=assigned_agent or ActivityAgent.DISPATCHER,
                message=f"Task created: {created.title}",
                executor=created.executor,
            )
        return created

    async def get_task(self, task_id: str) -> Task:
        """
        Raises:
            TaskNotFoundError
        """
        task = await self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(
        self,
        customer_id: Optional[str] = None,
        assigned_agent: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Task]:
        return await self._tasks.list(
            customer_id=customer_id,
            assigned_agent=assigned_agent,
            status=status,
            priority=priority,
            limit=limit,
            offset=offset,
        )

    async def list_children(self, task_id: str) -> List[Task]:
        await self.get_task(task_id)
        return await self._tasks.list_children(task_id)

    async def update_task(self, task_id: str, changes: Dict[str, Any]) -> Task:
        """
        Update mutable fields.

        A status change must be a legal transition. Leaving REVIEW requires
        approve_task; entering IN_PROGRESS from CREATED/ASSIGNED requires
        a dispatch.

        Raises:
            TaskNotFoundError
            InvalidStateError: illegal transition or concurrent status change
            ValueError: no updatable fields / immutable field given /
                output without a status change
        """
        illegal = set(changes) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Fields not updatable: {sorted(illegal)}")
        if not changes:
            raise ValueError("No valid fields to update")

        task = await self.get_task(task_id)

        expected = None
        if "status" in changes:
            new_status = TaskStatus(changes["status"])
            changes = {**changes, "status": new_status}
            if new_status != task.status:
                self._check_manual_transition(task, new_status)
                expected = task.status

        # Output is written only alongside a status change
        if "output" in changes and expected is None:
            raise ValueError("output can only be set together with a status change")

        updated = await self._tasks.update_fields(task_id, changes, expected_status=expected)
        if updated is None:
            current = await self.get_task(task_id)
            raise InvalidStateError(
                f"Task {task_id} changed status concurrently",
                current_status=current.status.value,
            )
        return updated

    @staticmethod
    def _check_manual_transition(task: Task, new_status: TaskStatus) -> None:
        if not task.can_transition_to(new_status):
            raise InvalidStateError(
                f"Cannot move task from '{task.status.value}' to '{new_status.value}'",
                current_status=task.status.value,
            )
        if task.status == TaskStatus.REVIEW:
            raise InvalidStateError(
                "Tasks in review must be approved",
                current_status=task.status.value,
            )
        if new_status == TaskStatus.IN_PROGRESS:
            raise InvalidStateError(
                "Tasks enter in_progress by dispatch",
                current_status=task.status.value,
            )
        if task.status == TaskStatus.FAILED:
            raise InvalidStateError(
                "Failed tasks are resubmitted by retry",
                current_status=task.status.value,
            )

    # =========================================================================
    # APPROVAL
    # =========================================================================

    async def approve_task(self, task_id: str, approved_by: str) -> Task:
        """
        Approve a REVIEW task.

        Raises:
            TaskNotFoundError
            InvalidStateError: task not in review
        """
        task = await self.get_task(task_id)
        if task.status != TaskStatus.REVIEW:
            raise InvalidStateError(
                "Task is not in review status",
                current_status=task.status.value,
            )

        target = task.approval_target_status()
        approved = await self._tasks.approve(task_id, approved_by, target)
        if approved is None:
            current = await self.get_task(task_id)
            raise InvalidStateError(
                "Task is not in review status",
                current_status=current.status.value,
            )

        with log_context(task_id=task_id, customer_id=approved.customer_id):
            logger.info(f"Task approved by {approved_by} -> {target.value}")
            await self.activities.emit_task_event(
                ActivityAction.TASK_APPROVED,
                approved,
                agent=approved_by,
                message=f"Task approved by {approved_by}",
                approved_by=approved_by,
            )
        return approved

    # =========================================================================
    # RECOVERY
    # =========================================================================

    async def retry_task(
        self,
        task_id: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> Task:
        """
        Reset a FAILED task to CREATED so it can be dispatched again.

        Either task_id or run_id (any run of the task) identifies the task.

        Raises:
            ValueError: neither identifier given
            RunNotFoundError / TaskNotFoundError
            InvalidStateError: task not failed
        """
        if not task_id and not run_id:
            raise ValueError("task_id or run_id is required")

        if run_id:
            run = await self._runs.get(run_id)
            if run is None or (task_id and run.task_id != task_id):
                raise RunNotFoundError(run_id, task_id)
            task_id = run.task_id

        task = await self.get_task(task_id)
        if task.status != TaskStatus.FAILED:
            raise InvalidStateError(
                f"Only failed tasks can be retried (status '{task.status.value}')",
                current_status=task.status.value,
            )

        reset = await self._tasks.reset_for_retry(task_id)
        if reset is None:
            current = await self.get_task(task_id)
            raise InvalidStateError(
                "Task changed status concurrently",
                current_status=current.status.value,
            )

        with log_context(task_id=task_id, run_id=run_id, customer_id=reset.customer_id):
            logger.info("Task reset for retry")
            await self.activities.emit_task_event(
                ActivityAction.TASK_RETRY,
                reset,
                agent=ActivityAgent.RECOVERY,
                message="Task reset to created for retry",
                run_id=run_id,
            )
        return reset

    # =========================================================================
    # RUN HISTORY
    # =========================================================================

    async def list_runs(self, task_id: str, limit: int = 100) -> List[TaskRun]:
        await self.get_task(task_id)
        return await self._runs.list_for_task(task_id, limit=limit)

    # =========================================================================
    # PROGRESS
    # =========================================================================

    async def report_progress(self, task_id: str, progress: Dict[str, Any]) -> TaskRun:
        """
        Record progress on the task's latest running run.

        Progress is merged into the run output under "progress"; other output
        keys are kept. Finished runs are never written.

        Raises:
            TaskNotFoundError
            NoRunningRunError: the task has no running run
        """
        await self.get_task(task_id)
        run = await self._runs.merge_progress(task_id, progress)
        if run is None:
            raise NoRunningRunError(task_id)

        with log_context(task_id=task_id, run_id=run.run_id):
            logger.debug(f"Progress reported: {progress.get('percent')}% {progress.get('current_step') or ''}")
        return run

    async def get_progress(self, task_id: str) -> Dict[str, Any]:
        """
        Progress of the task's latest run.

        Returns:
            {"progress": dict or None, "run_status": str or None}
        """
        await self.get_task(task_id)
        run = await self._runs.get_latest_for_task(task_id)
        if run is None:
            return {"progress": None, "run_status": None}
        return {
            "progress": run.output.get("progress") or None,
            "run_status": run.status.value,
        }

    async def list_recent_runs(
        self,
        statuses: Optional[Sequence[RunStatus]] = None,
        executor_prefix: Optional[str] = None,
        limit: int = 20,
    ) -> List[TaskRun]:
        return await self._runs.list_recent(
            statuses=statuses,
            executor_prefix=executor_prefix,
            limit=limit,
        )


__all__ = ["TaskService"]
