# ============================================================================
# API ROUTES
# ============================================================================
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for tasks, dispatch, callbacks, recovery and reaper
# CREATED: 19 OCT 2026
# ============================================================================
"""
API Routes

Mounted under /api/v1.

Error mapping:
    TaskNotFoundError / RunNotFoundError  -> 404
    NoRunningRunError                     -> 404
    InvalidStateError                     -> 409
    ValueError (bad request content)      -> 400
    Unsuccessful dispatch                 -> 400 with task/run snapshots
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from core.contracts import RunStatus, TaskPriority, TaskStatus
from core.errors import (
    DispatchError,
    InvalidStateError,
    NoRunningRunError,
    RunNotFoundError,
    TaskNotFoundError,
)
from .schemas import (
    ApproveRequest,
    CallbackRequest,
    ChildrenResponse,
    DispatchFailureResponse,
    DispatchRequest,
    DispatchResponse,
    ErrorResponse,
    ProgressRequest,
    ProgressResponse,
    ProgressUpdateResponse,
    ReaperRunRequest,
    ReaperRunResponse,
    RetryRequest,
    RunListResponse,
    TaskCreate,
    TaskEnvelope,
    TaskListResponse,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# These will be set by the main app at startup

_task_service = None
_dispatcher = None
_callback_service = None
_reaper = None


def set_services(task_service, dispatcher, callback_service, reaper):
    """Set service instances for dependency injection."""
    global _task_service, _dispatcher, _callback_service, _reaper
    _task_service = task_service
    _dispatcher = dispatcher
    _callback_service = callback_service
    _reaper = reaper


def get_task_service():
    if _task_service is None:
        raise HTTPException(500, "Services not initialized")
    return _task_service


def get_dispatcher():
    if _dispatcher is None:
        raise HTTPException(500, "Dispatcher not initialized")
    return _dispatcher


def get_callback_service():
    if _callback_service is None:
        raise HTTPException(500, "Callback service not initialized")
    return _callback_service


def get_reaper():
    if _reaper is None:
        raise HTTPException(500, "Reaper not initialized")
    return _reaper


def error_response(e: Exception) -> JSONResponse:
    """Map a service exception to a JSON error response."""
    if isinstance(e, (TaskNotFoundError, RunNotFoundError, NoRunningRunError)):
        return JSONResponse(status_code=404, content=e.to_dict())
    if isinstance(e, InvalidStateError):
        return JSONResponse(status_code=409, content=e.to_dict())
    if isinstance(e, DispatchError):
        return JSONResponse(status_code=400, content=e.to_dict())
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "message": str(e)},
    )


_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# TASKS
# ============================================================================

@router.get("/tasks", response_model=TaskListResponse, tags=["Tasks"])
async def list_tasks(
    customer_id: Optional[str] = Query(None),
    assigned_agent: Optional[str] = Query(None),
    status: Optional[TaskStatus] = Query(None),
    priority: Optional[TaskPriority] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """
    List tasks, newest first.
    """
    service = get_task_service()
    tasks = await service.list_tasks(
        customer_id=customer_id,
        assigned_agent=assigned_agent,
        status=status,
        priority=priority,
        limit=limit,
        offset=offset,
    )
    return TaskListResponse(
        tasks=[t.snapshot() for t in tasks],
        paging={"limit": limit, "offset": offset},
    )


@router.post(
    "/tasks",
    response_model=TaskEnvelope,
    status_code=201,
    tags=["Tasks"],
    responses=_ERROR_RESPONSES,
)
async def create_task(request: TaskCreate):
    """
    Create a task.

    Returns immediately. Dispatch with POST /tasks/{task_id}/dispatch.
    """
    service = get_task_service()
    try:
        task = await service.create_task(**request.model_dump())
    except (DispatchError, ValueError) as e:
        return error_response(e)
    return TaskEnvelope(task=task.snapshot())


@router.get("/tasks/{task_id}", response_model=TaskEnvelope, tags=["Tasks"], responses=_ERROR_RESPONSES)
async def get_task(task_id: str):
    service = get_task_service()
    try:
        task = await service.get_task(task_id)
    except DispatchError as e:
        return error_response(e)
    return TaskEnvelope(task=task.snapshot())


@router.put("/tasks/{task_id}", response_model=TaskEnvelope, tags=["Tasks"], responses=_ERROR_RESPONSES)
async def update_task(task_id: str, request: TaskUpdate):
    """
    Update mutable task fields.

    Status changes must follow the task lifecycle.
    """
    service = get_task_service()
    try:
        task = await service.update_task(task_id, request.changes())
    except (DispatchError, ValueError) as e:
        return error_response(e)
    return TaskEnvelope(task=task.snapshot())


@router.post(
    "/tasks/{task_id}/approve",
    response_model=TaskEnvelope,
    tags=["Tasks"],
    responses=_ERROR_RESPONSES,
)
async def approve_task(task_id: str, request: ApproveRequest):
    """
    Approve a task in review.

    Moves to in_progress when an agent is assigned, otherwise to assigned.
    """
    service = get_task_service()
    try:
        task = await service.approve_task(task_id, request.approved_by)
    except DispatchError as e:
        return error_response(e)
    return TaskEnvelope(task=task.snapshot())


@router.get(
    "/tasks/{task_id}/children",
    response_model=ChildrenResponse,
    tags=["Tasks"],
    responses=_ERROR_RESPONSES,
)
async def list_children(task_id: str):
    service = get_task_service()
    try:
        children = await service.list_children(task_id)
    except DispatchError as e:
        return error_response(e)
    return ChildrenResponse(children=[c.snapshot() for c in children], count=len(children))


@router.get(
    "/tasks/{task_id}/runs",
    response_model=RunListResponse,
    tags=["Runs"],
    responses=_ERROR_RESPONSES,
)
async def list_task_runs(task_id: str):
    """
    Run history of one task, newest first.
    """
    service = get_task_service()
    try:
        runs = await service.list_runs(task_id)
    except DispatchError as e:
        return error_response(e)
    return RunListResponse(runs=[r.snapshot() for r in runs])


# ============================================================================
# DISPATCH
# ============================================================================

@router.post(
    "/tasks/{task_id}/dispatch",
    response_model=DispatchResponse,
    tags=["Dispatch"],
    responses={
        400: {"model": DispatchFailureResponse, "description": "Dispatch rejected or failed"},
        404: {"model": ErrorResponse, "description": "Task not found"},
    },
)
async def dispatch_task(task_id: str, request: Optional[DispatchRequest] = None):
    """
    Start one run of a task.

    Synchronous executors finish before the response. Webhook executors
    return with the run still running; completion arrives by callback.
    """
    dispatcher = get_dispatcher()
    worker_id = request.worker_id if request else None

    try:
        result = await dispatcher.dispatch(task_id, worker_id=worker_id)
    except DispatchError as e:
        return error_response(e)

    if not result.success:
        body = DispatchFailureResponse(
            error=result.error or "Dispatch failed",
            error_code=result.error_code,
            task=result.task,
            run=result.run,
            rate_limited=result.rate_limited,
            rate_limit_reason=result.rate_limit_reason,
            rate_limit_scope=result.rate_limit_scope,
        )
        return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))

    return DispatchResponse(
        message="Task dispatched successfully",
        task=result.task,
        run=result.run,
    )


# ============================================================================
# RUNS
# ============================================================================

@router.get("/runs", response_model=RunListResponse, tags=["Runs"], responses=_ERROR_RESPONSES)
async def list_runs(
    status: Optional[str] = Query(None, description="Comma-separated run statuses"),
    executor_prefix: Optional[str] = Query(None, alias="executorPrefix"),
    limit: int = Query(20, ge=1, le=100),
):
    """
    Recent runs across all tasks, newest first.
    """
    statuses: Optional[List[RunStatus]] = None
    if status:
        try:
            statuses = [RunStatus(s.strip()) for s in status.split(",") if s.strip()]
        except ValueError as e:
            return error_response(e)

    service = get_task_service()
    runs = await service.list_recent_runs(
        statuses=statuses,
        executor_prefix=executor_prefix,
        limit=limit,
    )
    return RunListResponse(runs=[r.snapshot() for r in runs])


# ============================================================================
# PROGRESS
# ============================================================================

@router.get(
    "/tasks/{task_id}/progress",
    response_model=ProgressResponse,
    tags=["Runs"],
    responses=_ERROR_RESPONSES,
)
async def get_progress(task_id: str):
    """
    Progress of the task's latest run.
    """
    service = get_task_service()
    try:
        progress = await service.get_progress(task_id)
    except DispatchError as e:
        return error_response(e)
    return ProgressResponse(**progress)


@router.post(
    "/tasks/{task_id}/progress",
    response_model=ProgressUpdateResponse,
    tags=["Runs"],
    responses=_ERROR_RESPONSES,
)
async def report_progress(task_id: str, request: ProgressRequest):
    """
    Report progress for the task's running run.

    404 when the task has no running run.
    """
    service = get_task_service()
    progress = request.progress.model_dump(exclude_none=True)
    try:
        run = await service.report_progress(task_id, progress)
    except DispatchError as e:
        return error_response(e)
    return ProgressUpdateResponse(success=True, run_id=run.run_id, progress=progress)


# ============================================================================
# CALLBACKS
# ============================================================================

async def _ingest(request: CallbackRequest, source: str):
    service = get_callback_service()
    try:
        result = await service.ingest(
            task_id=request.task_id,
            run_id=request.run_id,
            success=request.success,
            output=request.output,
            error=request.error,
            source=source,
        )
    except DispatchError as e:
        logger.warning(f"Rejected {source} callback for run {request.run_id}: {e.message}")
        return error_response(e)
    return result.to_dict()


@router.post("/n8n/task-result", tags=["Callbacks"], responses=_ERROR_RESPONSES)
async def n8n_task_result(request: CallbackRequest):
    """
    Completion report from an n8n workflow.
    """
    return await _ingest(request, source="n8n")


@router.post("/claw/task-result", tags=["Callbacks"], responses=_ERROR_RESPONSES)
async def claw_task_result(request: CallbackRequest):
    """
    Completion report from a claw agent.
    """
    return await _ingest(request, source="claw")


# ============================================================================
# RECOVERY
# ============================================================================

@router.post("/recovery/retry", response_model=TaskEnvelope, tags=["Recovery"], responses=_ERROR_RESPONSES)
async def retry_task(request: RetryRequest):
    """
    Reset a failed task to created so it can be dispatched again.
    """
    service = get_task_service()
    try:
        task = await service.retry_task(task_id=request.task_id, run_id=request.run_id)
    except (DispatchError, ValueError) as e:
        return error_response(e)
    return TaskEnvelope(task=task.snapshot())


# ============================================================================
# ADMIN
# ============================================================================

@router.post("/admin/reaper/run", response_model=ReaperRunResponse, tags=["Admin"])
async def run_reaper(request: Optional[ReaperRunRequest] = None):
    """
    Sweep stuck runs now.

    older_than_minutes defaults to the configured run timeout.
    """
    reaper = get_reaper()
    older_than = request.older_than_minutes if request else None
    result = await reaper.sweep_once(older_than)
    logger.info(f"Manual reaper run: {result.message}")

    return ReaperRunResponse(
        message="Reaper executed successfully",
        reaped=result.reaped,
        failed=result.failed,
        run_ids=result.run_ids,
    )


@router.get("/admin/reaper/status", tags=["Admin"])
async def reaper_status():
    """
    Reaper loop statistics.
    """
    return get_reaper().stats


__all__ = ["router", "set_services", "error_response"]
