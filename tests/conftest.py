# ============================================================================
# TEST FIXTURES
# ============================================================================
# STATUS: Tests - Shared fixtures
# PURPOSE: Engine wiring over the in-memory store
# CREATED: 19 OCT 2026
# ============================================================================

from typing import Optional

import pytest

from core.config import DispatchConfig
from core.contracts import TaskStatus
from core.models import Task
from services import ActivityService, CallbackService, Dispatcher, TaskService
from tests.fakes import (
    InMemoryActivityRepository,
    InMemoryRunRepository,
    InMemoryStore,
    InMemoryTaskRepository,
    RecordingTransport,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def task_repo(store):
    return InMemoryTaskRepository(store)


@pytest.fixture
def run_repo(store):
    return InMemoryRunRepository(store)


@pytest.fixture
def activity_service(store):
    return ActivityService(None, repo=InMemoryActivityRepository(store))


@pytest.fixture
def config():
    return DispatchConfig(
        n8n_webhook_url="http://n8n.test/webhook/dispatch",
        claw_hook_url="http://claw.test/hooks/agent",
        claw_hook_token="hook-secret",
        backend_url="http://backend.test",
        public_base_url="https://public.test",
    ).validate()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_task(store):
    """Factory that stores a task directly."""
    def _make(
        title: str = "Echo test",
        executor: str = "local:echo",
        status: TaskStatus = TaskStatus.CREATED,
        customer_id: Optional[str] = "cust-1",
        **fields,
    ) -> Task:
        task = Task(title=title, executor=executor, status=status, customer_id=customer_id, **fields)
        store.tasks[task.task_id] = task
        return task
    return _make


@pytest.fixture
def make_dispatcher(config, activity_service, task_repo, run_repo):
    """Factory for a Dispatcher wired to the in-memory store."""
    def _make(http_client=None, cfg: Optional[DispatchConfig] = None, **kwargs) -> Dispatcher:
        return Dispatcher(
            None,
            cfg or config,
            activity_service,
            http_client=http_client,
            task_repo=task_repo,
            run_repo=run_repo,
            **kwargs,
        )
    return _make


@pytest.fixture
def callback_service(activity_service, run_repo):
    return CallbackService(None, activity_service, run_repo=run_repo)


@pytest.fixture
def task_service(activity_service, task_repo, run_repo):
    return TaskService(None, activity_service, task_repo=task_repo, run_repo=run_repo)
