# ============================================================================
# DISPATCHER TESTS
# ============================================================================
# STATUS: Tests - Dispatch attempts end to end against the in-memory store
# PURPOSE: Verify preconditions, claiming, executor routing and recording
# CREATED: 19 OCT 2026
# ============================================================================
"""
Dispatcher Tests

Covers:
1. local:echo completes run and task synchronously
2. Non-dispatchable statuses fail with invalid_state and create no run
3. Run numbers are 1 + previous maximum per task
4. Restricted executors: allowlist rejection, concurrency throttling
5. Webhook executors: accepted, rejected, unreachable, not configured
6. Unknown executors and executors that raise
7. Concurrent dispatch of the same task creates exactly one run

Run with:
    pytest tests/test_dispatcher.py -v
"""

import asyncio
import pytest
from datetime import timedelta

import httpx

from core.contracts import RunStatus, TaskStatus, utc_now
from core.errors import TaskNotFoundError
from core.models import TaskRun
from executors import ExecutionOutcome, Executor, register_executor
from executors.registry import unregister_executor
from tests.fakes import RecordingTransport


def _runs_for(store, task_id):
    return [r for r in store.runs.values() if r.task_id == task_id]


# ============================================================================
# LOCAL ECHO
# ============================================================================

class TestLocalEcho:
    """Synchronous in-process executor."""

    def test_echo_completes_run_and_task(self, store, make_task, make_dispatcher):
        task = make_task(input={"topic": "agents", "n": 3})
        dispatcher = make_dispatcher()

        result = asyncio.run(dispatcher.dispatch(task.task_id))

        assert result.success is True
        assert result.run["status"] == "completed"
        assert result.task["status"] == "completed"

        run = store.runs[result.run["run_id"]]
        assert run.run_number == 1
        assert run.ended_at is not None
        assert run.output["echo"] is True
        assert run.output["input_received"] == {"topic": "agents", "n": 3}
        assert run.output["executor"] == "local:echo"
        assert "duration_ms" in run.metrics

        stored = store.tasks[task.task_id]
        assert stored.status == TaskStatus.COMPLETED
        assert stored.output["input_received"] == task.input

    def test_echo_emits_started_and_completed(self, store, make_task, make_dispatcher):
        task = make_task()
        asyncio.run(make_dispatcher().dispatch(task.task_id))

        assert store.actions() == ["run_started", "run_completed"]
        assert all(a.agent == "system:dispatcher" for a in store.activities)
        assert store.activities[0].details["task_id"] == task.task_id

    def test_default_worker_id_recorded(self, store, make_task, make_dispatcher, config):
        task = make_task()
        result = asyncio.run(make_dispatcher().dispatch(task.task_id))
        assert store.runs[result.run["run_id"]].worker_id == config.default_worker_id

    def test_explicit_worker_id_recorded(self, store, make_task, make_dispatcher):
        task = make_task()
        result = asyncio.run(make_dispatcher().dispatch(task.task_id, worker_id="ops-console"))
        assert store.runs[result.run["run_id"]].worker_id == "ops-console"

    def test_assigned_task_is_dispatchable(self, make_task, make_dispatcher):
        task = make_task(status=TaskStatus.ASSIGNED, assigned_agent="agent-7")
        result = asyncio.run(make_dispatcher().dispatch(task.task_id))
        assert result.success is True

    def test_unknown_local_variant_fails(self, store, make_task, make_dispatcher):
        task = make_task(executor="local:shell")
        result = asyncio.run(make_dispatcher().dispatch(task.task_id))

        assert result.success is False
        assert result.error_code == "unknown_executor"
        assert store.tasks[task.task_id].status == TaskStatus.FAILED


# ============================================================================
# PRECONDITIONS
# ============================================================================

class TestPreconditions:
    """Failures that return before anything is written."""

    @pytest.mark.parametrize("status", [
        TaskStatus.IN_PROGRESS,
        TaskStatus.REVIEW,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
    ])
    def test_non_dispatchable_status_rejected(self, status, store, make_task, make_dispatcher):
        task = make_task(status=status)

        result = asyncio.run(make_dispatcher().dispatch(task.task_id))

        assert result.success is False
        assert result.error_code == "invalid_state"
        assert f"'{status.value}'" in result.error
        assert result.task["status"] == status.value
        assert _runs_for(store, task.task_id) == []
        assert store.tasks[task.task_id].status == status
        assert store.activities == []

    def test_missing_task_raises(self, make_dispatcher):
        with pytest.raises(TaskNotFoundError):
            asyncio.run(make_dispatcher().dispatch("does-not-exist"))


# ============================================================================
# RUN NUMBERING
# ============================================================================

class TestRunNumbering:

    def test_retry_gets_next_run_number(self, store, make_task, make_dispatcher, task_service):
        task = make_task(executor="ftp:upload")
        dispatcher = make_dispatcher()

        first = asyncio.run(dispatcher.dispatch(task.task_id))
        assert first.success is False
        assert first.run["run_number"] == 1

        asyncio.run(task_service.retry_task(task_id=task.task_id))
        second = asyncio.run(dispatcher.dispatch(task.task_id))

        assert second.run["run_number"] == 2
        numbers = sorted(r.run_number for r in _runs_for(store, task.task_id))
        assert numbers == [1, 2]

    def test_number_follows_existing_maximum(self, store, make_task, make_dispatcher):
        task = make_task()
        old = TaskRun(
            task_id=task.task_id,
            run_number=4,
            executor="local:echo",
            status=RunStatus.FAILED,
            ended_at=utc_now(),
        )
        store.runs[old.run_id] = old

        result = asyncio.run(make_dispatcher().dispatch(task.task_id))
        assert result.run["run_number"] == 5

    def test_input_snapshot_is_independent_of_later_edits(self, store, make_task, make_dispatcher, transport):
        task = make_task(executor="n8n:research", input={"q": "first"})

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client).dispatch(task.task_id)

        result = asyncio.run(go())
        store.tasks[task.task_id] = store.tasks[task.task_id].model_copy(update={"input": {"q": "second"}})

        assert store.runs[result.run["run_id"]].input_snapshot == {"q": "first"}


# ============================================================================
# RESTRICTED EXECUTORS
# ============================================================================

class TestRestrictedExecutors:
    """claw: allowlist and rate limiting."""

    def test_not_allowlisted_fails_without_outbound_call(self, store, make_task, make_dispatcher, transport):
        task = make_task(executor="claw:unsupported", status=TaskStatus.ASSIGNED)

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client).dispatch(task.task_id)

        result = asyncio.run(go())

        assert result.success is False
        assert result.error_code == "executor_not_allowed"
        assert "claw:unsupported" in result.error
        assert result.task["status"] == "failed"
        assert result.run["status"] == "failed"
        assert result.run["error"]["code"] == "executor_not_allowed"
        assert transport.requests == []
        assert store.actions() == ["run_started", "run_failed"]
        assert store.activities[-1].severity.value == "error"

    def test_concurrency_limit_throttles(self, store, make_task, make_dispatcher, config):
        for _ in range(config.max_concurrent_per_customer):
            busy = make_task(executor="claw:research", status=TaskStatus.IN_PROGRESS, customer_id="C")
            run = TaskRun(
                task_id=busy.task_id,
                run_number=1,
                executor="claw:research",
                started_at=utc_now(),
            )
            store.runs[run.run_id] = run

        task = make_task(executor="claw:research", status=TaskStatus.ASSIGNED, customer_id="C")
        runs_before = len(store.runs)

        result = asyncio.run(make_dispatcher().dispatch(task.task_id))

        assert result.success is False
        assert result.rate_limited is True
        assert result.error_code == "rate_limited"
        assert result.rate_limit_reason == "concurrent_limit"
        assert result.rate_limit_scope == "customer"

        stored = store.tasks[task.task_id]
        assert stored.status == TaskStatus.ASSIGNED
        assert stored.rate_limit_reason == "concurrent_limit"
        assert stored.rate_limited_at is not None
        assert len(store.runs) == runs_before
        assert store.actions() == ["rate_limited"]
        assert store.activities[0].severity.value == "warn"

    def test_other_customer_not_throttled(self, store, make_task, make_dispatcher, config, transport):
        for _ in range(config.max_concurrent_per_customer):
            busy = make_task(executor="claw:research", status=TaskStatus.IN_PROGRESS, customer_id="C")
            run = TaskRun(task_id=busy.task_id, run_number=1, executor="claw:research", started_at=utc_now())
            store.runs[run.run_id] = run

        task = make_task(executor="claw:research", customer_id="D")

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client).dispatch(task.task_id)

        result = asyncio.run(go())
        assert result.success is True
        assert len(transport.requests) == 1

    def test_global_hourly_limit(self, store, make_task, make_dispatcher, config):
        cfg = config.with_overrides(max_global_per_hour=2)
        for i in range(2):
            done = make_task(executor="claw:content", status=TaskStatus.COMPLETED, customer_id=f"other-{i}")
            run = TaskRun(
                task_id=done.task_id,
                run_number=1,
                executor="claw:content",
                status=RunStatus.COMPLETED,
                queued_at=utc_now() - timedelta(minutes=10),
                ended_at=utc_now(),
            )
            store.runs[run.run_id] = run

        task = make_task(executor="claw:research", customer_id=None)
        result = asyncio.run(make_dispatcher(cfg=cfg).dispatch(task.task_id))

        assert result.rate_limited is True
        assert result.rate_limit_reason == "hourly_limit"
        assert result.rate_limit_scope == "global"

    def test_non_restricted_executor_ignores_limits(self, store, make_task, make_dispatcher, config):
        cfg = config.with_overrides(max_global_per_hour=1, max_concurrent_per_customer=1)
        busy = make_task(executor="claw:research", status=TaskStatus.IN_PROGRESS)
        run = TaskRun(task_id=busy.task_id, run_number=1, executor="claw:research", started_at=utc_now())
        store.runs[run.run_id] = run

        task = make_task(executor="local:echo")
        result = asyncio.run(make_dispatcher(cfg=cfg).dispatch(task.task_id))
        assert result.success is True


# ============================================================================
# WEBHOOK EXECUTORS
# ============================================================================

class TestWebhookExecutors:

    def test_n8n_accepted_leaves_run_running(self, store, make_task, make_dispatcher, transport):
        task = make_task(executor="n8n:research", title="Summarize", input={"url": "https://x.test"})

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client).dispatch(task.task_id)

        result = asyncio.run(go())

        assert result.success is True
        assert result.run["status"] == "running"
        assert result.task["status"] == "in_progress"
        assert store.runs[result.run["run_id"]].ended_at is None
        assert store.actions() == ["run_started"]

        request = transport.requests[0]
        assert str(request.url) == "http://n8n.test/webhook/dispatch"
        body = httpx.Response(200, content=request.content).json()
        assert body["task_id"] == task.task_id
        assert body["run_id"] == result.run["run_id"]
        assert body["executor"] == "n8n:research"
        assert body["title"] == "Summarize"
        assert body["input"] == {"url": "https://x.test"}
        assert body["customer_id"] == "cust-1"
        assert body["callback_url"] == "http://backend.test/api/v1/n8n/task-result"

    def test_claw_payload_and_token(self, make_task, make_dispatcher, transport):
        task = make_task(executor="claw:research", title="Agent frameworks")

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client).dispatch(task.task_id)

        result = asyncio.run(go())
        assert result.success is True

        request = transport.requests[0]
        assert request.headers["Authorization"] == "Bearer hook-secret"
        body = httpx.Response(200, content=request.content).json()
        assert body["agent_id"] == "research"
        assert body["prompt"] == "Agent frameworks"
        assert body["callback_url"] == "https://public.test/api/v1/claw/task-result"

    def test_non_success_status_fails_run_and_task(self, store, make_task, make_dispatcher):
        transport = RecordingTransport(status_code=502)
        task = make_task(executor="n8n:research")

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client).dispatch(task.task_id)

        result = asyncio.run(go())

        assert result.success is False
        assert result.error_code == "transport_failure"
        assert "502" in result.error
        assert store.tasks[task.task_id].status == TaskStatus.FAILED
        run = store.runs[result.run["run_id"]]
        assert run.status == RunStatus.FAILED
        assert run.error == {"code": "transport_failure", "message": "Webhook returned 502"}

    def test_unreachable_webhook_fails(self, store, make_task, make_dispatcher):
        transport = RecordingTransport(exc=httpx.ConnectError("connection refused"))
        task = make_task(executor="n8n:research")

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client).dispatch(task.task_id)

        result = asyncio.run(go())

        assert result.success is False
        assert result.error_code == "transport_failure"
        assert "connection refused" in result.error
        assert store.tasks[task.task_id].status == TaskStatus.FAILED

    def test_missing_webhook_url(self, store, make_task, make_dispatcher, config, transport):
        cfg = config.with_overrides(n8n_webhook_url=None)
        task = make_task(executor="n8n:research")

        async def go():
            async with transport.client() as client:
                return await make_dispatcher(http_client=client, cfg=cfg).dispatch(task.task_id)

        result = asyncio.run(go())

        assert result.error_code == "executor_not_configured"
        assert result.error == "N8N_WEBHOOK_URL not configured"
        assert transport.requests == []


# ============================================================================
# ROUTING FAILURES
# ============================================================================

class TestRoutingFailures:

    def test_unknown_backend(self, store, make_task, make_dispatcher):
        task = make_task(executor="ftp:upload")
        result = asyncio.run(make_dispatcher().dispatch(task.task_id))

        assert result.success is False
        assert result.error_code == "unknown_executor"
        assert result.error == "Unknown executor type: ftp:upload"
        assert result.run["status"] == "failed"
        assert result.task["status"] == "failed"

    def test_executor_exception_recorded_as_failure(self, store, make_task, make_dispatcher):
        @register_executor("explode")
        class ExplodingExecutor(Executor):
            async def execute(self, ctx):
                raise RuntimeError("adapter bug")

        try:
            task = make_task(executor="explode:now")
            result = asyncio.run(make_dispatcher().dispatch(task.task_id))
        finally:
            unregister_executor("explode")

        assert result.success is False
        assert result.error_code == "transport_failure"
        assert "adapter bug" in result.error
        assert store.tasks[task.task_id].status == TaskStatus.FAILED


# ============================================================================
# CONCURRENCY
# ============================================================================

class TestConcurrentDispatch:

    def test_same_task_dispatched_twice_creates_one_run(self, store, make_task, make_dispatcher, transport):
        task = make_task(executor="n8n:research")

        async def go():
            async with transport.client() as client:
                dispatcher = make_dispatcher(http_client=client)
                return await asyncio.gather(
                    dispatcher.dispatch(task.task_id),
                    dispatcher.dispatch(task.task_id),
                )

        results = asyncio.run(go())

        assert sorted(r.success for r in results) == [False, True]
        loser = next(r for r in results if not r.success)
        assert loser.error_code == "invalid_state"
        assert len(_runs_for(store, task.task_id)) == 1
        assert len(transport.requests) == 1

    def test_slow_executor_does_not_block_claim_check(self, store, make_task, make_dispatcher):
        @register_executor("slow")
        class SlowExecutor(Executor):
            async def execute(self, ctx):
                await asyncio.sleep(0.01)
                return ExecutionOutcome.completed({"done": True})

        try:
            task = make_task(executor="slow:one")

            async def go():
                dispatcher = make_dispatcher()
                return await asyncio.gather(
                    dispatcher.dispatch(task.task_id),
                    dispatcher.dispatch(task.task_id),
                )

            results = asyncio.run(go())
        finally:
            unregister_executor("slow")

        assert sum(r.success for r in results) == 1
        assert [r.run_number for r in _runs_for(store, task.task_id)] == [1]
