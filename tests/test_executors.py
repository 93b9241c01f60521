# ============================================================================
# EXECUTOR TESTS
# ============================================================================
# STATUS: Tests - Executor adapters and routing
# PURPOSE: Verify identifier parsing, registry fallback and each adapter
# CREATED: 19 OCT 2026
# ============================================================================
"""
Executor Tests

Adapters are called directly with an ExecutorContext; no dispatcher or
repository is involved.

Run with:
    pytest tests/test_executors.py -v
"""

import asyncio
import json

import httpx
import pytest

from core.contracts import TaskStatus
from core.models import Task, TaskRun
from executors import (
    ClawWebhookExecutor,
    ExecutorContext,
    LocalEchoExecutor,
    N8nWebhookExecutor,
    OutcomeKind,
    UnknownExecutor,
    WebhookExecutor,
    get_executor,
    is_registered,
    list_backends,
    parse_executor,
)
from tests.fakes import RecordingTransport


def _context(executor: str, config, http_client=None, **task_fields) -> ExecutorContext:
    task = Task(
        title=task_fields.pop("title", "Find competitors"),
        executor=executor,
        status=TaskStatus.IN_PROGRESS,
        customer_id=task_fields.pop("customer_id", "cust-1"),
        input=task_fields.pop("input", {"topic": "ai"}),
    )
    run = TaskRun(task_id=task.task_id, run_number=1, executor=executor, input_snapshot=task.input)
    return ExecutorContext(task=task, run=run, config=config, http_client=http_client)


# ============================================================================
# ROUTING
# ============================================================================

class TestRouting:

    @pytest.mark.parametrize("identifier,expected", [
        ("local:echo", ("local", "echo")),
        ("claw:deep-research", ("claw", "deep-research")),
        ("n8n", ("n8n", "")),
        ("", ("", "")),
    ])
    def test_parse_executor(self, identifier, expected):
        assert parse_executor(identifier) == expected

    def test_builtin_backends_registered(self):
        assert {"local", "n8n", "claw"} <= set(list_backends())

    def test_lookup_by_prefix(self):
        assert isinstance(get_executor("local:echo"), LocalEchoExecutor)
        assert isinstance(get_executor("n8n:anything"), N8nWebhookExecutor)
        assert isinstance(get_executor("claw:research"), ClawWebhookExecutor)

    def test_unregistered_backend_falls_back(self):
        assert not is_registered("zapier:mail")
        assert isinstance(get_executor("zapier:mail"), UnknownExecutor)

    def test_webhook_base_is_abstract(self):
        with pytest.raises(TypeError):
            WebhookExecutor()

        class _Partial(WebhookExecutor):
            def webhook_url(self, ctx):
                return "http://hook.test"

        with pytest.raises(TypeError):
            _Partial()

    def test_unknown_executor_fails(self, config):
        outcome = asyncio.run(UnknownExecutor().execute(_context("zapier:mail", config)))
        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error.code == "unknown_executor"
        assert outcome.error.message == "Unknown executor type: zapier:mail"


# ============================================================================
# LOCAL
# ============================================================================

class TestLocalEcho:

    def test_echo_output(self, config):
        ctx = _context("local:echo", config, input={"x": [1, 2]})

        outcome = asyncio.run(LocalEchoExecutor().execute(ctx))

        assert outcome.kind == OutcomeKind.COMPLETED
        assert outcome.output == {
            "echo": True,
            "input_received": {"x": [1, 2]},
            "executor": "local:echo",
            "message": "Local echo completed successfully",
        }

    def test_other_local_variant(self, config):
        outcome = asyncio.run(LocalEchoExecutor().execute(_context("local:shell", config)))
        assert outcome.is_failure
        assert outcome.error.code == "unknown_executor"


# ============================================================================
# WEBHOOKS
# ============================================================================

class TestN8n:

    def test_payload(self, config, transport):
        async def go():
            async with transport.client() as client:
                return await N8nWebhookExecutor().execute(_context("n8n:research", config, client))

        outcome = asyncio.run(go())

        assert outcome.kind == OutcomeKind.ACCEPTED
        request = transport.requests[0]
        assert str(request.url) == "http://n8n.test/webhook/dispatch"
        assert request.headers["ngrok-skip-browser-warning"] == "true"
        body = json.loads(request.content)
        assert body["executor"] == "n8n:research"
        assert body["title"] == "Find competitors"
        assert body["input"] == {"topic": "ai"}
        assert body["callback_url"] == "http://backend.test/api/v1/n8n/task-result"

    def test_timeout(self, config):
        transport = RecordingTransport(exc=httpx.ReadTimeout("read timed out"))

        async def go():
            async with transport.client() as client:
                return await N8nWebhookExecutor().execute(_context("n8n:research", config, client))

        outcome = asyncio.run(go())

        assert outcome.is_failure
        assert outcome.error.code == "transport_failure"
        assert "timed out" in outcome.error.message

    def test_not_configured(self, config, transport):
        bare = config.with_overrides(n8n_webhook_url=None)

        async def go():
            async with transport.client() as client:
                return await N8nWebhookExecutor().execute(_context("n8n:research", bare, client))

        outcome = asyncio.run(go())

        assert outcome.error.code == "executor_not_configured"
        assert outcome.error.message == "N8N_WEBHOOK_URL not configured"
        assert transport.requests == []


class TestClaw:

    def test_payload_and_headers(self, config, transport):
        async def go():
            async with transport.client() as client:
                return await ClawWebhookExecutor().execute(_context("claw:research", config, client))

        outcome = asyncio.run(go())

        assert outcome.kind == OutcomeKind.ACCEPTED
        request = transport.requests[0]
        assert request.headers["Authorization"] == "Bearer hook-secret"
        body = json.loads(request.content)
        assert body["agent_id"] == "research"
        assert body["prompt"] == "Find competitors"
        assert body["customer_id"] == "cust-1"
        assert body["callback_url"] == "https://public.test/api/v1/claw/task-result"

    def test_callback_falls_back_to_backend_url(self, config, transport):
        private = config.with_overrides(public_base_url=None)

        async def go():
            async with transport.client() as client:
                return await ClawWebhookExecutor().execute(_context("claw:research", private, client))

        asyncio.run(go())

        body = json.loads(transport.requests[0].content)
        assert body["callback_url"] == "http://backend.test/api/v1/claw/task-result"

    def test_no_token_no_authorization_header(self, config, transport):
        open_hook = config.with_overrides(claw_hook_token=None)

        async def go():
            async with transport.client() as client:
                return await ClawWebhookExecutor().execute(_context("claw:research", open_hook, client))

        asyncio.run(go())

        assert "Authorization" not in transport.requests[0].headers

    def test_not_allowlisted(self, config, transport):
        async def go():
            async with transport.client() as client:
                return await ClawWebhookExecutor().execute(_context("claw:shell", config, client))

        outcome = asyncio.run(go())

        assert outcome.error.code == "executor_not_allowed"
        assert outcome.error.message.startswith("Claw executor not allowed: claw:shell. Allowed: ")
        assert "claw:research" in outcome.error.message
        assert transport.requests == []

    def test_custom_allowlist(self, config, transport):
        narrowed = config.with_overrides(claw_allowlist=("claw:content",))

        async def go():
            async with transport.client() as client:
                return await ClawWebhookExecutor().execute(_context("claw:research", narrowed, client))

        outcome = asyncio.run(go())

        assert outcome.error.code == "executor_not_allowed"
        assert outcome.error.message.endswith("Allowed: claw:content")

    def test_rejected_by_hook(self, config):
        transport = RecordingTransport(status_code=401)

        async def go():
            async with transport.client() as client:
                return await ClawWebhookExecutor().execute(_context("claw:research", config, client))

        outcome = asyncio.run(go())

        assert outcome.error.code == "transport_failure"
        assert outcome.error.message == "OpenClaw hook returned 401"
