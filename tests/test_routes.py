# ============================================================================
# API ROUTES TESTS
# ============================================================================
# STATUS: Tests - HTTP surface
# PURPOSE: Verify endpoints, status codes and error mapping
# CREATED: 19 OCT 2026
# ============================================================================
"""
API Routes Tests

Routes are exercised through FastAPI TestClient with real services wired
to the in-memory store, so status codes and bodies are checked end to end.
Webhook traffic goes to an httpx.MockTransport.

Run with:
    pytest tests/test_routes.py -v
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import router, set_services
from core.contracts import RunStatus, TaskStatus, utc_now
from core.models import TaskRun
from health import health_router, set_health_checks
from health.core import HealthCheckPlugin, HealthCheckResult
from orchestrator import Reaper


# ============================================================================
# FIXTURES
# ============================================================================

def _make_test_app(task_service, dispatcher, callback_service, reaper):
    """Create a test FastAPI app with the dispatch routes."""
    app = FastAPI()
    app.include_router(health_router)
    app.include_router(router, prefix="/api/v1")
    set_services(task_service, dispatcher, callback_service, reaper)
    return app


@pytest.fixture
def client(config, activity_service, run_repo, task_service, callback_service, make_dispatcher, transport):
    http_client = transport.client()
    reaper = Reaper(None, config, activity_service, run_repo=run_repo)
    app = _make_test_app(task_service, make_dispatcher(http_client=http_client), callback_service, reaper)
    with TestClient(app) as test_client:
        yield test_client
    set_services(None, None, None, None)
    set_health_checks([])


# ============================================================================
# TASKS
# ============================================================================

class TestTaskEndpoints:

    def test_create_task(self, client, store):
        response = client.post("/api/v1/tasks", json={
            "title": "Research agent frameworks",
            "customer_id": "cust-001",
            "executor": "claw:research",
            "input": {"topic": "agents"},
        })

        assert response.status_code == 201
        task = response.json()["task"]
        assert task["status"] == "created"
        assert task["executor"] == "claw:research"
        assert task["is_dispatchable"] is True
        assert task["task_id"] in store.tasks

    def test_create_requires_title(self, client):
        response = client.post("/api/v1/tasks", json={"executor": "local:echo"})
        assert response.status_code == 422

    def test_create_in_progress_rejected(self, client):
        response = client.post("/api/v1/tasks", json={"title": "t", "status": "in_progress"})
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    def test_create_with_missing_parent(self, client):
        response = client.post("/api/v1/tasks", json={"title": "t", "parent_task_id": "nope"})
        assert response.status_code == 404

    def test_get_task(self, client, make_task):
        task = make_task()
        response = client.get(f"/api/v1/tasks/{task.task_id}")
        assert response.status_code == 200
        assert response.json()["task"]["title"] == "Echo test"

    def test_get_missing_task(self, client):
        response = client.get("/api/v1/tasks/does-not-exist")
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["details"]["task_id"] == "does-not-exist"

    def test_list_tasks_filtered(self, client, make_task):
        make_task(title="a", customer_id="c1")
        make_task(title="b", customer_id="c2")

        response = client.get("/api/v1/tasks", params={"customer_id": "c1"})

        assert response.status_code == 200
        body = response.json()
        assert [t["title"] for t in body["tasks"]] == ["a"]
        assert body["paging"] == {"limit": 50, "offset": 0}

    def test_update_task(self, client, make_task):
        task = make_task()
        response = client.put(f"/api/v1/tasks/{task.task_id}", json={"priority": "urgent"})
        assert response.status_code == 200
        assert response.json()["task"]["priority"] == "urgent"

    def test_update_title_rejected(self, client, make_task):
        task = make_task()
        response = client.put(f"/api/v1/tasks/{task.task_id}", json={"title": "renamed"})
        assert response.status_code == 422

    def test_update_empty_body(self, client, make_task):
        task = make_task()
        response = client.put(f"/api/v1/tasks/{task.task_id}", json={})
        assert response.status_code == 400

    def test_illegal_transition(self, client, make_task):
        task = make_task(status=TaskStatus.COMPLETED)
        response = client.put(f"/api/v1/tasks/{task.task_id}", json={"status": "created"})
        assert response.status_code == 409
        assert response.json()["details"]["current_status"] == "completed"

    def test_output_only_update_rejected(self, client, make_task, store):
        task = make_task(status=TaskStatus.COMPLETED, output={"result": "original"})

        response = client.put(f"/api/v1/tasks/{task.task_id}", json={"output": {"forged": True}})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert store.tasks[task.task_id].output == {"result": "original"}

    def test_approve(self, client, make_task):
        task = make_task(status=TaskStatus.REVIEW)
        response = client.post(f"/api/v1/tasks/{task.task_id}/approve", json={"approved_by": "ops"})
        assert response.status_code == 200
        assert response.json()["task"]["status"] == "assigned"

    def test_approve_not_in_review(self, client, make_task):
        task = make_task()
        response = client.post(f"/api/v1/tasks/{task.task_id}/approve", json={"approved_by": "ops"})
        assert response.status_code == 409
        assert response.json()["message"] == "Task is not in review status"

    def test_children(self, client, make_task):
        parent = make_task(title="parent")
        make_task(title="child", parent_task_id=parent.task_id)

        response = client.get(f"/api/v1/tasks/{parent.task_id}/children")

        assert response.status_code == 200
        assert response.json()["count"] == 1


# ============================================================================
# DISPATCH
# ============================================================================

class TestDispatchEndpoint:

    def test_local_echo(self, client, make_task):
        task = make_task(input={"q": 1})

        response = client.post(f"/api/v1/tasks/{task.task_id}/dispatch")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Task dispatched successfully"
        assert body["task"]["status"] == "completed"
        assert body["run"]["status"] == "completed"
        assert body["run"]["output"]["input_received"] == {"q": 1}

    def test_worker_id_from_body(self, client, make_task, store):
        task = make_task()
        response = client.post(f"/api/v1/tasks/{task.task_id}/dispatch", json={"worker_id": "console"})
        run_id = response.json()["run"]["run_id"]
        assert store.runs[run_id].worker_id == "console"

    def test_webhook_accepted(self, client, make_task, transport):
        task = make_task(executor="n8n:research")

        response = client.post(f"/api/v1/tasks/{task.task_id}/dispatch")

        assert response.status_code == 200
        assert response.json()["run"]["status"] == "running"
        assert response.json()["task"]["status"] == "in_progress"
        assert len(transport.requests) == 1

    def test_not_dispatchable(self, client, make_task):
        task = make_task(status=TaskStatus.COMPLETED)

        response = client.post(f"/api/v1/tasks/{task.task_id}/dispatch")

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "invalid_state"
        assert body["task"]["status"] == "completed"
        assert "rate_limit_reason" not in body

    def test_unknown_executor_failure_has_snapshots(self, client, make_task):
        task = make_task(executor="zapier:mail")

        response = client.post(f"/api/v1/tasks/{task.task_id}/dispatch")

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Unknown executor type: zapier:mail"
        assert body["run"]["status"] == "failed"
        assert body["task"]["status"] == "failed"

    def test_missing_task(self, client):
        response = client.post("/api/v1/tasks/nope/dispatch")
        assert response.status_code == 404


# ============================================================================
# RUNS
# ============================================================================

class TestRunEndpoints:

    def test_task_runs(self, client, make_task):
        task = make_task()
        client.post(f"/api/v1/tasks/{task.task_id}/dispatch")

        response = client.get(f"/api/v1/tasks/{task.task_id}/runs")

        assert response.status_code == 200
        assert [r["run_number"] for r in response.json()["runs"]] == [1]

    def test_recent_runs_status_csv(self, client, make_task, store):
        task = make_task()
        for n, status in enumerate([RunStatus.RUNNING, RunStatus.TIMEOUT, RunStatus.COMPLETED], 1):
            run = TaskRun(
                task_id=task.task_id,
                run_number=n,
                executor="claw:research",
                status=status,
                ended_at=None if status == RunStatus.RUNNING else utc_now(),
            )
            store.runs[run.run_id] = run

        response = client.get("/api/v1/runs", params={"status": "running,timeout", "executorPrefix": "claw:"})

        assert response.status_code == 200
        assert sorted(r["status"] for r in response.json()["runs"]) == ["running", "timeout"]

    def test_recent_runs_bad_status(self, client):
        response = client.get("/api/v1/runs", params={"status": "running,exploded"})
        assert response.status_code == 400

    def test_recent_runs_limit_bounds(self, client):
        assert client.get("/api/v1/runs", params={"limit": 0}).status_code == 422
        assert client.get("/api/v1/runs", params={"limit": 101}).status_code == 422


# ============================================================================
# PROGRESS
# ============================================================================

class TestProgressEndpoints:

    def test_report_and_read(self, client, make_task, store):
        task = make_task(executor="n8n:research")
        run_id = client.post(f"/api/v1/tasks/{task.task_id}/dispatch").json()["run"]["run_id"]
        body = {"progress": {
            "percent": 40,
            "current_step": "fetch",
            "steps": [{"id": "s1", "name": "fetch", "status": "running"}],
        }}

        response = client.post(f"/api/v1/tasks/{task.task_id}/progress", json=body)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["run_id"] == run_id
        assert store.runs[run_id].output["progress"]["current_step"] == "fetch"

        response = client.get(f"/api/v1/tasks/{task.task_id}/progress")
        assert response.status_code == 200
        assert response.json()["run_status"] == "running"
        assert response.json()["progress"]["percent"] == 40

    def test_report_without_running_run(self, client, make_task):
        task = make_task()
        client.post(f"/api/v1/tasks/{task.task_id}/dispatch")

        response = client.post(f"/api/v1/tasks/{task.task_id}/progress", json={"progress": {"percent": 5}})

        assert response.status_code == 404
        assert response.json()["details"] == {"task_id": task.task_id}

    def test_percent_bounds(self, client, make_task):
        task = make_task()
        response = client.post(f"/api/v1/tasks/{task.task_id}/progress", json={"progress": {"percent": 101}})
        assert response.status_code == 422

    def test_unknown_step_status(self, client, make_task):
        task = make_task()
        response = client.post(f"/api/v1/tasks/{task.task_id}/progress", json={
            "progress": {"steps": [{"id": "s1", "name": "fetch", "status": "skipped"}]},
        })
        assert response.status_code == 422

    def test_read_without_runs(self, client, make_task):
        task = make_task()
        response = client.get(f"/api/v1/tasks/{task.task_id}/progress")
        assert response.json() == {"progress": None, "run_status": None}

    def test_read_missing_task(self, client):
        assert client.get("/api/v1/tasks/missing/progress").status_code == 404


# ============================================================================
# CALLBACKS
# ============================================================================

class TestCallbackEndpoints:

    def _dispatch_webhook(self, client, make_task, executor="n8n:research"):
        task = make_task(executor=executor)
        body = client.post(f"/api/v1/tasks/{task.task_id}/dispatch").json()
        return task.task_id, body["run"]["run_id"]

    def test_n8n_success(self, client, make_task, store):
        task_id, run_id = self._dispatch_webhook(client, make_task)

        response = client.post("/api/v1/n8n/task-result", json={
            "task_id": task_id,
            "run_id": run_id,
            "success": True,
            "output": {"report": "done"},
        })

        assert response.status_code == 200
        assert response.json() == {
            "message": "Task completed",
            "task_id": task_id,
            "run_id": run_id,
            "status": "completed",
        }
        assert store.tasks[task_id].status == TaskStatus.COMPLETED

    def test_claw_failure(self, client, make_task, store):
        task_id, run_id = self._dispatch_webhook(client, make_task, executor="claw:research")

        response = client.post("/api/v1/claw/task-result", json={
            "task_id": task_id,
            "run_id": run_id,
            "success": False,
            "error": {"code": "agent_error", "message": "no sources"},
        })

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert store.runs[run_id].error == {"code": "agent_error", "message": "no sources"}

    def test_unknown_run(self, client, make_task):
        task = make_task()
        response = client.post("/api/v1/n8n/task-result", json={
            "task_id": task.task_id, "run_id": "nope", "success": True,
        })
        assert response.status_code == 404

    def test_duplicate_callback(self, client, make_task):
        task_id, run_id = self._dispatch_webhook(client, make_task)
        payload = {"task_id": task_id, "run_id": run_id, "success": True}

        assert client.post("/api/v1/n8n/task-result", json=payload).status_code == 200
        response = client.post("/api/v1/n8n/task-result", json=payload)

        assert response.status_code == 409

    def test_missing_success_field(self, client):
        response = client.post("/api/v1/n8n/task-result", json={"task_id": "t", "run_id": "r"})
        assert response.status_code == 422


# ============================================================================
# RECOVERY + ADMIN
# ============================================================================

class TestRecoveryAndAdmin:

    def test_retry(self, client, make_task):
        task = make_task(status=TaskStatus.FAILED)
        response = client.post("/api/v1/recovery/retry", json={"task_id": task.task_id})
        assert response.status_code == 200
        assert response.json()["task"]["status"] == "created"

    def test_retry_requires_identifier(self, client):
        response = client.post("/api/v1/recovery/retry", json={})
        assert response.status_code == 422

    def test_retry_not_failed(self, client, make_task):
        task = make_task()
        response = client.post("/api/v1/recovery/retry", json={"task_id": task.task_id})
        assert response.status_code == 409

    def test_reaper_run(self, client, make_task, store):
        task_id, run_id = TestCallbackEndpoints()._dispatch_webhook(client, make_task)

        response = client.post("/api/v1/admin/reaper/run", json={"older_than_minutes": 0})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Reaper executed successfully"
        assert body["reaped"] == 1
        assert body["run_ids"] == [run_id]
        assert store.runs[run_id].status == RunStatus.TIMEOUT
        assert store.tasks[task_id].status == TaskStatus.FAILED

    def test_reaper_run_without_body(self, client):
        response = client.post("/api/v1/admin/reaper/run")
        assert response.status_code == 200
        assert response.json()["reaped"] == 0

    def test_reaper_negative_threshold(self, client):
        response = client.post("/api/v1/admin/reaper/run", json={"older_than_minutes": -5})
        assert response.status_code == 422

    def test_reaper_status(self, client):
        response = client.get("/api/v1/admin/reaper/status")
        assert response.status_code == 200
        assert response.json()["running"] is False


# ============================================================================
# HEALTH
# ============================================================================

class _StaticCheck(HealthCheckPlugin):
    def __init__(self, name, healthy):
        self.name = name
        self._healthy = healthy

    async def check(self) -> HealthCheckResult:
        if self._healthy:
            return HealthCheckResult.healthy("ok")
        return HealthCheckResult.unhealthy("down")


class TestHealth:

    def test_livez(self, client):
        response = client.get("/livez")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readyz_before_startup(self, client):
        set_health_checks([])
        assert client.get("/readyz").status_code == 503

    def test_readyz_healthy(self, client):
        set_health_checks([_StaticCheck("postgres", True), _StaticCheck("reaper", True)])

        response = client.get("/readyz")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert set(response.json()["checks"]) == {"postgres", "reaper"}

    def test_readyz_unhealthy(self, client):
        set_health_checks([_StaticCheck("postgres", True), _StaticCheck("reaper", False)])

        response = client.get("/readyz")

        assert response.status_code == 503
        assert response.json()["checks"]["reaper"]["status"] == "unhealthy"
