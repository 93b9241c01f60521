# ============================================================================
# WEBHOOK EXECUTORS
# ============================================================================
# STATUS: Executor - Asynchronous webhook-triggered execution
# PURPOSE: n8n and claw backends: fire one POST, completion arrives by callback
# CREATED: 19 OCT 2026
# ============================================================================
"""
Webhook Executors

Fire one outbound POST carrying the task, the run and a callback URL.
A 2xx response means the remote system accepted the work: the run stays
RUNNING until the callback (or the reaper) finalizes it. Anything else is
a transport failure recorded on the run immediately.

The claw backend is restricted: only allowlisted variants are triggered,
and the check happens before any network traffic.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, Optional

import httpx

from core.errors import ErrorCode
from .base import ExecutionOutcome, Executor, ExecutorContext
from .registry import register_executor

logger = logging.getLogger(__name__)


class WebhookExecutor(Executor):
    """Shared POST + error mapping for webhook backends."""

    label: str = "Webhook"

    @abstractmethod
    def webhook_url(self, ctx: ExecutorContext) -> Optional[str]:
        """Target URL, or None when the backend is not configured."""

    @abstractmethod
    def url_setting(self) -> str:
        """Name of the setting that holds the URL, for error messages."""

    @abstractmethod
    def build_payload(self, ctx: ExecutorContext) -> Dict[str, Any]:
        """JSON body of the POST."""

    def build_headers(self, ctx: ExecutorContext) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def execute(self, ctx: ExecutorContext) -> ExecutionOutcome:
        url = self.webhook_url(ctx)
        if not url:
            return ExecutionOutcome.failed(
                ErrorCode.EXECUTOR_NOT_CONFIGURED,
                f"{self.url_setting()} not configured",
            )

        payload = self.build_payload(ctx)
        headers = self.build_headers(ctx)

        try:
            if ctx.http_client is not None:
                response = await ctx.http_client.post(url, json=payload, headers=headers)
            else:
                timeout = httpx.Timeout(ctx.config.webhook_timeout_seconds)
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"{self.label} timeout for run {ctx.run.run_id}: {e}")
            return ExecutionOutcome.failed(
                ErrorCode.TRANSPORT_FAILURE,
                f"{self.label} request timed out: {e}",
            )
        except httpx.HTTPError as e:
            logger.error(f"{self.label} unreachable for run {ctx.run.run_id}: {e}")
            return ExecutionOutcome.failed(
                ErrorCode.TRANSPORT_FAILURE,
                str(e) or type(e).__name__,
            )

        if not response.is_success:
            logger.warning(
                f"{self.label} rejected run {ctx.run.run_id}: HTTP {response.status_code}"
            )
            return ExecutionOutcome.failed(
                ErrorCode.TRANSPORT_FAILURE,
                f"{self.label} returned {response.status_code}",
            )

        logger.info(f"{self.label} accepted run {ctx.run.run_id} ({ctx.run.executor})")
        return ExecutionOutcome.accepted()


@register_executor("n8n")
class N8nWebhookExecutor(WebhookExecutor):
    """n8n workflows. Any variant is accepted."""

    label = "Webhook"

    def webhook_url(self, ctx: ExecutorContext) -> Optional[str]:
        return ctx.config.n8n_webhook_url

    def url_setting(self) -> str:
        return "N8N_WEBHOOK_URL"

    def build_headers(self, ctx: ExecutorContext) -> Dict[str, str]:
        headers = super().build_headers(ctx)
        headers["ngrok-skip-browser-warning"] = "true"
        return headers

    def build_payload(self, ctx: ExecutorContext) -> Dict[str, Any]:
        return {
            "task_id": ctx.task.task_id,
            "run_id": ctx.run.run_id,
            "executor": ctx.run.executor,
            "title": ctx.task.title,
            "input": ctx.run.input_snapshot,
            "customer_id": ctx.task.customer_id,
            "callback_url": ctx.config.n8n_callback_url,
        }


@register_executor("claw")
class ClawWebhookExecutor(WebhookExecutor):
    """
    Research/content agents behind the claw hook.

    Restricted: the variant must be on the allowlist, and dispatches are
    rate limited before they get here.
    """

    label = "OpenClaw hook"

    def webhook_url(self, ctx: ExecutorContext) -> Optional[str]:
        return ctx.config.claw_hook_url

    def url_setting(self) -> str:
        return "OPENCLAW_HOOK_URL"

    def build_headers(self, ctx: ExecutorContext) -> Dict[str, str]:
        headers = super().build_headers(ctx)
        if ctx.config.claw_hook_token:
            headers["Authorization"] = f"Bearer {ctx.config.claw_hook_token}"
        return headers

    def build_payload(self, ctx: ExecutorContext) -> Dict[str, Any]:
        return {
            "task_id": ctx.task.task_id,
            "run_id": ctx.run.run_id,
            "agent_id": ctx.variant,
            "prompt": ctx.task.title,
            "input": ctx.run.input_snapshot,
            "customer_id": ctx.task.customer_id,
            "callback_url": ctx.config.claw_callback_url,
        }

    async def execute(self, ctx: ExecutorContext) -> ExecutionOutcome:
        if not ctx.config.is_allowed(ctx.run.executor):
            allowed = ", ".join(ctx.config.claw_allowlist)
            return ExecutionOutcome.failed(
                ErrorCode.EXECUTOR_NOT_ALLOWED,
                f"Claw executor not allowed: {ctx.run.executor}. Allowed: {allowed}",
            )
        return await super().execute(ctx)


__all__ = ["WebhookExecutor", "N8nWebhookExecutor", "ClawWebhookExecutor"]
