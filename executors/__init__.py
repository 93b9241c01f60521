# ============================================================================
# EXECUTORS MODULE
# ============================================================================
# STATUS: Core - Executor adapters
# PURPOSE: Execution backends selected by executor prefix
# CREATED: 19 OCT 2026
# ============================================================================
"""
Executors Module

Importing this package registers the built-in backends:

    local:echo        synchronous, completes in-process
    n8n:<variant>     webhook, completes by callback
    claw:<variant>    webhook, allowlisted and rate limited
"""

from .base import ExecutionOutcome, Executor, ExecutorContext, OutcomeKind
from .registry import (
    DuplicateExecutorError,
    UnknownExecutor,
    get_executor,
    is_registered,
    list_backends,
    parse_executor,
    register_executor,
)
from . import local  # noqa: F401  (registers "local")
from . import webhook  # noqa: F401  (registers "n8n", "claw")
from .local import LocalEchoExecutor
from .webhook import ClawWebhookExecutor, N8nWebhookExecutor, WebhookExecutor

__all__ = [
    "ExecutionOutcome",
    "Executor",
    "ExecutorContext",
    "OutcomeKind",
    "DuplicateExecutorError",
    "UnknownExecutor",
    "get_executor",
    "is_registered",
    "list_backends",
    "parse_executor",
    "register_executor",
    "LocalEchoExecutor",
    "WebhookExecutor",
    "N8nWebhookExecutor",
    "ClawWebhookExecutor",
]
