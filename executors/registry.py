# ============================================================================
# EXECUTOR REGISTRY
# ============================================================================
# STATUS: Core - Executor registration and lookup
# PURPOSE: Route "<backend>:<variant>" identifiers to executor adapters
# CREATED: 19 OCT 2026
# ============================================================================
"""
Executor Registry

Executors are registered at import time via decorator, keyed by backend
prefix. Lookup never fails: an unregistered backend resolves to
UnknownExecutor, which fails the run with unknown_executor.

Design:
- Registry is a simple dict (backend -> executor class)
- Fail-fast on duplicate registration
"""

import logging
from typing import Callable, Dict, List, Tuple, Type

from core.errors import ErrorCode
from .base import ExecutionOutcome, Executor, ExecutorContext

logger = logging.getLogger(__name__)


class DuplicateExecutorError(Exception):
    """Raised when a backend is already registered."""
    def __init__(self, backend: str):
        self.backend = backend
        super().__init__(f"Executor backend already registered: {backend}")


_executors: Dict[str, Type[Executor]] = {}


def register_executor(backend: str) -> Callable[[Type[Executor]], Type[Executor]]:
    """
    Class decorator registering an executor for a backend prefix.

    Example:
        @register_executor("n8n")
        class N8nWebhookExecutor(WebhookExecutor):
            ...
    """
    def decorator(cls: Type[Executor]) -> Type[Executor]:
        if backend in _executors:
            raise DuplicateExecutorError(backend)
        cls.backend = backend
        _executors[backend] = cls
        logger.debug(f"Registered executor: {backend} -> {cls.__name__}")
        return cls

    return decorator


def parse_executor(identifier: str) -> Tuple[str, str]:
    """
    Split ``"<backend>:<variant>"``.

    A missing variant yields an empty string: ``parse_executor("n8n")`` is
    ``("n8n", "")``.
    """
    backend, _, variant = (identifier or "").partition(":")
    return backend.strip(), variant.strip()


class UnknownExecutor(Executor):
    """Fallback for unregistered backends. Fails without side effects."""

    async def execute(self, ctx: ExecutorContext) -> ExecutionOutcome:
        return ExecutionOutcome.failed(
            ErrorCode.UNKNOWN_EXECUTOR,
            f"Unknown executor type: {ctx.run.executor}",
        )


def get_executor(identifier: str) -> Executor:
    """Instantiate the executor for an identifier's backend."""
    backend, _ = parse_executor(identifier)
    executor_cls = _executors.get(backend, UnknownExecutor)
    return executor_cls()


def is_registered(identifier: str) -> bool:
    backend, _ = parse_executor(identifier)
    return backend in _executors


def list_backends() -> List[str]:
    """All registered backend prefixes."""
    return sorted(_executors)


def unregister_executor(backend: str) -> bool:
    """Remove a registration (for testing)."""
    return _executors.pop(backend, None) is not None


__all__ = [
    "DuplicateExecutorError",
    "register_executor",
    "parse_executor",
    "UnknownExecutor",
    "get_executor",
    "is_registered",
    "list_backends",
    "unregister_executor",
]
