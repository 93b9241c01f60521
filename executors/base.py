# ============================================================================
# EXECUTOR BASE TYPES
# ============================================================================
# STATUS: Core - Executor contract
# PURPOSE: Context, outcome and abstract base for executor adapters
# CREATED: 19 OCT 2026
# ============================================================================
"""
Executor Base Types

Every executor adapter implements one contract:

    async def execute(ctx: ExecutorContext) -> ExecutionOutcome

and never raises for execution problems. The dispatcher turns the outcome
into run/task writes:

    COMPLETED -> run completed, task completed with output
    ACCEPTED  -> run stays running, task stays in_progress (callback pending)
    FAILED    -> run failed with error, task failed
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

import httpx

from core.config import DispatchConfig
from core.errors import ErrorCode
from core.models import RunError, Task, TaskRun


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    ACCEPTED = "accepted"
    FAILED = "failed"


@dataclass
class ExecutionOutcome:
    """Result of handing one run to an executor."""
    kind: OutcomeKind
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[RunError] = None

    @property
    def is_failure(self) -> bool:
        return self.kind == OutcomeKind.FAILED

    @classmethod
    def completed(cls, output: Optional[Dict[str, Any]] = None) -> "ExecutionOutcome":
        return cls(kind=OutcomeKind.COMPLETED, output=output or {})

    @classmethod
    def accepted(cls) -> "ExecutionOutcome":
        return cls(kind=OutcomeKind.ACCEPTED)

    @classmethod
    def failed(cls, code: ErrorCode, message: str) -> "ExecutionOutcome":
        return cls(kind=OutcomeKind.FAILED, error=RunError.of(code, message))


@dataclass
class ExecutorContext:
    """
    Everything an executor needs for one run.

    The task is the state right after the dispatch claim; run.input_snapshot
    is what gets sent.
    """
    task: Task
    run: TaskRun
    config: DispatchConfig
    http_client: Optional[httpx.AsyncClient] = None

    @property
    def variant(self) -> str:
        """Variant part of the executor identifier (``research`` for ``claw:research``)."""
        _, _, variant = self.run.executor.partition(":")
        return variant


class Executor(ABC):
    """
    Abstract executor adapter.

    Subclasses set ``backend`` and register with @register_executor.
    """

    backend: ClassVar[str] = ""
    synchronous: ClassVar[bool] = False

    @abstractmethod
    async def execute(self, ctx: ExecutorContext) -> ExecutionOutcome:
        """Execute (or trigger) one run. Must not raise for execution failures."""
        raise NotImplementedError


__all__ = [
    "OutcomeKind",
    "ExecutionOutcome",
    "ExecutorContext",
    "Executor",
]
