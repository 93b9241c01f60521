# ============================================================================
# LOCAL EXECUTOR
# ============================================================================
# STATUS: Executor - Synchronous in-process execution
# PURPOSE: local:echo - completes immediately with a structured echo
# CREATED: 19 OCT 2026
# ============================================================================
"""
Local Executor

Runs in-process and completes before dispatch returns. Useful for
smoke-testing the dispatch path end to end.
"""

from core.errors import ErrorCode
from .base import ExecutionOutcome, Executor, ExecutorContext
from .registry import register_executor

ECHO_VARIANT = "echo"


@register_executor("local")
class LocalEchoExecutor(Executor):
    """
    Echo the run's input back as output.

    Output:
        {echo: true, input_received: <input>, executor, message}
    """

    synchronous = True

    async def execute(self, ctx: ExecutorContext) -> ExecutionOutcome:
        if ctx.variant != ECHO_VARIANT:
            return ExecutionOutcome.failed(
                ErrorCode.UNKNOWN_EXECUTOR,
                f"Unknown executor type: {ctx.run.executor}",
            )

        return ExecutionOutcome.completed({
            "echo": True,
            "input_received": ctx.run.input_snapshot,
            "executor": ctx.run.executor,
            "message": "Local echo completed successfully",
        })


__all__ = ["LocalEchoExecutor", "ECHO_VARIANT"]
