# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across all components
# CREATED: 19 OCT 2026
# ============================================================================
"""
Structured Logging

Provides structured, JSON-formatted logging for the dispatch engine.

Features:
- Contextual fields (task_id, run_id, customer_id, executor, worker_id)
- Context is held in a ContextVar, so concurrent coroutines (a dispatch
  request, a callback and the reaper sweep) each see their own fields
- JSON output for log aggregation (LOG_FORMAT=json)
- Named checkpoints for lifecycle milestones

Usage:
    from core.logging import get_logger, log_context

    logger = get_logger(__name__)

    with log_context(task_id=task.task_id, run_id=run.run_id):
        logger.info("Run started")
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, Optional, Union

from core.contracts import utc_now


@dataclass(frozen=True)
class LogContext:
    """
    Context for structured logging.

    Immutable; nested log_context() calls build a new one from the parent.
    """
    task_id: Optional[str] = None
    run_id: Optional[str] = None
    customer_id: Optional[str] = None
    executor: Optional[str] = None
    worker_id: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None and key != "extra":
                result[key] = value
        if self.extra:
            result.update(self.extra)
        return result


_current_context: ContextVar[LogContext] = ContextVar("dispatch_log_context", default=LogContext())

_CONTEXT_FIELDS = ("task_id", "run_id", "customer_id", "executor", "worker_id", "operation")


def get_current_context() -> LogContext:
    """Get current logging context."""
    return _current_context.get()


@contextmanager
def log_context(**kwargs):
    """
    Context manager for adding logging context.

    Unknown keyword arguments land in ``extra``.

    Example:
        with log_context(task_id="t-1", executor="claw:research"):
            logger.info("Dispatching")
    """
    parent = get_current_context()
    known = {k: v for k, v in kwargs.items() if k in _CONTEXT_FIELDS and v is not None}
    unknown = {k: v for k, v in kwargs.items() if k not in _CONTEXT_FIELDS and k != "extra"}
    extra = {**parent.extra, **kwargs.get("extra", {}), **unknown}

    new_context = replace(parent, extra=extra, **known)
    token = _current_context.set(new_context)
    try:
        yield new_context
    finally:
        _current_context.reset(token)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON for easy parsing by log aggregators.
    """

    def __init__(self, include_context: bool = True, include_source: bool = True):
        super().__init__()
        self.include_context = include_context
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": utc_now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_context:
            context_dict = get_current_context().to_dict()
            if context_dict:
                log_data["context"] = context_dict

        if hasattr(record, "extra") and record.extra:
            log_data["data"] = record.extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_source:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Includes context fields inline for easy reading.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = utc_now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname.ljust(8)

        context = get_current_context()
        context_parts = []
        if context.task_id:
            context_parts.append(f"task={context.task_id}")
        if context.run_id:
            context_parts.append(f"run={context.run_id}")
        if context.executor:
            context_parts.append(f"executor={context.executor}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        extra_str = ""
        if hasattr(record, "extra") and record.extra:
            extra_str = f" {record.extra}"

        result = f"{timestamp} {level} {record.name}{context_str}: {record.getMessage()}{extra_str}"

        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"

        return result


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that includes context in log records.

    Automatically includes the current log_context() in all log messages.
    """

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.update(get_current_context().to_dict())

        # Stored as record.extra for formatter access
        kwargs["extra"] = {"extra": extra}

        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        ContextLogger instance
    """
    return ContextLogger(logging.getLogger(name), {})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    include_source: bool = True,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format (for production)
        include_source: Include source file/line info in JSON output
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter = StructuredFormatter(include_context=True, include_source=include_source)
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named lifecycle checkpoint.

    Checkpoints are named markers (run_started, run_completed, run_failed,
    run_timeout, rate_limited) that can be queried to reconstruct what
    happened to a task.

    Args:
        name: Checkpoint name
        data: Optional checkpoint data
        logger: Optional specific logger to use
    """
    if logger is None:
        logger = logging.getLogger("checkpoint")

    checkpoint_data = {
        "checkpoint": name,
        "timestamp": utc_now().isoformat(),
    }
    checkpoint_data.update(get_current_context().to_dict())

    if data:
        checkpoint_data["data"] = data

    logger.info(f"CHECKPOINT: {name}", extra={"extra": checkpoint_data})


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
