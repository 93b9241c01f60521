# ============================================================================
# HEALTH CHECK CORE TYPES
# ============================================================================
# STATUS: Infrastructure - Base classes for health checks
# PURPOSE: Health check interface, result types and timed execution
# CREATED: 19 OCT 2026
# ============================================================================
"""
Health Check Core Types

Status Hierarchy (worst wins):
- healthy: operational
- unhealthy: blocks readiness
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health check status values."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def aggregate(cls, statuses: List["HealthStatus"]) -> "HealthStatus":
        """Aggregate multiple statuses (worst wins)."""
        if any(s == cls.UNHEALTHY for s in statuses):
            return cls.UNHEALTHY
        return cls.HEALTHY


@dataclass
class HealthCheckResult:
    """Result from a single health check."""
    status: HealthStatus
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @classmethod
    def healthy(cls, message: str = None, **details) -> "HealthCheckResult":
        return cls(status=HealthStatus.HEALTHY, message=message, details=details)

    @classmethod
    def unhealthy(cls, message: str, **details) -> "HealthCheckResult":
        return cls(status=HealthStatus.UNHEALTHY, message=message, details=details)

    @classmethod
    def from_exception(cls, e: Exception) -> "HealthCheckResult":
        return cls(
            status=HealthStatus.UNHEALTHY,
            message=str(e),
            details={"exception_type": type(e).__name__},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result = {
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.message:
            result["message"] = self.message
        if self.details:
            result["details"] = self.details
        return result


class HealthCheckPlugin(ABC):
    """
    Base class for health checks.

    Attributes:
        name: Unique identifier for the check
        timeout_seconds: Max execution time before timeout
    """

    name: str = "unnamed"
    timeout_seconds: float = 5.0

    @abstractmethod
    async def check(self) -> HealthCheckResult:
        pass


async def run_check(check: HealthCheckPlugin) -> HealthCheckResult:
    """Execute a single check with timeout. Never raises."""
    start_time = time.monotonic()

    try:
        result = await asyncio.wait_for(check.check(), timeout=check.timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Health check {check.name} timed out after {check.timeout_seconds}s")
        result = HealthCheckResult.unhealthy(f"Timeout after {check.timeout_seconds}s")
    except Exception as e:
        logger.error(f"Health check {check.name} failed: {e}")
        result = HealthCheckResult.from_exception(e)

    result.duration_ms = (time.monotonic() - start_time) * 1000
    return result


async def run_checks(checks: List[HealthCheckPlugin]) -> Dict[str, HealthCheckResult]:
    """Run checks concurrently."""
    results = await asyncio.gather(*(run_check(c) for c in checks))
    return {c.name: r for c, r in zip(checks, results)}


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HealthStatus",
    "HealthCheckResult",
    "HealthCheckPlugin",
    "run_check",
    "run_checks",
]
