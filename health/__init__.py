# ============================================================================
# HEALTH CHECK MODULE
# ============================================================================
# STATUS: Infrastructure - Health checks
# PURPOSE: Kubernetes probes
# CREATED: 19 OCT 2026
# ============================================================================
"""
Health Check Module

- /livez: Process alive (instant, for Kubernetes liveness probe)
- /readyz: Database reachable and reaper loop running

Usage:
    from health import health_router, set_health_checks, PostgresCheck, ReaperCheck

    set_health_checks([PostgresCheck(pool), ReaperCheck(reaper)])
    app.include_router(health_router)
"""

from health.core import (
    HealthStatus,
    HealthCheckResult,
    HealthCheckPlugin,
    run_checks,
)
from health.checks import PostgresCheck, ReaperCheck
from health.router import health_router, set_health_checks

__all__ = [
    "HealthStatus",
    "HealthCheckResult",
    "HealthCheckPlugin",
    "run_checks",
    "PostgresCheck",
    "ReaperCheck",
    "health_router",
    "set_health_checks",
]
