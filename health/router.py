# ============================================================================
# HEALTH CHECK ROUTER
# ============================================================================
# STATUS: Infrastructure - FastAPI health check endpoints
# PURPOSE: Kubernetes probes
# CREATED: 19 OCT 2026
# ============================================================================
"""
Health Check Router

Endpoints:
    GET /livez   - Liveness probe (is the process alive?)
                   No external checks.

    GET /readyz  - Readiness probe (can we accept work?)
                   Runs the configured checks; 503 if any is unhealthy.
"""

import logging
from typing import List

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from health.core import HealthCheckPlugin, HealthStatus, run_checks
from __version__ import __version__, BUILD_DATE

logger = logging.getLogger(__name__)

health_router = APIRouter(tags=["Health"])

# Set by the main app at startup
_checks: List[HealthCheckPlugin] = []


def set_health_checks(checks: List[HealthCheckPlugin]) -> None:
    global _checks
    _checks = list(checks)


# ============================================================================
# LIVENESS PROBE
# ============================================================================

@health_router.get("/livez")
async def liveness_probe():
    """
    Kubernetes liveness probe.

    Returns 200 if the process is alive.
    """
    return {"status": "alive", "version": __version__, "build_date": BUILD_DATE}


# ============================================================================
# READINESS PROBE
# ============================================================================

@health_router.get("/readyz")
async def readiness_probe():
    """
    Kubernetes readiness probe.

    Database reachable and reaper running.
    """
    if not _checks:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "message": "Startup not complete"},
        )

    results = await run_checks(_checks)
    status = HealthStatus.aggregate([r.status for r in results.values()])
    body = {
        "status": "ready" if status == HealthStatus.HEALTHY else "not_ready",
        "checks": {name: r.to_dict() for name, r in results.items()},
    }

    if status == HealthStatus.UNHEALTHY:
        logger.warning(f"Readiness failed: {[n for n, r in results.items() if r.status == HealthStatus.UNHEALTHY]}")
        return JSONResponse(status_code=503, content=body)
    return body


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "health_router",
    "set_health_checks",
]
