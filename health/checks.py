# ============================================================================
# HEALTH CHECKS
# ============================================================================
# STATUS: Infrastructure - Readiness checks
# PURPOSE: Database connectivity and reaper loop state
# CREATED: 19 OCT 2026
# ============================================================================
"""
Health Checks

- postgres: SELECT 1 through the shared pool
- reaper: background sweep loop is running
"""

import logging

from psycopg_pool import AsyncConnectionPool

from health.core import HealthCheckPlugin, HealthCheckResult

logger = logging.getLogger(__name__)


class PostgresCheck(HealthCheckPlugin):
    """PostgreSQL connectivity through the application pool."""

    name = "postgres"
    timeout_seconds = 5.0

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def check(self) -> HealthCheckResult:
        if self.pool is None:
            return HealthCheckResult.unhealthy("Connection pool not initialized")

        async with self.pool.connection() as conn:
            result = await conn.execute("SELECT 1")
            row = await result.fetchone()

        if row and row[0] == 1:
            stats = self.pool.get_stats()
            return HealthCheckResult.healthy(
                "PostgreSQL connected",
                pool_size=stats.get("pool_size"),
                pool_available=stats.get("pool_available"),
            )
        return HealthCheckResult.unhealthy("PostgreSQL query returned unexpected result")


class ReaperCheck(HealthCheckPlugin):
    """Stuck-run reaper loop is alive."""

    name = "reaper"
    timeout_seconds = 1.0

    def __init__(self, reaper):
        self.reaper = reaper

    async def check(self) -> HealthCheckResult:
        if self.reaper is None:
            return HealthCheckResult.unhealthy("Reaper not initialized")

        stats = self.reaper.stats
        if not stats["running"]:
            return HealthCheckResult.unhealthy("Reaper loop not running", **stats)
        return HealthCheckResult.healthy(
            "Reaper running",
            sweeps=stats["sweeps"],
            total_reaped=stats["total_reaped"],
            last_sweep_at=stats["last_sweep_at"],
        )


__all__ = ["PostgresCheck", "ReaperCheck"]
