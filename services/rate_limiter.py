# ============================================================================
# RATE LIMITER
# ============================================================================
# STATUS: Core - Dispatch admission control
# PURPOSE: Per-customer concurrency and hourly quotas for restricted executors
# CREATED: 19 OCT 2026
# ============================================================================
"""
Rate Limiter

Applies only to restricted executors (the ``claw:`` backend). Checks run
in order and the first failure wins:

    1. concurrency     RUNNING runs for the customer  < max_concurrent_per_customer
    2. customer hourly runs queued in the last hour    < max_per_customer_per_hour
    3. global hourly   runs queued in the last hour    < max_global_per_hour

Customer-scoped checks are skipped for tasks without a customer.

When counting fails the on_error policy decides: ALLOW (fail open, the
default) lets the dispatch through; DENY refuses it with reason
limiter_error.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from core.config import DispatchConfig, RateLimitErrorPolicy, RESTRICTED_BACKEND
from core.contracts import utc_now
from core.errors import RateLimitReason, RateLimitScope
from repositories import RunRepository

logger = logging.getLogger(__name__)

QUOTA_WINDOW = timedelta(hours=1)


@dataclass
class RateLimitResult:
    """Decision for one dispatch attempt."""
    allowed: bool
    reason: Optional[RateLimitReason] = None
    scope: Optional[RateLimitScope] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls) -> "RateLimitResult":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        reason: RateLimitReason,
        scope: RateLimitScope,
        **details: Any,
    ) -> "RateLimitResult":
        return cls(allowed=False, reason=reason, scope=scope, details=details)


class RateLimiter:
    """Admission control for restricted executors."""

    def __init__(
        self,
        run_repo: RunRepository,
        config: DispatchConfig,
        on_error: Optional[RateLimitErrorPolicy] = None,
    ):
        """
        Args:
            run_repo: Source of run counts
            config: Limits
            on_error: Policy when counting fails (default: config.rate_limit_on_error)
        """
        self._runs = run_repo
        self.config = config
        self.on_error = on_error or config.rate_limit_on_error

    def applies_to(self, executor: str) -> bool:
        return self.config.is_restricted(executor)

    async def check_limits(
        self,
        customer_id: Optional[str],
        executor: str,
        now: Optional[datetime] = None,
    ) -> RateLimitResult:
        """
        Decide whether a dispatch of ``executor`` for ``customer_id`` may proceed.
        """
        if not self.applies_to(executor):
            return RateLimitResult.allow()

        now = now or utc_now()
        window_start = now - QUOTA_WINDOW
        prefix = f"{RESTRICTED_BACKEND}:"

        try:
            if customer_id:
                running = await self._runs.count_running_for_customer(customer_id, prefix)
                limit = self.config.max_concurrent_per_customer
                if running >= limit:
                    return RateLimitResult.deny(
                        RateLimitReason.CONCURRENT_LIMIT,
                        RateLimitScope.CUSTOMER,
                        customer_id=customer_id,
                        current=running,
                        limit=limit,
                    )

                hourly = await self._runs.count_queued_since(window_start, prefix, customer_id=customer_id)
                limit = self.config.max_per_customer_per_hour
                if hourly >= limit:
                    return RateLimitResult.deny(
                        RateLimitReason.HOURLY_LIMIT,
                        RateLimitScope.CUSTOMER,
                        customer_id=customer_id,
                        current=hourly,
                        limit=limit,
                    )

            global_hourly = await self._runs.count_queued_since(window_start, prefix)
            limit = self.config.max_global_per_hour
            if global_hourly >= limit:
                return RateLimitResult.deny(
                    RateLimitReason.HOURLY_LIMIT,
                    RateLimitScope.GLOBAL,
                    current=global_hourly,
                    limit=limit,
                )

        except Exception as e:
            if self.on_error == RateLimitErrorPolicy.DENY:
                logger.error(f"Rate limit check failed, denying {executor}: {e}")
                return RateLimitResult.deny(
                    RateLimitReason.LIMITER_ERROR,
                    RateLimitScope.GLOBAL,
                    error=str(e),
                )
            logger.error(f"Rate limit check failed, allowing {executor} (fail-open): {e}")
            return RateLimitResult.allow()

        return RateLimitResult.allow()


__all__ = ["RateLimiter", "RateLimitResult", "QUOTA_WINDOW"]
