# ============================================================================
# RATE LIMITER TESTS
# ============================================================================
# STATUS: Tests - Admission control
# PURPOSE: Verify check order, customer scoping and the on-error policy
# CREATED: 19 OCT 2026
# ============================================================================
"""
Rate Limiter Tests

The run repository is replaced by an AsyncMock so each count can be set
independently.

Run with:
    pytest tests/test_rate_limiter.py -v
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from core.config import RateLimitErrorPolicy
from core.errors import RateLimitReason, RateLimitScope
from services import RateLimiter
from services.rate_limiter import QUOTA_WINDOW


def _repo(running=0, customer_hourly=0, global_hourly=0):
    repo = AsyncMock()
    repo.count_running_for_customer.return_value = running

    async def count_queued_since(since, prefix, customer_id=None):
        return customer_hourly if customer_id else global_hourly

    repo.count_queued_since.side_effect = count_queued_since
    return repo


# ============================================================================
# SCOPE
# ============================================================================

class TestScope:

    @pytest.mark.parametrize("executor", ["local:echo", "n8n:research", "clawx:research"])
    def test_unrestricted_executors_skip_counting(self, executor, config):
        repo = _repo(running=99, customer_hourly=99, global_hourly=99)
        limiter = RateLimiter(repo, config)

        result = asyncio.run(limiter.check_limits("cust-1", executor))

        assert result.allowed
        repo.count_running_for_customer.assert_not_called()
        repo.count_queued_since.assert_not_called()

    def test_restricted_under_limits(self, config):
        limiter = RateLimiter(_repo(running=2, customer_hourly=19, global_hourly=59), config)
        result = asyncio.run(limiter.check_limits("cust-1", "claw:research"))
        assert result.allowed
        assert result.reason is None


# ============================================================================
# CHECK ORDER
# ============================================================================

class TestCheckOrder:

    def test_concurrency_checked_first(self, config):
        limiter = RateLimiter(_repo(running=3, customer_hourly=50, global_hourly=100), config)

        result = asyncio.run(limiter.check_limits("cust-1", "claw:research"))

        assert not result.allowed
        assert result.reason == RateLimitReason.CONCURRENT_LIMIT
        assert result.scope == RateLimitScope.CUSTOMER
        assert result.details == {"customer_id": "cust-1", "current": 3, "limit": 3}

    def test_customer_hourly_before_global(self, config):
        limiter = RateLimiter(_repo(running=0, customer_hourly=20, global_hourly=100), config)

        result = asyncio.run(limiter.check_limits("cust-1", "claw:content"))

        assert result.reason == RateLimitReason.HOURLY_LIMIT
        assert result.scope == RateLimitScope.CUSTOMER
        assert result.details["limit"] == 20

    def test_global_hourly(self, config):
        limiter = RateLimiter(_repo(global_hourly=60), config)

        result = asyncio.run(limiter.check_limits("cust-1", "claw:research"))

        assert result.reason == RateLimitReason.HOURLY_LIMIT
        assert result.scope == RateLimitScope.GLOBAL
        assert "customer_id" not in result.details

    def test_no_customer_only_global_counted(self, config):
        repo = _repo(running=99, customer_hourly=99, global_hourly=0)
        limiter = RateLimiter(repo, config)

        result = asyncio.run(limiter.check_limits(None, "claw:research"))

        assert result.allowed
        repo.count_running_for_customer.assert_not_called()
        repo.count_queued_since.assert_awaited_once()

    def test_window_is_one_hour_back(self, config):
        repo = _repo()
        limiter = RateLimiter(repo, config)
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

        asyncio.run(limiter.check_limits("cust-1", "claw:research", now=now))

        since = repo.count_queued_since.await_args_list[0].args[0]
        assert since == now - QUOTA_WINDOW

    def test_limits_come_from_config(self, config):
        tight = config.with_overrides(max_concurrent_per_customer=1)
        limiter = RateLimiter(_repo(running=1), tight)

        result = asyncio.run(limiter.check_limits("cust-1", "claw:research"))

        assert result.reason == RateLimitReason.CONCURRENT_LIMIT


# ============================================================================
# COUNTING FAILURES
# ============================================================================

class TestOnErrorPolicy:

    def _broken_repo(self):
        repo = AsyncMock()
        repo.count_running_for_customer.side_effect = RuntimeError("pool exhausted")
        return repo

    def test_fail_open_by_default(self, config):
        limiter = RateLimiter(self._broken_repo(), config)
        assert limiter.on_error == RateLimitErrorPolicy.ALLOW

        result = asyncio.run(limiter.check_limits("cust-1", "claw:research"))

        assert result.allowed

    def test_fail_closed(self, config):
        limiter = RateLimiter(self._broken_repo(), config, on_error=RateLimitErrorPolicy.DENY)

        result = asyncio.run(limiter.check_limits("cust-1", "claw:research"))

        assert not result.allowed
        assert result.reason == RateLimitReason.LIMITER_ERROR
        assert result.scope == RateLimitScope.GLOBAL
        assert result.details["error"] == "pool exhausted"

    def test_policy_from_config(self, config):
        strict = config.with_overrides(rate_limit_on_error=RateLimitErrorPolicy.DENY)
        limiter = RateLimiter(self._broken_repo(), strict)
        assert limiter.on_error == RateLimitErrorPolicy.DENY
