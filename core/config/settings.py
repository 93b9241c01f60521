# ============================================================================
# DISPATCH CONFIGURATION
# ============================================================================
# STATUS: Core - Engine configuration
# PURPOSE: Webhook, limiter, reaper and allowlist settings from environment
# CREATED: 19 OCT 2026
# ============================================================================
"""
Dispatch Configuration

All engine settings are plain values, read once from the environment and
validated at process start. The config object is passed explicitly into
the limiter, executors, dispatcher and reaper; nothing reads os.environ
after startup.

Design:
- Immutable dataclass
- Environment variable overrides via from_env()
- validate() raises ConfigError so the app refuses to start
"""

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlparse


class ConfigError(ValueError):
    """Raised when configuration values are invalid."""


class RateLimitErrorPolicy(str, Enum):
    """What the rate limiter does when it cannot count runs."""
    ALLOW = "allow"  # fail open
    DENY = "deny"    # fail closed


RESTRICTED_BACKEND = "claw"

DEFAULT_CLAW_ALLOWLIST = (
    "claw:research",
    "claw:prospect-finder",
    "claw:content",
    "claw:deep-research",
    "claw:report-writer",
)

N8N_CALLBACK_PATH = "/api/v1/n8n/task-result"
CLAW_CALLBACK_PATH = "/api/v1/claw/task-result"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _parse_allowlist(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return DEFAULT_CLAW_ALLOWLIST
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class DispatchConfig:
    """
    Settings for the dispatch engine.

    Defaults match the production deployment.
    """
    # Webhooks
    n8n_webhook_url: Optional[str] = None
    claw_hook_url: Optional[str] = None
    claw_hook_token: Optional[str] = None
    webhook_timeout_seconds: int = 10

    # Callback URLs are built from these
    backend_url: str = "http://localhost:3001"
    public_base_url: Optional[str] = None

    # Reaper
    reaper_interval_seconds: int = 60
    run_timeout_minutes: int = 15

    # Restricted-executor limits
    max_concurrent_per_customer: int = 3
    max_per_customer_per_hour: int = 20
    max_global_per_hour: int = 60
    claw_allowlist: Tuple[str, ...] = field(default=DEFAULT_CLAW_ALLOWLIST)
    rate_limit_on_error: RateLimitErrorPolicy = RateLimitErrorPolicy.ALLOW

    default_worker_id: str = "backend-dispatcher-v0"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def n8n_callback_url(self) -> str:
        return self.backend_url.rstrip("/") + N8N_CALLBACK_PATH

    @property
    def claw_callback_url(self) -> str:
        base = self.public_base_url or self.backend_url
        return base.rstrip("/") + CLAW_CALLBACK_PATH

    def is_restricted(self, executor: str) -> bool:
        """Restricted executors are subject to the rate limiter."""
        return executor.startswith(f"{RESTRICTED_BACKEND}:")

    def is_allowed(self, executor: str) -> bool:
        return executor in self.claw_allowlist

    def with_overrides(self, **changes) -> "DispatchConfig":
        """Copy with some fields replaced (validated)."""
        return replace(self, **changes).validate()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> "DispatchConfig":
        """Create from environment variables."""
        policy_raw = (_env_str("RATE_LIMIT_ON_ERROR") or "allow").lower()
        try:
            policy = RateLimitErrorPolicy(policy_raw)
        except ValueError:
            raise ConfigError(
                f"RATE_LIMIT_ON_ERROR must be one of "
                f"{[p.value for p in RateLimitErrorPolicy]}, got {policy_raw!r}"
            )

        return cls(
            n8n_webhook_url=_env_str("N8N_WEBHOOK_URL"),
            claw_hook_url=_env_str("OPENCLAW_HOOK_URL"),
            claw_hook_token=_env_str("OPENCLAW_HOOK_TOKEN"),
            webhook_timeout_seconds=_env_int("WEBHOOK_TIMEOUT_SECONDS", 10),
            backend_url=_env_str("BACKEND_URL") or "http://localhost:3001",
            public_base_url=_env_str("SCC_PUBLIC_BASE_URL"),
            reaper_interval_seconds=_env_int("TASK_RUN_REAPER_INTERVAL_SECONDS", 60),
            run_timeout_minutes=_env_int("TASK_RUN_TIMEOUT_MINUTES", 15),
            max_concurrent_per_customer=_env_int("CLAW_MAX_CONCURRENT_PER_CUSTOMER", 3),
            max_per_customer_per_hour=_env_int("CLAW_MAX_RUNS_PER_HOUR_PER_CUSTOMER", 20),
            max_global_per_hour=_env_int("CLAW_MAX_RUNS_PER_HOUR_GLOBAL", 60),
            claw_allowlist=_parse_allowlist(_env_str("CLAW_EXECUTOR_ALLOWLIST")),
            rate_limit_on_error=policy,
            default_worker_id=_env_str("DEFAULT_WORKER_ID") or "backend-dispatcher-v0",
        ).validate()

    def validate(self) -> "DispatchConfig":
        """
        Check every value; raise ConfigError listing all problems.

        Returns self so it can be chained after construction.
        """
        problems = []

        for name in (
            "webhook_timeout_seconds",
            "reaper_interval_seconds",
            "run_timeout_minutes",
            "max_concurrent_per_customer",
            "max_per_customer_per_hour",
            "max_global_per_hour",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                problems.append(f"{name} must be a positive integer, got {value!r}")

        for name in ("n8n_webhook_url", "claw_hook_url", "backend_url", "public_base_url"):
            value = getattr(self, name)
            if value is None:
                continue
            parsed = urlparse(value)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                problems.append(f"{name} must be an http(s) URL, got {value!r}")

        for entry in self.claw_allowlist:
            if not entry.startswith(f"{RESTRICTED_BACKEND}:") or entry == f"{RESTRICTED_BACKEND}:":
                problems.append(f"allowlist entry {entry!r} must look like '{RESTRICTED_BACKEND}:<variant>'")

        if not isinstance(self.rate_limit_on_error, RateLimitErrorPolicy):
            problems.append(f"rate_limit_on_error must be a RateLimitErrorPolicy, got {self.rate_limit_on_error!r}")

        if not self.default_worker_id:
            problems.append("default_worker_id must not be empty")

        if problems:
            raise ConfigError("Invalid dispatch configuration: " + "; ".join(problems))

        return self


# ============================================================================
# GLOBAL CONFIG INSTANCE
# ============================================================================

_config: Optional[DispatchConfig] = None


def get_config() -> DispatchConfig:
    """Get global config instance."""
    global _config
    if _config is None:
        _config = DispatchConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (for testing)."""
    global _config
    _config = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ConfigError",
    "RateLimitErrorPolicy",
    "RESTRICTED_BACKEND",
    "DEFAULT_CLAW_ALLOWLIST",
    "DispatchConfig",
    "get_config",
    "reset_config",
]
