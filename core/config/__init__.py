# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# STATUS: Core - Configuration
# PURPOSE: Centralized configuration management
# CREATED: 19 OCT 2026
# ============================================================================
"""
Configuration Module

Provides the validated engine configuration.
"""

from core.config.settings import (
    ConfigError,
    RateLimitErrorPolicy,
    RESTRICTED_BACKEND,
    DEFAULT_CLAW_ALLOWLIST,
    DispatchConfig,
    get_config,
    reset_config,
)

__all__ = [
    "ConfigError",
    "RateLimitErrorPolicy",
    "RESTRICTED_BACKEND",
    "DEFAULT_CLAW_ALLOWLIST",
    "DispatchConfig",
    "get_config",
    "reset_config",
]
