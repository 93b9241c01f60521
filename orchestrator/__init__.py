# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# STATUS: Core - Background loops
# PURPOSE: Long-running tasks of the API process
# CREATED: 19 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import Reaper

    reaper = Reaper(pool, config)
    await reaper.start()
    ...
    await reaper.stop()
"""

from .reaper import Reaper, ReaperResult

__all__ = ["Reaper", "ReaperResult"]
