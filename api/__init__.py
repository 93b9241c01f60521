# ============================================================================
# API MODULE
# ============================================================================
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for task dispatch and lifecycle
# CREATED: 19 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the dispatch engine.
"""

from .routes import router, set_services
from .schemas import (
    CallbackRequest,
    DispatchRequest,
    TaskCreate,
    TaskUpdate,
)

__all__ = [
    "router",
    "set_services",
    "CallbackRequest",
    "DispatchRequest",
    "TaskCreate",
    "TaskUpdate",
]
