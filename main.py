# ============================================================================
# TASK DISPATCH ENGINE - MAIN APPLICATION
# ============================================================================
# STATUS: Core - FastAPI application entry point
# PURPOSE: HTTP API plus the background run reaper
# CREATED: 19 OCT 2026
# ============================================================================
"""
Task Dispatch Engine Main Application

FastAPI application that:
1. Provides HTTP API for tasks, dispatch and executor callbacks
2. Runs the stuck-run reaper in the background
3. Manages the database pool and the shared outbound HTTP client

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from __version__ import __version__, BUILD_DATE, CODENAME

from core.config import get_config
from core.logging import configure_logging, get_logger
from core.schema import PydanticToSQL
from repositories.database import init_pool, close_pool
from services import ActivityService, CallbackService, Dispatcher, TaskService
from orchestrator import Reaper
from api.routes import router, set_services
from health import PostgresCheck, ReaperCheck, health_router, set_health_checks

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)

# Global instances
_reaper: Reaper = None
_http_client: httpx.AsyncClient = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    Invalid configuration aborts startup.
    """
    global _reaper, _http_client
    _reaper = None

    logger.info(f"Starting {CODENAME} v{__version__} (Build {BUILD_DATE})")

    config = get_config().validate()
    logger.info(
        f"Config: reaper every {config.reaper_interval_seconds}s, "
        f"run timeout {config.run_timeout_minutes}m, "
        f"claw allowlist {list(config.claw_allowlist)}"
    )

    # Initialize database pool
    pool = await init_pool()
    logger.info("Database pool initialized")

    # Shared client for webhook executors
    _http_client = httpx.AsyncClient(timeout=config.webhook_timeout_seconds)

    try:
        # Optional: Bootstrap schema on startup (for development)
        if os.environ.get("AUTO_BOOTSTRAP_SCHEMA", "").lower() == "true":
            logger.info("Auto-bootstrap enabled, deploying schema...")
            try:
                async with pool.connection() as conn:
                    count = await PydanticToSQL().execute(conn)
                logger.info(f"Schema bootstrap completed ({count} statements)")
            except Exception as e:
                logger.warning(f"Schema bootstrap failed (may already exist): {e}")

        activity_service = ActivityService(pool)
        task_service = TaskService(pool, activity_service)
        dispatcher = Dispatcher(pool, config, activity_service, http_client=_http_client)
        callback_service = CallbackService(pool, activity_service)
        _reaper = Reaper(pool, config, activity_service)

        set_services(
            task_service=task_service,
            dispatcher=dispatcher,
            callback_service=callback_service,
            reaper=_reaper,
        )

        await _reaper.start()
        logger.info("Reaper started")

        set_health_checks([PostgresCheck(pool), ReaperCheck(_reaper)])

        yield

    finally:
        # Shutdown, also reached when startup fails after the pool is open
        logger.info(f"Shutting down {CODENAME}...")

        if _reaper is not None:
            await _reaper.stop()
        await _http_client.aclose()
        await close_pool()

        logger.info(f"{CODENAME} stopped")


# Create FastAPI app
app = FastAPI(
    title=CODENAME,
    description="Task dispatch and run lifecycle engine",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include health check routes (no prefix - /livez, /readyz)
app.include_router(health_router)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": CODENAME,
        "version": __version__,
        "build_date": BUILD_DATE,
        "status": "running",
        "docs": "/docs",
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
