"""
FastAPI Main Application Entry Point for the E-Filing Engine.

This is the file lifecycle backend service that handles:
- File creation, routing and dispatch
- Business-time timers
- Time extension requests
- The red-list sweep and incentive ledgers
- Background job scheduling
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import EFilingException
from app.api.routes import (
    file_router,
    desk_router,
    extension_router,
    incentive_router,
    holiday_router
)


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Start background scheduler (one process only)

    Shutdown:
    - Stop scheduler gracefully
    """
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Scheduler enabled: {settings.enable_scheduler}")
    logger.info(f"Run scheduler (this instance): {settings.run_scheduler}")

    app.state.scheduler = None

    # Only start the scheduler if BOTH enabled AND run_scheduler is true.
    # Set RUN_SCHEDULER=true on exactly one worker/container so the sweep
    # has a single owner.
    if settings.enable_scheduler and settings.run_scheduler:
        try:
            from app.services.scheduler import get_scheduler
            app.state.scheduler = get_scheduler()
            app.state.scheduler.start()
            logger.info("Background scheduler started")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")

    yield

    if app.state.scheduler and app.state.scheduler.is_running:
        app.state.scheduler.stop()
        logger.info("Scheduler stopped")

    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # E-Filing Engine

    File lifecycle and time-based escalation service.

    ## Features

    ### File State Machine
    - **Forward**: hand a file to the next holder
    - **Actions**: approve, reject, return, hold, release
    - **Recall / Dispatch**: super admin recall, dispatcher close-out

    ### Timers
    Remaining time is measured in business seconds, skipping weekends and
    holidays.

    ### Escalation
    An hourly sweep red-lists overdue open files and penalizes the holder
    exactly once.

    ### Incentives
    Append-only points and coin ledgers that can be replayed to the stored
    balance.
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Configure CORS for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EFilingException)
async def efiling_exception_handler(request, exc: EFilingException):
    """Handle all EFilingException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Include API routers
app.include_router(file_router)
app.include_router(desk_router)
app.include_router(extension_router)
app.include_router(incentive_router)
app.include_router(holiday_router)


@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns service status and scheduler health.
    """
    scheduler = getattr(app.state, 'scheduler', None)

    if scheduler is not None:
        scheduler_status = scheduler.get_health_status()
    else:
        scheduler_status = {"status": "disabled", "is_running": False, "jobs": [], "failures": {}}

    return {
        "status": "degraded" if scheduler_status["status"] == "degraded" else "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "scheduler": scheduler_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Docs disabled in production",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
