"""
Directory Sign-In Sync API - Main FastAPI Application
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from fastapi import FastAPI
from signin_sync.config import settings
from signin_sync.database import close_db, init_db
from signin_sync.schemas import HealthResponse
from signin_sync.services.graph import get_graph_client
from signin_sync.tasks import setup_scheduler, shutdown_scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.

    Handles:
    - Background scheduler startup and shutdown
    - Graph HTTP client and database connection cleanup
    """
    # Startup
    logger.info("Starting up Directory Sign-In Sync API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    if not settings.graph_configured:
        logger.warning("Graph API credentials are not configured; syncs will be skipped")

    # Local sqlite databases are created on demand; use Alembic for Postgres
    if settings.DATABASE_URL.startswith("sqlite"):
        await init_db()

    setup_scheduler()
    logger.info("Startup complete")

    yield

    # Shutdown
    logger.info("Shutting down Directory Sign-In Sync API...")
    shutdown_scheduler()
    await get_graph_client().close()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Directory Sign-In Sync API",
    description="Incremental, multi-tenant sync of directory sign-in logs",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        HealthResponse: Health status
    """
    return HealthResponse(
        status="healthy",
        service="signin-sync-api",
        version="1.0.0",
    )


# Include API routers
from signin_sync.api import tasks
from signin_sync.api.router import api_router

app.include_router(tasks.router, prefix="/api/tasks", tags=["Background Tasks"])
app.include_router(api_router)
