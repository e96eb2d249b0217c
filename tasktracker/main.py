"""
Task Tracker API - Main Application
===================================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from tasktracker.config import DEFAULT_JWT_SECRET, settings

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasktracker.api.v1 import auth, tasks
from tasktracker.core.errors import setup_exception_handlers
from tasktracker.db.session import close_db, init_db
from tasktracker.services.cache import close_redis, get_task_cache, init_redis
from tasktracker.services.notifications import get_notifier

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events for:
    - Database connection
    - Redis connection (Redis cache backends only)
    - Pending task notifications
    """
    logger.info("Starting Task Tracker API (%s)", settings.ENVIRONMENT)

    if settings.is_production and settings.JWT_SECRET == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is the built-in default; set a real secret in production")

    if not settings.API_POPULATE_KEY:
        logger.warning("API_POPULATE_KEY is not set; /api/v1/tasks/populate will reject every request")

    # Initialize database
    try:
        await init_db()
    except Exception as e:
        # Continue startup even if DB fails (for health checks)
        logger.error("Database connection failed: %s", e)

    # Initialize Redis
    if settings.CACHE_BACKEND.startswith("redis"):
        try:
            await init_redis()
        except Exception as e:
            logger.warning("Redis connection failed, task listings will not be cached: %s", e)
    get_task_cache()

    yield

    # Shutdown
    logger.info("Shutting down Task Tracker API")
    await get_notifier().drain()
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="Task Tracker API",
    description="""
## Task Tracker Backend

Per-user task management with role-based access.

### Features
- **Authentication**: Email/password login with JWT access and refresh tokens
- **Tasks**: CRUD, completion toggles, filtered and paginated listings
- **Sync**: Import todos from an external source (API key protected)
    """,
    version=VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Permission denied"},
        404: {"description": "Resource not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup exception handlers
setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns the current status of the API.
    """
    return {
        "status": "healthy",
        "version": VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "Task Tracker API",
        "version": VERSION,
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(tasks.router, prefix="/api/v1/tasks", tags=["Tasks"])
