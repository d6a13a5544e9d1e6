"""FastAPI main application for the Nest notification service."""

from contextlib import asynccontextmanager
import time

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from nest.api.routes import (
    announcements,
    car_bookings,
    checkins,
    notifications,
    push,
    requests,
    users,
)
from nest.core.config import settings
from nest.core.database import close_db_pool, get_db_connection, init_db_pool
from nest.core.logging_config import get_logger, setup_logging
from nest.core.responses import error_response, error_response_dict, success_response
from nest.services.push_queue import get_queue_stats

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting Nest notification service...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    if not settings.vapid_configured:
        logger.warning("VAPID keys not configured - push worker will refuse to run")
    if not settings.SMTP_USERNAME:
        logger.warning("SMTP credentials not set - email delivery may fail")

    # Initialize async database pool (skip in test environment)
    if settings.ENVIRONMENT != "test":
        await init_db_pool(settings)

    yield

    # Shutdown
    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down Nest notification service...")


app = FastAPI(
    title="Nest Notification Service",
    description="""
    **Nest Notification Service** - multi-channel notifications for gear and car bookings

    Channels:
    - In-app notifications (inbox with read state)
    - Transactional email (SMTP, named templates)
    - Web Push (VAPID), delivered through a retrying queue

    ## Authentication

    User endpoints require a bearer JWT whose `sub` is the profile id:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    Scheduled endpoints (`/push/worker`, sweeps) take `Authorization: Bearer <CRON_SECRET>`
    when `CRON_SECRET` is set.

    ## API Versioning

    - `/v1/*` - Version 1 (current stable)
    - `/*` - Latest version (may change)
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "User-Agent"],
    )


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    if isinstance(exc.detail, dict):
        return error_response_dict(exc.detail, exc.status_code)
    return error_response_dict(
        {"success": False, "message": exc.detail, "data": None, "errors": None},
        exc.status_code,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(
        {"success": False, "message": "Validation failed", "data": None, "errors": errors},
        422,
    )


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(
    request: Request, exc: asyncpg.exceptions.PostgresError
):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(
        {"success": False, "message": "Database error occurred", "data": None, "errors": None},
        500,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(
        {
            "success": False,
            "message": "An unexpected error occurred",
            "data": None,
            "errors": None,
        },
        500,
    )


ROUTERS = (
    users.router,
    notifications.router,
    push.router,
    requests.router,
    checkins.router,
    car_bookings.router,
    announcements.router,
)

v1_router = APIRouter(prefix="/v1")
for router in ROUTERS:
    v1_router.include_router(router)
app.include_router(v1_router)

# Also include routers at root level (latest version)
for router in ROUTERS:
    app.include_router(router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 when the API and database are up, 503 otherwise. Missing
    email or push configuration is reported as degraded.
    """
    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}
    all_healthy = True

    health_status["checks"]["api"] = {"status": "healthy", "message": "API is running"}
    queue_stats = None

    try:
        async with get_db_connection() as conn:
            await conn.fetchval("SELECT 1")
            queue_stats = await get_queue_stats(conn)
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database is accessible",
        }
    except Exception as e:
        all_healthy = False
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database check failed: {e!s}",
        }

    # Delivery channels are best-effort; report them without failing the check
    health_status["checks"]["email"] = {
        "status": "healthy" if settings.smtp_configured else "degraded",
        "server": settings.SMTP_SERVER or None,
    }
    health_status["checks"]["push"] = {
        "status": "healthy" if settings.vapid_configured else "degraded",
        "queue": queue_stats,
    }

    if not all_healthy:
        health_status["status"] = "unhealthy"
        return error_response(
            message="Health check failed", data=health_status, status_code=503
        )

    return success_response(data=health_status)
