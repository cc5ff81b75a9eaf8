"""
HOA Court Reservations API Server

FastAPI server for multi-tenant court booking: HOA membership, group
bookings, notifications and administration.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from hoa_courts.api.routes import router, limiter as routes_limiter
from hoa_courts.database import db
from hoa_courts.services.exceptions import AppError
from hoa_courts.services.booking_cleanup_service import get_booking_cleanup_service
from hoa_courts.services.redis_service import close_redis_connection

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up HOA Court Reservations API...")

    # Create tables if they don't exist
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # Start booking cleanup worker (deletes expired pending bookings)
    try:
        get_booking_cleanup_service().start()
    except Exception as e:
        logger.error(f"Failed to start booking cleanup worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down HOA Court Reservations API...")

    try:
        get_booking_cleanup_service().stop()
    except Exception as e:
        logger.error(f"Error stopping booking cleanup worker: {e}", exc_info=True)

    # Close Redis connection
    try:
        await close_redis_connection()
        logger.info("Redis connection closed")
    except Exception as e:
        logger.error(f"Error closing Redis connection: {e}", exc_info=True)


app = FastAPI(
    title="HOA Court Reservations API",
    description="API for booking HOA courts, managing members and administering HOAs",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Map application errors to their HTTP status with a {"detail": ...} body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Add CORS middleware; origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health")
async def health_check():
    """Liveness check."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
