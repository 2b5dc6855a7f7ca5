"""FastAPI application."""
import logging

import redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .database import engine
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import handoffs
from .schemas import HealthCheckResponse

APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="MedWaste Chain of Custody",
    version=APP_VERSION,
    description="Backend API for medical-waste custody handoffs"
)

# Production safety checks.
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")
if settings.ENV.lower() == "production" and not settings.PUBLIC_CONFIRM_BASE_URL.startswith("https://"):
    raise RuntimeError("PUBLIC_CONFIRM_BASE_URL must use https in production (links carry confirmation secrets).")

# CORS
cors_methods = ["GET", "POST", "PATCH", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)

app.add_exception_handler(DomainError, domain_error_handler)

# Include routers
app.include_router(handoffs.router, prefix="/api/v1")


def _probe_database() -> str:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        return "unavailable"


def _probe_redis() -> str:
    try:
        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
        return "ok"
    except RedisError:
        logger.exception("Health check: redis unavailable")
        return "unavailable"


@app.get("/api/v1/system/health", response_model=HealthCheckResponse)
def health_check():
    """Health check endpoint."""
    database = _probe_database()
    redis_state = _probe_redis()
    return HealthCheckResponse(
        status="ok" if database == "ok" else "degraded",
        version=APP_VERSION,
        database=database,
        redis=redis_state,
    )


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "MedWaste Chain of Custody API",
        "version": APP_VERSION,
        "docs": "/docs"
    }
