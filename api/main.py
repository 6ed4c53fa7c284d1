"""
Cosmic Starter API

A FastAPI starter application with user and role administration, a
persisted settings store editable at runtime, and settings-driven rate
limiting for authenticated and unauthenticated callers.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from config import ensure_directories, settings
from core.rate_limiter import RateLimitInitializationError, get_rate_limit_service, limiter
from core.request_logger import RequestLoggerMiddleware
from endpoints import admin_settings, auth, profile, rate_limit, setup, stats, users

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Cosmic Starter API starting up...")

    ensure_directories()

    from core.database import initialize_database

    await initialize_database()
    logger.info("Database initialized")

    # Settings are required; a failure here aborts startup
    from core.settings_service import get_settings_service

    await get_settings_service().initialize()
    logger.info("Settings initialized")

    try:
        await get_rate_limit_service().initialize()
        logger.info("Rate limiter initialized")
    except RateLimitInitializationError as e:
        logger.warning(f"Rate limiter unavailable, requests will not be limited: {e.message}")

    yield

    logger.info("Cosmic Starter API shutting down...")


app = FastAPI(
    title="Cosmic Starter API",
    description="""
    ## Purpose

    Starter backend with user administration, runtime settings and
    rate limiting.

    ## Features

    - **First-time setup** creates the initial admin account
    - **User administration** with partial updates that write only changed fields
    - **Runtime settings** validated against a declarative registry
    - **Rate limiting** per user, per anonymous client and for all anonymous clients combined
    """,
    version=API_VERSION,
    license_info={
        "name": "MIT",
    },
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Rate limiting
app.state.limiter = limiter


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Custom 429 handler with Retry-After."""
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please wait before making more requests.",
            "retry_after_seconds": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

# Include API routers
app.include_router(setup.router)
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(profile.router)
app.include_router(admin_settings.router)
app.include_router(rate_limit.router)
app.include_router(stats.router)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


app.add_middleware(SecurityHeadersMiddleware)

# Request logging middleware
app.add_middleware(RequestLoggerMiddleware)

# CORS middleware, restricted to configured origins in production
_cors_origins = (
    [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()]
    if settings.cors_allowed_origins
    else ["*"]
    if settings.api_debug
    else []
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get(
    "/",
    summary="API Info",
    description="Basic endpoint to verify the API is running.",
    tags=["Health"],
)
async def root():
    """API status and basic information."""
    return {
        "message": "Cosmic Starter API is running",
        "version": API_VERSION,
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "docs_url": "/docs",
        "openapi_url": "/openapi.json",
    }


@app.get(
    "/health",
    summary="Detailed Health Check",
    description="Health of the database, the settings cache and the rate limiter.",
    tags=["Health"],
)
async def health_check():
    """
    Detailed health check endpoint.

    The API is unhealthy when the database is unreachable and degraded
    when the rate limiter failed to initialize (it then fails open).
    """
    from core.database import get_database
    from core.settings_service import get_settings_service

    database = {"status": "ok"}
    try:
        await get_database().fetch_one("SELECT 1 AS ok")
    except Exception as e:
        logger.warning(f"Health check database query failed: {e}")
        database = {"status": "error", "message": str(e)}

    rate_limit_service = get_rate_limit_service()
    settings_ready = get_settings_service().initialized

    suggestions = []
    if not rate_limit_service.initialized:
        suggestions.append(
            {
                "action": "Check the rate limit settings and server logs",
                "reason": f"Rate limiter is {rate_limit_service.state.value}; requests are not being limited",
                "priority": "high",
            }
        )

    if database["status"] != "ok":
        status = "unhealthy"
    elif not settings_ready or not rate_limit_service.initialized:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "api": {"status": "running", "version": API_VERSION},
        "database": database,
        "settings": {"initialized": settings_ready},
        "rate_limiter": {"state": rate_limit_service.state.value},
        "suggestions": suggestions,
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port, reload=settings.api_debug)
