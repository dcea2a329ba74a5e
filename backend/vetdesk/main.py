"""
VetDesk Backend - FastAPI Application Entry Point

Post-visit discharge automation for veterinary clinics:
- Discharge orchestration (ingest, extract, summarize, email, call)
- Vapi voice webhooks and inbound assistant tools
- Clinic PIMS credentials and staff authentication
"""

import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .api import (
    auth_router,
    clinics_router,
    discharge_router,
    health_router,
    vapi_tools_router,
    vapi_webhooks_router,
)
from .core.config import settings
from .core.cors import build_origin_regex
from .core.database import engine
from .core.logging_config import configure_logging


logger = logging.getLogger(__name__)

HEALTH_PATHS = ("/health", "/health/live", "/api/health")
WEBHOOK_PREFIXES = ("/api/webhooks", "/api/vapi")


# =============================================================================
# Rate Limiting Middleware
# =============================================================================

class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limit per client IP.

    Vapi traffic (webhooks and inbound tools) gets its own, larger budget
    so a busy call day cannot lock staff out of the dashboard.
    """

    def __init__(self, app, requests_per_minute: int = 60, webhook_requests_per_minute: int = 1000):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.webhook_requests_per_minute = webhook_requests_per_minute
        self.window_size = 60  # seconds
        self.request_log: Dict[str, List[float]] = defaultdict(list)

    def _get_client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def _limit_for(self, path: str) -> tuple:
        if path.startswith(WEBHOOK_PREFIXES):
            return "webhook", self.webhook_requests_per_minute
        return "api", self.requests_per_minute

    def _is_rate_limited(self, key: str, limit: int) -> bool:
        current_time = time.time()
        cutoff = current_time - self.window_size
        self.request_log[key] = [ts for ts in self.request_log[key] if ts > cutoff]

        if len(self.request_log[key]) >= limit:
            return True

        self.request_log[key].append(current_time)
        return False

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in HEALTH_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        bucket, limit = self._limit_for(path)
        key = f"{bucket}:{self._get_client_ip(request)}"

        if self._is_rate_limited(key, limit):
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please try again later. Limit: {limit} requests per minute.",
                },
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        remaining = max(0, limit - len(self.request_log[key]))
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


# =============================================================================
# Performance Monitoring Middleware
# =============================================================================

class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Adds X-Response-Time and logs requests slower than 500ms."""

    SLOW_REQUEST_THRESHOLD_MS = 500

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time_ms = (time.time() - start_time) * 1000

        response.headers["X-Response-Time"] = f"{process_time_ms:.2f}ms"

        # Orchestration legitimately takes seconds (LLM calls)
        if process_time_ms > self.SLOW_REQUEST_THRESHOLD_MS and not request.url.path.startswith("/api/discharge"):
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time_ms:.2f}ms"
            )

        if settings.debug:
            logger.debug(f"{request.method} {request.url.path} - {process_time_ms:.2f}ms")

        return response


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Configure logging on startup; flush shipped logs and release
    database connections on shutdown.
    """
    shipper = configure_logging()
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    insecure = []
    if settings.secret_key == "dev-secret-key-change-in-production":
        insecure.append("SECRET_KEY")
    if settings.credentials_encryption_key == "dev-credentials-key-change-in-production":
        insecure.append("CREDENTIALS_ENCRYPTION_KEY")

    if insecure and settings.is_production:
        raise RuntimeError(
            f"Refusing to start in production with dev-default secrets: {', '.join(insecure)}"
        )
    elif insecure:
        logger.warning(f"Dev-default secrets in use: {', '.join(insecure)}")

    app.state.log_shipper = shipper

    yield

    logger.info("Shutting down...")
    if shipper is not None:
        shipper.close()
    engine.dispose()


# =============================================================================
# Application Factory
# =============================================================================

def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Discharge automation API for veterinary clinics.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(PerformanceMonitoringMiddleware)

    # Exact origins, *.subdomain wildcards and the IDEXX browser extension.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_origin_regex=build_origin_regex(
            settings.cors_origin_patterns_list,
            settings.cors_extension_ids_list,
        ),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-Response-Time",
        ],
    )

    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
        webhook_requests_per_minute=settings.rate_limit_webhooks,
    )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(clinics_router)
    app.include_router(discharge_router)
    app.include_router(vapi_webhooks_router)
    app.include_router(vapi_tools_router)

    return app


# =============================================================================
# Exception Handlers
# =============================================================================

app = create_application()


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "validation_error",
            "message": str(exc),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log and return a generic message; never echo client data back."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "docs": "/docs" if settings.is_development else "disabled",
    }


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "vetdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
