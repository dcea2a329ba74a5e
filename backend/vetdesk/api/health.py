"""
Health check endpoints for monitoring.

Endpoints:
- /health, /api/health: Database-backed health check
- /health/live: Simple alive check
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.config import settings
from ..core.database import get_db
from ..schemas.common import HealthResponse


logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/api/health", response_model=HealthResponse, include_in_schema=False)
@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Returns the health status of the API and its database.",
)
async def health_check(db: Session = Depends(get_db)) -> HealthResponse:
    db_status = "connected"
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        elapsed_ms = int((time.time() - start) * 1000)
        if elapsed_ms > 100:
            logger.warning(f"Slow database response: {elapsed_ms}ms")
    except Exception as e:
        db_status = "disconnected"
        logger.error(f"Database health check failed: {e}")

    return HealthResponse(
        status="healthy" if db_status == "connected" else "unhealthy",
        version=settings.app_version,
        timestamp=utcnow(),
        database=db_status,
        environment=settings.environment,
    )


@router.get("/health/live", summary="Liveness Check")
async def liveness_check():
    return {"status": "alive"}
