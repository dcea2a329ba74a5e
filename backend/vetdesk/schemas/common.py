"""
Common Pydantic schemas shared across the application.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """
    Health check response schema.

    Used by monitoring systems to verify service health.
    """

    status: str = Field(
        ...,
        description="Overall health status (healthy, unhealthy)"
    )
    version: str = Field(
        ...,
        description="Application version"
    )
    timestamp: datetime = Field(
        ...,
        description="Current server timestamp"
    )
    database: str = Field(
        ...,
        description="Database connection status"
    )
    environment: str = Field(
        ...,
        description="Runtime environment (development, production)"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "timestamp": "2026-01-15T10:30:00Z",
                "database": "connected",
                "environment": "development"
            }
        }
    }


class ErrorResponse(BaseModel):
    """Envelope returned for every handled error."""

    success: bool = Field(default=False)
    error: str = Field(..., description="Machine-readable error code")
    message: Optional[str] = Field(default=None, description="Human-readable message")
    details: Optional[List[Dict[str, Any]]] = Field(default=None, description="Field-level validation errors")
