"""
Pydantic schemas for clinic PIMS credentials.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CredentialsUpdate(BaseModel):
    provider: str = Field(default="idexx", pattern="^(idexx|ezyvet)$")
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=512)


class CredentialsResponse(BaseModel):
    configured: bool
    provider: Optional[str] = None
    username: Optional[str] = Field(default=None, description="Masked unless revealed")
    password: Optional[str] = Field(default=None, description="Only returned when revealed")
    updated_at: Optional[datetime] = None
