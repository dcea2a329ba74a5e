"""
Pydantic request/response schemas for VetDesk.
"""

from .common import HealthResponse
from .discharge import OrchestrationRequest, OrchestrationResult
from .user import LoginRequest, LoginResponse, UserResponse
from .clinic import CredentialsResponse, CredentialsUpdate

__all__ = [
    "HealthResponse",
    "OrchestrationRequest",
    "OrchestrationResult",
    "LoginRequest",
    "LoginResponse",
    "UserResponse",
    "CredentialsResponse",
    "CredentialsUpdate",
]
