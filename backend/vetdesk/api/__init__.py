"""
API route controllers for VetDesk.

Routes handle HTTP requests and delegate to services for business logic.
"""

from .health import router as health_router
from .auth import router as auth_router
from .clinics import router as clinics_router
from .discharge import router as discharge_router
from .vapi_webhooks import router as vapi_webhooks_router
from .vapi_tools import router as vapi_tools_router

__all__ = [
    "health_router",
    "auth_router",
    "clinics_router",
    "discharge_router",
    "vapi_webhooks_router",
    "vapi_tools_router",
]
