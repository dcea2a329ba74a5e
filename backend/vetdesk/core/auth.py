"""
Authentication and authorisation dependencies for FastAPI routes.

Provides:
- get_current_user: extracts & verifies JWT, returns the User row
- require_role(*roles): factory that returns a dependency enforcing role membership
- verify_vapi_signature: dependency guarding Vapi webhook and tool routes
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .security import decode_token, verify_signature
from ..models.user import User, UserStatus


logger = logging.getLogger(__name__)

# The tokenUrl is informational (used by Swagger UI); actual login is POST /api/auth/login
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

VAPI_SIGNATURE_HEADER = "x-vapi-signature"


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Decode the JWT bearer token and return the authenticated User.

    Raises 401 if token is missing, invalid, or the user is inactive.
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(token)
    if payload is None or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user.status == UserStatus.INACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated",
        )

    return user


def require_role(*allowed_roles: str):
    """
    Factory: returns a FastAPI dependency that checks the current user's role.

    Usage:
        @router.put("/credentials", dependencies=[Depends(require_role("admin"))])
    """
    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role.value not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return user

    return _check


async def verify_vapi_signature(request: Request) -> None:
    """
    Check the x-vapi-signature HMAC over the raw body.

    With no webhook secret configured the request is let through (local
    development and vendor dashboards that cannot sign).
    """
    secret = settings.vapi_webhook_secret
    if not secret:
        logger.warning("VAPI webhook secret not configured; skipping signature verification")
        return

    body = await request.body()
    if not verify_signature(body, request.headers.get(VAPI_SIGNATURE_HEADER), secret):
        logger.warning(f"Invalid VAPI signature on {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )
