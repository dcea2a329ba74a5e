"""
Authentication endpoints: login and me.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.auth import get_current_user
from ..core.clock import utcnow
from ..core.database import get_db
from ..core.security import create_access_token, verify_password
from ..models.user import User, UserStatus
from ..schemas.user import LoginRequest, LoginResponse, UserResponse


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/login", response_model=LoginResponse)
async def login(credentials: LoginRequest, request: Request, db: Session = Depends(get_db)) -> LoginResponse:
    """Authenticate with email + password and return a JWT access token."""
    user = db.scalars(select(User).where(User.email == credentials.email.lower())).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.warning(
            f"Failed login attempt for email={credentials.email} "
            f"ip={request.client.host if request.client else 'unknown'}"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user.status == UserStatus.INACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated. Contact your administrator.",
        )

    user.last_login = utcnow()
    db.commit()

    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role.value}
    )
    return LoginResponse(access_token=access_token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(user)
