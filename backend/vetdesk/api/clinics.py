"""
Clinic PIMS credential endpoints.

The browser extension signs into IDEXX Neo with these credentials. The
password is stored only as an AES-256-GCM envelope and every reveal is
audit logged.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.auth import get_current_user, require_role
from ..core.database import get_db
from ..core.security import decrypt_secret, encrypt_secret
from ..core.transactions import transaction
from ..models import ClinicCredential, User
from ..schemas.clinic import CredentialsResponse, CredentialsUpdate
from ..services.audit import AuditService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/clinics", tags=["Clinics"])


def mask_username(username: str) -> str:
    """Keep the first two characters (and any email domain) visible."""
    local, at, domain = username.partition("@")
    visible = local[:2]
    masked = visible + "*" * max(len(local) - len(visible), 3)
    return f"{masked}{at}{domain}"


def _require_clinic(user: User):
    if user.clinic_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is not linked to a clinic",
        )
    return user.clinic_id


@router.put("/credentials", response_model=CredentialsResponse)
async def update_credentials(
    body: CredentialsUpdate,
    request: Request,
    user: User = Depends(require_role("admin")),
    db: Session = Depends(get_db),
) -> CredentialsResponse:
    clinic_id = _require_clinic(user)
    credential = db.scalars(
        select(ClinicCredential).where(ClinicCredential.clinic_id == clinic_id)
    ).first()
    created = credential is None

    with transaction(db):
        if created:
            credential = ClinicCredential(clinic_id=clinic_id)
            db.add(credential)
        credential.provider = body.provider
        credential.username = body.username
        credential.password_encrypted = encrypt_secret(body.password)

    audit = AuditService(db)
    if created:
        audit.log_create(
            "clinic_credentials", credential.id, user_id=user.id, user_email=user.email,
            endpoint=str(request.url.path), new_values={"fields": ["provider", "username", "password"]},
        )
    else:
        audit.log_update(
            "clinic_credentials", credential.id, user_id=user.id, user_email=user.email,
            endpoint=str(request.url.path), changed_fields=["provider", "username", "password"],
        )

    logger.info(f"Stored {body.provider} credentials for clinic {clinic_id}")
    return CredentialsResponse(
        configured=True,
        provider=credential.provider,
        username=mask_username(credential.username),
        updated_at=credential.updated_at,
    )


@router.get("/credentials", response_model=CredentialsResponse)
async def get_credentials(
    request: Request,
    reveal: bool = Query(default=False, description="Return the decrypted password (admin only)"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CredentialsResponse:
    clinic_id = _require_clinic(user)
    credential = db.scalars(
        select(ClinicCredential).where(ClinicCredential.clinic_id == clinic_id)
    ).first()
    if credential is None:
        return CredentialsResponse(configured=False)

    if not reveal:
        return CredentialsResponse(
            configured=True,
            provider=credential.provider,
            username=mask_username(credential.username),
            updated_at=credential.updated_at,
        )

    if user.role.value != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to perform this action",
        )

    try:
        password = decrypt_secret(credential.password_encrypted)
    except ValueError as e:
        logger.error(f"Stored credentials for clinic {clinic_id} could not be decrypted: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stored credentials could not be decrypted",
        )

    AuditService(db).log_read(
        "clinic_credentials", credential.id, user_id=user.id, user_email=user.email,
        endpoint=str(request.url.path),
    )
    return CredentialsResponse(
        configured=True,
        provider=credential.provider,
        username=credential.username,
        password=password,
        updated_at=credential.updated_at,
    )
