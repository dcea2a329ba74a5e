"""
Audit logging service.

Records who touched patient cases and stored clinic credentials.
"""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog, AuditAction


class AuditService:
    """
    Service for writing audit log entries.

    Example usage:
        audit = AuditService(db)
        audit.log_create("cases", case.id, user_id=current_user.id)
    """

    def __init__(self, db: Session):
        self.db = db

    def _create_log_entry(
        self,
        table_name: str,
        record_id: UUID,
        action: AuditAction,
        user_id: Optional[UUID] = None,
        user_email: Optional[str] = None,
        endpoint: Optional[str] = None,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditLog:
        audit_log = AuditLog.create_entry(
            table_name=table_name,
            record_id=record_id,
            action=action,
            user_id=user_id,
            user_email=user_email,
            endpoint=endpoint,
            old_values=old_values,
            new_values=new_values,
            success=success,
            error_message=error_message,
        )
        self.db.add(audit_log)
        self.db.commit()
        self.db.refresh(audit_log)
        return audit_log

    def log_create(
        self,
        table_name: str,
        record_id: UUID,
        user_id: Optional[UUID] = None,
        user_email: Optional[str] = None,
        endpoint: Optional[str] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Log a CREATE action (new record created).

        Args:
            table_name: Name of table where record was created
            record_id: UUID of new record
            new_values: Field names set (never values of secrets)
        """
        return self._create_log_entry(
            table_name=table_name,
            record_id=record_id,
            action=AuditAction.CREATE,
            user_id=user_id,
            user_email=user_email,
            endpoint=endpoint,
            new_values=new_values,
        )

    def log_read(
        self,
        table_name: str,
        record_id: UUID,
        user_id: Optional[UUID] = None,
        user_email: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> AuditLog:
        return self._create_log_entry(
            table_name=table_name,
            record_id=record_id,
            action=AuditAction.READ,
            user_id=user_id,
            user_email=user_email,
            endpoint=endpoint,
        )

    def log_update(
        self,
        table_name: str,
        record_id: UUID,
        user_id: Optional[UUID] = None,
        user_email: Optional[str] = None,
        endpoint: Optional[str] = None,
        changed_fields: Optional[list[str]] = None,
    ) -> AuditLog:
        """Log an UPDATE; only the names of changed fields are stored."""
        return self._create_log_entry(
            table_name=table_name,
            record_id=record_id,
            action=AuditAction.UPDATE,
            user_id=user_id,
            user_email=user_email,
            endpoint=endpoint,
            new_values={"changed_fields": changed_fields or []},
        )
