"""
Audit log database model.

Tracks access to patient records and stored clinic credentials.
"""

import enum
import uuid
from typing import Any, Optional

from sqlalchemy import Column, String, Boolean, Text, DateTime, Uuid, Enum as SQLEnum

from ..core.clock import utcnow
from ..core.database import Base, JSONType


class AuditAction(str, enum.Enum):
    """Types of auditable actions."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditLog(Base):
    """
    Append-only audit trail.

    Attributes:
        table_name: Name of table accessed
        record_id: ID of specific record accessed
        action: Type of action performed
        user_id: ID of user who performed action (None for webhooks/tools)
        endpoint: API endpoint accessed
        new_values: Field names touched (never secret or clinical values)
        success: Whether action succeeded
        error_message: Error message if failed
    """

    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    table_name = Column(String(100), nullable=False, index=True)
    record_id = Column(Uuid, nullable=False, index=True)
    action = Column(SQLEnum(AuditAction, name="audit_action", native_enum=False), nullable=False, index=True)
    user_id = Column(Uuid, nullable=True, index=True)
    user_email = Column(String(255), nullable=True)
    endpoint = Column(String(255), nullable=True)
    old_values = Column(JSONType, nullable=True)
    new_values = Column(JSONType, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, "
            f"table={self.table_name}, "
            f"action={self.action.value}, "
            f"record_id={self.record_id})>"
        )

    @classmethod
    def create_entry(
        cls,
        table_name: str,
        record_id: uuid.UUID,
        action: AuditAction,
        user_id: Optional[uuid.UUID] = None,
        user_email: Optional[str] = None,
        endpoint: Optional[str] = None,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> "AuditLog":
        """Build an entry (not saved to DB)."""
        return cls(
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
