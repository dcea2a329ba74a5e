"""
User model for authentication and per-user discharge preferences.
"""

import enum
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Integer, Uuid, Enum as SQLEnum, ForeignKey
from sqlalchemy.orm import relationship

from ..core.clock import utcnow
from ..core.database import Base


# =============================================================================
# Enums
# =============================================================================


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    VETERINARIAN = "veterinarian"
    STAFF = "staff"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


# =============================================================================
# User Model
# =============================================================================


class User(Base):
    """
    Dashboard user (veterinarian or clinic staff).

    Attributes:
        clinic_id: Owning clinic (branding falls back to the clinic_* columns)
        test_mode_enabled: Route discharge emails/calls to the test contact
        test_contact_*: Test recipient used while test mode is enabled
        default_schedule_delay_minutes: Delay before discharge emails go out
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(SQLEnum(UserRole, name="user_role", native_enum=False, values_callable=lambda e: [x.value for x in e]), nullable=False, default=UserRole.VETERINARIAN)
    status = Column(SQLEnum(UserStatus, name="user_status", native_enum=False, values_callable=lambda e: [x.value for x in e]), nullable=False, default=UserStatus.ACTIVE)

    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True, index=True)
    clinic_name = Column(String(255), nullable=True)
    clinic_phone = Column(String(50), nullable=True)
    clinic_email = Column(String(255), nullable=True)

    test_mode_enabled = Column(Boolean, nullable=False, default=False)
    test_contact_name = Column(String(255), nullable=True)
    test_contact_email = Column(String(255), nullable=True)
    test_contact_phone = Column(String(50), nullable=True)
    default_schedule_delay_minutes = Column(Integer, nullable=True)

    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    clinic = relationship("Clinic", lazy="joined")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"
