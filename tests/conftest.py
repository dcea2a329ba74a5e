"""
Shared fixtures: in-memory SQLite database, FastAPI test client and users.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")
os.environ.setdefault("RATE_LIMIT_WEBHOOKS", "100000")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CREDENTIALS_ENCRYPTION_KEY", "test-credentials-key-material")
os.environ.setdefault("VAPI_WEBHOOK_SECRET", "")
os.environ.setdefault("SLACK_ENABLED", "false")
os.environ.setdefault("LLM_API_KEY", "")
os.environ.setdefault("VAPI_API_KEY", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vetdesk import models  # noqa: F401  registers tables
from vetdesk.core.database import Base, get_db
from vetdesk.core.security import create_access_token, hash_password
from vetdesk.main import app
from vetdesk.models import Case, Clinic, Patient, User, UserRole


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

TEST_PASSWORD = "CorrectHorse9!"


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def clinic(db_session):
    clinic = Clinic(
        name="Happy Paws Veterinary",
        phone="+12135550100",
        email="frontdesk@happypawsvet.com",
        primary_color="#0EA5E9",
        inbound_assistant_id="asst-legacy",
    )
    db_session.add(clinic)
    db_session.commit()
    return clinic


def _make_user(db_session, clinic, email, role, **overrides):
    user = User(
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        first_name="Dana",
        last_name="Reyes",
        role=role,
        clinic_id=clinic.id if clinic else None,
        **overrides,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin_user(db_session, clinic):
    return _make_user(db_session, clinic, "admin@happypawsvet.com", UserRole.ADMIN)


@pytest.fixture
def vet_user(db_session, clinic):
    return _make_user(db_session, clinic, "vet@happypawsvet.com", UserRole.VETERINARIAN)


def auth_headers_for(user):
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers_for(admin_user)


@pytest.fixture
def vet_headers(vet_user):
    return auth_headers_for(vet_user)


@pytest.fixture
def case_with_patient(db_session, vet_user):
    """An ingested case for Bella with an owner who has phone and email."""
    case = Case(
        user_id=vet_user.id,
        clinic_id=vet_user.clinic_id,
        source="manual",
        meta={},
        entity_extraction={
            "patient": {"name": "Bella", "species": "dog", "breed": "Labrador"},
            "owner": {"name": "Jordan Miles", "phone": "2135550123", "email": "jordan@example.com"},
            "clinical": {
                "diagnoses": ["gastroenteritis"],
                "medications": [{"name": "Metronidazole", "dosage": "250mg", "frequency": "twice daily"}],
            },
            "caseType": "checkup",
            "confidence": {"overall": 0.9},
        },
    )
    db_session.add(case)
    db_session.flush()
    db_session.add(Patient(
        case_id=case.id,
        user_id=vet_user.id,
        name="Bella",
        species="dog",
        breed="Labrador",
        owner_name="Jordan Miles",
        owner_email="jordan@example.com",
        owner_phone="2135550123",
    ))
    db_session.commit()
    return case
