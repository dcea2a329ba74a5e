"""
Database connection and session management.

Provides SQLAlchemy engine, session factory, and dependency injection
for database sessions in FastAPI endpoints.
"""

from typing import Generator

from sqlalchemy import JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool

from .config import settings


# =============================================================================
# SQLAlchemy Base
# =============================================================================

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# Engine Configuration
# =============================================================================

def get_engine_url() -> str:
    """
    Get the configured database URL.

    Returns:
        Database connection URL string
    """
    return settings.database_url


def _is_postgres(url: str) -> bool:
    return url.startswith("postgresql")


if _is_postgres(get_engine_url()):
    engine = create_engine(
        get_engine_url(),
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
        pool_timeout=settings.db_pool_timeout,
        echo=settings.debug,
    )

    @event.listens_for(engine, "connect")
    def set_connection_settings(dbapi_connection, connection_record):
        """
        Configure connection settings when a new connection is created.

        Sets timezone and statement timeout for safety.
        """
        cursor = dbapi_connection.cursor()
        cursor.execute("SET timezone='UTC'")
        cursor.execute("SET statement_timeout = '30s'")
        cursor.close()
else:
    engine = create_engine(get_engine_url(), echo=settings.debug)


# =============================================================================
# Session Factory
# =============================================================================

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


# =============================================================================
# Dependency Injection
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database session injection.

    Creates a new session for each request and ensures proper cleanup.

    Yields:
        SQLAlchemy Session instance

    Example:
        @router.get("/cases")
        def list_cases(db: Session = Depends(get_db)):
            return db.query(Case).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
