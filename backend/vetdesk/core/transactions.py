"""
Database transaction management utilities.

Usage:
    with transaction(db):
        db.add(call)
        db.add(email)
        # Commits on success, rolls back on error
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)


@contextmanager
def transaction(db: Session) -> Generator[Session, None, None]:
    """
    Context manager for database transactions with automatic rollback.

    Args:
        db: SQLAlchemy database session

    Yields:
        The same database session

    Raises:
        Any exception raised within the context
    """
    try:
        yield db
        db.commit()
        logger.debug("Transaction committed")
    except Exception as e:
        db.rollback()
        logger.error(f"Transaction rolled back due to error: {e}")
        raise


def safe_rollback(db: Session) -> None:
    """
    Roll back a session, logging (not raising) rollback failures.

    Used in webhook handlers that already hold an exception.
    """
    try:
        db.rollback()
    except Exception as e:
        logger.error(f"Rollback failed: {e}")
