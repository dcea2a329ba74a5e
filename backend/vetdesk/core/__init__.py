"""
Core module for VetDesk backend.

Contains configuration, database setup, security and logging utilities.
"""

from .config import settings
from .database import get_db, engine, SessionLocal

__all__ = ["settings", "get_db", "engine", "SessionLocal"]
