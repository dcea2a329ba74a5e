"""
Email address normalization.
"""

from typing import Optional

from email_validator import EmailNotValidError, validate_email


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Trim and lowercase; None for blank input."""
    if email is None:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


def is_valid_email(email: Optional[str]) -> bool:
    """Syntax-only check (no DNS lookups)."""
    if not email:
        return False
    try:
        validate_email(email, check_deliverability=False)
        return True
    except EmailNotValidError:
        return False
