"""
Phone number formatting, normalization and extraction.

Numbers are stored in E.164 (+12137774445) and displayed in US format
((213) 777-4445). Voice transcripts and IDEXX free text often carry numbers
embedded in sentences, so extraction helpers pull the first plausible US
number out of arbitrary text.
"""

import re
from typing import Optional, TypedDict


_NON_DIAL_CHARS = re.compile(r"[^\d+]")
_NON_DIGITS = re.compile(r"\D")
_US_NUMBER = re.compile(r"^\+?1?(\d{3})(\d{3})(\d{4})$")
_E164 = re.compile(r"^\+[1-9]\d{1,14}$")
_COUNTRY_CODE = re.compile(r"^\+(\d{1,3})")

# Order matters: formatted numbers first, then bare 10-digit runs.
_TEXT_PATTERNS = (
    re.compile(r"(?:\+?1[-.\s]?)?\(?(\d{3})\)?[-.\s]?(\d{3})[-.\s]?(\d{4})"),
    re.compile(r"\b(\d{3})(\d{3})(\d{4})\b"),
)
_PHONE_CHARS = re.compile(r"[\d\s\-().+]+")


class PhoneExtraction(TypedDict):
    valid: bool
    e164: Optional[str]
    raw_digits: Optional[str]
    original_text: str
    extra_text: Optional[str]


# =============================================================================
# Display Formatting
# =============================================================================

def format_phone_number(phone: Optional[str]) -> str:
    """Display format, or 'N/A' when no number is on file."""
    if not phone:
        return "N/A"
    return format_phone_number_display(phone)


def format_phone_number_display(phone: str) -> str:
    """
    Format a number for display.

    US numbers become (213) 777-4445. Other international numbers keep
    their country code and are grouped in threes, e.g. +44 207 946 0958.
    Anything else is returned cleaned but otherwise untouched.
    """
    cleaned = _NON_DIAL_CHARS.sub("", phone or "")

    match = _US_NUMBER.match(cleaned)
    if match:
        area, prefix, line = match.groups()
        return f"({area}) {prefix}-{line}"

    if cleaned.startswith("+") and len(cleaned) > 4:
        country_code = cleaned[:3]
        rest = cleaned[3:]
        groups = []
        while len(rest) > 4:
            groups.append(rest[:3])
            rest = rest[3:]
        if rest:
            groups.append(rest)
        return " ".join([country_code, *groups])

    return cleaned


def format_phone_compact(phone: str) -> str:
    """Strip everything except digits and '+'."""
    return _NON_DIAL_CHARS.sub("", phone or "")


def format_phone_short(phone: str) -> str:
    """Masked form showing only the last four digits: '•••• 4445'."""
    cleaned = _NON_DIAL_CHARS.sub("", phone or "")
    digits = _NON_DIGITS.sub("", cleaned)
    if len(digits) >= 4:
        return f"•••• {digits[-4:]}"
    return cleaned


# =============================================================================
# E.164
# =============================================================================

def is_valid_e164(phone: Optional[str]) -> bool:
    return bool(phone) and bool(_E164.match(phone))


def to_e164(phone: Optional[str]) -> Optional[str]:
    """
    Convert a US number to E.164.

    Already-prefixed numbers are only validated. Returns None when the
    input cannot be turned into a valid E.164 number.
    """
    if not phone:
        return None
    cleaned = _NON_DIAL_CHARS.sub("", phone)

    if not cleaned.startswith("+"):
        digits = _NON_DIGITS.sub("", cleaned)
        if len(digits) == 11 and digits.startswith("1"):
            digits = digits[1:]
        if len(digits) != 10:
            return None
        cleaned = f"+1{digits}"

    return cleaned if is_valid_e164(cleaned) else None


def normalize_to_e164(phone: Optional[str]) -> Optional[str]:
    """
    Best-effort E.164 normalization for caller-supplied numbers.

    10 digits are treated as US, 11 digits with a leading 1 as US with
    country code, and anything typed with a leading '+' keeps its country
    code. Returns None for blank input or more than 15 digits.
    """
    if phone is None or not phone.strip():
        return None

    trimmed = phone.strip()
    digits = _NON_DIGITS.sub("", trimmed)

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if trimmed.startswith("+") and digits:
        return f"+{digits}"
    if 1 <= len(digits) <= 15:
        return f"+{digits}"
    return None


def get_country_code(phone: Optional[str]) -> Optional[str]:
    match = _COUNTRY_CODE.match(phone or "")
    return match.group(1) if match else None


def is_us_number(phone: Optional[str]) -> bool:
    return bool(phone) and phone.startswith("+1")


# =============================================================================
# Free-text Extraction
# =============================================================================

def extract_phone_number(text: Optional[str]) -> Optional[str]:
    """
    Pull the first US phone number out of free text.

    Area codes starting with 0 or 1 are rejected (not valid NANP).

    Returns:
        Ten digits, or None if nothing plausible was found
    """
    if not text:
        return None

    for pattern in _TEXT_PATTERNS:
        for match in pattern.finditer(text):
            area, prefix, line = match.groups()
            if area[0] in "01":
                continue
            return f"{area}{prefix}{line}"
    return None


def parse_phone_from_text(text: Optional[str]) -> Optional[str]:
    """E.164 form of the first number found in text."""
    return to_e164(extract_phone_number(text))


def has_valid_phone(text: Optional[str]) -> bool:
    return parse_phone_from_text(text) is not None


def extract_phone_with_details(text: Optional[str]) -> PhoneExtraction:
    """
    Extract a number and report what else the text contained.

    extra_text holds whatever remains once phone-like characters are
    removed, e.g. 'ask for Dr. Smith' from '555-123-4567 ask for Dr. Smith'.
    """
    original = text or ""
    raw_digits = extract_phone_number(original)
    e164 = to_e164(raw_digits)

    extra = _PHONE_CHARS.sub(" ", original)
    extra = re.sub(r"\s+", " ", extra).strip()

    return {
        "valid": e164 is not None,
        "e164": e164,
        "raw_digits": raw_digits,
        "original_text": original,
        "extra_text": extra or None,
    }
