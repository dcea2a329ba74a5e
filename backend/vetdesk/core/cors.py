"""
CORS allow-list matching.

Three kinds of entries are supported:
    - exact origins            https://app.vetdesk.app
    - subdomain wildcards      https://*.vetdesk.app
    - browser extension ids    chrome-extension://<id>

A wildcard never matches its bare apex domain. The same rules are compiled
into a single regex for Starlette's CORSMiddleware so that the middleware and
is_origin_allowed can never disagree.
"""

import re
from typing import Iterable, Optional

EXTENSION_SCHEME = "chrome-extension://"
_SUBDOMAIN = r"[a-z0-9](?:[a-z0-9-]*[a-z0-9])?"


def normalize_origin(origin: Optional[str]) -> str:
    """Lowercase and drop a trailing slash ('https://A.com/' -> 'https://a.com')."""
    if not origin:
        return ""
    return origin.strip().rstrip("/").lower()


def _wildcard_to_regex(pattern: str) -> str:
    pattern = normalize_origin(pattern)
    if "://*." not in pattern:
        raise ValueError(f"Unsupported CORS wildcard pattern: {pattern}")
    scheme, rest = pattern.split("://*.", 1)
    return rf"{re.escape(scheme)}://(?:{_SUBDOMAIN}\.)+{re.escape(rest)}"


def build_origin_regex(
    patterns: Iterable[str] = (),
    extension_ids: Iterable[str] = (),
) -> Optional[str]:
    """
    Compile wildcard patterns and extension ids into one alternation.

    Returns None when there is nothing to match, which is what
    CORSMiddleware expects for "no regex".
    """
    parts = [_wildcard_to_regex(p) for p in patterns if p and p.strip()]
    for ext_id in extension_ids:
        ext_id = (ext_id or "").strip().lower()
        if not ext_id:
            continue
        if ext_id == "*":
            parts.append(re.escape(EXTENSION_SCHEME) + r"[a-p]{32}")
        else:
            parts.append(re.escape(EXTENSION_SCHEME + ext_id))
    if not parts:
        return None
    return "(?:" + "|".join(parts) + ")"


def is_origin_allowed(
    origin: Optional[str],
    allowed_origins: Iterable[str] = (),
    patterns: Iterable[str] = (),
    extension_ids: Iterable[str] = (),
) -> bool:
    """
    Check a request Origin header against the allow-list.

    Args:
        origin: Value of the Origin header (may be None)
        allowed_origins: Exact origins
        patterns: Wildcard origins such as https://*.example.com
        extension_ids: Allowed browser extension ids ('*' allows any)

    Returns:
        True if the origin may make credentialed cross-origin requests
    """
    candidate = normalize_origin(origin)
    if not candidate or candidate == "null":
        return False

    if candidate in {normalize_origin(o) for o in allowed_origins}:
        return True

    regex = build_origin_regex(patterns, extension_ids)
    return bool(regex and re.fullmatch(regex, candidate))
