"""Validate and normalize visits before they reach storage.

Everything here is pure: no I/O, no locks. The clock is injectable so the
future-timestamp check is deterministic under test.
"""

import re
import time
import unicodedata
from dataclasses import replace
from typing import Optional
from urllib.parse import urlsplit

from visitlog.config import DEFAULT_CLOCK_SKEW, DEFAULT_MAX_TITLE_LENGTH, DEFAULT_MAX_URL_LENGTH
from visitlog.errors import InvalidDuration, InvalidTimestamp, InvalidTitle, InvalidUrl
from visitlog.models import TransitionType, Visit

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")
_WHITESPACE_RE = re.compile(r"\s")


def validate_url(url, max_length: int = DEFAULT_MAX_URL_LENGTH, field_name: str = "url") -> str:
    """Return the stripped URL or raise InvalidUrl. Requires scheme and host."""
    if not isinstance(url, str):
        raise InvalidUrl(f"{field_name} must be a string, got {type(url).__name__}")
    url = url.strip()
    if not url:
        raise InvalidUrl(f"{field_name} cannot be empty")
    if len(url) > max_length:
        raise InvalidUrl(f"{field_name} exceeds {max_length} characters")
    if _WHITESPACE_RE.search(url):
        raise InvalidUrl(f"{field_name} contains whitespace: {url[:80]!r}")
    try:
        parts = urlsplit(url)
        # Accessing .port validates it
        parts.port
    except ValueError as e:
        raise InvalidUrl(f"{field_name} is malformed: {e}") from e
    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        raise InvalidUrl(f"{field_name} has no scheme: {url[:80]!r}")
    if not parts.hostname:
        raise InvalidUrl(f"{field_name} has no host: {url[:80]!r}")
    return url


def sanitize_title(title, max_length: int = DEFAULT_MAX_TITLE_LENGTH) -> str:
    """Drop control characters, strip, and truncate to max_length code points."""
    if title is None or not isinstance(title, str):
        raise InvalidTitle(f"title must be a string, got {type(title).__name__}")
    cleaned = "".join(ch for ch in title if unicodedata.category(ch) != "Cc")
    cleaned = cleaned.strip()
    return cleaned[:max_length]


def validate_timestamp(timestamp, now: Optional[int] = None, clock_skew: int = DEFAULT_CLOCK_SKEW) -> int:
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise InvalidTimestamp(f"timestamp must be an integer, got {timestamp!r}")
    if timestamp < 0:
        raise InvalidTimestamp(f"timestamp cannot be negative: {timestamp}")
    now = int(time.time()) if now is None else now
    if timestamp > now + clock_skew:
        raise InvalidTimestamp(f"timestamp {timestamp} is more than {clock_skew}s in the future")
    return timestamp


def validate_duration(duration) -> Optional[int]:
    if duration is None:
        return None
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise InvalidDuration(f"duration must be an integer, got {duration!r}")
    if duration < 0:
        raise InvalidDuration(f"duration cannot be negative: {duration}")
    return duration


def validate(
    visit: Visit,
    now: Optional[int] = None,
    *,
    max_title_length: int = DEFAULT_MAX_TITLE_LENGTH,
    max_url_length: int = DEFAULT_MAX_URL_LENGTH,
    clock_skew: int = DEFAULT_CLOCK_SKEW,
) -> Visit:
    """Check and normalize a visit, returning a new Visit ready for insertion.

    Raises a ValidationError subclass on the first problem found.
    """
    url = validate_url(visit.url, max_url_length)
    from_url = visit.from_url
    if from_url is not None and (not isinstance(from_url, str) or from_url.strip()):
        from_url = validate_url(from_url, max_url_length, field_name="from_url")
    else:
        from_url = None

    return replace(
        visit,
        url=url,
        title=sanitize_title(visit.title, max_title_length),
        visit_time=validate_timestamp(visit.visit_time, now, clock_skew),
        visit_duration=validate_duration(visit.visit_duration),
        from_url=from_url,
        transition_type=TransitionType.parse(visit.transition_type),
    )
