"""Lenient parsing of text and timestamp values coming from storage or external payloads."""

from datetime import UTC, datetime
from typing import Any

from dateutil import parser as dateutil_parser


def normalize_text(value: Any) -> str:
    """Return the value as a stripped string; lists use their first element, None becomes ""."""
    if isinstance(value, list | tuple):
        return normalize_text(value[0]) if value else ""
    if value is None:
        return ""
    return str(value).strip()


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value: Any) -> datetime | None:
    """Parse a timestamp into an aware UTC datetime.

    Accepts datetimes, unix seconds (int, float or digit strings), ISO-8601 strings and
    SQLite's "YYYY-MM-DD HH:MM:SS" form. Naive values are taken as UTC. Anything that
    cannot be parsed returns None.
    """
    if isinstance(value, datetime):
        return _ensure_utc(value)

    if isinstance(value, bool):
        return None

    if isinstance(value, int | float):
        if value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (ValueError, OverflowError, OSError):
            return None

    text = normalize_text(value)
    if not text:
        return None

    if text.isdigit():
        return parse_datetime(int(text))

    try:
        parsed = dateutil_parser.isoparse(text)
    except ValueError:
        try:
            parsed = dateutil_parser.parse(text)
        except (ValueError, OverflowError):
            return None

    return _ensure_utc(parsed)


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime for storage (UTC ISO-8601), keeping None as None."""
    if value is None:
        return None
    return _ensure_utc(value).isoformat()


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)
