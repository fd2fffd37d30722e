"""
Datetime helpers for match scheduling.

Dates are stored as naive UTC datetimes. Aware datetimes are converted
to UTC before their tzinfo is dropped; naive inputs are assumed UTC.
"""

from datetime import datetime, timezone
from typing import Union


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO 8601 string (or pass through a datetime) into naive UTC.

    A trailing 'Z' is accepted as UTC.

    Raises:
        ValueError: If the string is not a valid ISO 8601 datetime
    """
    if isinstance(value, datetime):
        return to_utc_naive(value)

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Invalid datetime: {value!r}")
    return to_utc_naive(parsed)
