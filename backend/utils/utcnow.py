"""UTC helpers.

``datetime.utcnow()`` is deprecated since Python 3.12. These wrappers produce
the **naive** UTC datetimes stored in the database and passed between
services, so comparisons never mix aware and naive values.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC time as a naive (tzinfo=None) datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware or naive datetime to naive UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Render a naive-UTC datetime as ISO-8601 with a trailing ``Z``."""
    dt = to_utc_naive(dt)
    if dt is None:
        return None
    return dt.isoformat() + "Z"
