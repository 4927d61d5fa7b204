"""
UNIX timestamp utilities (stdlib-only).

Every time expression a caller hands to the scheduler (int, float, numeric
string, ISO-8601 string, datetime) is normalized to integer UNIX seconds
here, so the task table only ever holds plain ints.

Tags:
    timestamps, utc, unix-time, meridian, stdlib-only

Doc-Types:
    - API Reference
    - Utility Documentation

STDLIB ONLY - NO PYDANTIC.
"""

import time
from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def now_ts() -> int:
    """Current UNIX time in whole seconds."""
    return int(time.time())


def to_timestamp(value: Any) -> int:
    """
    Normalize a time expression to UNIX seconds.

    Numbers are taken as-is (truncated to int). Numeric strings are parsed
    as numbers, any other string as ISO 8601. Naive datetimes are treated
    as UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a point in time.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a time value: {value!r}")
    if isinstance(value, int | float):
        return int(value)
    if isinstance(value, datetime):
        return _datetime_to_ts(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Not a time value: {value!r}") from e
        return _datetime_to_ts(parsed)
    raise ValueError(f"Not a time value: {value!r}")


def is_millis(value: Any) -> bool:
    """True when ``value`` is a number with 13 integer digits."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return len(str(int(value))) == 13


def _datetime_to_ts(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp())
