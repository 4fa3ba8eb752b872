"""Miscellaneous helper functions."""

from __future__ import annotations

import calendar
import datetime as dt
import re
import uuid
from typing import Any, Optional

_FLOAT_PREFIX = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)")


def parse_iso_datetime(value: str | None) -> Optional[dt.datetime]:
    """Parse an ISO8601 datetime string into a :class:`datetime` object.

    Older ``datetime.fromisoformat`` releases reject a trailing ``Z`` and
    none accept a lowercase ``z``, which the mobile SMS sync sends.  Both are
    rewritten as ``+00:00``.  Returns ``None`` if the value cannot be parsed.
    """
    if not value:
        return None
    try:
        if value[-1] in "zZ":
            value = value[:-1] + "+00:00"
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_amount(value: Any) -> float:
    """Read the leading number of a string the way receipts print it.

    Only the leading numeric portion is used, so ``"12,50"`` reads as ``12``
    and ``"38.02 USD"`` as ``38.02``.  Returns 0.0 when no number is present.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    m = _FLOAT_PREFIX.match(str(value))
    if not m:
        return 0.0
    return float(m.group(0))


def to_number(value: Any, default: float = 0.0) -> float:
    """Coerce a stored numeric field; missing or malformed values use ``default``."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def today_iso() -> str:
    return dt.date.today().isoformat()


def js_weekday(value: dt.date) -> int:
    """Day of week with Sunday as 0, matching what the frontend sends."""
    return (value.weekday() + 1) % 7


def as_datetime(value: Any) -> Optional[dt.datetime]:
    """Best-effort conversion of a stored ``date``/``createdAt`` value.

    Accepts ``datetime`` objects, ``date`` objects and ISO strings
    (``YYYY-MM-DD`` or full timestamps).  Naive values are treated as UTC.
    """
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        result = value
    elif isinstance(value, dt.date):
        result = dt.datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        result = parse_iso_datetime(value.strip())
        if result is None:
            return None
    else:
        return None
    if result.tzinfo is None:
        result = result.replace(tzinfo=dt.timezone.utc)
    return result


def round2(value: float) -> float:
    return round(value, 2)


def period_start(period: str, now: Optional[dt.datetime] = None) -> dt.datetime:
    """Start of a ``week``/``month``/``year`` window ending at ``now``.

    Month and year steps keep the day of month where the target month has
    it and clamp to its last day otherwise.
    """
    now = now or utcnow()
    if period == "week":
        return now - dt.timedelta(days=7)
    if period == "month":
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    else:
        year, month = now.year - 1, now.month
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def new_receipt_id() -> str:
    return f"r_{uuid.uuid4().hex[:12]}"
