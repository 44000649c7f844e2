# parsing.py
# Tolerant converters for stored clinical values (ISO timestamps, numbers)

import math
from datetime import date, datetime
from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp or date into a naive local datetime.

    Returns None for missing or unparseable input so callers can skip the record.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone().replace(tzinfo=None)
        except (OverflowError, ValueError):
            # Offset pushes the value past datetime.min / datetime.max
            return None
    return parsed


def parse_date(value) -> Optional[date]:
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def as_float(value) -> Optional[float]:
    """Coerce a stored numeric field; booleans, non-finite values and garbage become None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    return number


def latest(items: Iterable[T], timestamp_of: Callable[[T], object]) -> Optional[T]:
    """Entry with the maximum parseable timestamp; entries with bad timestamps are ignored"""
    best = None
    best_ts = None
    for item in items:
        ts = parse_timestamp(timestamp_of(item))
        if ts is None:
            continue
        if best_ts is None or ts > best_ts:
            best, best_ts = item, ts
    return best


def sorted_by_time(items: Iterable[T], timestamp_of: Callable[[T], object]) -> list:
    """(timestamp, item) pairs in chronological order, skipping unparseable entries"""
    pairs = []
    for item in items:
        ts = parse_timestamp(timestamp_of(item))
        if ts is not None:
            pairs.append((ts, item))
    pairs.sort(key=lambda pair: pair[0])
    return pairs
