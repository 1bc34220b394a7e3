"""Historical series helpers: range clamping and per-day bucketing.

Upstream history comes back at uneven granularity (CoinGecko returns hourly
points for short ranges, snapshots are hourly). Every series exposed by the
API is reduced to one point per calendar day where the last sample wins.
"""

from collections.abc import Iterable
from datetime import datetime, timezone, tzinfo
from typing import TypeVar

V = TypeVar("V")

CRYPTO_DAYS = (1, 90)
FOREX_DAYS = (1, 365)
VES_DAYS = (1, 90)


def clamp_days(days: int, minimum: int, maximum: int) -> int:
    """Clamp a requested history length into ``[minimum, maximum]``."""
    return max(minimum, min(maximum, days))


def _to_datetime(timestamp: int | float | datetime, tz: tzinfo) -> datetime:
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(tz)
    return datetime.fromtimestamp(timestamp / 1000, tz=tz)


def bucket_by_day(
    samples: Iterable[tuple[int | float | datetime, V]],
    tz: tzinfo = timezone.utc,
) -> list[tuple[str, V]]:
    """Reduce ``(timestamp, value)`` samples to one value per calendar day.

    Args:
        samples: Pairs of epoch-milliseconds (or datetime) and value, in
            chronological order. Naive datetimes are taken as UTC.
        tz: Timezone whose calendar days define the buckets.

    Returns:
        ``(YYYY-MM-DD, value)`` pairs sorted by date; for each day the
        chronologically last sample wins.
    """
    buckets: dict[str, tuple[datetime, V]] = {}
    for timestamp, value in samples:
        moment = _to_datetime(timestamp, tz)
        day = moment.date().isoformat()
        current = buckets.get(day)
        if current is None or moment >= current[0]:
            buckets[day] = (moment, value)
    return [(day, buckets[day][1]) for day in sorted(buckets)]
