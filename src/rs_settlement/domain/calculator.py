"""Settlement calculator — pure integer functions, no I/O.

All results are whole points. Durations are whole minutes; partial minutes of
overtime are not billed.
"""

import math
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from config.settings import settings

EXTENSION_MULTIPLIER_NUM = 3  # overtime is billed at 1.5x the per-minute rate
EXTENSION_MULTIPLIER_DEN = 2
MINUTES_PER_RATE_UNIT = 30


def scheduled_minutes(duration_hours: float) -> int:
    """floor(hours * 60). 1.5h -> 90."""
    if duration_hours < 0:
        raise ValueError(f"duration must be >= 0, got {duration_hours}")
    return math.floor(duration_hours * 60)


def required_points(rate_per_30min: int, minutes: int) -> int:
    """Points held from the guest for `minutes` at `rate_per_30min`."""
    if rate_per_30min < 0 or minutes < 0:
        raise ValueError("rate and minutes must be >= 0")
    return rate_per_30min * minutes // MINUTES_PER_RATE_UNIT


def night_bonus(start_time: datetime, tz: ZoneInfo | None = None) -> int:
    """Flat bonus when the session starts in the late-night window.

    Step function on the local start hour: NIGHT_BONUS_POINTS if the hour is in
    [NIGHT_BONUS_START_HOUR, NIGHT_BONUS_END_HOUR), else 0. Naive datetimes are UTC.
    """
    zone = tz or ZoneInfo(settings.TIMEZONE)
    if start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=timezone.utc)
    hour = start_time.astimezone(zone).hour
    if settings.NIGHT_BONUS_START_HOUR <= hour < settings.NIGHT_BONUS_END_HOUR:
        return settings.NIGHT_BONUS_POINTS
    return 0


def elapsed_minutes(started_at: datetime, ended_at: datetime) -> int:
    seconds = (ended_at - started_at).total_seconds()
    return max(0, math.floor(seconds / 60))


def extension_fee(
    cast_grade_points: int,
    scheduled: int,
    started_at: datetime,
    ended_at: datetime,
) -> int:
    """Overtime charge for one cast.

    base = grade_points // 30 per minute; fee = floor(base * overtime * 1.5).
    Finishing early is never negative.
    """
    per_minute = cast_grade_points // MINUTES_PER_RATE_UNIT
    overtime = max(0, elapsed_minutes(started_at, ended_at) - scheduled)
    return per_minute * overtime * EXTENSION_MULTIPLIER_NUM // EXTENSION_MULTIPLIER_DEN


def split_evenly(total: int, n: int) -> list[int]:
    """Largest-remainder split: the first total % n parts get one extra point.

    sum(result) == total and max(result) - min(result) <= 1.
    """
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    if total < 0:
        raise ValueError(f"total must be >= 0, got {total}")
    share, remainder = divmod(total, n)
    return [share + 1 if i < remainder else share for i in range(n)]
