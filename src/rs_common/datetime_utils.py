"""Datetime utilities: UTC storage, business-timezone reads."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from config.settings import settings


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def to_local(moment: datetime) -> datetime:
    """Convert to the business timezone. Naive datetimes are treated as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(business_tz())


def month_start(moment: datetime) -> datetime:
    """Start of the calendar month containing `moment`, in the business timezone."""
    local = to_local(moment)
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def add_months(day: date, months: int) -> date:
    year = day.year + (day.month - 1 + months) // 12
    month = (day.month - 1 + months) % 12 + 1
    return date(year, month, 1)


def month_end(day: date) -> date:
    return add_months(day, 1) - timedelta(days=1)


def previous_weekday(day: date) -> date:
    """Move Saturday/Sunday back to the preceding Friday."""
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    return day
