"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone

DURATION_UNITS = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
}


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def start_of_hour(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def parse_duration(value: int, unit: str = "minutes") -> timedelta:
    """Convert a (value, unit) pair such as (30, "minutes") into a timedelta"""
    if value < 1:
        raise ValueError(f"Duration must be at least 1 {unit}")
    try:
        return DURATION_UNITS[unit] * value
    except KeyError:
        raise ValueError(f"Unknown duration unit: {unit}") from None


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
