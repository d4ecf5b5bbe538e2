from datetime import date, datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from school_api.core.config import settings


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def school_tz() -> ZoneInfo:
    return _zone(settings.SCHOOL_TIMEZONE)


def school_today() -> date:
    """Current calendar day in the canonical school timezone."""
    return datetime.now(school_tz()).date()


def to_school_date(value) -> date:
    """
    Normalizes a date-ish input to a calendar day.

    Accepts date, datetime, "YYYY-MM-DD" or any ISO-8601 datetime string.
    Aware datetimes are converted to SCHOOL_TIMEZONE before the time of day
    is dropped; naive ones are taken as already local.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValueError("date is empty")
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}. Use YYYY-MM-DD") from None
    else:
        raise ValueError(f"Invalid date: {value!r}")

    if dt.tzinfo is not None:
        dt = dt.astimezone(school_tz())
    return dt.date()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Some drivers (SQLite) hand back naive timestamps; they are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
