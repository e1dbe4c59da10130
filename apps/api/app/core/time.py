from zoneinfo import ZoneInfo
import datetime as dt

from apps.api.app.core.config import settings


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def trading_day_tz() -> ZoneInfo:
    return ZoneInfo(settings.RISK_DAY_TIMEZONE)


def trading_day(value: dt.datetime) -> dt.date:
    return as_utc(value).astimezone(trading_day_tz()).date()


def trading_day_bounds(day: dt.date) -> tuple[dt.datetime, dt.datetime]:
    """UTC [start, end) of a calendar day in the risk timezone."""
    tz = trading_day_tz()
    start = dt.datetime.combine(day, dt.time.min, tzinfo=tz)
    end = dt.datetime.combine(day + dt.timedelta(days=1), dt.time.min, tzinfo=tz)
    return as_utc(start), as_utc(end)
