from __future__ import annotations

from datetime import date, datetime, timezone as dt_timezone

import pytz

DEFAULT_TIMEZONE = "UTC"


class TimezoneUtils:
    """Utilities for consistent timezone handling across the engine."""

    @staticmethod
    def validate_timezone(tz_name: str | None) -> bool:
        return bool(tz_name) and tz_name in pytz.all_timezones_set

    @staticmethod
    def _get_timezone(tz_name: str | None):
        if not TimezoneUtils.validate_timezone(tz_name):
            return pytz.timezone(DEFAULT_TIMEZONE)
        return pytz.timezone(tz_name)

    @staticmethod
    def utc_now() -> datetime:
        """Return the current UTC timestamp (timezone aware)."""
        return datetime.now(dt_timezone.utc)

    @staticmethod
    def ensure_timezone_aware(
        dt: datetime | None, assume_utc: bool = True
    ) -> datetime | None:
        """Guarantee that a datetime carries timezone information."""
        if dt is None:
            return None
        if dt.tzinfo is None:
            if not assume_utc:
                raise ValueError("Naive datetime provided without explicit timezone handling.")
            return dt.replace(tzinfo=dt_timezone.utc)
        return dt

    @staticmethod
    def to_utc(dt: datetime | None) -> datetime | None:
        """Aware UTC copy of ``dt``; SQLite keeps the wall-clock digits only, so values are stored in UTC."""
        aware = TimezoneUtils.ensure_timezone_aware(dt)
        return aware.astimezone(dt_timezone.utc) if aware is not None else None

    @staticmethod
    def convert_to_timezone(dt: datetime | None, tz_name: str | None) -> datetime | None:
        if dt is None:
            return None
        aware = TimezoneUtils.ensure_timezone_aware(dt)
        return aware.astimezone(TimezoneUtils._get_timezone(tz_name))

    @staticmethod
    def business_date(dt: datetime, tz_name: str | None) -> date:
        """Calendar date of ``dt`` in the business timezone."""
        return TimezoneUtils.convert_to_timezone(dt, tz_name).date()

    @staticmethod
    def elapsed_since(earlier: datetime, later: datetime):
        """Timedelta between two datetimes, tolerating naive values read back from SQLite."""
        return TimezoneUtils.ensure_timezone_aware(later) - TimezoneUtils.ensure_timezone_aware(earlier)
