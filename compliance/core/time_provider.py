from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from compliance.config import settings


APP_TIMEZONE = settings.app_timezone or "UTC"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def utcnow(self) -> datetime:
        """Naive UTC timestamp, the form every DateTime column is stored in."""
        return self.now().astimezone(timezone.utc).replace(tzinfo=None)


def to_storage_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


default_time_provider = TimeProvider()


def utc_now() -> datetime:
    return default_time_provider.utcnow()
