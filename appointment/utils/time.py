from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

LOCAL_TZ = ZoneInfo("Europe/Paris")

DATE_FORMAT = "%d/%m/%Y"
TIME_FORMAT = "%H:%M"


def utc_naive_to_local(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(LOCAL_TZ)


def local_date(dt: datetime) -> date:
    """Calendar date of a stored UTC-naive datetime, as seen in the service's time zone."""
    return utc_naive_to_local(dt).date()


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
