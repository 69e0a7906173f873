import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC_NAME = 'UTC'


def resolve_timezone(name: Optional[str]) -> Tuple[str, ZoneInfo]:
    """Return (name, zone) for an IANA timezone name.

    Absent or unknown names fall back to UTC with a warning; nothing is raised.
    """
    if not name:
        return UTC_NAME, ZoneInfo(UTC_NAME)
    try:
        return name, ZoneInfo(str(name))
    except (ZoneInfoNotFoundError, ValueError, TypeError, OSError) as exc:
        logger.warning(f"[timezone-fallback] invalid timezone {name!r}: {exc}; using UTC")
        return UTC_NAME, ZoneInfo(UTC_NAME)


def local_date_key(ts: float, zone: ZoneInfo) -> str:
    """Calendar date (YYYY-MM-DD) of a unix timestamp in the given zone."""
    return datetime.fromtimestamp(ts, tz=zone).date().isoformat()


def local_midnight(ts: float, zone: ZoneInfo) -> float:
    """Unix timestamp of the local midnight that starts the day containing ts."""
    local = datetime.fromtimestamp(ts, tz=zone)
    midnight = datetime(local.year, local.month, local.day, tzinfo=zone)
    return midnight.timestamp()


def end_of_day(date_key: str, zone: ZoneInfo) -> float:
    """Unix timestamp of the local midnight that ends the given date."""
    day = datetime.fromisoformat(date_key).date() + timedelta(days=1)
    return datetime(day.year, day.month, day.day, tzinfo=zone).timestamp()
