from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

DATE_FORMAT = "%Y-%m-%d"


def parse_iso_day(value: object) -> date:
    """Parse a strict YYYY-MM-DD calendar date; raises ValueError otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if len(text) != 10:
        raise ValueError(f"not a YYYY-MM-DD date: {value!r}")
    return datetime.strptime(text, DATE_FORMAT).date()


def parse_optional_day(value: object) -> Optional[date]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_iso_day(value)


def format_day(value: Optional[date]) -> str:
    return value.strftime(DATE_FORMAT) if value else ""


def week_range(day: date) -> Tuple[date, date]:
    """Monday..Sunday week containing `day`."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def today_local(tz_name: str) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()
