from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tinywords.config import DEFAULT_TIMEZONE

UTC = timezone.utc
DATE_FORMAT = "%Y-%m-%d"


def parse_local_date(value: str) -> date:
    """Parse a zero-padded ``YYYY-MM-DD`` calendar date."""
    text = str(value or "").strip()
    try:
        parsed = datetime.strptime(text, DATE_FORMAT).date()
    except ValueError as exc:
        raise ValueError(f"invalid calendar date: {value!r}") from exc
    if parsed.strftime(DATE_FORMAT) != text:
        raise ValueError(f"calendar date must be zero-padded: {value!r}")
    return parsed


def add_days(local_date: str, days: int) -> str:
    # date arithmetic has no wall clock, so DST never shifts the result
    return (parse_local_date(local_date) + timedelta(days=days)).strftime(DATE_FORMAT)


def compare_local_date(a: str, b: str) -> int:
    if a == b:
        return 0
    return -1 if a < b else 1


def today_for_timezone(tz_name: str | None, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    try:
        zone = ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo(DEFAULT_TIMEZONE)
    return now.astimezone(zone).strftime(DATE_FORMAT)
