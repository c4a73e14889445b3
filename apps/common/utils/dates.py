from __future__ import annotations

from datetime import date, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def studio_zone() -> ZoneInfo:
    return _zone(getattr(settings, "STUDIO_TIME_ZONE", settings.TIME_ZONE))


def to_studio_date(value) -> date | None:
    """
    Normalise any incoming date-like value to a studio-local calendar day.

    - ``date`` is returned unchanged.
    - Aware ``datetime`` is converted into the studio timezone first.
    - Naive ``datetime`` is taken to already be studio-local.
    - Strings are parsed as ISO dates or datetimes.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            return value.astimezone(studio_zone()).date()
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        return to_studio_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    raise TypeError(f"Cannot interpret {value!r} as a date")


def studio_today() -> date:
    return timezone.now().astimezone(studio_zone()).date()


def date_key(value: date) -> str:
    return value.isoformat()


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def max_date(*values: date | None) -> date | None:
    present = [v for v in values if v is not None]
    return max(present) if present else None


def min_date(*values: date | None) -> date | None:
    present = [v for v in values if v is not None]
    return min(present) if present else None
