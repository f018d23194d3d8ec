"""Day keys and the calendar week grid.

Day keys are plain ``YYYY-MM-DD`` strings. They are parsed into naive
``datetime.date`` values with no time of day and no timezone conversion, so
"the 5th" is the 5th wherever the server runs.
"""
from __future__ import annotations
import re
from datetime import date, datetime, timedelta
from typing import List, Optional

from .errors import InvariantFailed

DAY_KEY_FORMAT = "%Y-%m-%d"
DAY_KEY_RE = re.compile(r"\d{4}-\d{2}-\d{2}")

# Calendar window around the reference date.
WEEKS_BEFORE = 4
WEEKS_AFTER = 12


def format_day_key(d: date) -> str:
    return d.strftime(DAY_KEY_FORMAT)


def parse_day_key(key: str) -> date:
    """Parse the first ten characters of `key` as a calendar date.

    Raises ValueError for anything that is not a valid day.
    """
    return datetime.strptime(key[:10], DAY_KEY_FORMAT).date()


def is_day_key(key: str) -> bool:
    """Exactly `YYYY-MM-DD` and a real date."""
    if not DAY_KEY_RE.fullmatch(key):
        return False
    try:
        parse_day_key(key)
    except ValueError:
        return False
    return True


def validate_day_key(key: Optional[str]) -> Optional[str]:
    """Normalize an optional day key coming from a form; blank means no day."""
    if key is None:
        return None
    key = key.strip()
    if not key:
        return None
    try:
        return format_day_key(parse_day_key(key))
    except ValueError:
        raise InvariantFailed(f"invalid day {key!r}, use YYYY-MM-DD")


def today_key() -> str:
    # TODO: per-user timezones; today is the server's local day for now.
    return format_day_key(date.today())


def week_start(d: date) -> date:
    """Monday on or before `d`."""
    return d - timedelta(days=d.weekday())


def get_calendar_weeks(d: date) -> List[List[str]]:
    start = week_start(d - timedelta(weeks=WEEKS_BEFORE))
    end = d + timedelta(weeks=WEEKS_AFTER)
    weeks = []
    monday = start
    while monday <= end:
        weeks.append([format_day_key(monday + timedelta(days=n)) for n in range(7)])
        monday += timedelta(weeks=1)
    return weeks


def calendar_bounds(weeks: List[List[str]]) -> tuple[str, str]:
    return weeks[0][0], weeks[-1][-1]
