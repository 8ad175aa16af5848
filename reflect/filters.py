"""Filters deciding which session logs count as evidence."""

import re
from datetime import date, timedelta
from typing import Iterable, Optional

# Session directories created for temp working dirs carry no useful signal
NOISE_DIR_MARKERS = ("var-folders",)

MIN_USER_TURNS = 1
MIN_TOTAL_TURNS = 3

# Logs dated the day after the window still count if started before this hour
NEXT_DAY_HOUR_CUTOFF = 8

SESSION_SUFFIX = ".jsonl"

_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")


def is_noise_dir(name: str) -> bool:
    """Check if a session group directory should be skipped."""
    return any(marker in name for marker in NOISE_DIR_MARKERS)


def is_substantive(user_turns: int, total_turns: int) -> bool:
    """Check if a session has enough back-and-forth to be worth analyzing."""
    return user_turns >= MIN_USER_TURNS and total_turns >= MIN_TOTAL_TURNS


def _parse_date(text: str) -> Optional[date]:
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def file_date(filename: str) -> Optional[date]:
    """Parse the ISO date a session file name starts with."""
    match = _DATE_RE.match(filename)
    return _parse_date(match.group(1)) if match else None


def file_hour(filename: str) -> Optional[int]:
    """Parse the hour embedded after the date (``YYYY-MM-DDTHH``)."""
    hour = filename[11:13]
    return int(hour) if hour.isdigit() else None


def in_date_window(filename: str, target_dates: Iterable[date]) -> bool:
    """Check if a session file falls inside the target dates.

    Logs are named by UTC start time, so a session from late in a local day
    can carry the next day's date. Files dated one day after a target date
    are accepted when they started before ``NEXT_DAY_HOUR_CUTOFF``.
    """
    targets = set(target_dates)
    day = file_date(filename)
    if day is None:
        return False
    if day in targets:
        return True
    if day - timedelta(days=1) not in targets:
        return False
    hour = file_hour(filename)
    return hour is not None and hour < NEXT_DAY_HOUR_CUTOFF


def within_lookback(filename: str, cutoff: date) -> bool:
    """Check a context file name against the lookback cutoff.

    Names without an embedded date are always kept.
    """
    match = _DATE_RE.search(filename)
    if not match:
        return True
    day = _parse_date(match.group(1))
    return day is None or day >= cutoff
