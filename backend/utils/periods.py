"""
Period helpers for "YYYY-MM" month keys.

Rolling windows are anchored on the latest month present in the data,
not on the wall clock, so a rebuild over the same records always picks
the same window.
"""

from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

from dateutil.relativedelta import relativedelta

T = TypeVar('T')

ROLLING_WINDOW_MONTHS = (3, 6, 12)


def parse_period(period: str) -> date:
    return date(int(period[:4]), int(period[5:7]), 1)


def format_period(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def month_cutoff(latest_period: str, months: int) -> str:
    """
    First period of a `months`-long window ending at `latest_period` (inclusive).

    >>> month_cutoff("2024-03", 3)
    '2024-01'
    """
    return format_period(parse_period(latest_period) - relativedelta(months=months - 1))


def latest_period(records: Iterable) -> Optional[str]:
    latest = None
    for r in records:
        if latest is None or r.period > latest:
            latest = r.period
    return latest


def rolling_window(
    records: Sequence[T],
    min_records: int,
    months: Sequence[int] = ROLLING_WINDOW_MONTHS,
) -> Tuple[Optional[List[T]], Optional[str]]:
    """
    Narrowest trailing window holding at least `min_records` records.

    Returns (window, "3M"|"6M"|"12M"), or (None, None) when no window
    qualifies and the caller must fall back.
    """
    latest = latest_period(records)
    if latest is None:
        return None, None
    for m in months:
        cutoff = month_cutoff(latest, m)
        window = [r for r in records if r.period >= cutoff]
        if len(window) >= min_records:
            return window, f"{m}M"
    return None, None


def quarter_sort_key(quarter: str) -> Tuple[int, int]:
    """Chronological key for "24Q1" labels (pre-2000 "98Q4" sorts first)."""
    yy = int(quarter[:2])
    year = 1900 + yy if yy > 50 else 2000 + yy
    return year, int(quarter[3])
