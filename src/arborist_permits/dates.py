"""Calendar-day helpers.

Every comparison in the pipeline works on UTC-midnight datetimes so that
"same day" and "last N days" do not drift with the process timezone.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple


_US_DATE_RE = re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})")
_ISO_DAY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_ONE_DAY = timedelta(days=1)


def utc_midnight(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def today_utc() -> datetime:
    return utc_midnight(datetime.now(timezone.utc))


def parse_us_date(text: Optional[str]) -> Optional[datetime]:
    """Parse `M/D/YYYY`, `M-D-YY` and similar into a UTC-midnight datetime.

    Returns None for anything that does not match or is not a real calendar
    date; never raises.
    """

    if not text or not isinstance(text, str):
        return None
    m = _US_DATE_RE.search(text)
    if not m:
        return None
    month, day, year_text = int(m.group(1)), int(m.group(2)), m.group(3)
    if len(year_text) == 3:
        return None
    year = int(year_text)
    if len(year_text) == 2:
        year += 2000
    if not year or not month or not day:
        return None
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_run_day(text: Optional[str]) -> Optional[datetime]:
    """Parse a `YYYY-MM-DD` run-day override."""

    m = _ISO_DAY_RE.match((text or "").strip())
    if not m:
        return None
    try:
        return datetime(int(m.group(1)), int(m.group(2)), int(m.group(3)), tzinfo=timezone.utc)
    except ValueError:
        return None


def resolve_run_day(override: Optional[str] = None) -> datetime:
    return parse_run_day(override) or today_utc()


def target_day_for(run_day: datetime) -> datetime:
    return utc_midnight(run_day) - _ONE_DAY


def same_utc_day(a: Optional[datetime], b: Optional[datetime]) -> bool:
    if a is None or b is None:
        return False
    a = a.astimezone(timezone.utc) if a.tzinfo else a
    b = b.astimezone(timezone.utc) if b.tzinfo else b
    return (a.year, a.month, a.day) == (b.year, b.month, b.day)


def window_cutoff(reference: datetime, days: int) -> datetime:
    if days < 1:
        raise ValueError("window must cover at least one day")
    return utc_midnight(reference) - (days - 1) * _ONE_DAY


def within_last_n_days(
    day: Optional[datetime], days: int, reference: Optional[datetime] = None
) -> bool:
    """True when `day` is on or after `reference - (days - 1)`.

    The check is one-sided: days after the reference also pass.
    """

    cutoff = window_cutoff(reference or today_utc(), days)
    if day is None:
        return False
    return day >= cutoff


def in_window(day: Optional[datetime], days: int, reference: datetime) -> bool:
    """Bounded window check: `reference - (days - 1) <= day <= reference`."""

    if day is None:
        return False
    return within_last_n_days(day, days, reference) and day <= utc_midnight(reference)


def format_us_date(value: datetime) -> str:
    return f"{value.month:02d}/{value.day:02d}/{value.year:04d}"


def format_iso_date(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def canonical_us_date(text: Optional[str]) -> Optional[str]:
    """Rewrite a parseable date as `MM/DD/YYYY`; leave anything else as-is."""

    parsed = parse_us_date(text)
    if parsed is not None:
        return format_us_date(parsed)
    if text is None:
        return None
    return text.strip() or None


def date_range(days: Iterable[Optional[datetime]]) -> Tuple[Optional[datetime], Optional[datetime]]:
    values = [d for d in days if d is not None]
    if not values:
        return None, None
    return min(values), max(values)
