"""
Time Windows and Calendar Arithmetic

All timestamps in the ledger are timezone-aware UTC. Naive datetimes
coming from callers are interpreted as UTC rather than local time.

MONTHLY cadence policy: a rule anchored on a day the target month does
not have (29th-31st) is clamped to that month's last day, and returns
to its anchor day as soon as a month supports it again
(Jan 31 -> Feb 28 -> Mar 31).
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from pydantic import BaseModel


class MonthWindow(BaseModel):
    """Inclusive [start, end] range covering one calendar month."""

    start: datetime
    end: datetime
    label: str

    @property
    def year(self) -> int:
        return self.start.year

    @property
    def month(self) -> int:
        return self.start.month


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(moment: datetime) -> datetime:
    """Normalise a datetime to aware UTC; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_month_label(label: str) -> tuple[int, int]:
    """
    Split a "YYYY-MM" label into (year, month).

    Raises:
        ValueError: If the label is malformed
    """
    parts = label.strip().split("-") if label else []
    if len(parts) != 2 or not parts[0].isdigit() or not parts[1].isdigit():
        raise ValueError("Invalid month format, use YYYY-MM")
    year, month = int(parts[0]), int(parts[1])
    if year < 1 or not 1 <= month <= 12:
        raise ValueError("Invalid month format, use YYYY-MM")
    return year, month


def format_month_label(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def days_in_month(label: str) -> int:
    year, month = parse_month_label(label)
    return calendar.monthrange(year, month)[1]


def month_days(label: str) -> list[date]:
    """Every calendar day of the month, in order."""
    year, month = parse_month_label(label)
    return [date(year, month, day) for day in range(1, days_in_month(label) + 1)]


def month_window(label: Optional[str] = None, now: Optional[datetime] = None) -> MonthWindow:
    """
    Canonical window for a "YYYY-MM" label, or for the month containing
    `now` (default: current UTC time) when no label is given.
    """
    if label:
        year, month = parse_month_label(label)
    else:
        current = ensure_utc(now) if now else utc_now()
        year, month = current.year, current.month

    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime.combine(date(year, month, last_day), time.max, tzinfo=timezone.utc)
    return MonthWindow(start=start, end=end, label=format_month_label(year, month))


def add_months(moment: datetime, months: int, anchor_day: Optional[int] = None) -> datetime:
    """
    Shift by whole calendar months, clamping to the last day of shorter
    months. `anchor_day` restores the intended day of month when the
    target month has it.
    """
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    wanted = anchor_day or moment.day
    day = min(wanted, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def advance(moment: datetime, cadence, anchor_day: Optional[int] = None) -> datetime:
    """Move a schedule forward by exactly one cadence step."""
    step = getattr(cadence, "value", cadence)
    if step == "DAILY":
        return moment + timedelta(days=1)
    if step == "WEEKLY":
        return moment + timedelta(days=7)
    if step == "MONTHLY":
        return add_months(moment, 1, anchor_day)
    raise ValueError(f"Unknown cadence: {cadence}")
