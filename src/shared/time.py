from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Tuple

MONTH_KEYS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]
MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]
# Financial year runs March through February.
FINANCIAL_YEAR_MONTHS = [3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 1, 2]
FINANCIAL_YEAR_MONTH_KEYS = [MONTH_KEYS[month - 1] for month in FINANCIAL_YEAR_MONTHS]
QUARTERS = [
    ("Q1", ["JAN", "FEB", "MAR"]),
    ("Q2", ["APR", "MAY", "JUN"]),
    ("Q3", ["JUL", "AUG", "SEP"]),
    ("Q4", ["OCT", "NOV", "DEC"]),
]


def current_year() -> int:
    return date.today().year


def month_period(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def period_month(period: Optional[str]) -> Optional[int]:
    if not period or "-" not in period:
        return None
    try:
        month = int(period.split("-")[1])
    except ValueError:
        return None
    return month if 1 <= month <= 12 else None


def period_in_year(period: Optional[str], year: int) -> bool:
    return bool(period) and period.startswith(f"{year}-")


def year_bounds(year: int) -> Tuple[datetime, datetime]:
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    end = datetime(year, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
    return start, end
