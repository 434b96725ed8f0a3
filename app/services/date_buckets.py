"""
Date bucketing for the date dimension.

Buckets start at midnight UTC:
    daily      → the day itself
    weekly     → Monday of the ISO week
    monthly    → first day of the month
    quarterly  → first day of the quarter
    annually   → 1 January

``bucket_range`` gives the half-open [start, end) interval a bucket
covers, which is what drill-down filters on.
"""

from datetime import datetime, timedelta, timezone

from app.utils.helpers import as_utc


def bucket_start(value: datetime, grouping: str) -> datetime:
    value = as_utc(value)
    day = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if grouping == "daily":
        return day
    if grouping == "weekly":
        return day - timedelta(days=day.weekday())
    if grouping == "monthly":
        return day.replace(day=1)
    if grouping == "quarterly":
        return day.replace(month=(day.month - 1) // 3 * 3 + 1, day=1)
    if grouping == "annually":
        return day.replace(month=1, day=1)
    raise ValueError(f"Unknown date grouping: {grouping}")


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    return value.replace(year=value.year + month_index // 12, month=month_index % 12 + 1)


def bucket_range(start: datetime, grouping: str) -> tuple[datetime, datetime]:
    start = bucket_start(start, grouping)
    if grouping == "daily":
        return start, start + timedelta(days=1)
    if grouping == "weekly":
        return start, start + timedelta(days=7)
    if grouping == "monthly":
        return start, _add_months(start, 1)
    if grouping == "quarterly":
        return start, _add_months(start, 3)
    return start, _add_months(start, 12)


def bucket_label(start: datetime, grouping: str) -> str:
    if grouping == "daily":
        return start.strftime("%Y-%m-%d")
    if grouping == "weekly":
        return f"Week of {start.strftime('%Y-%m-%d')}"
    if grouping == "monthly":
        return start.strftime("%Y-%m")
    if grouping == "quarterly":
        return f"{start.year}-Q{(start.month - 1) // 3 + 1}"
    return str(start.year)
