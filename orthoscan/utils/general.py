"""General Utility Functions."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

__all__ = ["add_days", "new_id", "now_utc", "today"]


def now_utc() -> datetime:
    """Current timestamp, timezone-aware in UTC."""
    return datetime.now(timezone.utc)


def today() -> date:
    """Current calendar date in UTC.

    Due-date comparisons are made on whole days, so every service uses
    this one source for "today" unless a caller injects its own date.
    """
    return now_utc().date()


def add_days(base: date, days: int) -> date:
    return base + timedelta(days=days)


def new_id(prefix: str) -> str:
    """Return a unique identifier such as ``lab_3f2a9c...``."""
    return f"{prefix}_{uuid.uuid4().hex}"
