"""
Billing period arithmetic.

Periods run from the anchor day (the 5th by default) of one month to the
anchor day of the next, at midnight UTC, independent of signup date.
"""

from __future__ import annotations

from datetime import datetime

from quotaflow.core.config import settings
from quotaflow.core.time import to_naive_utc, utcnow


def _anchor_day() -> int:
    return settings.BILLING_ANCHOR_DAY


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _anchor(year: int, month: int) -> datetime:
    return datetime(year, month, _anchor_day())


def normalize_to_midnight(value: datetime) -> datetime:
    value = to_naive_utc(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def current_period_start(now: datetime | None = None) -> datetime:
    now = to_naive_utc(now) if now is not None else utcnow()
    if now.day >= _anchor_day():
        return _anchor(now.year, now.month)
    year, month = _shift_month(now.year, now.month, -1)
    return _anchor(year, month)


def next_period_start(now: datetime | None = None) -> datetime:
    now = to_naive_utc(now) if now is not None else utcnow()
    if now.day >= _anchor_day():
        year, month = _shift_month(now.year, now.month, 1)
        return _anchor(year, month)
    return _anchor(now.year, now.month)


def period_start_for(last_reset_at: datetime | None, now: datetime | None = None) -> datetime:
    # A stored reset (monthly or administrative) wins over the calendar anchor.
    if last_reset_at is not None:
        return normalize_to_midnight(last_reset_at)
    return current_period_start(now)
