import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")
os.environ.setdefault("USAGE_API_KEY", "test-usage-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("INTEGRATION_ENCRYPTION_KEY", "0123456789abcdef0123456789abcdef")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from quotaflow.core.config import settings  # noqa: E402
from quotaflow.core.periods import (  # noqa: E402
    current_period_start,
    next_period_start,
    normalize_to_midnight,
    period_start_for,
)


def test_period_starts_on_anchor_day_of_current_month():
    assert current_period_start(datetime(2026, 10, 18, 14, 30)) == datetime(2026, 10, 5)
    assert current_period_start(datetime(2026, 10, 5, 0, 0)) == datetime(2026, 10, 5)


def test_period_before_anchor_day_belongs_to_previous_month():
    assert current_period_start(datetime(2026, 10, 4, 23, 59)) == datetime(2026, 9, 5)
    assert current_period_start(datetime(2026, 1, 3)) == datetime(2025, 12, 5)


def test_next_period_start_rolls_over_year():
    assert next_period_start(datetime(2026, 12, 5)) == datetime(2027, 1, 5)
    assert next_period_start(datetime(2026, 12, 4)) == datetime(2026, 12, 5)


def test_aware_timestamps_are_compared_in_utc():
    plus_two = timezone(timedelta(hours=2))
    # 01:00 at +02:00 is still the 4th in UTC.
    assert current_period_start(datetime(2026, 10, 5, 1, 0, tzinfo=plus_two)) == datetime(2026, 9, 5)


def test_stored_reset_overrides_calendar_anchor():
    now = datetime(2026, 10, 20)
    assert period_start_for(datetime(2026, 10, 12, 15, 30), now) == datetime(2026, 10, 12)
    assert period_start_for(None, now) == datetime(2026, 10, 5)


def test_normalize_to_midnight_drops_time():
    assert normalize_to_midnight(datetime(2026, 3, 9, 23, 59, 59, 999)) == datetime(2026, 3, 9)


def test_anchor_day_is_configurable(monkeypatch):
    monkeypatch.setattr(settings, "BILLING_ANCHOR_DAY", 1)
    assert current_period_start(datetime(2026, 10, 1, 8)) == datetime(2026, 10, 1)
    assert next_period_start(datetime(2026, 10, 31)) == datetime(2026, 11, 1)
