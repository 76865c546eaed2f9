import datetime

from astranodes.durations import (LIFETIME_DAYS, add_days, get_duration_days, parse_iso, renewal_base, to_iso)

UTC = datetime.timezone.utc


def test_duration_types():
    assert get_duration_days('weekly') == 7
    assert get_duration_days('monthly') == 30
    assert get_duration_days('lifetime') == LIFETIME_DAYS == 36500
    assert get_duration_days('custom', 45) == 45
    assert get_duration_days('days', 3) == 3


def test_custom_duration_without_days_falls_back_to_a_month():
    assert get_duration_days('custom', None) == 30
    assert get_duration_days('days', 0) == 30


def test_iso_format_is_utc_with_millis():
    dt = datetime.datetime(2026, 3, 1, 12, 30, 5, 123456, tzinfo=UTC)
    assert to_iso(dt) == '2026-03-01T12:30:05.123Z'


def test_parse_accepts_sqlite_timestamps():
    assert parse_iso('2026-03-01 12:00:00') == datetime.datetime(2026, 3, 1, 12, tzinfo=UTC)
    assert parse_iso('2026-03-01T12:00:00.000Z') == datetime.datetime(2026, 3, 1, 12, tzinfo=UTC)
    assert parse_iso(None) is None


def test_add_days():
    assert add_days('2026-01-30T00:00:00.000Z', 7) == '2026-02-06T00:00:00.000Z'


def test_renewal_stacks_on_future_expiry():
    now = datetime.datetime(2026, 1, 1, tzinfo=UTC)
    future = '2026-01-10T00:00:00.000Z'
    assert renewal_base(future, now) == parse_iso(future)


def test_renewal_starts_now_after_expiry():
    now = datetime.datetime(2026, 1, 1, tzinfo=UTC)
    assert renewal_base('2025-12-01T00:00:00.000Z', now) == now
    assert renewal_base(None, now) == now
