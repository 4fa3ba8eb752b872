import datetime as dt

from app.utils.helpers import (
    as_datetime,
    js_weekday,
    new_receipt_id,
    parse_amount,
    parse_iso_datetime,
    period_start,
    to_number,
)


def test_parse_iso_datetime_lowercase_z():
    value = "2023-05-06T12:00:00z"
    result = parse_iso_datetime(value)
    assert result == dt.datetime(2023, 5, 6, 12, 0, 0, tzinfo=dt.timezone.utc)


def test_parse_iso_datetime_invalid_returns_none():
    assert parse_iso_datetime("not-a-date") is None


def test_parse_amount_reads_leading_number_only():
    assert parse_amount("38.02 USD") == 38.02
    assert parse_amount("12,50") == 12.0
    assert parse_amount("abc") == 0.0
    assert parse_amount(None) == 0.0


def test_to_number_defaults_for_bad_values():
    assert to_number("4.5") == 4.5
    assert to_number("n/a") == 0.0
    assert to_number(True, default=1.0) == 1.0


def test_as_datetime_treats_naive_values_as_utc():
    result = as_datetime("2024-01-05")
    assert result == dt.datetime(2024, 1, 5, tzinfo=dt.timezone.utc)
    assert as_datetime(dt.date(2024, 1, 5)).tzinfo is dt.timezone.utc
    assert as_datetime(42) is None


def test_js_weekday_starts_on_sunday():
    assert js_weekday(dt.date(2024, 1, 7)) == 0  # Sunday
    assert js_weekday(dt.date(2024, 1, 13)) == 6  # Saturday


def test_period_start_clamps_to_month_end():
    now = dt.datetime(2024, 3, 31, 12, tzinfo=dt.timezone.utc)
    assert period_start("month", now) == dt.datetime(2024, 2, 29, 12, tzinfo=dt.timezone.utc)
    assert period_start("week", now) == now - dt.timedelta(days=7)
    leap = dt.datetime(2024, 2, 29, tzinfo=dt.timezone.utc)
    assert period_start("year", leap) == dt.datetime(2023, 2, 28, tzinfo=dt.timezone.utc)


def test_period_start_january_goes_to_previous_december():
    now = dt.datetime(2024, 1, 15, tzinfo=dt.timezone.utc)
    assert period_start("month", now) == dt.datetime(2023, 12, 15, tzinfo=dt.timezone.utc)


def test_new_receipt_id_format():
    rid = new_receipt_id()
    assert rid.startswith("r_") and len(rid) == 14
    assert rid != new_receipt_id()
