"""Unit tests for interval parsing."""

from __future__ import annotations

import datetime as dt

import pytest

from giteamirror.duration import (
    DAY,
    HOUR,
    WEEK,
    InvalidDurationError,
    cron_next_run,
    format_duration,
    is_cron_expression,
    parse_cron_interval,
    parse_duration,
    parse_interval,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("8h", dt.timedelta(hours=8)),
        ("30m", dt.timedelta(minutes=30)),
        ("1.5d", dt.timedelta(hours=36)),
        ("2 weeks", dt.timedelta(weeks=2)),
        ("500ms", dt.timedelta(milliseconds=500)),
        ("3600", dt.timedelta(hours=1)),
        (90, dt.timedelta(seconds=90)),
        (0.5, dt.timedelta(milliseconds=500)),
    ],
)
def test_parse_duration(value: str | float, expected: dt.timedelta) -> None:
    """Duration strings and plain seconds are accepted."""
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "soon", "5 fortnights", -1, True])
def test_parse_duration_rejects(value: object) -> None:
    """Unknown units, negatives and booleans are rejected."""
    with pytest.raises(InvalidDurationError):
        parse_duration(value)  # type: ignore[arg-type]


SUNDAY_NOON = dt.datetime(2024, 7, 14, 12, 0, tzinfo=dt.UTC)


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("0 */2 * * *", dt.timedelta(hours=2)),
        ("*/15 * * * *", dt.timedelta(minutes=15)),
        ("30 3 * * *", DAY),
        ("0 4 * * 1", WEEK),
        ("0 * * * *", HOUR),
        ("0 0,12 * * *", dt.timedelta(hours=12)),
        ("0 9 * * 1-5", DAY),
        ("0 9-17 * * *", HOUR),
        ("0 4 1 * *", dt.timedelta(days=31)),
    ],
)
def test_parse_cron_interval(expression: str, expected: dt.timedelta) -> None:
    """Lists, ranges and weekday schedules measure the real run spacing."""
    assert parse_cron_interval(expression, start=SUNDAY_NOON) == expected


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("0 0,12 * * *", dt.datetime(2024, 7, 15, 0, 0, tzinfo=dt.UTC)),
        ("0 9 * * 1-5", dt.datetime(2024, 7, 15, 9, 0, tzinfo=dt.UTC)),
        ("30 8 * * sat,sun", dt.datetime(2024, 7, 20, 8, 30, tzinfo=dt.UTC)),
        ("0 12 * * *", dt.datetime(2024, 7, 15, 12, 0, tzinfo=dt.UTC)),
    ],
)
def test_cron_next_run(expression: str, expected: dt.datetime) -> None:
    """The next run is strictly after the start and keeps its timezone."""
    assert cron_next_run(expression, SUNDAY_NOON) == expected


def test_weekday_schedule_spans_the_weekend() -> None:
    """Friday's run is followed by Monday's."""
    friday = dt.datetime(2024, 7, 19, 8, 0, tzinfo=dt.UTC)

    assert parse_cron_interval("0 9 * * 1-5", start=friday) == dt.timedelta(days=3)


def test_parse_cron_interval_requires_five_fields() -> None:
    """Six-field expressions are rejected."""
    with pytest.raises(InvalidDurationError, match="5 fields"):
        parse_cron_interval("0 0 */2 * * *")


@pytest.mark.parametrize("expression", ["61 * * * *", "0 25 * * *", "a b c d e"])
def test_invalid_cron_fields_are_rejected(expression: str) -> None:
    """Out-of-range and non-numeric fields raise InvalidDurationError."""
    with pytest.raises(InvalidDurationError, match="Invalid cron expression"):
        cron_next_run(expression, SUNDAY_NOON)


def test_is_cron_expression() -> None:
    """Only five-field strings count as cron."""
    assert is_cron_expression("0 9 * * 1-5") is True
    assert is_cron_expression("2 weeks") is False
    assert is_cron_expression(3600) is False


def test_parse_interval_dispatches_on_shape() -> None:
    """Cron, duration and numeric spellings all resolve."""
    assert parse_interval("0 */6 * * *", start=SUNDAY_NOON) == dt.timedelta(hours=6)
    assert parse_interval("6h") == dt.timedelta(hours=6)
    assert parse_interval(21600) == dt.timedelta(hours=6)
    with pytest.raises(InvalidDurationError):
        parse_interval("   ")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (dt.timedelta(milliseconds=250), "250ms"),
        (dt.timedelta(seconds=42), "42s"),
        (dt.timedelta(minutes=5), "5m"),
        (dt.timedelta(hours=8), "8h"),
        (dt.timedelta(days=3, hours=5), "3d"),
    ],
)
def test_format_duration(value: dt.timedelta, expected: str) -> None:
    """Durations render with the largest whole unit."""
    assert format_duration(value) == expected
