"""Parse schedule intervals into :class:`datetime.timedelta` values.

Three spellings are accepted:

- duration strings such as ``"8h"``, ``"30m"``, ``"1.5d"`` or ``"2 weeks"``;
- plain numbers of seconds, either as ``int`` or as a digit-only string;
- five-field cron expressions, evaluated with croniter.

Examples
--------
>>> parse_interval("8h")
datetime.timedelta(seconds=28800)
>>> parse_interval(90)
datetime.timedelta(seconds=90)
>>> parse_interval("0 */2 * * *")
datetime.timedelta(seconds=7200)
>>> format_duration(dt.timedelta(hours=8))
'8h'

"""

from __future__ import annotations

import datetime as dt
import re
import typing as typ

from croniter import croniter

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-zA-Z]+)$")
_CRON_FIELDS = 5

_UNIT_SECONDS: typ.Final[dict[str, float]] = {
    "ms": 0.001,
    "millisecond": 0.001,
    "milliseconds": 0.001,
    "s": 1,
    "sec": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 604800,
    "week": 604800,
    "weeks": 604800,
}

HOUR: typ.Final = dt.timedelta(hours=1)
DAY: typ.Final = dt.timedelta(days=1)
WEEK: typ.Final = dt.timedelta(weeks=1)


class InvalidDurationError(ValueError):
    """Raised when an interval specification cannot be parsed."""

    @classmethod
    def bad_format(cls, value: object) -> InvalidDurationError:
        """Return an error for values matching none of the accepted forms."""
        return cls(
            f"Unable to parse interval {value!r}: expected a duration such as "
            "'8h', a cron expression such as '0 */2 * * *', or seconds"
        )

    @classmethod
    def unsupported_unit(cls, unit: str) -> InvalidDurationError:
        """Return an error for an unknown duration unit."""
        return cls(f"Unsupported duration unit {unit!r}; use ms, s, m, h, d or w")

    @classmethod
    def bad_cron(cls, value: str) -> InvalidDurationError:
        """Return an error for a malformed cron expression."""
        return cls(
            f"Cron expression {value!r} must have 5 fields "
            "(minute hour day month weekday)"
        )

    @classmethod
    def invalid_cron(cls, value: str, reason: Exception) -> InvalidDurationError:
        """Return an error for a five-field expression croniter rejects."""
        return cls(f"Invalid cron expression {value!r}: {reason}")


def parse_duration(value: str | int | float) -> dt.timedelta:
    """Parse a duration string or a number of seconds.

    Raises
    ------
    InvalidDurationError
        If ``value`` is negative, empty or uses an unknown unit.

    """
    if isinstance(value, bool):
        raise InvalidDurationError.bad_format(value)
    if isinstance(value, int | float):
        if value < 0:
            raise InvalidDurationError.bad_format(value)
        return dt.timedelta(seconds=value)

    text = value.strip()
    if text.isdigit():
        return dt.timedelta(seconds=int(text))

    match = _DURATION_RE.match(text)
    if match is None:
        raise InvalidDurationError.bad_format(value)

    amount, unit = match.groups()
    multiplier = _UNIT_SECONDS.get(unit.lower())
    if multiplier is None:
        raise InvalidDurationError.unsupported_unit(unit)
    milliseconds = int(float(amount) * multiplier * 1000)
    return dt.timedelta(milliseconds=milliseconds)


def is_cron_expression(value: object) -> bool:
    """Return whether ``value`` is spelled as a five-field cron expression."""
    return isinstance(value, str) and len(value.split()) == _CRON_FIELDS


def cron_next_run(expression: str, start: dt.datetime) -> dt.datetime:
    """Return the first run of ``expression`` strictly after ``start``.

    Lists (``0,12``), ranges (``1-5``), steps (``*/15``) and names
    (``mon``) are all honoured. The result keeps ``start``'s timezone.

    Raises
    ------
    InvalidDurationError
        If ``expression`` does not have five fields or is not valid cron.

    Examples
    --------
    >>> start = dt.datetime(2024, 7, 14, 12, 0, tzinfo=dt.UTC)
    >>> cron_next_run("0 0,12 * * *", start).isoformat()
    '2024-07-15T00:00:00+00:00'

    """
    fields = expression.split()
    if len(fields) != _CRON_FIELDS:
        raise InvalidDurationError.bad_cron(expression)
    try:
        return croniter(" ".join(fields), start).get_next(dt.datetime)
    except (ValueError, TypeError) as exc:
        raise InvalidDurationError.invalid_cron(expression, exc) from exc


def parse_cron_interval(
    expression: str, *, start: dt.datetime | None = None
) -> dt.timedelta:
    """Return the gap between the next two runs of a cron expression.

    Irregular schedules such as weekdays only are measured from ``start``
    (now, by default); scheduling itself uses :func:`cron_next_run`.

    Raises
    ------
    InvalidDurationError
        If ``expression`` is not a valid five-field cron expression.

    """
    anchor = dt.datetime.now(dt.UTC) if start is None else start
    first = cron_next_run(expression, anchor)
    return cron_next_run(expression, first) - first


def parse_interval(
    value: str | int | float, *, start: dt.datetime | None = None
) -> dt.timedelta:
    """Parse a schedule interval in any accepted spelling.

    ``start`` anchors cron expressions; see :func:`parse_cron_interval`.

    Raises
    ------
    InvalidDurationError
        If ``value`` is neither a duration, a cron expression nor seconds.

    """
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidDurationError.bad_format(value)
        if is_cron_expression(text):
            return parse_cron_interval(text, start=start)
        return parse_duration(text)
    return parse_duration(value)


def format_duration(value: dt.timedelta) -> str:
    """Render ``value`` using the largest whole unit, rounding down."""
    milliseconds = int(value.total_seconds() * 1000)
    if milliseconds < 1000:  # noqa: PLR2004
        return f"{milliseconds}ms"
    seconds = milliseconds // 1000
    if seconds < 60:  # noqa: PLR2004
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:  # noqa: PLR2004
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:  # noqa: PLR2004
        return f"{hours}h"
    return f"{hours // 24}d"


__all__ = [
    "DAY",
    "HOUR",
    "WEEK",
    "InvalidDurationError",
    "cron_next_run",
    "format_duration",
    "is_cron_expression",
    "parse_cron_interval",
    "parse_duration",
    "parse_interval",
]
