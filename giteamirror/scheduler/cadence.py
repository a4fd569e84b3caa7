"""Resolve how often a configuration's cycle runs."""

from __future__ import annotations

import contextlib
import typing as typ

from giteamirror.duration import (
    HOUR,
    InvalidDurationError,
    cron_next_run,
    is_cron_expression,
    parse_interval,
)
from giteamirror.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    import datetime as dt

    from giteamirror.config import MirrorConfig

logger = get_logger(__name__)

DEFAULT_INTERVAL = "1h"


def interval_source(config: MirrorConfig) -> str | int:
    """Return the configured interval: schedule, then destination, then 1h."""
    if config.schedule.interval not in (None, ""):
        return typ.cast("str | int", config.schedule.interval)
    if config.destination.mirror_interval:
        return config.destination.mirror_interval
    return DEFAULT_INTERVAL


def resolve_interval(config: MirrorConfig) -> dt.timedelta:
    """Return the cycle interval for ``config``.

    Unparseable values fall back to one hour with a warning.

    Examples
    --------
    >>> from giteamirror.config import (
    ...     DestinationSettings, MirrorConfig, ScheduleSettings, SourceSettings,
    ... )
    >>> config = MirrorConfig(
    ...     id="c", user_id="u", source=SourceSettings(),
    ...     destination=DestinationSettings(),
    ...     schedule=ScheduleSettings(interval=3600),
    ... )
    >>> resolve_interval(config).total_seconds()
    3600.0

    """
    raw = interval_source(config)
    try:
        interval = parse_interval(raw)
    except InvalidDurationError as exc:
        log_warning(
            logger,
            "Invalid interval %r for config %s (%s); using 1h",
            raw,
            config.id,
            exc,
        )
        return HOUR
    if interval.total_seconds() <= 0:
        log_warning(
            logger, "Non-positive interval %r for config %s; using 1h", raw, config.id
        )
        return HOUR
    return interval


def next_run_after(config: MirrorConfig, started: dt.datetime) -> dt.datetime:
    """Return when ``config`` runs next after a cycle that began at ``started``.

    Cron expressions fire at their next matching time; every other spelling
    adds :func:`resolve_interval` to ``started``.
    """
    raw = interval_source(config)
    if is_cron_expression(raw):
        # resolve_interval logs and falls back for expressions croniter rejects
        with contextlib.suppress(InvalidDurationError):
            return cron_next_run(typ.cast("str", raw), started)
    return started + resolve_interval(config)


def is_due(config: MirrorConfig, now: dt.datetime) -> bool:
    """Return whether ``config`` should run at ``now``."""
    return config.next_run is None or config.next_run <= now


__all__ = [
    "DEFAULT_INTERVAL",
    "interval_source",
    "is_due",
    "next_run_after",
    "resolve_interval",
]
