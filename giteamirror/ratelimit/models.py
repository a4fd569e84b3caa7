"""Rate-limit snapshots, thresholds and classification."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import enum
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class RateLimitStatus(enum.StrEnum):
    """Derived quota health for a user and provider."""

    OK = "ok"
    WARNING = "warning"
    LIMITED = "limited"
    EXCEEDED = "exceeded"


PAUSING_STATUSES: typ.Final = frozenset(
    {RateLimitStatus.LIMITED, RateLimitStatus.EXCEEDED}
)


@dc.dataclass(frozen=True, slots=True)
class RateLimitThresholds:
    """Tuning knobs for classification and notifications.

    Attributes
    ----------
    warning_ratio
        Remaining fraction below which the quota is in ``warning``.
    pause_ratio
        Remaining fraction below which work pauses.
    min_requests_buffer
        Absolute remaining count below which work pauses.
    notify_used_percentages
        Usage percentages that trigger a one-off notification.
    notification_reset_ratio
        Remaining fraction above which the notification marker clears.

    """

    warning_ratio: float = 0.2
    pause_ratio: float = 0.05
    min_requests_buffer: int = 100
    notify_used_percentages: tuple[int, ...] = (80, 100)
    notification_reset_ratio: float = 0.5
    default_limit: int = 5000


DEFAULT_THRESHOLDS: typ.Final = RateLimitThresholds()


def classify_rate_limit(
    limit: int,
    remaining: int,
    thresholds: RateLimitThresholds = DEFAULT_THRESHOLDS,
) -> RateLimitStatus:
    """Classify a quota snapshot.

    Examples
    --------
    >>> classify_rate_limit(5000, 0)
    <RateLimitStatus.EXCEEDED: 'exceeded'>
    >>> classify_rate_limit(5000, 50)
    <RateLimitStatus.LIMITED: 'limited'>
    >>> classify_rate_limit(5000, 900)
    <RateLimitStatus.WARNING: 'warning'>
    >>> classify_rate_limit(5000, 4000)
    <RateLimitStatus.OK: 'ok'>

    """
    if remaining <= 0:
        return RateLimitStatus.EXCEEDED
    ratio = remaining / limit if limit > 0 else 0.0
    if remaining < thresholds.min_requests_buffer or ratio < thresholds.pause_ratio:
        return RateLimitStatus.LIMITED
    if ratio < thresholds.warning_ratio:
        return RateLimitStatus.WARNING
    return RateLimitStatus.OK


@dc.dataclass(frozen=True, slots=True)
class RateLimitSnapshot:
    """Point-in-time quota for one user and provider."""

    limit: int
    remaining: int
    used: int
    reset_at: dt.datetime
    retry_after: int | None = None
    status: RateLimitStatus = RateLimitStatus.OK

    @classmethod
    def build(
        cls,
        *,
        limit: int,
        remaining: int,
        reset_at: dt.datetime,
        used: int | None = None,
        retry_after: int | None = None,
        thresholds: RateLimitThresholds = DEFAULT_THRESHOLDS,
    ) -> RateLimitSnapshot:
        """Create a snapshot with ``used`` and ``status`` derived."""
        return cls(
            limit=limit,
            remaining=remaining,
            used=limit - remaining if used is None else used,
            reset_at=reset_at,
            retry_after=retry_after,
            status=classify_rate_limit(limit, remaining, thresholds),
        )

    @classmethod
    def full(
        cls,
        now: dt.datetime,
        thresholds: RateLimitThresholds = DEFAULT_THRESHOLDS,
    ) -> RateLimitSnapshot:
        """Return the optimistic state assumed before any response is seen."""
        return cls.build(
            limit=thresholds.default_limit,
            remaining=thresholds.default_limit,
            reset_at=now + dt.timedelta(hours=1),
            thresholds=thresholds,
        )

    @property
    def used_percentage(self) -> int:
        """Return the used share of the quota as a whole percentage."""
        if self.limit <= 0:
            return 100
        return int(self.used / self.limit * 100)


def _header_int(headers: cabc.Mapping[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def parse_rate_limit_headers(
    headers: cabc.Mapping[str, str],
    *,
    thresholds: RateLimitThresholds = DEFAULT_THRESHOLDS,
) -> RateLimitSnapshot | None:
    """Build a snapshot from ``x-ratelimit-*`` and ``retry-after`` headers.

    Returns ``None`` when the response carries no quota headers. Header
    lookups are case-insensitive when ``headers`` is an ``httpx.Headers``.
    """
    limit = _header_int(headers, "x-ratelimit-limit")
    remaining = _header_int(headers, "x-ratelimit-remaining")
    reset = _header_int(headers, "x-ratelimit-reset")
    if limit is None or remaining is None or reset is None:
        return None
    return RateLimitSnapshot.build(
        limit=limit,
        remaining=remaining,
        used=_header_int(headers, "x-ratelimit-used"),
        reset_at=dt.datetime.fromtimestamp(reset, tz=dt.UTC),
        retry_after=_header_int(headers, "retry-after"),
        thresholds=thresholds,
    )


__all__ = [
    "DEFAULT_THRESHOLDS",
    "PAUSING_STATUSES",
    "RateLimitSnapshot",
    "RateLimitStatus",
    "RateLimitThresholds",
    "classify_rate_limit",
    "parse_rate_limit_headers",
]
