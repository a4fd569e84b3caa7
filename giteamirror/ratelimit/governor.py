"""Per-user, per-provider quota tracking with pause and resume.

The governor keeps the latest :class:`RateLimitSnapshot` for every
``(user_id, provider)`` pair in memory and mirrors it into the
``rate_limits`` table. API callers feed it response headers; before issuing
work they ask :meth:`RateLimitGovernor.should_pause` (or simply wrap calls in
:meth:`RateLimitGovernor.retry_with_backoff`) and sleep through the reset
window when the quota is nearly spent.
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import datetime as dt
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from giteamirror.common.time import utcnow
from giteamirror.errors import HTTPStatusError
from giteamirror.events import RATE_LIMIT_CHANNEL
from giteamirror.logging import get_logger, log_info, log_warning
from giteamirror.storage import RateLimitState

from .models import (
    DEFAULT_THRESHOLDS,
    PAUSING_STATUSES,
    RateLimitSnapshot,
    RateLimitStatus,
    RateLimitThresholds,
    parse_rate_limit_headers,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from giteamirror.events import SupportsPublish

logger = get_logger(__name__)

type Sleeper = typ.Callable[[float], typ.Awaitable[None]]
type Clock = typ.Callable[[], dt.datetime]

GITHUB = "github"
GITEA = "gitea"

_EXCEEDED_NOTICE = 100


@dc.dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Exponential backoff applied to ``429 Too Many Requests`` answers."""

    base_delay_s: float = 1.0
    max_delay_s: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Return the capped delay before retry number ``attempt`` (0-based)."""
        return min(self.base_delay_s * 2**attempt, self.max_delay_s)


class RateLimitGovernor:
    """Track API quotas and decide when work must pause.

    Parameters
    ----------
    session_factory
        Optional session factory; when given, snapshots are upserted into
        ``rate_limits`` and restored by :meth:`restore`.
    publisher
        Optional event publisher for threshold and pause notifications.
    thresholds
        Classification and notification thresholds.
    backoff
        Backoff applied to generic "too many requests" answers.
    sleep, clock
        Injected for tests; default to :func:`asyncio.sleep` and UTC now.

    """

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        publisher: SupportsPublish | None = None,
        thresholds: RateLimitThresholds = DEFAULT_THRESHOLDS,
        backoff: BackoffPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Clock = utcnow,
    ) -> None:
        """Initialise empty per-user state."""
        self._session_factory = session_factory
        self._publisher = publisher
        self._thresholds = thresholds
        self._backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._clock = clock
        self._states: dict[tuple[str, str], RateLimitSnapshot] = {}
        self._last_notified: dict[tuple[str, str], int] = {}

    def snapshot(self, user_id: str, provider: str = GITHUB) -> RateLimitSnapshot:
        """Return the cached snapshot, assuming a full quota when unknown."""
        key = (user_id, provider)
        if key not in self._states:
            self._states[key] = RateLimitSnapshot.full(self._clock(), self._thresholds)
        return self._states[key]

    def should_pause(self, user_id: str, provider: str = GITHUB) -> bool:
        """Return whether work must wait for the quota to reset."""
        return self.snapshot(user_id, provider).status in PAUSING_STATUSES

    def calculate_wait_time(self, snapshot: RateLimitSnapshot) -> dt.timedelta:
        """Return how long to wait before the quota is usable again."""
        if snapshot.retry_after is not None:
            return dt.timedelta(seconds=snapshot.retry_after)
        return max(dt.timedelta(0), snapshot.reset_at - self._clock())

    async def record(
        self,
        user_id: str,
        snapshot: RateLimitSnapshot,
        provider: str = GITHUB,
    ) -> RateLimitSnapshot:
        """Store ``snapshot`` as the current state and emit notifications."""
        key = (user_id, provider)
        previous = self._states.get(key)
        self._states[key] = snapshot
        if previous is None or previous.status != snapshot.status:
            log_info(
                logger,
                "Rate limit for user %s (%s) is %s: %d/%d remaining",
                user_id,
                provider,
                snapshot.status,
                snapshot.remaining,
                snapshot.limit,
            )
        await self._persist(user_id, provider, snapshot)
        await self._notify_thresholds(user_id, provider, snapshot)
        return snapshot

    async def update_from_headers(
        self,
        user_id: str,
        headers: cabc.Mapping[str, str],
        provider: str = GITHUB,
    ) -> RateLimitSnapshot | None:
        """Record the quota carried by response ``headers``, if any."""
        snapshot = parse_rate_limit_headers(headers, thresholds=self._thresholds)
        if snapshot is None:
            return None
        return await self.record(user_id, snapshot, provider)

    async def wait_for_reset(self, user_id: str, provider: str = GITHUB) -> None:
        """Sleep until the quota resets when it is limited or exceeded.

        Publishes a ``waiting`` event before sleeping and a ``resumed`` event
        afterwards, then assumes a full quota until headers say otherwise.
        """
        snapshot = self.snapshot(user_id, provider)
        if snapshot.status not in PAUSING_STATUSES:
            return

        wait = self.calculate_wait_time(snapshot)
        log_warning(
            logger,
            "Rate limit %s for user %s (%s); pausing for %.0fs",
            snapshot.status,
            user_id,
            provider,
            wait.total_seconds(),
        )
        await self._publish(
            user_id,
            {
                "type": "waiting",
                "provider": provider,
                "status": str(snapshot.status),
                "wait_seconds": int(wait.total_seconds()),
                "reset_at": snapshot.reset_at.isoformat(),
                "message": (
                    f"Rate limit reached. Waiting {int(wait.total_seconds())}s "
                    "before resuming."
                ),
            },
        )
        if wait > dt.timedelta(0):
            await self._sleep(wait.total_seconds())

        self._states[(user_id, provider)] = RateLimitSnapshot.full(
            self._clock(), self._thresholds
        )
        log_info(logger, "Rate limit reset for user %s (%s); resuming", user_id, provider)
        await self._publish(
            user_id,
            {
                "type": "resumed",
                "provider": provider,
                "status": str(RateLimitStatus.OK),
                "message": "Rate limit reset. Resuming operations.",
            },
        )

    async def retry_with_backoff[T](
        self,
        fn: typ.Callable[[], typ.Awaitable[T]],
        user_id: str,
        *,
        max_retries: int = 3,
        provider: str = GITHUB,
    ) -> T:
        """Call ``fn`` honouring the quota and retrying rate-limit answers.

        A 403 rate-limit rejection records the response quota, waits for the
        reset and retries. A 429 backs off exponentially. Any other error is
        raised immediately.

        Raises
        ------
        HTTPStatusError
            The last rate-limit error once ``max_retries`` attempts are spent.

        """
        attempts = max(1, max_retries)
        for attempt in range(attempts):
            if self.should_pause(user_id, provider):
                await self.wait_for_reset(user_id, provider)
            try:
                return await fn()
            except HTTPStatusError as exc:
                if attempt == attempts - 1:
                    raise
                if exc.is_rate_limited:
                    await self._record_rejection(user_id, exc, provider)
                    await self.wait_for_reset(user_id, provider)
                elif exc.is_too_many_requests:
                    delay = self._backoff.delay_for(attempt)
                    log_warning(
                        logger,
                        "Too many requests for user %s (%s); retrying in %.1fs",
                        user_id,
                        provider,
                        delay,
                    )
                    await self._sleep(delay)
                else:
                    raise
        msg = "retry loop exited without a result"
        raise AssertionError(msg)  # pragma: no cover

    async def with_rate_limit_check[T](
        self,
        user_id: str,
        fn: typ.Callable[[], typ.Awaitable[T]],
        provider: str = GITHUB,
    ) -> T:
        """Wait out an exhausted quota, then call ``fn`` once."""
        if self.should_pause(user_id, provider):
            await self.wait_for_reset(user_id, provider)
        return await fn()

    async def restore(self, user_id: str, provider: str = GITHUB) -> RateLimitSnapshot:
        """Load the last persisted snapshot into the cache."""
        if self._session_factory is None:
            return self.snapshot(user_id, provider)
        async with self._session_factory() as session:
            row = await session.scalar(
                select(RateLimitState).where(
                    RateLimitState.user_id == user_id,
                    RateLimitState.provider == provider,
                )
            )
        if row is None:
            return self.snapshot(user_id, provider)
        snapshot = RateLimitSnapshot(
            limit=row.limit,
            remaining=row.remaining,
            used=row.used,
            reset_at=row.reset_at,
            retry_after=row.retry_after,
            status=RateLimitStatus(row.status),
        )
        # A persisted window that already reset is stale.
        if snapshot.reset_at <= self._clock():
            snapshot = RateLimitSnapshot.full(self._clock(), self._thresholds)
        self._states[(user_id, provider)] = snapshot
        return snapshot

    async def _record_rejection(
        self, user_id: str, exc: HTTPStatusError, provider: str
    ) -> None:
        snapshot = parse_rate_limit_headers(exc.headers, thresholds=self._thresholds)
        if snapshot is None:
            current = self.snapshot(user_id, provider)
            snapshot = dc.replace(
                current, remaining=0, used=current.limit, status=RateLimitStatus.EXCEEDED
            )
        elif snapshot.status not in PAUSING_STATUSES:
            snapshot = dc.replace(snapshot, status=RateLimitStatus.EXCEEDED)
        await self.record(user_id, snapshot, provider)

    async def _persist(
        self, user_id: str, provider: str, snapshot: RateLimitSnapshot
    ) -> None:
        if self._session_factory is None:
            return
        values = {
            "limit": snapshot.limit,
            "remaining": snapshot.remaining,
            "used": snapshot.used,
            "reset_at": snapshot.reset_at,
            "retry_after": snapshot.retry_after,
            "status": str(snapshot.status),
            "last_checked": self._clock(),
        }
        async with self._session_factory() as session:
            row = await session.scalar(
                select(RateLimitState).where(
                    RateLimitState.user_id == user_id,
                    RateLimitState.provider == provider,
                )
            )
            if row is None:
                session.add(RateLimitState(user_id=user_id, provider=provider, **values))
            else:
                for field, value in values.items():
                    setattr(row, field, value)
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent writer inserted the row first; update it instead.
                await session.rollback()
                row = await session.scalar(
                    select(RateLimitState).where(
                        RateLimitState.user_id == user_id,
                        RateLimitState.provider == provider,
                    )
                )
                if row is None:
                    raise
                for field, value in values.items():
                    setattr(row, field, value)
                await session.commit()

    async def _notify_thresholds(
        self, user_id: str, provider: str, snapshot: RateLimitSnapshot
    ) -> None:
        key = (user_id, provider)
        last = self._last_notified.get(key, 0)
        used_pct = snapshot.used_percentage

        warn_at, exceeded_at = (
            min(self._thresholds.notify_used_percentages),
            max(self._thresholds.notify_used_percentages),
        )
        if warn_at <= used_pct < exceeded_at and last < warn_at:
            self._last_notified[key] = warn_at
            await self._publish(
                user_id,
                {
                    "type": "warning",
                    "provider": provider,
                    "status": str(snapshot.status),
                    "remaining": snapshot.remaining,
                    "limit": snapshot.limit,
                    "used_percentage": used_pct,
                    "message": (
                        f"API rate limit at {used_pct}%. "
                        f"{snapshot.remaining} requests remaining."
                    ),
                },
            )
        if snapshot.remaining == 0 and last < _EXCEEDED_NOTICE:
            self._last_notified[key] = _EXCEEDED_NOTICE
            await self._publish(
                user_id,
                {
                    "type": "exceeded",
                    "provider": provider,
                    "status": str(RateLimitStatus.EXCEEDED),
                    "remaining": 0,
                    "limit": snapshot.limit,
                    "used_percentage": 100,
                    "reset_at": snapshot.reset_at.isoformat(),
                    "message": "API rate limit exceeded; operations will resume "
                    "automatically after the reset.",
                },
            )
        if (
            snapshot.remaining
            > snapshot.limit * self._thresholds.notification_reset_ratio
            and key in self._last_notified
        ):
            del self._last_notified[key]

    async def _publish(self, user_id: str, payload: dict[str, typ.Any]) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish(user_id, RATE_LIMIT_CHANNEL, payload)


__all__ = ["GITEA", "GITHUB", "BackoffPolicy", "RateLimitGovernor"]
