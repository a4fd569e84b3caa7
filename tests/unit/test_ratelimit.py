"""Unit tests for rate-limit classification and the governor."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
from sqlalchemy import select

from giteamirror.events import RATE_LIMIT_CHANNEL, EventPublisher
from giteamirror.github import GitHubAPIError
from giteamirror.ratelimit import (
    GITEA,
    BackoffPolicy,
    RateLimitGovernor,
    RateLimitSnapshot,
    RateLimitStatus,
    classify_rate_limit,
    parse_rate_limit_headers,
)
from giteamirror.storage import RateLimitState

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

NOW = dt.datetime(2024, 7, 14, 12, 0, tzinfo=dt.UTC)
RESET = NOW + dt.timedelta(minutes=10)


def _headers(
    limit: int, remaining: int, reset: dt.datetime = RESET
) -> dict[str, str]:
    return {
        "x-ratelimit-limit": str(limit),
        "x-ratelimit-remaining": str(remaining),
        "x-ratelimit-reset": str(int(reset.timestamp())),
    }


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.parametrize(
    ("limit", "remaining", "expected"),
    [
        (5000, 4000, RateLimitStatus.OK),
        (5000, 900, RateLimitStatus.WARNING),
        (5000, 200, RateLimitStatus.LIMITED),
        (5000, 99, RateLimitStatus.LIMITED),
        (5000, 0, RateLimitStatus.EXCEEDED),
    ],
)
def test_classify_rate_limit(
    limit: int, remaining: int, expected: RateLimitStatus
) -> None:
    """Remaining quota maps onto the status ladder."""
    assert classify_rate_limit(limit, remaining) is expected


class TestParseHeaders:
    """Tests for parse_rate_limit_headers."""

    def test_builds_snapshot(self) -> None:
        """Quota headers produce a classified snapshot."""
        snapshot = parse_rate_limit_headers(
            {**_headers(5000, 4990), "retry-after": "30"}
        )
        assert snapshot is not None
        assert snapshot.used == 10
        assert snapshot.reset_at == RESET.replace(microsecond=0)
        assert snapshot.retry_after == 30
        assert snapshot.status is RateLimitStatus.OK

    def test_missing_headers_yield_none(self) -> None:
        """Responses without quota headers leave the state untouched."""
        assert parse_rate_limit_headers({"x-ratelimit-limit": "5000"}) is None

    def test_garbage_values_yield_none(self) -> None:
        """Unparseable header values are ignored."""
        headers = _headers(5000, 1) | {"x-ratelimit-limit": "n/a"}
        assert parse_rate_limit_headers(headers) is None


class TestGovernor:
    """Tests for RateLimitGovernor."""

    def test_unknown_user_assumes_full_quota(self) -> None:
        """Before any response the quota is assumed full."""
        governor = RateLimitGovernor(clock=lambda: NOW)
        snapshot = governor.snapshot("user-1")
        assert snapshot.remaining == snapshot.limit == 5000
        assert governor.should_pause("user-1") is False

    @pytest.mark.asyncio
    async def test_pauses_and_resumes_after_reset(self) -> None:
        """A nearly spent quota sleeps until the reset, then resumes."""
        sleeps = _Sleeps()
        governor = RateLimitGovernor(sleep=sleeps, clock=lambda: NOW)
        await governor.update_from_headers("user-1", _headers(5000, 50))

        assert governor.should_pause("user-1")
        await governor.wait_for_reset("user-1")

        assert sleeps.delays == [600.0]
        assert governor.should_pause("user-1") is False

    def test_retry_after_overrides_reset(self) -> None:
        """An explicit retry-after wins over the reset timestamp."""
        governor = RateLimitGovernor(clock=lambda: NOW)
        snapshot = RateLimitSnapshot.build(
            limit=5000, remaining=0, reset_at=RESET, retry_after=45
        )
        assert governor.calculate_wait_time(snapshot) == dt.timedelta(seconds=45)

    @pytest.mark.asyncio
    async def test_providers_are_tracked_separately(self) -> None:
        """Gitea exhaustion never pauses GitHub work."""
        governor = RateLimitGovernor(clock=lambda: NOW)
        await governor.update_from_headers(
            "user-1", _headers(1000, 0), provider=GITEA
        )

        assert governor.should_pause("user-1", GITEA)
        assert governor.should_pause("user-1") is False

    @pytest.mark.asyncio
    async def test_retry_with_backoff_waits_out_rate_limit(self) -> None:
        """A 403 rate-limit rejection waits for the reset and retries."""
        sleeps = _Sleeps()
        governor = RateLimitGovernor(sleep=sleeps, clock=lambda: NOW)
        calls = 0

        async def call() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise GitHubAPIError.http_error(
                    403, headers=_headers(5000, 0), body="API rate limit exceeded"
                )
            return "ok"

        assert await governor.retry_with_backoff(call, "user-1") == "ok"
        assert calls == 2
        assert sleeps.delays == [600.0]

    @pytest.mark.asyncio
    async def test_retry_with_backoff_backs_off_on_429(self) -> None:
        """Too-many-requests answers back off exponentially up to the cap."""
        sleeps = _Sleeps()
        governor = RateLimitGovernor(
            sleep=sleeps,
            clock=lambda: NOW,
            backoff=BackoffPolicy(base_delay_s=1.0, max_delay_s=1.5),
        )

        async def call() -> str:
            raise GitHubAPIError.http_error(429)

        with pytest.raises(GitHubAPIError):
            await governor.retry_with_backoff(call, "user-1", max_retries=3)
        assert sleeps.delays == [1.0, 1.5]

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self) -> None:
        """Errors unrelated to quotas are not retried."""
        governor = RateLimitGovernor(clock=lambda: NOW)
        calls = 0

        async def call() -> None:
            nonlocal calls
            calls += 1
            raise GitHubAPIError.http_error(404)

        with pytest.raises(GitHubAPIError):
            await governor.retry_with_backoff(call, "user-1")
        assert calls == 1


class TestGovernorPersistence:
    """Tests for persisted snapshots and notifications."""

    @pytest.mark.asyncio
    async def test_snapshot_upserted_and_restored(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Snapshots survive a new governor instance."""
        writer = RateLimitGovernor(session_factory, clock=lambda: NOW)
        await writer.update_from_headers("user-1", _headers(5000, 3000))
        await writer.update_from_headers("user-1", _headers(5000, 2500))

        async with session_factory() as session:
            rows = (await session.scalars(select(RateLimitState))).all()
        assert len(rows) == 1
        assert rows[0].remaining == 2500

        reader = RateLimitGovernor(session_factory, clock=lambda: NOW)
        restored = await reader.restore("user-1")
        assert restored.remaining == 2500

    @pytest.mark.asyncio
    async def test_stale_persisted_window_is_reset(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A persisted window whose reset has passed is treated as full."""
        writer = RateLimitGovernor(session_factory, clock=lambda: NOW)
        await writer.update_from_headers("user-1", _headers(5000, 0))

        later = RESET + dt.timedelta(minutes=1)
        reader = RateLimitGovernor(session_factory, clock=lambda: later)
        restored = await reader.restore("user-1")
        assert restored.status is RateLimitStatus.OK

    @pytest.mark.asyncio
    async def test_threshold_notifications_fire_once(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Warning and exceeded notices are published once per window."""
        publisher = EventPublisher(session_factory)
        governor = RateLimitGovernor(publisher=publisher, clock=lambda: NOW)

        await governor.update_from_headers("user-1", _headers(5000, 900))
        await governor.update_from_headers("user-1", _headers(5000, 800))
        await governor.update_from_headers("user-1", _headers(5000, 0))

        events = await publisher.fetch_unread("user-1", RATE_LIMIT_CHANNEL)
        assert [event.payload["type"] for event in events] == ["warning", "exceeded"]
