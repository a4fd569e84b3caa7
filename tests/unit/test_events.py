"""Unit tests for the persistent event log."""

from __future__ import annotations

import typing as typ

import pytest

from giteamirror.events import (
    RATE_LIMIT_CHANNEL,
    EventPublisher,
    NullPublisher,
    mirror_status_channel,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def test_mirror_status_channel_is_per_user() -> None:
    """Each user has a dedicated status channel."""
    assert mirror_status_channel("user-1") == "mirror-status:user-1"


class TestEventPublisher:
    """Tests for EventPublisher."""

    @pytest.mark.asyncio
    async def test_fetch_unread_marks_events_read(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Events are returned once, oldest first."""
        publisher = EventPublisher(session_factory)
        channel = mirror_status_channel("user-1")
        await publisher.publish("user-1", channel, {"step": 1})
        await publisher.publish("user-1", channel, {"step": 2})
        await publisher.publish("user-2", channel, {"step": 99})

        first = await publisher.fetch_unread("user-1", channel)
        second = await publisher.fetch_unread("user-1", channel)

        assert [event.payload["step"] for event in first] == [1, 2]
        assert second == []

    @pytest.mark.asyncio
    async def test_unread_duplicates_are_suppressed(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A repeated key is dropped until the first event is read."""
        publisher = EventPublisher(session_factory)
        payload = {"type": "rate_limit.warning"}

        first = await publisher.publish(
            "user-1", RATE_LIMIT_CHANNEL, payload, deduplication_key="warn-80"
        )
        duplicate = await publisher.publish(
            "user-1", RATE_LIMIT_CHANNEL, payload, deduplication_key="warn-80"
        )
        (event,) = await publisher.fetch_unread("user-1", RATE_LIMIT_CHANNEL)
        after_read = await publisher.publish(
            "user-1", RATE_LIMIT_CHANNEL, payload, deduplication_key="warn-80"
        )

        assert first is not None
        assert duplicate is None
        assert event.payload["deduplication_key"] == "warn-80"
        assert after_read is not None


@pytest.mark.asyncio
async def test_null_publisher_discards_events() -> None:
    """NullPublisher accepts events and stores nothing."""
    assert await NullPublisher().publish("user-1", "any", {"x": 1}) is None
