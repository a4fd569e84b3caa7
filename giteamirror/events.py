"""Store-and-poll event publication.

Progress, status and rate-limit notifications are appended to the ``events``
table on a per-user channel; an external reader polls and marks them read.
Publishers may pass a de-duplication key, in which case an unread event with
the same key on the same channel suppresses the new one.
"""

from __future__ import annotations

import typing as typ

from sqlalchemy import select, update

from giteamirror.logging import get_logger, log_debug
from giteamirror.storage import Event

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

RATE_LIMIT_CHANNEL = "rate-limit"
REPOSITORY_CHANNEL = "repository"

# Only the most recent unread events are scanned for duplicates.
_DEDUP_WINDOW = 10


def mirror_status_channel(user_id: str) -> str:
    """Return the channel carrying job and status updates for ``user_id``."""
    return f"mirror-status:{user_id}"


class EventPublisher:
    """Append notifications to the persistent event log."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for event writes."""
        self._session_factory = session_factory

    async def publish(
        self,
        user_id: str,
        channel: str,
        payload: dict[str, typ.Any],
        *,
        deduplication_key: str | None = None,
    ) -> str | None:
        """Append an event and return its id.

        Returns ``None`` when an unread event with the same
        ``deduplication_key`` already exists on the channel.
        """
        async with self._session_factory() as session, session.begin():
            if deduplication_key is not None:
                recent = (
                    await session.scalars(
                        select(Event)
                        .where(
                            Event.user_id == user_id,
                            Event.channel == channel,
                            Event.read.is_(False),
                        )
                        .order_by(Event.created_at.desc())
                        .limit(_DEDUP_WINDOW)
                    )
                ).all()
                if any(
                    event.payload.get("deduplication_key") == deduplication_key
                    for event in recent
                ):
                    log_debug(
                        logger,
                        "Skipping duplicate event channel=%s key=%s",
                        channel,
                        deduplication_key,
                    )
                    return None
                payload = {**payload, "deduplication_key": deduplication_key}

            event = Event(user_id=user_id, channel=channel, payload=payload)
            session.add(event)
            await session.flush()
            return event.id

    async def fetch_unread(
        self,
        user_id: str,
        channel: str,
        *,
        since: dt.datetime | None = None,
    ) -> list[Event]:
        """Return unread events in creation order and mark them read."""
        async with self._session_factory() as session, session.begin():
            stmt = (
                select(Event)
                .where(
                    Event.user_id == user_id,
                    Event.channel == channel,
                    Event.read.is_(False),
                )
                .order_by(Event.created_at)
            )
            if since is not None:
                stmt = stmt.where(Event.created_at > since)
            events = list((await session.scalars(stmt)).all())
            if events:
                await session.execute(
                    update(Event)
                    .where(Event.id.in_([event.id for event in events]))
                    .values(read=True)
                )
            return events


class NullPublisher:
    """Publisher that drops every event; used when nobody is listening."""

    async def publish(
        self,
        user_id: str,
        channel: str,
        payload: dict[str, typ.Any],
        *,
        deduplication_key: str | None = None,
    ) -> str | None:
        """Discard the event."""
        del user_id, channel, payload, deduplication_key
        return None


class SupportsPublish(typ.Protocol):
    """Anything able to publish engine events."""

    async def publish(
        self,
        user_id: str,
        channel: str,
        payload: dict[str, typ.Any],
        *,
        deduplication_key: str | None = None,
    ) -> str | None:
        """Publish ``payload`` on ``channel`` for ``user_id``."""
        ...


__all__ = [
    "RATE_LIMIT_CHANNEL",
    "REPOSITORY_CHANNEL",
    "EventPublisher",
    "NullPublisher",
    "SupportsPublish",
    "mirror_status_channel",
]
