"""Persistence models for the mirror engine."""

from __future__ import annotations

import datetime as dt
import typing as typ
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from giteamirror.common.time import utcnow
from giteamirror.status import RepositoryStatus

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine


class Base(DeclarativeBase):
    """Base declarative class for mirror engine models."""


class NaiveDatetimeError(ValueError):
    """Raised when a naive datetime is bound to a UTC column."""

    @classmethod
    def for_column(cls) -> NaiveDatetimeError:
        """Return the error raised for naive datetime parameters."""
        return cls("timestamps must be timezone-aware")


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise NaiveDatetimeError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


def _uuid() -> str:
    return str(uuid.uuid4())


class Configuration(Base):
    """Per-user mirror configuration with JSON-encoded sections."""

    __tablename__ = "configurations"
    __table_args__ = (Index("ix_configurations_user", "user_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255), default="default")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    source: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    destination: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    schedule: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    cleanup: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    mirror: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    include: Mapped[list[str]] = mapped_column(JSON, default=list)
    exclude: Mapped[list[str]] = mapped_column(JSON, default=list)
    last_run: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    next_run: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class Repository(Base):
    """A source repository tracked for mirroring (a mirror unit)."""

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "normalized_full_name", name="uq_repositories_user_full_name"
        ),
        Index("ix_repositories_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    config_id: Mapped[str] = mapped_column(
        ForeignKey("configurations.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(512))
    normalized_full_name: Mapped[str] = mapped_column(String(512))
    url: Mapped[str] = mapped_column(String(1024))
    clone_url: Mapped[str] = mapped_column(String(1024))
    owner: Mapped[str] = mapped_column(String(255))
    organization: Mapped[str | None] = mapped_column(String(255), default=None)
    destination_org: Mapped[str | None] = mapped_column(String(255), default=None)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    is_fork: Mapped[bool] = mapped_column(Boolean, default=False)
    forked_from: Mapped[str | None] = mapped_column(String(512), default=None)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    is_starred: Mapped[bool] = mapped_column(Boolean, default=False)
    is_disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    has_issues: Mapped[bool] = mapped_column(Boolean, default=True)
    size: Mapped[int] = mapped_column(Integer, default=0)
    default_branch: Mapped[str] = mapped_column(String(255), default="main")
    description: Mapped[str | None] = mapped_column(Text(), default=None)
    language: Mapped[str | None] = mapped_column(String(64), default=None)
    visibility: Mapped[str] = mapped_column(String(16), default="public")
    status: Mapped[str] = mapped_column(
        String(16), default=RepositoryStatus.IMPORTED.value
    )
    mirrored_location: Mapped[str] = mapped_column(String(512), default="")
    last_mirrored: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    error_message: Mapped[str | None] = mapped_column(Text(), default=None)
    metadata_state: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    source_updated_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class Organization(Base):
    """A source organization the user may opt into mirroring."""

    __tablename__ = "organizations"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "normalized_name", name="uq_organizations_user_name"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    config_id: Mapped[str] = mapped_column(
        ForeignKey("configurations.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255))
    normalized_name: Mapped[str] = mapped_column(String(255))
    membership_role: Mapped[str] = mapped_column(String(32), default="member")
    is_included: Mapped[bool] = mapped_column(Boolean, default=False)
    destination_org: Mapped[str | None] = mapped_column(String(255), default=None)
    status: Mapped[str] = mapped_column(
        String(16), default=RepositoryStatus.IMPORTED.value
    )
    repository_count: Mapped[int] = mapped_column(Integer, default=0)
    last_mirrored: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    error_message: Mapped[str | None] = mapped_column(Text(), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class MirrorJob(Base):
    """Audit and resilience record for one unit or batch execution."""

    __tablename__ = "mirror_jobs"
    __table_args__ = (
        Index("ix_mirror_jobs_in_progress", "in_progress", "last_checkpoint"),
        Index("ix_mirror_jobs_user_time", "user_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    repository_id: Mapped[str | None] = mapped_column(String(36), default=None)
    repository_name: Mapped[str | None] = mapped_column(String(512), default=None)
    organization_id: Mapped[str | None] = mapped_column(String(36), default=None)
    organization_name: Mapped[str | None] = mapped_column(String(255), default=None)
    status: Mapped[str] = mapped_column(String(16))
    message: Mapped[str] = mapped_column(Text())
    details: Mapped[str | None] = mapped_column(Text(), default=None)
    job_type: Mapped[str] = mapped_column(String(16), default="mirror")
    batch_id: Mapped[str | None] = mapped_column(String(36), default=None)
    total_items: Mapped[int | None] = mapped_column(Integer, default=None)
    completed_items: Mapped[int] = mapped_column(Integer, default=0)
    item_ids: Mapped[list[str] | None] = mapped_column(JSON, default=None)
    completed_item_ids: Mapped[list[str] | None] = mapped_column(JSON, default=None)
    in_progress: Mapped[bool] = mapped_column(Boolean, default=False)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    last_checkpoint: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    timestamp: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class RateLimitState(Base):
    """Latest quota snapshot per user and provider."""

    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_rate_limits_user_provider"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64))
    provider: Mapped[str] = mapped_column(String(16), default="github")
    limit: Mapped[int] = mapped_column(Integer)
    remaining: Mapped[int] = mapped_column(Integer)
    used: Mapped[int] = mapped_column(Integer)
    reset_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    retry_after: Mapped[int | None] = mapped_column(Integer, default=None)
    status: Mapped[str] = mapped_column(String(16), default="ok")
    last_checked: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class Event(Base):
    """Append-only notification consumed by external pollers."""

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_user_channel_read", "user_id", "channel", "read"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    channel: Mapped[str] = mapped_column(String(128))
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


async def init_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
