"""Load and update persisted configurations.

This is the only place where configuration JSON is decoded; everything past
this boundary receives a :class:`~giteamirror.config.models.MirrorConfig`.
"""

from __future__ import annotations

import typing as typ

import msgspec
from sqlalchemy import select

from giteamirror.logging import get_logger, log_error
from giteamirror.storage import Configuration

from .errors import ConfigurationError
from .models import (
    CleanupSettings,
    DestinationSettings,
    MirrorConfig,
    MirrorOptions,
    ScheduleSettings,
    SourceSettings,
)

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

_SECTIONS: tuple[tuple[str, type[msgspec.Struct]], ...] = (
    ("source", SourceSettings),
    ("destination", DestinationSettings),
    ("schedule", ScheduleSettings),
    ("cleanup", CleanupSettings),
    ("mirror", MirrorOptions),
)


def decode_configuration(row: Configuration) -> MirrorConfig:
    """Decode a configuration row into typed sections.

    Raises
    ------
    ConfigurationError
        If a section fails validation (for example an unknown strategy).

    """
    decoded: dict[str, typ.Any] = {}
    for section, struct_type in _SECTIONS:
        raw = getattr(row, section) or {}
        try:
            decoded[section] = msgspec.convert(raw, struct_type)
        except msgspec.ValidationError as exc:
            raise ConfigurationError.invalid_section(row.id, section, str(exc)) from exc

    return MirrorConfig(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        is_active=row.is_active,
        include=tuple(row.include or ()),
        exclude=tuple(row.exclude or ()),
        last_run=row.last_run,
        next_run=row.next_run,
        **decoded,
    )


def encode_section(section: msgspec.Struct) -> dict[str, typ.Any]:
    """Return the JSON-compatible form of a configuration section."""
    return typ.cast("dict[str, typ.Any]", msgspec.to_builtins(section))


class ConfigurationStore:
    """Read configurations and persist schedule bookkeeping."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for configuration access."""
        self._session_factory = session_factory

    async def list_active(self) -> list[MirrorConfig]:
        """Return decoded active configurations.

        Rows that fail to decode are logged and left out so one broken
        configuration cannot stall every other user.
        """
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(Configuration)
                    .where(Configuration.is_active.is_(True))
                    .order_by(Configuration.created_at)
                )
            ).all()

        configs: list[MirrorConfig] = []
        for row in rows:
            try:
                configs.append(decode_configuration(row))
            except ConfigurationError as exc:
                log_error(logger, "Skipping configuration %s: %s", row.id, exc)
        return configs

    async def get(self, config_id: str) -> MirrorConfig:
        """Return one decoded configuration.

        Raises
        ------
        ConfigurationError
            If the configuration does not exist or fails to decode.

        """
        async with self._session_factory() as session:
            row = await session.get(Configuration, config_id)
        if row is None:
            raise ConfigurationError.not_found(config_id)
        return decode_configuration(row)

    async def get_for_user(self, user_id: str) -> MirrorConfig | None:
        """Return the active configuration owned by ``user_id``, if any."""
        async with self._session_factory() as session:
            row = await session.scalar(
                select(Configuration)
                .where(
                    Configuration.user_id == user_id,
                    Configuration.is_active.is_(True),
                )
                .order_by(Configuration.created_at)
                .limit(1)
            )
        return None if row is None else decode_configuration(row)

    async def record_run(
        self,
        config_id: str,
        *,
        last_run: dt.datetime,
        next_run: dt.datetime,
        enable_schedule: bool = False,
        interval: str | None = None,
    ) -> None:
        """Persist ``last_run``/``next_run`` and optionally enable scheduling."""
        async with self._session_factory() as session, session.begin():
            row = await session.get(Configuration, config_id)
            if row is None:
                raise ConfigurationError.not_found(config_id)
            row.last_run = last_run
            row.next_run = next_run
            if enable_schedule:
                schedule = dict(row.schedule or {})
                schedule["enabled"] = True
                if interval is not None and not schedule.get("interval"):
                    schedule["interval"] = interval
                row.schedule = schedule
