"""One-shot initial pass run before the first scheduler tick."""

from __future__ import annotations

import asyncio
import typing as typ

from giteamirror.common import utcnow
from giteamirror.duration import (
    InvalidDurationError,
    cron_next_run,
    is_cron_expression,
    parse_interval,
)
from giteamirror.executor import RetryPolicy, iter_batches, process_with_resilience
from giteamirror.logging import get_logger, log_info, log_warning
from giteamirror.status import MIRRORED_STATUSES, RepositoryStatus

from .discovery import discover_repositories

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from giteamirror.config import ConfigurationStore, MirrorConfig
    from giteamirror.operations import ClientFactory, MirrorService
    from giteamirror.storage import Repository

logger = get_logger(__name__)

AUTO_START_BATCH_SIZE = 5
AUTO_START_INTERVAL = "8h"
AUTO_START_POLICY: typ.Final = RetryPolicy(
    concurrency_limit=AUTO_START_BATCH_SIZE, max_retries=2, retry_delay_s=2.0
)
_PENDING = (RepositoryStatus.IMPORTED, RepositoryStatus.PENDING)


def _auto_start_schedule(
    config: MirrorConfig, now: dt.datetime
) -> tuple[str | int, dt.datetime]:
    """Return the interval to persist and the first scheduled run after ``now``."""
    raw = config.schedule.interval or AUTO_START_INTERVAL
    try:
        if is_cron_expression(raw):
            return raw, cron_next_run(typ.cast("str", raw), now)
        return raw, now + parse_interval(raw)
    except InvalidDurationError:
        log_warning(
            logger,
            "Invalid interval %r for config %s; using %s",
            raw,
            config.id,
            AUTO_START_INTERVAL,
        )
        return AUTO_START_INTERVAL, now + parse_interval(AUTO_START_INTERVAL)


class AutoStarter:
    """Discover and mirror each configuration once, then enable its schedule."""

    def __init__(
        self,
        configs: ConfigurationStore,
        service: MirrorService,
        client_factory: ClientFactory,
        *,
        excluded_orgs: cabc.Container[str] = frozenset(),
        sleep: typ.Callable[[float], typ.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Store collaborators shared with the scheduler."""
        self._configs = configs
        self._service = service
        self._client_factory = client_factory
        self._excluded_orgs = excluded_orgs
        self._sleep = sleep

    async def run(self) -> int:
        """Run the initial pass for every active configuration with credentials.

        Returns the number of configurations whose schedule was enabled. A
        failing configuration is logged and does not stop the others.
        """
        started = 0
        for config in await self._configs.list_active():
            if not config.has_credentials:
                log_info(
                    logger, "Auto-start skipping config %s: no credentials", config.id
                )
                continue
            try:
                await self._start(config)
            except Exception as exc:  # noqa: BLE001 - isolate configurations
                log_warning(
                    logger, "Auto-start failed for config %s: %s", config.id, exc
                )
            else:
                started += 1
        return started

    async def _start(self, config: MirrorConfig) -> None:
        async with self._client_factory(config) as ctx:
            await discover_repositories(
                ctx,
                self._service.repositories,
                self._service.organizations,
                excluded_orgs=self._excluded_orgs,
            )
            units = await self._service.repositories.list_for_user(
                config.user_id, config_id=config.id
            )
            if any(unit.status in MIRRORED_STATUSES for unit in units):
                log_info(
                    logger,
                    "Config %s already has mirrors; enabling schedule only",
                    config.id,
                )
            else:
                pending = [unit for unit in units if unit.status in _PENDING]

                async def mirror(unit: Repository) -> Repository:
                    return await self._service.mirror_repository(ctx, unit.id)

                for batch in iter_batches(pending, AUTO_START_BATCH_SIZE):
                    await process_with_resilience(
                        batch,
                        mirror,
                        job_store=self._service.jobs,
                        user_id=config.user_id,
                        job_type="mirror",
                        get_item_id=lambda unit: unit.id,
                        get_item_name=lambda unit: unit.full_name,
                        policy=AUTO_START_POLICY,
                        sleep=self._sleep,
                    )

        now = utcnow()
        raw, next_run = _auto_start_schedule(config, now)
        await self._configs.record_run(
            config.id,
            last_run=now,
            next_run=next_run,
            enable_schedule=True,
            interval=str(raw),
        )
        log_info(logger, "Auto-start enabled schedule for config %s", config.id)


__all__ = [
    "AUTO_START_BATCH_SIZE",
    "AUTO_START_INTERVAL",
    "AUTO_START_POLICY",
    "AutoStarter",
]
