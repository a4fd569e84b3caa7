"""Periodic scheduler driving discovery, cleanup, auto-mirror and sync.

Usage
-----
Build the collaborators and run the loop until cancelled:

>>> service = MirrorService(session_factory)
>>> scheduler = Scheduler(
...     SchedulerDependencies(
...         session_factory=session_factory,
...         service=service,
...         client_factory=HttpClientFactory(governor=governor),
...     ),
...     settings=EngineSettings.from_env(),
... )
>>> await scheduler.start()
>>> ...
>>> await scheduler.stop()

Each tick processes eligible configurations one after another. A cycle's
``next_run`` is anchored on the moment the cycle started, so the cadence
does not drift with cycle duration.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses as dc
import typing as typ

from giteamirror.common import utcnow
from giteamirror.config import ConfigurationStore, EngineSettings
from giteamirror.logging import get_logger, log_exception, log_info
from giteamirror.observability import CycleContext, MirrorEventLogger

from .autostart import AutoStarter
from .cadence import is_due, next_run_after
from .cleanup import OrphanCleaner
from .discovery import discover_repositories
from .phases import run_auto_mirror, run_sync

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from giteamirror.config import MirrorConfig
    from giteamirror.events import SupportsPublish
    from giteamirror.operations import ClientFactory, MirrorService
    from giteamirror.recovery import RecoveryManager

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class SchedulerDependencies:
    """Core collaborators of :class:`Scheduler`.

    Attributes
    ----------
    session_factory
        Async session factory for configuration access.
    service
        Operations service whose stores are shared by every phase.
    client_factory
        Builds per-configuration client contexts.

    """

    session_factory: async_sessionmaker[AsyncSession]
    service: MirrorService
    client_factory: ClientFactory


@dc.dataclass(frozen=True, slots=True)
class TickResult:
    """Configurations handled by one tick."""

    ran: int = 0
    skipped: int = 0
    failed: int = 0
    overlapped: bool = False


class Scheduler:
    """Own the periodic tick loop and per-configuration cycles.

    All state lives on the instance: the loop task, the running-tick guard
    and the one-shot auto-start flag.
    """

    def __init__(  # noqa: PLR0913
        self,
        dependencies: SchedulerDependencies,
        *,
        settings: EngineSettings | None = None,
        recovery: RecoveryManager | None = None,
        publisher: SupportsPublish | None = None,
        clock: typ.Callable[[], dt.datetime] = utcnow,
        sleep: typ.Callable[[float], typ.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Configure the scheduler.

        Parameters
        ----------
        dependencies
            Session factory, operations service and client factory.
        settings
            Process settings; defaults to :class:`EngineSettings()`.
        recovery
            Recovery manager run on start when ``recovery_on_start`` is set.
        publisher
            Event publisher used by the cleanup phase.
        clock
            Source of "now" for cycle anchoring.
        sleep
            Used for batch pauses; injected by tests.

        """
        self._session_factory = dependencies.session_factory
        self._service = dependencies.service
        self._client_factory = dependencies.client_factory
        self._settings = settings or EngineSettings()
        self._recovery = recovery
        self._clock = clock
        self._sleep = sleep
        self._configs = ConfigurationStore(dependencies.session_factory)
        self._cleaner = OrphanCleaner(
            self._service.repositories,
            self._service.jobs,
            organizations=self._service.organizations,
            publisher=publisher,
        )
        self._events = MirrorEventLogger()
        self._task: asyncio.Task[None] | None = None
        self._tick_running = False
        self.auto_start_done = False

    @property
    def is_running(self) -> bool:
        """Return whether the periodic loop is active."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Run start-up work and launch the periodic loop."""
        if self.is_running:
            log_info(logger, "Scheduler already running")
            return

        if self._recovery is not None and self._settings.recovery_on_start:
            try:
                await self._recovery.recover()
            except Exception as exc:  # noqa: BLE001 - recovery never blocks start
                log_exception(logger, "Start-up recovery failed", exc)

        if self._settings.auto_start and not self.auto_start_done:
            self.auto_start_done = True
            await AutoStarter(
                self._configs,
                self._service,
                self._client_factory,
                excluded_orgs=self._settings.excluded_orgs,
                sleep=self._sleep,
            ).run()

        self._task = asyncio.create_task(self._loop())
        log_info(
            logger,
            "Scheduler started; ticking every %ds",
            self._settings.tick_interval_s,
        )

    async def stop(self) -> None:
        """Cancel the periodic loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log_info(logger, "Scheduler stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as exc:  # noqa: BLE001 - keep the loop alive
                log_exception(logger, "Scheduler tick failed", exc)
            await asyncio.sleep(self._settings.tick_interval_s)

    async def tick(self) -> TickResult:
        """Run every eligible, due configuration once.

        Overlapping calls return immediately with ``overlapped`` set rather
        than queuing behind the running tick.
        """
        if self._tick_running:
            log_info(logger, "Scheduler tick already running; skipping")
            return TickResult(overlapped=True)

        self._tick_running = True
        try:
            return await self._tick()
        finally:
            self._tick_running = False

    async def _tick(self) -> TickResult:
        ran = skipped = failed = 0
        now = self._clock()
        for config in await self._configs.list_active():
            if not config.schedule.enabled:
                skipped += 1
                continue
            if not config.has_credentials:
                self._events.log_config_skipped(config.id, "missing_credentials")
                skipped += 1
                continue
            if not is_due(config, now):
                self._events.log_config_skipped(config.id, "not_due")
                skipped += 1
                continue
            try:
                await self.run_cycle(config)
            except Exception:  # noqa: BLE001 - logged by run_cycle
                failed += 1
            else:
                ran += 1
        return TickResult(ran=ran, skipped=skipped, failed=failed)

    async def run_cycle(self, config: MirrorConfig) -> dt.datetime:
        """Run discovery, cleanup, auto-mirror and sync for ``config``.

        Returns
        -------
        datetime
            The persisted ``next_run``; it is written even when the cycle
            fails so a broken configuration waits a full interval.

        """
        started = self._clock()
        context = CycleContext(
            config_id=config.id, user_id=config.user_id, started_at=started
        )
        next_run = next_run_after(config, started)
        self._events.log_cycle_started(context)
        try:
            await self._run_phases(config, context)
        except Exception as exc:
            self._events.log_cycle_failed(context, exc, self._clock() - started)
            raise
        else:
            self._events.log_cycle_completed(
                context, self._clock() - started, next_run
            )
        finally:
            await self._configs.record_run(
                config.id, last_run=started, next_run=next_run
            )
        return next_run

    async def _run_phases(self, config: MirrorConfig, context: CycleContext) -> None:
        schedule = config.schedule
        async with self._client_factory(config) as ctx:
            discovery = await discover_repositories(
                ctx,
                self._service.repositories,
                self._service.organizations,
                excluded_orgs=self._settings.excluded_orgs,
            )
            self._events.log_phase_completed(
                context, "discovery", discovery.inserted, 0
            )

            cleanup = await self._cleaner.run(ctx)
            if not cleanup.skipped:
                self._events.log_phase_completed(
                    context,
                    "cleanup",
                    cleanup.archived + cleanup.deleted,
                    cleanup.failed,
                )

            if schedule.auto_mirror:
                mirrored = await run_auto_mirror(ctx, self._service, sleep=self._sleep)
                self._events.log_phase_completed(
                    context, "auto_mirror", mirrored.processed, mirrored.failed
                )

            if schedule.auto_sync:
                synced = await run_sync(ctx, self._service, sleep=self._sleep)
                self._events.log_phase_completed(
                    context, "sync", synced.processed, synced.failed
                )


__all__ = ["Scheduler", "SchedulerDependencies", "TickResult"]
