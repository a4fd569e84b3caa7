"""Assemble the engine's collaborators from a session factory and settings.

The runtime, the Dramatiq actors and the CLI all need the same object graph:
one event publisher, one rate-limit governor shared by every client, one
:class:`~giteamirror.operations.MirrorService` whose stores the recovery
manager and scheduler reuse.

Usage
-----
Build everything for a process::

    from giteamirror.factory import build_engine

    engine = build_engine(session_factory, EngineSettings.from_env())
    await engine.scheduler.start()

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

from giteamirror.config import EngineSettings
from giteamirror.events import EventPublisher
from giteamirror.operations import HttpClientFactory, MirrorService
from giteamirror.ratelimit import RateLimitGovernor
from giteamirror.recovery import RecoveryManager
from giteamirror.scheduler import Scheduler, SchedulerDependencies

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["MirrorEngine", "build_client_factory", "build_engine"]


@dc.dataclass(frozen=True, slots=True)
class MirrorEngine:
    """Wired collaborators for one process."""

    service: MirrorService
    client_factory: HttpClientFactory
    recovery: RecoveryManager
    scheduler: Scheduler


def build_client_factory(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    *,
    publisher: EventPublisher | None = None,
) -> HttpClientFactory:
    """Return an HTTP client factory sharing one persisted governor."""
    governor = RateLimitGovernor(session_factory, publisher=publisher)
    return HttpClientFactory(
        governor=governor,
        github_api_url=settings.github_api_url,
        timeout_s=settings.http_timeout_s,
    )


def build_engine(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings | None = None,
) -> MirrorEngine:
    """Build the service, recovery manager and scheduler for ``settings``.

    Parameters
    ----------
    session_factory
        Async session factory for every store.
    settings
        Process settings; read from the environment when omitted.

    Returns
    -------
    MirrorEngine
        Collaborators sharing stores and the rate-limit governor.

    """
    settings = settings or EngineSettings.from_env()
    publisher = EventPublisher(session_factory)
    client_factory = build_client_factory(
        session_factory, settings, publisher=publisher
    )
    service = MirrorService(session_factory, publisher=publisher)
    recovery = RecoveryManager(
        session_factory,
        service=service,
        client_factory=client_factory,
        stale_after=dt.timedelta(minutes=settings.stale_job_minutes),
    )
    scheduler = Scheduler(
        SchedulerDependencies(
            session_factory=session_factory,
            service=service,
            client_factory=client_factory,
        ),
        settings=settings,
        recovery=recovery,
        publisher=publisher,
    )
    return MirrorEngine(
        service=service,
        client_factory=client_factory,
        recovery=recovery,
        scheduler=scheduler,
    )
