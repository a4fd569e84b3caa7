"""Dramatiq actors for scheduler ticks and job recovery.

External cron or queue producers can drive the engine without a long-lived
scheduler process.

Usage
-----
Queue one scheduler tick:

>>> run_scheduler_tick_job.send(database_url="postgresql+asyncpg://...")

Queue a recovery pass for interrupted jobs:

>>> recover_interrupted_jobs_job.send(database_url="postgresql+asyncpg://...")

"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from giteamirror._broker import ensure_broker_configured
from giteamirror.config import EngineSettings
from giteamirror.factory import build_engine

type SessionFactory = async_sessionmaker[AsyncSession]


class _SessionFactories:
    """Per-URL session factories shared by every actor invocation.

    Engines are created lazily and never disposed; worker threads reuse
    their connection pools for the lifetime of the process.
    """

    def __init__(self) -> None:
        self._factories: dict[str, SessionFactory] = {}
        self._lock = threading.Lock()

    def get(self, database_url: str) -> SessionFactory:
        with self._lock:
            factory = self._factories.get(database_url)
            if factory is None:
                factory = async_sessionmaker(
                    create_async_engine(database_url), expire_on_commit=False
                )
                self._factories[database_url] = factory
            return factory


_session_factories = _SessionFactories()


async def _run_scheduler_tick_async(
    session_factory: SessionFactory, settings: EngineSettings
) -> dict[str, int]:
    """Run one scheduler tick and return its counts."""
    engine = build_engine(session_factory, settings)
    result = await engine.scheduler.tick()
    return {"ran": result.ran, "skipped": result.skipped, "failed": result.failed}


async def _recover_interrupted_jobs_async(
    session_factory: SessionFactory, settings: EngineSettings
) -> dict[str, int]:
    """Run one recovery pass and return its counts."""
    engine = build_engine(session_factory, settings)
    result = await engine.recovery.recover()
    return {
        "found": result.found,
        "resumed": result.resumed,
        "completed": result.completed,
        "failed": result.failed,
    }


def _run_actor_async[T](
    database_url: str,
    async_fn: typ.Callable[[SessionFactory, EngineSettings], typ.Awaitable[T]],
) -> T:
    """Execute common async scaffolding for Dramatiq actors."""
    ensure_broker_configured()
    session_factory = _session_factories.get(database_url)
    settings = EngineSettings.from_env()
    return asyncio.run(async_fn(session_factory, settings))


@dramatiq.actor
def run_scheduler_tick_job(database_url: str) -> dict[str, int]:
    """Dramatiq actor running one scheduler tick.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.

    Returns
    -------
    dict[str, int]
        Configurations ``ran``, ``skipped`` and ``failed`` in the tick.

    """
    return _run_actor_async(database_url, _run_scheduler_tick_async)


@dramatiq.actor
def recover_interrupted_jobs_job(database_url: str) -> dict[str, int]:
    """Dramatiq actor resuming or failing interrupted batch jobs.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.

    Returns
    -------
    dict[str, int]
        Jobs ``found``, ``resumed``, ``completed`` and ``failed``.

    """
    return _run_actor_async(database_url, _recover_interrupted_jobs_async)


__all__ = ["recover_interrupted_jobs_job", "run_scheduler_tick_job"]
