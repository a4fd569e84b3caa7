"""Command-line remediation and one-off engine runs.

Usage
-----
Fail every in-progress job and stuck repository::

    python -m giteamirror.cli mark-failed

Converge repositories already present on Gitea to ``mirrored``::

    python -m giteamirror.cli repair

Run a single scheduler tick or recovery pass::

    python -m giteamirror.cli tick
    python -m giteamirror.cli recover

The database URL comes from ``--database-url`` or
``GITEAMIRROR_DATABASE_URL``.
"""

from __future__ import annotations

import argparse
import asyncio
import typing as typ

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from giteamirror.config import EngineSettings
from giteamirror.factory import build_client_factory, build_engine
from giteamirror.remediation import mark_in_progress_jobs_failed, repair_statuses
from giteamirror.storage import init_storage

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

type Command = typ.Callable[
    [async_sessionmaker[AsyncSession], EngineSettings], typ.Awaitable[str]
]


async def _mark_failed(
    session_factory: async_sessionmaker[AsyncSession], settings: EngineSettings
) -> str:
    del settings
    result = await mark_in_progress_jobs_failed(session_factory)
    return f"marked {result.jobs} jobs and {result.units} repositories as failed"


async def _repair(
    session_factory: async_sessionmaker[AsyncSession], settings: EngineSettings
) -> str:
    result = await repair_statuses(
        session_factory, build_client_factory(session_factory, settings)
    )
    return (
        f"checked {result.checked} repositories: "
        f"{result.repaired} repaired, {result.failed} failed"
    )


async def _tick(
    session_factory: async_sessionmaker[AsyncSession], settings: EngineSettings
) -> str:
    result = await build_engine(session_factory, settings).scheduler.tick()
    return (
        f"tick ran {result.ran} configurations "
        f"({result.skipped} skipped, {result.failed} failed)"
    )


async def _recover(
    session_factory: async_sessionmaker[AsyncSession], settings: EngineSettings
) -> str:
    result = await build_engine(session_factory, settings).recovery.recover()
    return (
        f"recovery found {result.found} jobs: {result.resumed} resumed, "
        f"{result.completed} completed, {result.failed} failed"
    )


COMMANDS: dict[str, Command] = {
    "mark-failed": _mark_failed,
    "repair": _repair,
    "tick": _tick,
    "recover": _recover,
}


async def run_command(command: str, database_url: str, settings: EngineSettings) -> str:
    """Run ``command`` against ``database_url`` and return its summary line."""
    engine = create_async_engine(database_url)
    try:
        await init_storage(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        return await COMMANDS[command](session_factory, settings)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Run a remediation or one-off engine command.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 2 when no database URL is available.

    """
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("command", choices=sorted(COMMANDS), help="Action to run")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL; defaults to GITEAMIRROR_DATABASE_URL",
    )
    args = parser.parse_args(argv)

    settings = EngineSettings.from_env()
    database_url = args.database_url or settings.database_url
    if not database_url:
        print("A database URL is required (--database-url or GITEAMIRROR_DATABASE_URL)")
        return 2

    print(asyncio.run(run_command(args.command, database_url, settings)))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
