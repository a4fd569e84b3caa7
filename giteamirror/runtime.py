"""Long-running scheduler process.

Configuration is driven by environment variables (see
:class:`~giteamirror.config.EngineSettings`):

- ``GITEAMIRROR_DATABASE_URL``: Database connection URL (required)
- ``GITEAMIRROR_LOG_LEVEL``: Log level (default ``INFO``)
- ``GITEAMIRROR_TICK_INTERVAL_SECONDS``: Seconds between ticks (default 60)
- ``GITEAMIRROR_AUTO_START``: Run the initial discovery and mirror pass
- ``GITEAMIRROR_RECOVERY_ON_START``: Resume interrupted jobs on start

Run the service directly with ``python -m giteamirror.runtime``. SIGINT and
SIGTERM stop the tick loop; in-flight work left behind is picked up by
recovery on the next start.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from giteamirror.config import ConfigurationError, EngineSettings
from giteamirror.factory import build_engine
from giteamirror.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from giteamirror.storage import init_storage

__all__ = ["main", "serve"]

logger = get_logger(__name__)


async def serve(settings: EngineSettings, stop: asyncio.Event | None = None) -> None:
    """Run the scheduler until ``stop`` is set.

    Raises
    ------
    ConfigurationError
        If ``settings.database_url`` is not set.

    """
    if settings.database_url is None:
        raise ConfigurationError.missing_database_url()

    stop = stop or asyncio.Event()
    db_engine = create_async_engine(settings.database_url)
    try:
        await init_storage(db_engine)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        engine = build_engine(session_factory, settings)
        await engine.scheduler.start()
        try:
            await stop.wait()
        finally:
            await engine.scheduler.stop()
    finally:
        await db_engine.dispose()


async def _serve_until_signalled(settings: EngineSettings) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform's event loop.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop.set)
    await serve(settings, stop)


def main() -> None:
    """Start the mirror engine from environment configuration."""
    try:
        settings = EngineSettings.from_env()
    except ValueError as exc:
        log_error(logger, "Invalid environment configuration: %s", exc)
        raise SystemExit(1) from exc

    normalized_level, invalid_level = configure_logging(settings.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid GITEAMIRROR_LOG_LEVEL %r, falling back to %s",
            settings.log_level,
            normalized_level,
        )

    if settings.database_url is None:
        log_error(logger, "%s", ConfigurationError.missing_database_url())
        raise SystemExit(1)

    log_info(
        logger,
        "Starting giteamirror (tick=%ds, auto_start=%s, log_level=%s)",
        settings.tick_interval_s,
        settings.auto_start,
        normalized_level,
    )
    asyncio.run(_serve_until_signalled(settings))
    log_info(logger, "giteamirror stopped")


if __name__ == "__main__":
    main()
