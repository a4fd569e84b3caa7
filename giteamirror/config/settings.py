"""Process-level settings for the mirror engine.

Usage
-----
Create settings with defaults:

>>> settings = EngineSettings()
>>> settings.tick_interval_s
60

Or load them from environment variables:

>>> import os
>>> os.environ["GITEAMIRROR_TICK_INTERVAL_SECONDS"] = "30"
>>> EngineSettings.from_env().tick_interval_s
30

"""

from __future__ import annotations

import dataclasses as dc
import os

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


@dc.dataclass(frozen=True, slots=True)
class EngineSettings:
    """Settings shared by every configuration handled by this process.

    Attributes
    ----------
    database_url
        SQLAlchemy URL of the persistent store. Required by the runtime and
        the Dramatiq actors; library callers pass a session factory instead.
    tick_interval_s
        Seconds between scheduler ticks. Default is 60.
    auto_start
        Run the one-shot initial discovery and mirror pass before the first
        tick. Default is off.
    recovery_on_start
        Resume or fail interrupted jobs before scheduling. Default is on.
    stale_job_minutes
        Minutes without a checkpoint after which an in-progress job counts
        as interrupted. Default is 10.
    github_api_url
        Base URL of the GitHub REST API.
    http_timeout_s
        Timeout applied to both REST clients.
    excluded_orgs
        Lower-cased source organizations never discovered.
    log_level
        femtologging level name.

    """

    database_url: str | None = None
    tick_interval_s: int = 60
    auto_start: bool = False
    recovery_on_start: bool = True
    stale_job_minutes: int = 10
    github_api_url: str = "https://api.github.com"
    http_timeout_s: float = 30.0
    excluded_orgs: frozenset[str] = frozenset()
    log_level: str = "INFO"

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_positive_float(env_var: str, default: float) -> float:
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            msg = f"{env_var} must be a number, got: {raw!r}"
            raise ValueError(msg) from exc
        if value <= 0:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_flag(env_var: str, *, default: bool) -> bool:
        raw = os.environ.get(env_var, "").strip().lower()
        if not raw:
            return default
        if raw in _TRUTHY:
            return True
        if raw in _FALSY:
            return False
        msg = f"{env_var} must be a boolean flag, got: {raw!r}"
        raise ValueError(msg)

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Create settings from ``GITEAMIRROR_*`` environment variables.

        Reads ``GITEAMIRROR_DATABASE_URL``,
        ``GITEAMIRROR_TICK_INTERVAL_SECONDS``, ``GITEAMIRROR_AUTO_START``,
        ``GITEAMIRROR_RECOVERY_ON_START``, ``GITEAMIRROR_STALE_JOB_MINUTES``,
        ``GITEAMIRROR_GITHUB_API_URL``, ``GITEAMIRROR_HTTP_TIMEOUT_SECONDS``,
        ``GITEAMIRROR_EXCLUDED_ORGS`` (comma separated) and
        ``GITEAMIRROR_LOG_LEVEL``.

        Raises
        ------
        ValueError
            If a numeric or boolean variable cannot be parsed.

        """
        database_url = os.environ.get("GITEAMIRROR_DATABASE_URL", "").strip() or None
        excluded = os.environ.get("GITEAMIRROR_EXCLUDED_ORGS", "")
        return cls(
            database_url=database_url,
            tick_interval_s=cls._parse_positive_int(
                "GITEAMIRROR_TICK_INTERVAL_SECONDS", 60
            ),
            auto_start=cls._parse_flag("GITEAMIRROR_AUTO_START", default=False),
            recovery_on_start=cls._parse_flag(
                "GITEAMIRROR_RECOVERY_ON_START", default=True
            ),
            stale_job_minutes=cls._parse_positive_int(
                "GITEAMIRROR_STALE_JOB_MINUTES", 10
            ),
            github_api_url=os.environ.get(
                "GITEAMIRROR_GITHUB_API_URL", "https://api.github.com"
            ).rstrip("/"),
            http_timeout_s=cls._parse_positive_float(
                "GITEAMIRROR_HTTP_TIMEOUT_SECONDS", 30.0
            ),
            excluded_orgs=frozenset(
                org.strip().lower() for org in excluded.split(",") if org.strip()
            ),
            log_level=os.environ.get("GITEAMIRROR_LOG_LEVEL", "INFO"),
        )
