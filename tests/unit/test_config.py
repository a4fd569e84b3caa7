"""Unit tests for configuration decoding, storage and process settings."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest

from giteamirror.config import (
    ConfigurationError,
    ConfigurationStore,
    DestinationSettings,
    EngineSettings,
    MirrorStrategy,
    OrphanAction,
    SourceSettings,
    StarredReposMode,
    decode_configuration,
)
from giteamirror.storage import Configuration
from tests.helpers.fakes import CONFIG_ID, make_config, seed_configuration

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_NOW = dt.datetime(2024, 7, 14, 12, 0, tzinfo=dt.UTC)


def _row(**sections: dict[str, object]) -> Configuration:
    values: dict[str, object] = {
        "id": "cfg",
        "user_id": "user",
        "name": "default",
        "is_active": True,
        "source": {"username": "octo", "token": "gh"},
        "destination": {
            "url": "https://gitea.test",
            "token": "gt",
            "username": "mirror-bot",
        },
        "include": ["octo/*"],
        "exclude": [],
    }
    values.update(sections)
    return Configuration(**values)


class TestDecodeConfiguration:
    """Tests for decode_configuration."""

    def test_missing_sections_use_defaults(self) -> None:
        """Absent sections decode to their defaults."""
        config = decode_configuration(_row())

        assert config.mirror.strategy is MirrorStrategy.PRESERVE
        assert config.mirror.starred_repos_mode is StarredReposMode.DEDICATED_ORG
        assert config.cleanup.orphaned_repo_action is OrphanAction.ARCHIVE
        assert config.schedule.enabled is False
        assert config.include == ("octo/*",)
        assert config.has_credentials is True

    def test_enum_values_are_validated(self) -> None:
        """Known strings become enum members."""
        config = decode_configuration(
            _row(
                mirror={
                    "strategy": "single-org",
                    "starred_repos_mode": "preserve-owner",
                }
            )
        )

        assert config.mirror.strategy is MirrorStrategy.SINGLE_ORG
        assert config.mirror.starred_repos_mode is StarredReposMode.PRESERVE_OWNER

    def test_unknown_strategy_is_rejected(self) -> None:
        """An unknown strategy names the section and the configuration."""
        with pytest.raises(
            ConfigurationError, match="invalid mirror section"
        ) as excinfo:
            decode_configuration(_row(mirror={"strategy": "by-moon-phase"}))

        assert excinfo.value.config_id == "cfg"


class TestIncludes:
    """Tests for MirrorConfig.includes."""

    @pytest.mark.parametrize(
        ("full_name", "expected"),
        [
            ("octo/reef", True),
            ("Octo/Reef", True),
            ("octo/reef-archive", False),
            ("acme/api", False),
        ],
    )
    def test_glob_filters(self, full_name: str, *, expected: bool) -> None:
        """Include and exclude globs match case-insensitively."""
        config = make_config(include=("octo/*",), exclude=("*-archive",))
        assert config.includes(full_name) is expected

    def test_no_include_means_everything(self) -> None:
        """Without include globs only excludes filter."""
        assert make_config().includes("anyone/anything") is True


class TestHasCredentials:
    """Tests for MirrorConfig.has_credentials."""

    def test_complete_configuration(self) -> None:
        """Both tokens and a destination username are enough."""
        assert make_config().has_credentials is True

    @pytest.mark.parametrize(
        "changes",
        [
            {"source": SourceSettings(username="octo", token=" ")},
            {"destination": DestinationSettings(url="https://gitea.test", token="")},
            {
                "destination": DestinationSettings(
                    url="https://gitea.test", token="gt-token", username="  "
                )
            },
        ],
        ids=["source-token", "destination-token", "destination-username"],
    )
    def test_missing_piece(self, changes: dict[str, typ.Any]) -> None:
        """A blank token or destination username means no credentials."""
        assert make_config(**changes).has_credentials is False


class TestConfigurationStore:
    """Tests for ConfigurationStore."""

    @pytest.mark.asyncio
    async def test_list_active_skips_invalid_and_inactive_rows(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Broken or inactive configurations do not stall the others."""
        await seed_configuration(session_factory, make_config())
        await seed_configuration(
            session_factory, make_config(id="c-off", user_id="u-off", is_active=False)
        )
        async with session_factory() as session, session.begin():
            session.add(_row(id="c-bad", mirror={"strategy": "nope"}))

        configs = await ConfigurationStore(session_factory).list_active()

        assert [config.id for config in configs] == [CONFIG_ID]

    @pytest.mark.asyncio
    async def test_get_unknown_configuration(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Unknown ids raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="does not exist"):
            await ConfigurationStore(session_factory).get("missing")

    @pytest.mark.asyncio
    async def test_get_for_user(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """The active configuration of a user is found by user id."""
        config = make_config()
        await seed_configuration(session_factory, config)
        store = ConfigurationStore(session_factory)

        found = await store.get_for_user(config.user_id)

        assert found is not None
        assert found.id == CONFIG_ID
        assert await store.get_for_user("nobody") is None

    @pytest.mark.asyncio
    async def test_record_run_enables_schedule_without_overwriting_interval(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """An existing interval survives enable_schedule."""
        config = make_config()
        await seed_configuration(session_factory, config)
        store = ConfigurationStore(session_factory)

        await store.record_run(
            CONFIG_ID,
            last_run=_NOW,
            next_run=_NOW + dt.timedelta(hours=8),
            enable_schedule=True,
            interval="8h",
        )
        await store.record_run(
            CONFIG_ID,
            last_run=_NOW,
            next_run=_NOW,
            enable_schedule=True,
            interval="2h",
        )

        stored = await store.get(CONFIG_ID)
        assert stored.schedule.enabled is True
        assert stored.schedule.interval == "8h"
        assert (stored.last_run, stored.next_run) == (_NOW, _NOW)


class TestEngineSettings:
    """Tests for EngineSettings.from_env."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unset variables fall back to defaults."""
        for name in (
            "GITEAMIRROR_DATABASE_URL",
            "GITEAMIRROR_TICK_INTERVAL_SECONDS",
            "GITEAMIRROR_AUTO_START",
            "GITEAMIRROR_EXCLUDED_ORGS",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = EngineSettings.from_env()

        assert settings.database_url is None
        assert settings.tick_interval_s == 60
        assert settings.auto_start is False
        assert settings.excluded_orgs == frozenset()

    def test_values_are_parsed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Numbers, flags and lists are read from the environment."""
        monkeypatch.setenv("GITEAMIRROR_DATABASE_URL", "sqlite+aiosqlite:///x.db")
        monkeypatch.setenv("GITEAMIRROR_TICK_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("GITEAMIRROR_AUTO_START", "yes")
        monkeypatch.setenv("GITEAMIRROR_RECOVERY_ON_START", "off")
        monkeypatch.setenv("GITEAMIRROR_EXCLUDED_ORGS", " Secret-Corp , ,acme")
        monkeypatch.setenv("GITEAMIRROR_GITHUB_API_URL", "https://ghe.test/api/v3/")

        settings = EngineSettings.from_env()

        assert settings.database_url == "sqlite+aiosqlite:///x.db"
        assert settings.tick_interval_s == 15
        assert settings.auto_start is True
        assert settings.recovery_on_start is False
        assert settings.excluded_orgs == frozenset({"secret-corp", "acme"})
        assert settings.github_api_url == "https://ghe.test/api/v3"

    @pytest.mark.parametrize(
        ("name", "value", "message"),
        [
            ("GITEAMIRROR_TICK_INTERVAL_SECONDS", "soon", "must be an integer"),
            ("GITEAMIRROR_STALE_JOB_MINUTES", "0", "must be positive"),
            ("GITEAMIRROR_HTTP_TIMEOUT_SECONDS", "-1", "must be positive"),
            ("GITEAMIRROR_AUTO_START", "maybe", "must be a boolean flag"),
        ],
    )
    def test_invalid_values(
        self, monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
    ) -> None:
        """Unparseable values raise ValueError naming the variable."""
        monkeypatch.setenv(name, value)

        with pytest.raises(ValueError, match=message):
            EngineSettings.from_env()
