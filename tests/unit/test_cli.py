"""Unit tests for the remediation command line."""

from __future__ import annotations

import typing as typ

import pytest

from giteamirror.cli import main, run_command
from giteamirror.config import EngineSettings
from giteamirror.operations import RepositoryStore
from giteamirror.status import RepositoryStatus
from tests.helpers.fakes import make_config, seed_repository

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def _sqlite_url(tmp_path: Path, name: str = "cli.db") -> str:
    return f"sqlite+aiosqlite:///{tmp_path / name}"


class TestMain:
    """Tests for argument handling in main."""

    def test_missing_database_url_returns_2(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Commands refuse to run without a database."""
        monkeypatch.delenv("GITEAMIRROR_DATABASE_URL", raising=False)

        assert main(["mark-failed"]) == 2
        assert "A database URL is required" in capsys.readouterr().out

    def test_unknown_command_is_rejected(self) -> None:
        """argparse rejects commands outside the table."""
        with pytest.raises(SystemExit) as excinfo:
            main(["explode"])
        assert excinfo.value.code == 2

    @pytest.mark.parametrize(
        ("command", "expected"),
        [
            ("mark-failed", "marked 0 jobs and 0 repositories as failed"),
            ("repair", "checked 0 repositories: 0 repaired, 0 failed"),
            ("tick", "tick ran 0 configurations (0 skipped, 0 failed)"),
        ],
    )
    def test_commands_print_summary(
        self,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
        command: str,
        expected: str,
    ) -> None:
        """Each command prints a one-line summary on an empty store."""
        assert main([command, "--database-url", _sqlite_url(tmp_path)]) == 0
        assert capsys.readouterr().out.strip() == expected

    def test_database_url_from_environment(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """GITEAMIRROR_DATABASE_URL is used when the flag is absent."""
        monkeypatch.setenv("GITEAMIRROR_DATABASE_URL", _sqlite_url(tmp_path))

        assert main(["recover"]) == 0
        assert capsys.readouterr().out.strip() == (
            "recovery found 0 jobs: 0 resumed, 0 completed, 0 failed"
        )


@pytest.mark.asyncio
async def test_mark_failed_fails_stuck_units(
    tmp_path: Path, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    """run_command operates on the store behind the given URL."""
    unit = await seed_repository(
        session_factory, make_config(), "octo/reef", status="syncing"
    )

    summary = await run_command(
        "mark-failed", _sqlite_url(tmp_path, "giteamirror_test.db"), EngineSettings()
    )

    assert summary == "marked 0 jobs and 1 repositories as failed"
    stored = await RepositoryStore(session_factory).require(unit.id)
    assert stored.status == RepositoryStatus.FAILED
