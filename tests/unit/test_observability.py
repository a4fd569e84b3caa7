"""Unit tests for error categorisation and structured mirror events."""

from __future__ import annotations

import datetime as dt

import httpx
import msgspec
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from giteamirror.config import ConfigurationError
from giteamirror.errors import HTTPStatusError
from giteamirror.gitea import GiteaAuthError, OrganizationExistsError
from giteamirror.github import GitHubAPIError
from giteamirror.observability import (
    CycleContext,
    ErrorCategory,
    MirrorEventLogger,
    MirrorEventType,
    categorize_error,
    is_retryable,
)
from giteamirror.operations import NotAMirrorError
from giteamirror.status import IllegalStatusTransitionError, RepositoryStatus


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (
            GitHubAPIError.http_error(403, body="API rate limit exceeded"),
            ErrorCategory.RATE_LIMITED,
        ),
        (GitHubAPIError.http_error(429), ErrorCategory.RATE_LIMITED),
        (GitHubAPIError.http_error(502), ErrorCategory.TRANSIENT),
        (GitHubAPIError.http_error(408), ErrorCategory.TRANSIENT),
        (GitHubAPIError.timeout(), ErrorCategory.TRANSIENT),
        (GitHubAPIError.http_error(404), ErrorCategory.CLIENT_ERROR),
        (
            OrganizationExistsError("acme", status_code=422, body="exists"),
            ErrorCategory.CONFLICT,
        ),
        (GiteaAuthError.invalid_token(), ErrorCategory.CONFIGURATION),
        (ConfigurationError.missing_database_url(), ErrorCategory.CONFIGURATION),
        (msgspec.ValidationError("bad"), ErrorCategory.MALFORMED_RESPONSE),
        (
            IllegalStatusTransitionError(RepositoryStatus.SKIPPED, RepositoryStatus.SYNCING),
            ErrorCategory.CLIENT_ERROR,
        ),
        (NotAMirrorError.for_location("octo/reef"), ErrorCategory.CLIENT_ERROR),
        (httpx.ConnectError("refused"), ErrorCategory.TRANSIENT),
        (
            OperationalError("SELECT 1", {}, Exception("down")),
            ErrorCategory.DATABASE_CONNECTIVITY,
        ),
        (
            IntegrityError("INSERT", {}, Exception("dup")),
            ErrorCategory.DATA_INTEGRITY,
        ),
        (ValueError("boom"), ErrorCategory.UNKNOWN),
    ],
)
def test_categorize_error(error: BaseException, expected: ErrorCategory) -> None:
    """Errors map onto alerting categories."""
    assert categorize_error(error) is expected


@pytest.mark.parametrize(
    ("error", "retryable"),
    [
        (HTTPStatusError("rate", status_code=429), True),
        (HTTPStatusError("server", status_code=503), True),
        (HTTPStatusError("missing", status_code=404), False),
        (GiteaAuthError.invalid_token(), False),
        (OrganizationExistsError("acme", status_code=409, body=""), True),
        (RuntimeError("unexpected"), True),
    ],
)
def test_is_retryable(error: BaseException, *, retryable: bool) -> None:
    """Only transient, throttled, conflicting and unknown errors are retried."""
    assert is_retryable(error) is retryable


class _FakeLogger:
    """Collects log calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object | None]] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str:
        del stack_info
        self.calls.append((level, message, exc_info))
        return message


class TestMirrorEventLogger:
    """Tests for structured event lines."""

    @pytest.fixture
    def captured(self, monkeypatch: pytest.MonkeyPatch) -> _FakeLogger:
        """Redirect the module logger to a fake."""
        fake = _FakeLogger()
        monkeypatch.setattr("giteamirror.observability.logger", fake)
        return fake

    def test_cycle_failed_carries_category(self, captured: _FakeLogger) -> None:
        """Failure lines name the error type and category."""
        context = CycleContext(
            config_id="config-1",
            user_id="user-1",
            started_at=dt.datetime(2024, 7, 14, tzinfo=dt.UTC),
        )
        error = GitHubAPIError.http_error(503)

        MirrorEventLogger().log_cycle_failed(context, error, dt.timedelta(seconds=2))

        ((level, message, exc_info),) = captured.calls
        assert level == "ERROR"
        assert message.startswith(f"[{MirrorEventType.CYCLE_FAILED}]")
        assert "error_type=GitHubAPIError" in message
        assert "error_category=transient" in message
        assert "duration_seconds=2.000" in message
        assert exc_info is error

    def test_config_skipped(self, captured: _FakeLogger) -> None:
        """Skips are logged at INFO with their reason."""
        MirrorEventLogger().log_config_skipped("config-1", "not_due")

        assert captured.calls == [
            ("INFO", "[mirror.config.skipped] config_id=config-1 reason=not_due", None)
        ]
