"""Observability primitives for mirror cycles.

Provides structured logging and error categorization for scheduler cycles,
unit operations and job recovery. All events are emitted
through femtologging as ``"[event] key=value ..."`` lines suitable for
parsing by log aggregators.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

import httpx
import msgspec
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from giteamirror.config.errors import ConfigurationError
from giteamirror.errors import HTTPStatusError, MirrorOperationError
from giteamirror.gitea.errors import (
    GiteaAuthError,
    GiteaResponseError,
    OrganizationExistsError,
)
from giteamirror.github.errors import GitHubConfigError, GitHubResponseShapeError
from giteamirror.logging import get_logger, log_error, log_info
from giteamirror.status import IllegalStatusTransitionError

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)

_HTTP_REQUEST_TIMEOUT = 408
_HTTP_CLIENT_ERROR_THRESHOLD = 400


class MirrorEventType(enum.StrEnum):
    """Structured log event types for mirror observability."""

    CYCLE_STARTED = "mirror.cycle.started"
    CYCLE_COMPLETED = "mirror.cycle.completed"
    CYCLE_FAILED = "mirror.cycle.failed"
    PHASE_COMPLETED = "mirror.phase.completed"
    CONFIG_SKIPPED = "mirror.config.skipped"
    UNIT_MIRRORED = "mirror.unit.mirrored"
    UNIT_SYNCED = "mirror.unit.synced"
    UNIT_FAILED = "mirror.unit.failed"
    RECOVERY_COMPLETED = "mirror.recovery.completed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts and retry decisions."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    CONFLICT = "conflict"
    MALFORMED_RESPONSE = "malformed_response"
    CONFIGURATION = "configuration"
    CLIENT_ERROR = "client_error"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


RETRYABLE_CATEGORIES: typ.Final = frozenset(
    {
        ErrorCategory.TRANSIENT,
        ErrorCategory.RATE_LIMITED,
        ErrorCategory.CONFLICT,
        ErrorCategory.DATABASE_CONNECTIVITY,
        ErrorCategory.UNKNOWN,
    }
)

_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (OrganizationExistsError, ErrorCategory.CONFLICT),
    (GiteaAuthError, ErrorCategory.CONFIGURATION),
    (GitHubResponseShapeError, ErrorCategory.MALFORMED_RESPONSE),
    (GiteaResponseError, ErrorCategory.MALFORMED_RESPONSE),
    (msgspec.ValidationError, ErrorCategory.MALFORMED_RESPONSE),
    (msgspec.DecodeError, ErrorCategory.MALFORMED_RESPONSE),
    (ConfigurationError, ErrorCategory.CONFIGURATION),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (IllegalStatusTransitionError, ErrorCategory.CLIENT_ERROR),
    (MirrorOperationError, ErrorCategory.CLIENT_ERROR),
    (httpx.TransportError, ErrorCategory.TRANSIENT),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def _categorize_http(exc: HTTPStatusError) -> ErrorCategory:
    if exc.is_rate_limited or exc.is_too_many_requests:
        return ErrorCategory.RATE_LIMITED
    status = exc.status_code
    if status is None or exc.is_server_error or status == _HTTP_REQUEST_TIMEOUT:
        return ErrorCategory.TRANSIENT
    if status >= _HTTP_CLIENT_ERROR_THRESHOLD:
        return ErrorCategory.CLIENT_ERROR
    return ErrorCategory.UNKNOWN


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting and retry purposes.

    Examples
    --------
    >>> categorize_error(OrganizationExistsError("octo", status_code=422, body=""))
    <ErrorCategory.CONFLICT: 'conflict'>
    >>> categorize_error(ValueError("boom"))
    <ErrorCategory.UNKNOWN: 'unknown'>

    """
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    # Status-bearing errors need the code to tell transient from permanent.
    if isinstance(exc, HTTPStatusError):
        return _categorize_http(exc)

    return ErrorCategory.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    """Return whether another attempt could plausibly succeed."""
    return categorize_error(exc) in RETRYABLE_CATEGORIES


@dc.dataclass(frozen=True, slots=True)
class CycleContext:
    """Shared context for a single configuration's scheduler cycle."""

    config_id: str
    user_id: str
    started_at: dt.datetime


class MirrorEventLogger:
    """Emit structured mirror events via femtologging.

    Events are emitted at INFO for progress and skips
    and at ERROR for failures.
    """

    def log_cycle_started(self, context: CycleContext) -> None:
        """Log the start of a configuration cycle."""
        log_info(
            logger,
            "[%s] config_id=%s user_id=%s started_at=%s",
            MirrorEventType.CYCLE_STARTED,
            context.config_id,
            context.user_id,
            context.started_at.isoformat(),
        )

    def log_cycle_completed(
        self,
        context: CycleContext,
        duration: dt.timedelta,
        next_run: dt.datetime,
    ) -> None:
        """Log successful cycle completion with the next scheduled run."""
        log_info(
            logger,
            "[%s] config_id=%s user_id=%s duration_seconds=%.3f next_run=%s",
            MirrorEventType.CYCLE_COMPLETED,
            context.config_id,
            context.user_id,
            duration.total_seconds(),
            next_run.isoformat(),
        )

    def log_cycle_failed(
        self,
        context: CycleContext,
        error: BaseException,
        duration: dt.timedelta,
    ) -> None:
        """Log a failed cycle with error categorization."""
        log_error(
            logger,
            "[%s] config_id=%s user_id=%s duration_seconds=%.3f "
            "error_type=%s error_category=%s error_message=%s",
            MirrorEventType.CYCLE_FAILED,
            context.config_id,
            context.user_id,
            duration.total_seconds(),
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_phase_completed(
        self, context: CycleContext, phase: str, processed: int, failed: int
    ) -> None:
        """Log completion of one cycle phase."""
        log_info(
            logger,
            "[%s] config_id=%s phase=%s processed=%d failed=%d",
            MirrorEventType.PHASE_COMPLETED,
            context.config_id,
            phase,
            processed,
            failed,
        )

    def log_config_skipped(self, config_id: str, reason: str) -> None:
        """Log a configuration left out of the current tick."""
        log_info(
            logger,
            "[%s] config_id=%s reason=%s",
            MirrorEventType.CONFIG_SKIPPED,
            config_id,
            reason,
        )

    def log_unit_mirrored(self, full_name: str, location: str, *, existed: bool) -> None:
        """Log a unit reaching the mirrored state."""
        log_info(
            logger,
            "[%s] full_name=%s location=%s already_present=%s",
            MirrorEventType.UNIT_MIRRORED,
            full_name,
            location,
            existed,
        )

    def log_unit_synced(self, full_name: str, location: str) -> None:
        """Log a successful mirror-sync."""
        log_info(
            logger,
            "[%s] full_name=%s location=%s",
            MirrorEventType.UNIT_SYNCED,
            full_name,
            location,
        )

    def log_unit_failed(
        self, full_name: str, operation: str, error: BaseException
    ) -> None:
        """Log a failed unit operation with error categorization."""
        log_error(
            logger,
            "[%s] full_name=%s operation=%s error_type=%s error_category=%s "
            "error_message=%s",
            MirrorEventType.UNIT_FAILED,
            full_name,
            operation,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_recovery_completed(
        self, found: int, resumed: int, failed: int
    ) -> None:
        """Log the outcome of an interrupted-job recovery run."""
        log_info(
            logger,
            "[%s] jobs_found=%d jobs_resumed=%d jobs_failed=%d",
            MirrorEventType.RECOVERY_COMPLETED,
            found,
            resumed,
            failed,
        )


__all__ = [
    "CycleContext",
    "ErrorCategory",
    "MirrorEventLogger",
    "MirrorEventType",
    "RETRYABLE_CATEGORIES",
    "categorize_error",
    "is_retryable",
]
