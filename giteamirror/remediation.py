"""Operator repairs for stuck jobs and stale unit statuses.

Both entry points are idempotent: running them twice leaves the store in the
same state as running them once.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from giteamirror.common import utcnow
from giteamirror.config import ConfigurationStore
from giteamirror.jobs import INTERRUPTED_MESSAGE, JobStore
from giteamirror.logging import get_logger, log_info, log_warning
from giteamirror.operations import RepositoryStore
from giteamirror.ownership import resolve_owner_async
from giteamirror.status import IN_FLIGHT_STATUSES, RepositoryStatus

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from giteamirror.operations import ClientFactory, MirrorContext

logger = get_logger(__name__)

INTERRUPTED_UNIT_MESSAGE = "Operation interrupted; marked failed by remediation"
REPAIRABLE_STATUSES: typ.Final = (
    RepositoryStatus.IMPORTED,
    RepositoryStatus.PENDING,
    RepositoryStatus.FAILED,
)


@dc.dataclass(frozen=True, slots=True)
class RemediationResult:
    """Rows changed by :func:`mark_in_progress_jobs_failed`."""

    jobs: int = 0
    units: int = 0


@dc.dataclass(frozen=True, slots=True)
class RepairResult:
    """Units checked and converged by :func:`repair_statuses`."""

    checked: int = 0
    repaired: int = 0
    failed: int = 0


async def mark_in_progress_jobs_failed(
    session_factory: async_sessionmaker[AsyncSession],
) -> RemediationResult:
    """Fail every in-progress job and every unit stuck mid-operation.

    Units in ``mirroring`` or ``syncing`` move to ``failed`` so the next
    auto-mirror or sync phase picks them up again.
    """
    jobs = await JobStore(session_factory).mark_all_in_progress_failed(
        INTERRUPTED_MESSAGE
    )
    repositories = RepositoryStore(session_factory)
    stuck = await repositories.list_by_status(IN_FLIGHT_STATUSES)
    for unit in stuck:
        await repositories.set_status(
            unit.id, RepositoryStatus.FAILED, error_message=INTERRUPTED_UNIT_MESSAGE
        )
    log_info(logger, "Marked %d jobs and %d repositories as failed", jobs, len(stuck))
    return RemediationResult(jobs=jobs, units=len(stuck))


async def _repair_config(
    session_factory: async_sessionmaker[AsyncSession],
    repositories: RepositoryStore,
    ctx: MirrorContext,
) -> RepairResult:
    checked = repaired = failed = 0
    units = await repositories.list_for_user(
        ctx.user_id, statuses=REPAIRABLE_STATUSES, config_id=ctx.config.id
    )
    for unit in units:
        checked += 1
        try:
            owner = await resolve_owner_async(session_factory, unit, ctx.config)
            found = await ctx.destination.get_repository(owner, unit.name)
        except Exception as exc:  # noqa: BLE001 - keep checking other units
            log_warning(logger, "Could not check %s: %s", unit.full_name, exc)
            failed += 1
            continue
        if found is None:
            continue
        await repositories.set_status(
            unit.id,
            RepositoryStatus.MIRRORED,
            mirrored_location=f"{owner}/{unit.name}",
            last_mirrored=utcnow(),
        )
        repaired += 1
        log_info(logger, "Repaired %s -> %s/%s", unit.full_name, owner, unit.name)
    return RepairResult(checked=checked, repaired=repaired, failed=failed)


async def repair_statuses(
    session_factory: async_sessionmaker[AsyncSession],
    client_factory: ClientFactory,
) -> RepairResult:
    """Converge units already present on the destination to ``mirrored``.

    Only ``imported``, ``pending`` and ``failed`` units are checked.
    Configurations without credentials are skipped.
    """
    repositories = RepositoryStore(session_factory)
    checked = repaired = failed = 0
    for config in await ConfigurationStore(session_factory).list_active():
        if not config.has_credentials:
            log_info(logger, "Skipping config %s: no credentials", config.id)
            continue
        async with client_factory(config) as ctx:
            result = await _repair_config(session_factory, repositories, ctx)
        checked += result.checked
        repaired += result.repaired
        failed += result.failed
    log_info(
        logger,
        "Repair checked %d repositories: %d repaired, %d failed",
        checked,
        repaired,
        failed,
    )
    return RepairResult(checked=checked, repaired=repaired, failed=failed)


__all__ = [
    "INTERRUPTED_UNIT_MESSAGE",
    "REPAIRABLE_STATUSES",
    "RemediationResult",
    "RepairResult",
    "mark_in_progress_jobs_failed",
    "repair_statuses",
]
