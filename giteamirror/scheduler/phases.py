"""Auto-mirror and sync phases of a scheduler cycle."""

from __future__ import annotations

import asyncio
import dataclasses as dc
import typing as typ

from giteamirror.common import utcnow
from giteamirror.duration import InvalidDurationError, parse_duration
from giteamirror.executor import RetryPolicy, iter_batches, process_with_resilience
from giteamirror.logging import get_logger, log_info, log_warning
from giteamirror.status import (
    AUTO_MIRROR_STATUSES,
    MIRRORED_STATUSES,
    SYNC_STATUSES,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from giteamirror.config import ScheduleSettings
    from giteamirror.operations import MirrorContext, MirrorService
    from giteamirror.storage import Repository

logger = get_logger(__name__)

type Sleeper = typ.Callable[[float], typ.Awaitable[None]]
type UnitOperation = typ.Callable[[Repository], typ.Awaitable[Repository]]


@dc.dataclass(frozen=True, slots=True)
class PhaseResult:
    """Counts from one auto-mirror or sync phase."""

    processed: int = 0
    failed: int = 0


def schedule_policy(schedule: ScheduleSettings) -> RetryPolicy:
    """Return the executor policy for a configuration's batches."""
    return RetryPolicy(
        concurrency_limit=schedule.batch_size if schedule.concurrent else 1,
        max_retries=schedule.max_retries,
        retry_delay_s=schedule.retry_delay_ms / 1000,
    )


def _threshold(value: str, fallback: str) -> dt.timedelta:
    try:
        return parse_duration(value)
    except InvalidDurationError:
        log_warning(logger, "Invalid threshold %r; using %s", value, fallback)
        return parse_duration(fallback)


def select_sync_candidates(
    units: cabc.Iterable[Repository],
    schedule: ScheduleSettings,
    *,
    now: dt.datetime,
) -> list[Repository]:
    """Return the units due for a mirror-sync.

    A unit qualifies when it is in a sync status and either has a recorded
    destination location or is already mirrored. ``skip_recently_mirrored``
    drops units mirrored within ``recent_threshold``; ``only_mirror_updated``
    keeps only units changed upstream since their last mirror or within
    ``update_interval``.
    """
    recent = _threshold(schedule.recent_threshold, "1h")
    update_window = _threshold(schedule.update_interval, "24h")
    selected: list[Repository] = []
    for unit in units:
        if unit.status not in SYNC_STATUSES:
            continue
        if not unit.mirrored_location and unit.status not in MIRRORED_STATUSES:
            continue
        last = unit.last_mirrored
        if schedule.skip_recently_mirrored and last is not None and now - last < recent:
            continue
        if schedule.only_mirror_updated and last is not None:
            updated = unit.source_updated_at
            if updated is not None and updated <= last and now - updated > update_window:
                continue
        selected.append(unit)
    return selected


async def _run_batches(  # noqa: PLR0913
    units: list[Repository],
    operation: UnitOperation,
    *,
    service: MirrorService,
    user_id: str,
    job_type: str,
    batch_size: int,
    pause_s: float,
    policy: RetryPolicy,
    sleep: Sleeper,
) -> PhaseResult:
    processed = failed = 0
    for index, batch in enumerate(iter_batches(units, batch_size)):
        if index:
            await sleep(pause_s)
        outcomes = await process_with_resilience(
            batch,
            operation,
            job_store=service.jobs,
            user_id=user_id,
            job_type=job_type,
            get_item_id=lambda unit: unit.id,
            get_item_name=lambda unit: unit.full_name,
            policy=policy,
            sleep=sleep,
        )
        processed += len(outcomes)
        failed += sum(1 for outcome in outcomes if not outcome.ok)
    return PhaseResult(processed=processed, failed=failed)


async def run_auto_mirror(
    ctx: MirrorContext,
    service: MirrorService,
    *,
    sleep: Sleeper = asyncio.sleep,
) -> PhaseResult:
    """Mirror every unit still waiting for its first successful mirror."""
    schedule = ctx.config.schedule
    units = await service.repositories.list_for_user(
        ctx.user_id, statuses=AUTO_MIRROR_STATUSES, config_id=ctx.config.id
    )
    if not units:
        return PhaseResult()

    log_info(
        logger, "Auto-mirroring %d repositories for config %s", len(units), ctx.config.id
    )

    async def mirror(unit: Repository) -> Repository:
        return await service.mirror_repository(ctx, unit.id)

    return await _run_batches(
        units,
        mirror,
        service=service,
        user_id=ctx.user_id,
        job_type="mirror",
        batch_size=schedule.batch_size,
        pause_s=schedule.pause_between_batches_ms / 1000,
        policy=schedule_policy(schedule),
        sleep=sleep,
    )


async def run_sync(
    ctx: MirrorContext,
    service: MirrorService,
    *,
    sleep: Sleeper = asyncio.sleep,
) -> PhaseResult:
    """Trigger a mirror-sync for every mirrored unit that is due."""
    schedule = ctx.config.schedule
    units = await service.repositories.list_for_user(
        ctx.user_id, statuses=SYNC_STATUSES, config_id=ctx.config.id
    )
    due = select_sync_candidates(units, schedule, now=utcnow())
    if not due:
        return PhaseResult()

    log_info(logger, "Syncing %d repositories for config %s", len(due), ctx.config.id)

    async def sync(unit: Repository) -> Repository:
        return await service.sync_repository(ctx, unit.id)

    return await _run_batches(
        due,
        sync,
        service=service,
        user_id=ctx.user_id,
        job_type="sync",
        batch_size=schedule.batch_size,
        pause_s=schedule.sync_pause_between_batches_ms / 1000,
        policy=schedule_policy(schedule),
        sleep=sleep,
    )


__all__ = [
    "PhaseResult",
    "run_auto_mirror",
    "run_sync",
    "schedule_policy",
    "select_sync_candidates",
]
