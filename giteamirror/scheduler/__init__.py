"""Scheduler loop and its cycle phases."""

from __future__ import annotations

from .autostart import AUTO_START_BATCH_SIZE, AUTO_START_INTERVAL, AutoStarter
from .cadence import (
    DEFAULT_INTERVAL,
    interval_source,
    is_due,
    next_run_after,
    resolve_interval,
)
from .cleanup import CleanupResult, OrphanCleaner, find_orphans
from .discovery import (
    DiscoveryResult,
    calc_batch_size_for_insert,
    discover_organizations,
    discover_repositories,
    fetch_source_repositories,
    merge_repositories,
)
from .phases import (
    PhaseResult,
    run_auto_mirror,
    run_sync,
    schedule_policy,
    select_sync_candidates,
)
from .service import Scheduler, SchedulerDependencies, TickResult

__all__ = [
    "AUTO_START_BATCH_SIZE",
    "AUTO_START_INTERVAL",
    "DEFAULT_INTERVAL",
    "AutoStarter",
    "CleanupResult",
    "DiscoveryResult",
    "OrphanCleaner",
    "PhaseResult",
    "Scheduler",
    "SchedulerDependencies",
    "TickResult",
    "calc_batch_size_for_insert",
    "discover_organizations",
    "discover_repositories",
    "fetch_source_repositories",
    "find_orphans",
    "interval_source",
    "is_due",
    "merge_repositories",
    "next_run_after",
    "resolve_interval",
    "run_auto_mirror",
    "run_sync",
    "schedule_policy",
    "select_sync_candidates",
]
