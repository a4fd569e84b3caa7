"""Archive or delete mirrors whose source repository disappeared.

Cleanup only runs when the configuration opts in with
``cleanup.delete_if_not_in_github``, and an incomplete source listing aborts
the phase rather than treating every unit as orphaned.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from giteamirror.common import normalize_full_name, split_location
from giteamirror.config import OrphanAction
from giteamirror.events import REPOSITORY_CHANNEL, NullPublisher
from giteamirror.logging import get_logger, log_info, log_warning
from giteamirror.status import IN_FLIGHT_STATUSES, RepositoryStatus

from .discovery import fetch_source_repositories

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from giteamirror.events import SupportsPublish
    from giteamirror.jobs import JobStore
    from giteamirror.operations import (
        MirrorContext,
        OrganizationStore,
        RepositoryStore,
    )
    from giteamirror.storage import Repository

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class CleanupResult:
    """Counts from one cleanup pass."""

    orphans: int = 0
    archived: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: bool = False
    dry_run: bool = False


def find_orphans(
    units: typ.Iterable[Repository], upstream: typ.Container[str]
) -> list[Repository]:
    """Return units absent from ``upstream`` (normalized full names).

    Already archived units, units disabled upstream and units with an
    operation in flight are never orphans.
    """
    return [
        unit
        for unit in units
        if unit.normalized_full_name not in upstream
        and unit.status != RepositoryStatus.ARCHIVED
        and not unit.is_disabled
        and unit.status not in IN_FLIGHT_STATUSES
    ]


class OrphanCleaner:
    """Apply a configuration's orphan disposition to its units.

    The upstream view is the owned and starred listing plus, when an
    organization store is given, the repositories of every tracked
    organization that still owns a unit missing from that listing.
    """

    def __init__(
        self,
        repositories: RepositoryStore,
        jobs: JobStore,
        *,
        organizations: OrganizationStore | None = None,
        publisher: SupportsPublish | None = None,
    ) -> None:
        """Store the unit, job and organization stores plus a publisher."""
        self._repositories = repositories
        self._jobs = jobs
        self._organizations = organizations
        self._publisher = publisher or NullPublisher()

    async def _upstream_names(
        self, ctx: MirrorContext, units: cabc.Sequence[Repository]
    ) -> set[str]:
        upstream, _ = await fetch_source_repositories(ctx)
        names = {normalize_full_name(repo.full_name) for repo in upstream}
        if self._organizations is None:
            return names

        tracked = {
            org.normalized_name: org.name
            for org in await self._organizations.list_for_user(ctx.user_id)
        }
        unresolved = {
            unit.organization.lower()
            for unit in units
            if unit.organization and unit.normalized_full_name not in names
        }
        for key in sorted(unresolved & tracked.keys()):
            repos = await ctx.source.list_organization_repositories(tracked[key])
            names.update(normalize_full_name(repo.full_name) for repo in repos)
        return names

    async def run(self, ctx: MirrorContext) -> CleanupResult:
        """Run the cleanup phase for ``ctx.config``."""
        cleanup = ctx.config.cleanup
        if not cleanup.delete_if_not_in_github:
            return CleanupResult(skipped=True)

        units = await self._repositories.list_for_user(
            ctx.user_id, config_id=ctx.config.id
        )
        try:
            names = await self._upstream_names(ctx, units)
        except Exception as exc:  # noqa: BLE001 - never clean up on a partial view
            log_warning(
                logger,
                "Skipping cleanup for config %s: source listing failed: %s",
                ctx.config.id,
                exc,
            )
            return CleanupResult(skipped=True)

        orphans = find_orphans(units, names)
        action = cleanup.orphaned_repo_action
        if not orphans or action is OrphanAction.SKIP:
            return CleanupResult(orphans=len(orphans), dry_run=cleanup.dry_run)

        if cleanup.dry_run:
            for unit in orphans:
                log_info(
                    logger,
                    "Dry run: would %s orphaned repository %s",
                    action.value,
                    unit.full_name,
                )
            return CleanupResult(orphans=len(orphans), dry_run=True)

        archived = deleted = failed = 0
        for unit in orphans:
            try:
                if action is OrphanAction.ARCHIVE:
                    await self._archive(ctx, unit)
                    archived += 1
                else:
                    await self._delete(ctx, unit)
                    deleted += 1
            except Exception as exc:  # noqa: BLE001 - one orphan never stops the phase
                failed += 1
                await self._record_failure(unit, action, exc)

        log_info(
            logger,
            "Cleanup for config %s: orphans=%d archived=%d deleted=%d failed=%d",
            ctx.config.id,
            len(orphans),
            archived,
            deleted,
            failed,
        )
        return CleanupResult(
            orphans=len(orphans), archived=archived, deleted=deleted, failed=failed
        )

    async def _archive(self, ctx: MirrorContext, unit: Repository) -> None:
        location = split_location(unit.mirrored_location)
        if location is not None:
            await ctx.destination.archive_repository(*location)
        await self._repositories.set_status(unit.id, RepositoryStatus.ARCHIVED)
        await self._publisher.publish(
            unit.user_id,
            REPOSITORY_CHANNEL,
            {
                "type": "repository.archived",
                "repository_id": unit.id,
                "repository_name": unit.full_name,
                "location": unit.mirrored_location,
            },
        )

    async def _delete(self, ctx: MirrorContext, unit: Repository) -> None:
        location = split_location(unit.mirrored_location)
        if location is not None:
            await ctx.destination.delete_repository(*location)
        await self._repositories.delete(unit.id)
        await self._publisher.publish(
            unit.user_id,
            REPOSITORY_CHANNEL,
            {
                "type": "repository.deleted",
                "repository_id": unit.id,
                "repository_name": unit.full_name,
                "location": unit.mirrored_location,
            },
        )

    async def _record_failure(
        self, unit: Repository, action: OrphanAction, exc: Exception
    ) -> None:
        message = f"Failed to {action.value} orphaned repository {unit.full_name}: {exc}"
        log_warning(logger, "%s", message)
        await self._repositories.record_error(unit.id, message)
        await self._jobs.create_job(
            user_id=unit.user_id,
            status=RepositoryStatus.FAILED.value,
            message=message,
            job_type="mirror",
            repository_id=unit.id,
            repository_name=unit.full_name,
        )


__all__ = ["CleanupResult", "OrphanCleaner", "find_orphans"]
