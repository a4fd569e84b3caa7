"""Mirror, sync and organization operations on tracked units.

Every operation follows the same contract: the transition into the
in-flight status is validated before any side effect, the in-flight status
is paired with a "started" MirrorJob, and the operation ends either in its
success status with a success job or in ``failed`` with ``error_message``
and a failure job before the error is re-raised.
"""

from __future__ import annotations

import asyncio
import typing as typ

from giteamirror.common import split_location, utcnow
from giteamirror.events import NullPublisher, mirror_status_channel
from giteamirror.executor import RetryPolicy, process_with_retry
from giteamirror.gitea import MigrationRequest
from giteamirror.jobs import JobStore
from giteamirror.logging import get_logger, log_info
from giteamirror.observability import MirrorEventLogger
from giteamirror.ownership import organization_target, resolve_owner_async
from giteamirror.status import RepositoryStatus, ensure_transition

from .errors import DestinationNotFoundError, NotAMirrorError
from .metadata import mirror_metadata
from .organizations import ensure_destination_owner
from .stores import OrganizationStore, RepositoryStore

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from giteamirror.events import SupportsPublish
    from giteamirror.gitea import GiteaRepository
    from giteamirror.storage import Organization, Repository

    from .context import MirrorContext

logger = get_logger(__name__)

ORGANIZATION_POLICY: typ.Final = RetryPolicy(
    concurrency_limit=3, max_retries=2, retry_delay_s=2.0
)

PRIVATE_AUTH_USERNAME = "oauth2"


def build_migration_request(
    ctx: MirrorContext, repo: Repository, owner: str
) -> MigrationRequest:
    """Return the ``/repos/migrate`` body for ``repo`` under ``owner``.

    Only private units carry the source token.
    """
    destination = ctx.config.destination
    request = MigrationRequest(
        clone_addr=repo.clone_url,
        repo_name=repo.name,
        repo_owner=owner,
        mirror=True,
        mirror_interval=destination.mirror_interval,
        wiki=destination.wiki,
        lfs=destination.lfs,
        private=repo.is_private,
        service="git",
        description=repo.description or "",
    )
    if repo.is_private:
        request.auth_username = PRIVATE_AUTH_USERNAME
        request.auth_token = ctx.config.source.token
    return request


class MirrorService:
    """Drive units and organizations through the mirror lifecycle.

    Parameters
    ----------
    session_factory
        Session factory for unit, organization and job rows.
    publisher
        Optional event publisher for per-user status notifications.
    organization_policy
        Executor policy for member units of an organization.
    sleep
        Injected into executor calls for tests.

    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        publisher: SupportsPublish | None = None,
        organization_policy: RetryPolicy = ORGANIZATION_POLICY,
        sleep: typ.Callable[[float], typ.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Build the stores used by every operation."""
        self._session_factory = session_factory
        self.repositories = RepositoryStore(session_factory)
        self.organizations = OrganizationStore(session_factory)
        self.jobs = JobStore(session_factory)
        self._publisher = publisher or NullPublisher()
        self._organization_policy = organization_policy
        self._sleep = sleep
        self._events = MirrorEventLogger()

    async def mirror_repository(
        self,
        ctx: MirrorContext,
        repository_id: str,
        *,
        owner_override: str | None = None,
    ) -> Repository:
        """Create (or confirm) the destination mirror of a unit.

        Parameters
        ----------
        ctx
            Context for the unit's configuration.
        repository_id
            Unit to mirror.
        owner_override
            Destination owner decided by an enclosing organization mirror.

        Returns
        -------
        Repository
            The unit in status ``mirrored``.

        Raises
        ------
        IllegalStatusTransitionError
            If the unit cannot enter ``mirroring`` (nothing is changed).

        """
        repo = await self.repositories.require(repository_id)
        ensure_transition(repo.status, RepositoryStatus.MIRRORING)
        await self.repositories.set_status(repo.id, RepositoryStatus.MIRRORING)
        await self._job(
            repo,
            RepositoryStatus.MIRRORING,
            f"Mirroring repository {repo.full_name}",
            in_progress=True,
        )
        try:
            owner = owner_override or await resolve_owner_async(
                self._session_factory, repo, ctx.config
            )
            existing = await ctx.destination.get_repository(owner, repo.name)
            if existing is None:
                resolved = await ensure_destination_owner(ctx, owner)
                if resolved != owner:
                    owner = resolved
                    existing = await ctx.destination.get_repository(owner, repo.name)
            location = f"{owner}/{repo.name}"
            if existing is not None:
                return await self._converge_present(repo, location)

            await ctx.destination.migrate_repository(
                build_migration_request(ctx, repo, owner)
            )
            metadata_state = await mirror_metadata(ctx, repo, owner, sleep=self._sleep)
            mirrored = await self.repositories.set_status(
                repo.id,
                RepositoryStatus.MIRRORED,
                mirrored_location=location,
                last_mirrored=utcnow(),
                metadata_state=metadata_state,
            )
        except Exception as exc:
            await self._fail(repo, "mirror", exc)
            raise

        await self._job(
            repo,
            RepositoryStatus.MIRRORED,
            f"Successfully mirrored repository: {repo.full_name}",
            details=f"Repository {repo.full_name} was mirrored to {location}.",
        )
        self._events.log_unit_mirrored(repo.full_name, location, existed=False)
        return mirrored

    async def sync_repository(self, ctx: MirrorContext, repository_id: str) -> Repository:
        """Trigger a destination mirror-sync for an already mirrored unit.

        Raises
        ------
        DestinationNotFoundError
            If neither the recorded nor the expected location exists.
        NotAMirrorError
            If the destination repository is a regular repository.

        """
        repo = await self.repositories.require(repository_id)
        ensure_transition(repo.status, RepositoryStatus.SYNCING)
        await self.repositories.set_status(repo.id, RepositoryStatus.SYNCING)
        await self._job(
            repo,
            RepositoryStatus.SYNCING,
            f"Syncing repository {repo.full_name}",
            in_progress=True,
        )
        try:
            owner, name, target = await self._locate(ctx, repo)
            location = f"{owner}/{name}"
            if not target.mirror:
                raise NotAMirrorError.for_location(location)
            interval = ctx.config.destination.mirror_interval
            if interval:
                await ctx.destination.update_repository(
                    owner, name, {"mirror_interval": interval}
                )
            await ctx.destination.mirror_sync(owner, name)
            metadata_state = await mirror_metadata(ctx, repo, owner, sleep=self._sleep)
            synced = await self.repositories.set_status(
                repo.id,
                RepositoryStatus.SYNCED,
                mirrored_location=location,
                last_mirrored=utcnow(),
                metadata_state=metadata_state,
            )
        except Exception as exc:
            await self._fail(repo, "sync", exc)
            raise

        await self._job(
            repo,
            RepositoryStatus.SYNCED,
            f"Successfully synced repository: {repo.full_name}",
            details=f"Mirror-sync triggered for {location}.",
            job_type="sync",
        )
        self._events.log_unit_synced(repo.full_name, location)
        return synced

    async def mirror_organization(
        self, ctx: MirrorContext, organization_id: str
    ) -> Organization:
        """Mirror every tracked unit of a source organization.

        The destination organization is created once up front; member units
        then run through the retry executor. Individual unit failures are
        recorded on the units and summarised on the organization job.
        """
        org = await self.organizations.require(organization_id)
        ensure_transition(org.status, RepositoryStatus.MIRRORING)
        await self.organizations.set_status(org.id, RepositoryStatus.MIRRORING)
        await self._org_job(
            org, RepositoryStatus.MIRRORING, f"Mirroring organization {org.name}"
        )
        try:
            target = org.destination_org or organization_target(org.name, ctx.config)
            if target:
                target = await ensure_destination_owner(ctx, target)

            source_repos = [
                repo
                for repo in await ctx.source.list_organization_repositories(org.name)
                if ctx.config.includes(repo.full_name)
                and not repo.disabled
                and not (ctx.config.source.skip_forks and repo.fork)
            ]
            await self.repositories.insert_new(ctx.config, source_repos)
            units = [
                unit
                for unit in await self.repositories.list_for_organization(
                    ctx.user_id, org.name
                )
                if unit.status
                not in (
                    RepositoryStatus.SKIPPED,
                    RepositoryStatus.IGNORED,
                    RepositoryStatus.ARCHIVED,
                )
            ]

            if not units:
                done = await self.organizations.set_status(
                    org.id,
                    RepositoryStatus.MIRRORED,
                    repository_count=0,
                    last_mirrored=utcnow(),
                )
                await self._org_job(
                    org,
                    RepositoryStatus.MIRRORED,
                    f"Organization {org.name} was processed successfully "
                    "(no repositories found)",
                )
                return done

            async def mirror_unit(unit: Repository) -> Repository:
                return await self.mirror_repository(ctx, unit.id, owner_override=target)

            outcomes = await process_with_retry(
                units,
                mirror_unit,
                policy=self._organization_policy,
                sleep=self._sleep,
            )
            failures = [outcome for outcome in outcomes if not outcome.ok]
            done = await self.organizations.set_status(
                org.id,
                RepositoryStatus.MIRRORED,
                repository_count=len(units),
                last_mirrored=utcnow(),
            )
        except Exception as exc:
            await self.organizations.set_status(
                org.id, RepositoryStatus.FAILED, error_message=str(exc)
            )
            await self._org_job(
                org,
                RepositoryStatus.FAILED,
                f"Failed to mirror organization {org.name}: {exc}",
            )
            raise

        details = None
        if failures:
            details = f"{len(failures)} of {len(units)} repositories failed"
        await self._org_job(
            org,
            RepositoryStatus.MIRRORED,
            f"Successfully mirrored organization: {org.name}",
            details=details,
        )
        log_info(
            logger,
            "Mirrored organization %s: %d repositories, %d failed",
            org.name,
            len(units),
            len(failures),
        )
        return done

    async def _locate(
        self, ctx: MirrorContext, repo: Repository
    ) -> tuple[str, str, GiteaRepository]:
        """Find the destination repository via recorded, then expected location."""
        checked: list[str] = []
        recorded = split_location(repo.mirrored_location)
        if recorded is not None:
            found = await ctx.destination.get_repository(*recorded)
            if found is not None:
                return (*recorded, found)
            checked.append("/".join(recorded))

        owner = await resolve_owner_async(self._session_factory, repo, ctx.config)
        expected = f"{owner}/{repo.name}"
        if expected not in checked:
            found = await ctx.destination.get_repository(owner, repo.name)
            if found is not None:
                return (owner, repo.name, found)
            checked.append(expected)
        raise DestinationNotFoundError.for_unit(repo.full_name, *checked)

    async def _converge_present(self, repo: Repository, location: str) -> Repository:
        mirrored = await self.repositories.set_status(
            repo.id,
            RepositoryStatus.MIRRORED,
            mirrored_location=location,
            last_mirrored=utcnow(),
        )
        await self._job(
            repo,
            RepositoryStatus.MIRRORED,
            f"Repository {repo.full_name} already exists at {location}",
            details="Destination already holds the repository; no migration needed.",
        )
        self._events.log_unit_mirrored(repo.full_name, location, existed=True)
        return mirrored

    async def _fail(self, repo: Repository, operation: str, exc: Exception) -> None:
        await self.repositories.set_status(
            repo.id, RepositoryStatus.FAILED, error_message=str(exc)
        )
        await self._job(
            repo,
            RepositoryStatus.FAILED,
            f"Failed to {operation} repository {repo.full_name}: {exc}",
            job_type="sync" if operation == "sync" else "mirror",
        )
        self._events.log_unit_failed(repo.full_name, operation, exc)

    async def _job(  # noqa: PLR0913
        self,
        repo: Repository,
        status: RepositoryStatus,
        message: str,
        *,
        details: str | None = None,
        job_type: str | None = None,
        in_progress: bool = False,
    ) -> None:
        if job_type is None:
            job_type = (
                "sync"
                if status in (RepositoryStatus.SYNCING, RepositoryStatus.SYNCED)
                else "mirror"
            )
        await self.jobs.create_job(
            user_id=repo.user_id,
            status=status.value,
            message=message,
            details=details,
            job_type=job_type,
            repository_id=repo.id,
            repository_name=repo.full_name,
        )
        await self._publisher.publish(
            repo.user_id,
            mirror_status_channel(repo.user_id),
            {
                "repository_id": repo.id,
                "repository_name": repo.full_name,
                "status": status.value,
                "message": message,
                "in_progress": in_progress,
            },
        )

    async def _org_job(
        self,
        org: Organization,
        status: RepositoryStatus,
        message: str,
        *,
        details: str | None = None,
    ) -> None:
        await self.jobs.create_job(
            user_id=org.user_id,
            status=status.value,
            message=message,
            details=details,
            job_type="mirror",
            organization_id=org.id,
            organization_name=org.name,
        )
        await self._publisher.publish(
            org.user_id,
            mirror_status_channel(org.user_id),
            {
                "organization_id": org.id,
                "organization_name": org.name,
                "status": status.value,
                "message": message,
            },
        )


__all__ = [
    "ORGANIZATION_POLICY",
    "PRIVATE_AUTH_USERNAME",
    "MirrorService",
    "build_migration_request",
]
