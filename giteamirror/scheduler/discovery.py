"""Discover new source repositories and organizations for a configuration."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from giteamirror.common import normalize_full_name
from giteamirror.logging import get_logger, log_info
from giteamirror.operations.stores import calc_batch_size_for_insert

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from giteamirror.github import GitHubRepository
    from giteamirror.operations import MirrorContext, OrganizationStore, RepositoryStore

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class DiscoveryResult:
    """Counts from one discovery pass."""

    fetched: int = 0
    inserted: int = 0
    skipped: int = 0
    organizations_inserted: int = 0


def merge_repositories(
    owned: cabc.Sequence[GitHubRepository],
    starred: cabc.Sequence[GitHubRepository],
) -> tuple[list[GitHubRepository], set[str]]:
    """Merge owned and starred listings by lower-cased full name.

    The starred copy wins when a repository appears in both. Returns the
    merged list and the normalized names of starred entries.
    """
    merged: dict[str, GitHubRepository] = {}
    for repo in owned:
        merged[normalize_full_name(repo.full_name)] = repo
    starred_names: set[str] = set()
    for repo in starred:
        key = normalize_full_name(repo.full_name)
        merged[key] = repo
        starred_names.add(key)
    return list(merged.values()), starred_names


async def fetch_source_repositories(
    ctx: MirrorContext,
) -> tuple[list[GitHubRepository], set[str]]:
    """Return every mirrorable source repository and the starred names.

    Respects ``skip_forks``, ``private_repositories`` and
    ``include_starred``; disabled repositories are dropped.
    """
    source = ctx.config.source
    owned = await ctx.source.list_repositories(
        include_forks=not source.skip_forks,
        include_private=source.private_repositories,
    )
    starred: list[GitHubRepository] = []
    if source.include_starred:
        starred = await ctx.source.list_starred_repositories()
    merged, starred_names = merge_repositories(owned, starred)
    return [repo for repo in merged if not repo.disabled], starred_names


async def discover_organizations(
    ctx: MirrorContext,
    organizations: OrganizationStore,
    *,
    excluded_orgs: cabc.Container[str] = frozenset(),
) -> int:
    """Track new source organizations; they start excluded from mirroring."""
    if not ctx.config.source.include_organizations:
        return 0
    memberships = [
        membership
        for membership in await ctx.source.list_organizations()
        if membership.organization.login.lower() not in excluded_orgs
    ]
    return await organizations.insert_new(ctx.config, memberships)


async def discover_repositories(
    ctx: MirrorContext,
    repositories: RepositoryStore,
    organizations: OrganizationStore | None = None,
    *,
    excluded_orgs: cabc.Container[str] = frozenset(),
) -> DiscoveryResult:
    """Insert untracked source repositories with status ``imported``.

    Parameters
    ----------
    ctx
        Context for the configuration being discovered.
    repositories
        Unit store receiving new rows.
    organizations
        When given, new source organizations are tracked as well.
    excluded_orgs
        Lower-cased organization logins never discovered.

    """
    candidates, starred_names = await fetch_source_repositories(ctx)
    fetched = len(candidates)
    candidates = [
        repo
        for repo in candidates
        if ctx.config.includes(repo.full_name)
        and (repo.organization or "").lower() not in excluded_orgs
    ]
    known = await repositories.known_full_names(ctx.user_id)
    new = [
        repo for repo in candidates if normalize_full_name(repo.full_name) not in known
    ]
    inserted = 0
    if new:
        inserted = await repositories.insert_new(ctx.config, new, starred=starred_names)

    orgs_inserted = 0
    if organizations is not None:
        orgs_inserted = await discover_organizations(
            ctx, organizations, excluded_orgs=excluded_orgs
        )

    result = DiscoveryResult(
        fetched=fetched,
        inserted=inserted,
        skipped=fetched - inserted,
        organizations_inserted=orgs_inserted,
    )
    log_info(
        logger,
        "Discovery for config %s: fetched=%d inserted=%d skipped=%d orgs=%d",
        ctx.config.id,
        result.fetched,
        result.inserted,
        result.skipped,
        result.organizations_inserted,
    )
    return result


__all__ = [
    "DiscoveryResult",
    "calc_batch_size_for_insert",
    "discover_organizations",
    "discover_repositories",
    "fetch_source_repositories",
    "merge_repositories",
]
