"""Destination organization lookup and creation."""

from __future__ import annotations

import asyncio
import typing as typ

from giteamirror.executor import RetryPolicy, process_with_retry
from giteamirror.gitea import GiteaPermissionError, OrganizationExistsError
from giteamirror.logging import get_logger, log_info, log_warning

from .errors import OrganizationResolutionError

if typ.TYPE_CHECKING:
    from giteamirror.gitea import GiteaOrganization

    from .context import MirrorContext

logger = get_logger(__name__)


def _is_resolution_error(exc: BaseException) -> bool:
    return isinstance(exc, OrganizationResolutionError)


# Three lookups 100 ms, then 200 ms apart.
REQUERY_POLICY: typ.Final = RetryPolicy(
    concurrency_limit=1,
    max_retries=2,
    retry_delay_s=0.1,
    backoff=True,
    retryable=_is_resolution_error,
)


async def get_or_create_organization(
    ctx: MirrorContext,
    name: str,
    *,
    policy: RetryPolicy = REQUERY_POLICY,
    sleep: typ.Callable[[float], typ.Awaitable[None]] = asyncio.sleep,
) -> GiteaOrganization:
    """Return the destination organization ``name``, creating it if absent.

    The destination token is validated first so an invalid token surfaces as
    :class:`~giteamirror.gitea.GiteaAuthError` rather than a confusing 404.
    When creation loses a race with another creator the organization is
    re-queried through the retry executor.

    Raises
    ------
    GiteaAuthError
        If the destination rejects the token.
    GiteaPermissionError
        If the token owner may not create organizations.
    OrganizationResolutionError
        If the organization still cannot be found after a create race.

    """
    await ctx.destination.get_current_user()

    existing = await ctx.destination.get_organization(name)
    if existing is not None:
        return existing

    try:
        created = await ctx.destination.create_organization(
            name, visibility=str(ctx.config.destination.visibility)
        )
    except OrganizationExistsError:
        log_info(logger, "Organization %s created concurrently; re-querying", name)
    else:
        log_info(logger, "Created destination organization %s", name)
        return created

    async def requery(org_name: str) -> GiteaOrganization:
        found = await ctx.destination.get_organization(org_name)
        if found is None:
            raise OrganizationResolutionError.still_missing(org_name)
        return found

    (outcome,) = await process_with_retry([name], requery, policy=policy, sleep=sleep)
    if outcome.error is not None:
        raise outcome.error
    return typ.cast("GiteaOrganization", outcome.result)


async def ensure_destination_owner(ctx: MirrorContext, owner: str) -> str:
    """Make sure ``owner`` exists on the destination and return the owner to use.

    The default account always exists. Any other owner is treated as an
    organization and created lazily; when the token may not create
    organizations the default account is used instead.
    """
    default_owner = ctx.config.default_owner
    key = owner.lower()
    if key == default_owner.lower() or key in ctx.verified_owners:
        return owner
    try:
        await get_or_create_organization(ctx, owner)
    except GiteaPermissionError as exc:
        log_warning(
            logger,
            "Cannot create organization %s (%s); falling back to %s",
            owner,
            exc,
            default_owner,
        )
        return default_owner
    ctx.verified_owners.add(key)
    return owner


__all__ = ["REQUERY_POLICY", "ensure_destination_owner", "get_or_create_organization"]
