"""Decide which destination account or organization receives a unit.

The decision is evaluated in strict priority order:

1. Starred units go to the starred-repos organization, unless the
   configuration preserves starred owners.
2. A per-unit destination override.
3. The source organization's destination override (store lookup, async form
   only).
4. The configured mirror strategy.

Usage
-----
Resolve from the strategy alone::

    owner = resolve_owner(repository, config)

Resolve including organization overrides stored in the database::

    owner = await resolve_owner_async(session_factory, repository, config)

"""

from __future__ import annotations

import typing as typ

from sqlalchemy import select

from giteamirror.config.models import MirrorStrategy, StarredReposMode
from giteamirror.storage import Organization

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from giteamirror.config.models import MirrorConfig

DEFAULT_STARRED_ORG = "starred"


class OwnedUnit(typ.Protocol):
    """Ownership metadata the resolver reads from a unit."""

    owner: str
    organization: str | None
    destination_org: str | None
    is_starred: bool


def _strategy_owner(unit: OwnedUnit, config: MirrorConfig) -> str:
    default_owner = config.default_owner
    match config.mirror.strategy:
        case MirrorStrategy.PRESERVE:
            return unit.organization or default_owner
        case MirrorStrategy.SINGLE_ORG:
            return config.destination.organization or default_owner
        case MirrorStrategy.FLAT_USER:
            return default_owner
        case MirrorStrategy.MIXED:
            if unit.organization:
                return unit.organization
            return config.destination.organization or default_owner


def _starred_owner(unit: OwnedUnit, config: MirrorConfig) -> str:
    if config.mirror.starred_repos_mode is StarredReposMode.PRESERVE_OWNER:
        return unit.organization or unit.owner
    return config.destination.starred_repos_org or DEFAULT_STARRED_ORG


def resolve_owner(unit: OwnedUnit, config: MirrorConfig) -> str:
    """Return the destination owner using no store lookups.

    Parameters
    ----------
    unit : OwnedUnit
        Unit whose destination is being decided.
    config : MirrorConfig
        Configuration owning the unit.

    Returns
    -------
    str
        Destination account or organization name.

    """
    if unit.is_starred:
        return _starred_owner(unit, config)
    if unit.destination_org:
        return unit.destination_org
    return _strategy_owner(unit, config)


async def organization_override(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    organization: str,
) -> str | None:
    """Return the configured destination override for a source organization."""
    async with session_factory() as session:
        return await session.scalar(
            select(Organization.destination_org).where(
                Organization.user_id == user_id,
                Organization.normalized_name == organization.lower(),
            )
        )


async def resolve_owner_async(
    session_factory: async_sessionmaker[AsyncSession],
    unit: OwnedUnit,
    config: MirrorConfig,
) -> str:
    """Return the destination owner, consulting organization overrides.

    Starred and per-unit overrides still win; once they are exhausted the
    organization override is looked up and, failing that, the decision is
    delegated to :func:`resolve_owner`.
    """
    if unit.is_starred:
        return _starred_owner(unit, config)
    if unit.destination_org:
        return unit.destination_org
    if unit.organization:
        override = await organization_override(
            session_factory, config.user_id, unit.organization
        )
        if override:
            return override
    return resolve_owner(unit, config)


def organization_target(org_name: str, config: MirrorConfig) -> str | None:
    """Return the destination organization for a whole source organization.

    ``None`` means units resolve their own owners individually (flat-user).
    """
    match config.mirror.strategy:
        case MirrorStrategy.PRESERVE:
            return org_name
        case MirrorStrategy.SINGLE_ORG | MirrorStrategy.MIXED:
            return config.destination.organization or None
        case MirrorStrategy.FLAT_USER:
            return None


__all__ = [
    "DEFAULT_STARRED_ORG",
    "OwnedUnit",
    "organization_override",
    "organization_target",
    "resolve_owner",
    "resolve_owner_async",
]
