"""Mirror, sync and organization operations."""

from __future__ import annotations

from .context import ClientFactory, HttpClientFactory, MirrorContext
from .errors import (
    DestinationNotFoundError,
    NotAMirrorError,
    OrganizationNotFoundError,
    OrganizationResolutionError,
    RepositoryNotFoundError,
)
from .metadata import mirror_issues, mirror_metadata, mirror_releases
from .mirror import ORGANIZATION_POLICY, MirrorService, build_migration_request
from .organizations import ensure_destination_owner, get_or_create_organization
from .stores import (
    OrganizationStore,
    RepositoryStore,
    calc_batch_size_for_insert,
    repository_values,
)

__all__ = [
    "ORGANIZATION_POLICY",
    "ClientFactory",
    "DestinationNotFoundError",
    "HttpClientFactory",
    "MirrorContext",
    "MirrorService",
    "NotAMirrorError",
    "OrganizationNotFoundError",
    "OrganizationResolutionError",
    "OrganizationStore",
    "RepositoryNotFoundError",
    "RepositoryStore",
    "build_migration_request",
    "calc_batch_size_for_insert",
    "ensure_destination_owner",
    "get_or_create_organization",
    "mirror_issues",
    "mirror_metadata",
    "mirror_releases",
    "repository_values",
]
