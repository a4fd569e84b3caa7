"""Gitea destination client, payload models and errors."""

from __future__ import annotations

from .client import DestinationClient, GiteaClient, GiteaClientConfig
from .errors import (
    GiteaAPIError,
    GiteaAuthError,
    GiteaPermissionError,
    GiteaResponseError,
    OrganizationExistsError,
)
from .models import (
    GiteaIssue,
    GiteaLabel,
    GiteaOrganization,
    GiteaRelease,
    GiteaRepository,
    GiteaUser,
    MigrationRequest,
)

__all__ = [
    "DestinationClient",
    "GiteaAPIError",
    "GiteaAuthError",
    "GiteaClient",
    "GiteaClientConfig",
    "GiteaIssue",
    "GiteaLabel",
    "GiteaOrganization",
    "GiteaPermissionError",
    "GiteaRelease",
    "GiteaRepository",
    "GiteaResponseError",
    "GiteaUser",
    "MigrationRequest",
    "OrganizationExistsError",
]
