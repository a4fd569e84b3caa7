"""GitHub source client, payload models and errors."""

from __future__ import annotations

from .client import GitHubClient, GitHubClientConfig, SourceClient
from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .models import (
    GitHubAccount,
    GitHubComment,
    GitHubIssue,
    GitHubLabel,
    GitHubMembership,
    GitHubOrganizationRef,
    GitHubRelease,
    GitHubRepository,
)

__all__ = [
    "GitHubAPIError",
    "GitHubAccount",
    "GitHubClient",
    "GitHubClientConfig",
    "GitHubComment",
    "GitHubConfigError",
    "GitHubIssue",
    "GitHubLabel",
    "GitHubMembership",
    "GitHubOrganizationRef",
    "GitHubRelease",
    "GitHubRepository",
    "GitHubResponseShapeError",
    "SourceClient",
]
