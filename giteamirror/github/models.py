"""Typed GitHub REST payloads decoded with msgspec.

Only the fields the engine reads are declared; msgspec ignores the rest.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003 - msgspec resolves annotations at runtime

import msgspec


class GitHubAccount(msgspec.Struct, kw_only=True):
    """Owner or author reference embedded in other payloads."""

    login: str
    type: str = "User"


class GitHubParent(msgspec.Struct, kw_only=True):
    """Upstream of a fork."""

    full_name: str


class GitHubRepository(msgspec.Struct, kw_only=True):
    """Repository as returned by the list and starred endpoints."""

    id: int
    name: str
    full_name: str
    html_url: str
    clone_url: str
    owner: GitHubAccount
    private: bool = False
    fork: bool = False
    archived: bool = False
    disabled: bool = False
    has_issues: bool = True
    size: int = 0
    language: str | None = None
    description: str | None = None
    default_branch: str = "main"
    visibility: str | None = None
    updated_at: dt.datetime | None = None
    pushed_at: dt.datetime | None = None
    parent: GitHubParent | None = None

    @property
    def is_organizational(self) -> bool:
        """Return whether the repository belongs to an organization."""
        return self.owner.type == "Organization"

    @property
    def organization(self) -> str | None:
        """Return the owning organization's login, if any."""
        return self.owner.login if self.is_organizational else None

    @property
    def effective_visibility(self) -> str:
        """Return the visibility, deriving it from ``private`` when absent."""
        if self.visibility:
            return self.visibility
        return "private" if self.private else "public"


class GitHubOrganizationRef(msgspec.Struct, kw_only=True):
    """Organization reference carried by a membership."""

    login: str
    id: int | None = None
    description: str | None = None


class GitHubMembership(msgspec.Struct, kw_only=True):
    """The authenticated user's membership in an organization."""

    organization: GitHubOrganizationRef
    role: str = "member"
    state: str = "active"


class GitHubLabel(msgspec.Struct, kw_only=True):
    """Issue label."""

    name: str
    color: str | None = None
    description: str | None = None


class GitHubIssue(msgspec.Struct, kw_only=True):
    """Issue (or pull request) from the issues endpoint."""

    number: int
    title: str
    state: str
    user: GitHubAccount | None = None
    body: str | None = None
    labels: list[GitHubLabel] = msgspec.field(default_factory=list)
    comments: int = 0
    created_at: dt.datetime
    closed_at: dt.datetime | None = None
    pull_request: dict[str, object] | None = None

    @property
    def is_pull_request(self) -> bool:
        """Return whether the issues endpoint returned a pull request."""
        return self.pull_request is not None

    @property
    def author(self) -> str:
        """Return the author's login, or ``ghost`` for deleted accounts."""
        return self.user.login if self.user is not None else "ghost"


class GitHubComment(msgspec.Struct, kw_only=True):
    """Issue comment."""

    id: int
    body: str | None = None
    user: GitHubAccount | None = None
    created_at: dt.datetime

    @property
    def author(self) -> str:
        """Return the author's login, or ``ghost`` for deleted accounts."""
        return self.user.login if self.user is not None else "ghost"


class GitHubRelease(msgspec.Struct, kw_only=True):
    """Published or draft release."""

    tag_name: str
    name: str | None = None
    body: str | None = None
    draft: bool = False
    prerelease: bool = False
    target_commitish: str | None = None
    created_at: dt.datetime | None = None
    published_at: dt.datetime | None = None


class GitHubRateResource(msgspec.Struct, kw_only=True):
    """One quota bucket from ``GET /rate_limit``."""

    limit: int
    remaining: int
    reset: int
    used: int | None = None


class GitHubRateLimitResources(msgspec.Struct, kw_only=True):
    """Quota buckets; only the core REST bucket matters here."""

    core: GitHubRateResource


class GitHubRateLimitResponse(msgspec.Struct, kw_only=True):
    """Body of ``GET /rate_limit``."""

    resources: GitHubRateLimitResources


__all__ = [
    "GitHubAccount",
    "GitHubComment",
    "GitHubIssue",
    "GitHubLabel",
    "GitHubMembership",
    "GitHubOrganizationRef",
    "GitHubParent",
    "GitHubRateLimitResponse",
    "GitHubRelease",
    "GitHubRepository",
]
