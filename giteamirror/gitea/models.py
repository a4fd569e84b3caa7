"""Typed Gitea REST payloads and request bodies."""

from __future__ import annotations

import msgspec


class GiteaUser(msgspec.Struct, kw_only=True):
    """Authenticated destination user."""

    id: int
    login: str
    is_admin: bool = False


class GiteaOrganization(msgspec.Struct, kw_only=True):
    """Destination organization."""

    id: int
    username: str = ""
    name: str = ""
    visibility: str = "public"

    @property
    def login(self) -> str:
        """Return the organization's account name."""
        return self.username or self.name


class GiteaOwner(msgspec.Struct, kw_only=True):
    """Owner reference embedded in a repository."""

    login: str


class GiteaRepository(msgspec.Struct, kw_only=True):
    """Destination repository."""

    id: int
    name: str
    full_name: str
    owner: GiteaOwner
    mirror: bool = False
    archived: bool = False
    private: bool = False
    html_url: str = ""
    clone_url: str = ""
    mirror_interval: str | None = None


class GiteaLabel(msgspec.Struct, kw_only=True):
    """Repository label."""

    id: int
    name: str
    color: str = ""


class GiteaIssue(msgspec.Struct, kw_only=True):
    """Issue created on the destination."""

    id: int
    number: int
    state: str = "open"


class GiteaRelease(msgspec.Struct, kw_only=True):
    """Destination release."""

    id: int
    tag_name: str
    name: str | None = None


class MigrationRequest(msgspec.Struct, kw_only=True, omit_defaults=True):
    """Body of ``POST /repos/migrate`` for a pull mirror.

    The ``auth_*`` fields are omitted from the encoded body unless set, so
    public units never carry the source token.
    """

    clone_addr: str
    repo_name: str
    repo_owner: str
    mirror: bool
    mirror_interval: str
    wiki: bool
    lfs: bool
    private: bool
    service: str
    description: str = ""
    auth_username: str | None = None
    auth_token: str | None = None


__all__ = [
    "GiteaIssue",
    "GiteaLabel",
    "GiteaOrganization",
    "GiteaOwner",
    "GiteaRelease",
    "GiteaRepository",
    "GiteaUser",
    "MigrationRequest",
]
