"""Unit tests for repository and organization discovery."""

from __future__ import annotations

import typing as typ

import pytest

from giteamirror.config import SourceSettings
from giteamirror.github import GitHubMembership, GitHubOrganizationRef
from giteamirror.operations import OrganizationStore, RepositoryStore
from giteamirror.scheduler import (
    discover_repositories,
    fetch_source_repositories,
    merge_repositories,
)
from tests.helpers.fakes import USER_ID, github_repo, make_config

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tests.helpers.fakes import FakeClientFactory, FakeSource


def _source_settings(**changes: bool) -> SourceSettings:
    return SourceSettings(username="octo", token="gh-token", **changes)


def test_merge_prefers_starred_copy() -> None:
    """Starred listings win over owned ones with the same name."""
    owned = [github_repo("octo/reef"), github_repo("octo/dots")]
    starred = [github_repo("Octo/Reef"), github_repo("torvalds/linux")]

    merged, starred_names = merge_repositories(owned, starred)

    assert sorted(repo.full_name for repo in merged) == [
        "Octo/Reef",
        "octo/dots",
        "torvalds/linux",
    ]
    assert starred_names == {"octo/reef", "torvalds/linux"}


class TestFetchSourceRepositories:
    """Tests for fetch_source_repositories."""

    @pytest.mark.asyncio
    async def test_applies_source_filters(
        self, client_factory: FakeClientFactory, source: FakeSource
    ) -> None:
        """Forks, private and disabled repositories follow the settings."""
        source.repositories = [
            github_repo("octo/reef"),
            github_repo("octo/fork", fork=True),
            github_repo("octo/secret", private=True),
            github_repo("octo/dead", disabled=True),
        ]
        source.starred = [github_repo("torvalds/linux")]
        config = make_config(
            source=_source_settings(
                skip_forks=True, private_repositories=False, include_starred=True
            )
        )

        async with client_factory(config) as ctx:
            repos, starred = await fetch_source_repositories(ctx)

        assert sorted(repo.full_name for repo in repos) == [
            "octo/reef",
            "torvalds/linux",
        ]
        assert starred == {"torvalds/linux"}

    @pytest.mark.asyncio
    async def test_starred_ignored_unless_enabled(
        self, client_factory: FakeClientFactory, source: FakeSource
    ) -> None:
        """Starred repositories are only listed when requested."""
        source.starred = [github_repo("torvalds/linux")]

        async with client_factory(make_config()) as ctx:
            repos, starred = await fetch_source_repositories(ctx)

        assert repos == []
        assert starred == set()


class TestDiscoverRepositories:
    """Tests for discover_repositories."""

    @pytest.mark.asyncio
    async def test_inserts_only_untracked_units(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: FakeClientFactory,
        source: FakeSource,
    ) -> None:
        """A second pass over the same listing inserts nothing."""
        store = RepositoryStore(session_factory)
        source.repositories = [
            github_repo("octo/reef"),
            github_repo("octo/dots"),
            github_repo("acme/api", organization=True),
        ]

        async with client_factory(make_config()) as ctx:
            first = await discover_repositories(ctx, store)
            second = await discover_repositories(ctx, store)

        assert (first.fetched, first.inserted, first.skipped) == (3, 3, 0)
        assert (second.fetched, second.inserted, second.skipped) == (3, 0, 3)
        units = await store.list_for_user(USER_ID)
        assert {unit.status for unit in units} == {"imported"}
        acme = next(unit for unit in units if unit.full_name == "acme/api")
        assert acme.organization == "acme"

    @pytest.mark.asyncio
    async def test_filters_and_excluded_organizations(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: FakeClientFactory,
        source: FakeSource,
    ) -> None:
        """Include/exclude globs and excluded orgs keep units out."""
        store = RepositoryStore(session_factory)
        source.repositories = [
            github_repo("octo/reef"),
            github_repo("octo/reef-archive"),
            github_repo("octo/dots"),
            github_repo("secret-corp/api", organization=True),
        ]
        config = make_config(
            include=("octo/*", "secret-corp/*"), exclude=("*-archive",)
        )

        async with client_factory(config) as ctx:
            result = await discover_repositories(
                ctx, store, excluded_orgs=frozenset({"secret-corp"})
            )

        assert result.inserted == 2
        assert await store.known_full_names(USER_ID) == {"octo/reef", "octo/dots"}

    @pytest.mark.asyncio
    async def test_starred_units_are_flagged(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: FakeClientFactory,
        source: FakeSource,
    ) -> None:
        """Units discovered through stars carry the starred flag."""
        store = RepositoryStore(session_factory)
        source.repositories = [github_repo("octo/reef")]
        source.starred = [github_repo("torvalds/linux")]
        config = make_config(source=_source_settings(include_starred=True))

        async with client_factory(config) as ctx:
            await discover_repositories(ctx, store)

        units = await store.list_for_user(USER_ID)
        flags = {unit.full_name: unit.is_starred for unit in units}
        assert flags == {"octo/reef": False, "torvalds/linux": True}

    @pytest.mark.asyncio
    async def test_organizations_tracked_when_enabled(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: FakeClientFactory,
        source: FakeSource,
    ) -> None:
        """Memberships become excluded organizations, minus excluded orgs."""
        repositories = RepositoryStore(session_factory)
        organizations = OrganizationStore(session_factory)
        source.memberships = [
            GitHubMembership(organization=GitHubOrganizationRef(login="acme")),
            GitHubMembership(organization=GitHubOrganizationRef(login="blocked")),
        ]

        async with client_factory(make_config()) as ctx:
            result = await discover_repositories(
                ctx,
                repositories,
                organizations,
                excluded_orgs=frozenset({"blocked"}),
            )

        assert result.organizations_inserted == 1
        (org,) = await organizations.list_for_user(USER_ID)
        assert org.name == "acme"
        assert org.is_included is False

    @pytest.mark.asyncio
    async def test_organizations_skipped_when_disabled(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: FakeClientFactory,
        source: FakeSource,
    ) -> None:
        """include_organizations=False leaves memberships untracked."""
        organizations = OrganizationStore(session_factory)
        source.memberships = [
            GitHubMembership(organization=GitHubOrganizationRef(login="acme"))
        ]
        config = make_config(source=_source_settings(include_organizations=False))

        async with client_factory(config) as ctx:
            result = await discover_repositories(
                ctx, RepositoryStore(session_factory), organizations
            )

        assert result.organizations_inserted == 0
        assert await organizations.list_for_user(USER_ID) == []
