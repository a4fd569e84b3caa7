"""Unit tests for the Gitea REST client."""

from __future__ import annotations

import json
import secrets
import typing as typ

import httpx
import pytest

from giteamirror.gitea import (
    GiteaAPIError,
    GiteaAuthError,
    GiteaClient,
    GiteaClientConfig,
    GiteaPermissionError,
    GiteaResponseError,
    MigrationRequest,
    OrganizationExistsError,
)

_TOKEN = secrets.token_hex(8)
_URL = "https://gitea.test"

type Handler = typ.Callable[[httpx.Request], httpx.Response]


def _repo(owner: str, name: str, **fields: object) -> dict[str, object]:
    return {
        "id": 7,
        "name": name,
        "full_name": f"{owner}/{name}",
        "owner": {"login": owner},
        **fields,
    }


def _make_client(handler: Handler) -> tuple[GiteaClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    config = GiteaClientConfig(url=f"{_URL}/", token=_TOKEN)
    http_client = httpx.AsyncClient(
        base_url=config.api_url, transport=httpx.MockTransport(record)
    )
    return GiteaClient(config, http_client=http_client), requests


def test_api_url_strips_trailing_slash() -> None:
    """The REST base is derived from the instance URL."""
    assert GiteaClientConfig(url=f"{_URL}/", token=_TOKEN).api_url == (
        f"{_URL}/api/v1"
    )


class TestRepositories:
    """Tests for repository endpoints."""

    @pytest.mark.asyncio
    async def test_missing_repository_is_none(self) -> None:
        """A 404 lookup returns None rather than raising."""
        client, requests = _make_client(
            lambda request: httpx.Response(404, json={"message": "not found"})
        )

        assert await client.get_repository("mirror-bot", "reef") is None
        assert requests[0].url.path == "/api/v1/repos/mirror-bot/reef"

    @pytest.mark.asyncio
    async def test_migrate_omits_unset_credentials(self) -> None:
        """Public migrations never send auth fields."""
        client, requests = _make_client(
            lambda request: httpx.Response(201, json=_repo("mirror-bot", "reef"))
        )
        request = MigrationRequest(
            clone_addr="https://github.com/octo/reef.git",
            repo_name="reef",
            repo_owner="mirror-bot",
            mirror=True,
            mirror_interval="8h0m0s",
            wiki=False,
            lfs=False,
            private=False,
            service="git",
        )

        repo = await client.migrate_repository(request)

        assert repo.full_name == "mirror-bot/reef"
        body = json.loads(requests[0].content)
        assert body["clone_addr"] == "https://github.com/octo/reef.git"
        assert "auth_token" not in body
        assert "auth_username" not in body

    @pytest.mark.asyncio
    async def test_archive_patches_repository(self) -> None:
        """Archiving is a PATCH setting archived."""
        client, requests = _make_client(
            lambda request: httpx.Response(
                200, json=_repo("mirror-bot", "reef", archived=True)
            )
        )

        repo = await client.archive_repository("mirror-bot", "reef")

        assert repo.archived is True
        assert requests[0].method == "PATCH"
        assert json.loads(requests[0].content) == {"archived": True}

    @pytest.mark.asyncio
    async def test_labels_are_paginated(self) -> None:
        """Pages are fetched until one comes back short."""

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            count = 50 if page == 1 else 2
            labels = [
                {"id": page * 100 + n, "name": f"label-{page}-{n}"}
                for n in range(count)
            ]
            return httpx.Response(200, json=labels)

        client, requests = _make_client(handler)

        labels = await client.list_labels("mirror-bot", "reef")

        assert len(labels) == 52
        assert [r.url.params["page"] for r in requests] == ["1", "2"]


class TestOrganizations:
    """Tests for organization creation errors."""

    @pytest.mark.asyncio
    async def test_duplicate_is_a_resolvable_race(self) -> None:
        """A uniqueness conflict raises OrganizationExistsError."""
        client, _ = _make_client(
            lambda request: httpx.Response(
                422, json={"message": "user already exists [name: acme]"}
            )
        )

        with pytest.raises(OrganizationExistsError) as excinfo:
            await client.create_organization("acme")

        assert excinfo.value.name == "acme"

    @pytest.mark.asyncio
    async def test_forbidden_creation(self) -> None:
        """A 403 becomes a permission error."""
        client, _ = _make_client(lambda request: httpx.Response(403, text="no"))

        with pytest.raises(GiteaPermissionError, match="acme"):
            await client.create_organization("acme")

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self) -> None:
        """Unrelated failures keep their generic type."""
        client, _ = _make_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(GiteaAPIError) as excinfo:
            await client.create_organization("acme")

        assert not isinstance(excinfo.value, OrganizationExistsError)
        assert excinfo.value.status_code == 500


class TestResponseValidation:
    """Tests for authentication and response validation."""

    @pytest.mark.asyncio
    async def test_unauthorized_is_an_auth_error(self) -> None:
        """A 401 raises GiteaAuthError."""
        client, _ = _make_client(lambda request: httpx.Response(401))

        with pytest.raises(GiteaAuthError):
            await client.get_current_user()

    @pytest.mark.asyncio
    async def test_html_where_json_expected(self) -> None:
        """A non-JSON body reports its content type and body."""
        client, _ = _make_client(
            lambda request: httpx.Response(
                200, text="<html>login</html>", headers={"content-type": "text/html"}
            )
        )

        with pytest.raises(GiteaResponseError) as excinfo:
            await client.get_current_user()

        assert excinfo.value.content_type == "text/html"
        assert "<html>login</html>" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_malformed_json(self) -> None:
        """A JSON body of the wrong shape is rejected."""
        client, _ = _make_client(
            lambda request: httpx.Response(200, json={"unexpected": True})
        )

        with pytest.raises(GiteaResponseError, match="Failed to parse"):
            await client.get_current_user()

    @pytest.mark.asyncio
    async def test_mirror_sync_ignores_body(self) -> None:
        """mirror-sync succeeds on an empty answer."""
        client, requests = _make_client(lambda request: httpx.Response(200))

        await client.mirror_sync("mirror-bot", "reef")

        assert requests[0].url.path == "/api/v1/repos/mirror-bot/reef/mirror-sync"
