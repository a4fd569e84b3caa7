"""Gitea REST client used to create, sync and retire mirrors."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import httpx
import msgspec

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

if typ.TYPE_CHECKING:
    from giteamirror.ratelimit import RateLimitGovernor

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_PAGE_SIZE = 50


class DestinationClient(typ.Protocol):
    """Interface for writing the destination side of a mirror."""

    async def get_current_user(self) -> GiteaUser:
        """Return the token owner."""
        ...

    async def get_organization(self, name: str) -> GiteaOrganization | None:
        """Return the organization, or ``None`` when it does not exist."""
        ...

    async def create_organization(
        self, name: str, *, visibility: str = "public", description: str = ""
    ) -> GiteaOrganization:
        """Create an organization."""
        ...

    async def get_repository(self, owner: str, repo: str) -> GiteaRepository | None:
        """Return the repository, or ``None`` when it does not exist."""
        ...

    async def migrate_repository(self, request: MigrationRequest) -> GiteaRepository:
        """Create a pull mirror."""
        ...

    async def update_repository(
        self, owner: str, repo: str, changes: dict[str, object]
    ) -> GiteaRepository:
        """Patch repository settings."""
        ...

    async def mirror_sync(self, owner: str, repo: str) -> None:
        """Trigger a mirror synchronisation."""
        ...

    async def archive_repository(self, owner: str, repo: str) -> GiteaRepository:
        """Mark the repository archived."""
        ...

    async def delete_repository(self, owner: str, repo: str) -> None:
        """Delete the repository."""
        ...

    async def list_labels(self, owner: str, repo: str) -> list[GiteaLabel]:
        """Return the repository's labels."""
        ...

    async def create_label(
        self, owner: str, repo: str, *, name: str, color: str, description: str = ""
    ) -> GiteaLabel:
        """Create a label."""
        ...

    async def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str,
        labels: list[int],
    ) -> GiteaIssue:
        """Create an issue."""
        ...

    async def edit_issue(
        self, owner: str, repo: str, number: int, *, state: str
    ) -> GiteaIssue:
        """Change an issue's state."""
        ...

    async def create_issue_comment(
        self, owner: str, repo: str, number: int, *, body: str
    ) -> None:
        """Add a comment to an issue."""
        ...

    async def list_releases(self, owner: str, repo: str) -> list[GiteaRelease]:
        """Return the repository's releases."""
        ...

    async def create_release(  # noqa: PLR0913
        self,
        owner: str,
        repo: str,
        *,
        tag_name: str,
        name: str,
        body: str,
        draft: bool,
        prerelease: bool,
        target_commitish: str | None = None,
    ) -> GiteaRelease:
        """Create a release for an existing tag."""
        ...

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...


@dc.dataclass(frozen=True, slots=True)
class GiteaClientConfig:
    """Configuration for the Gitea REST client."""

    url: str
    token: str
    timeout_s: float = 30.0
    user_agent: str = "giteamirror/0.1"

    @property
    def api_url(self) -> str:
        """Return the ``/api/v1`` base for :attr:`url`."""
        return f"{self.url.rstrip('/')}/api/v1"


class GiteaClient:
    """httpx implementation of :class:`DestinationClient`.

    Responses that must carry JSON are validated twice: the declared content
    type must be JSON and the body must decode into the expected struct,
    otherwise :class:`GiteaResponseError` reports the status, content type
    and raw body.
    """

    def __init__(
        self,
        config: GiteaClientConfig,
        *,
        user_id: str = "",
        governor: RateLimitGovernor | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided destination configuration."""
        self._config = config
        self._user_id = user_id
        self._governor = governor
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.api_url,
            timeout=config.timeout_s,
            headers={
                "Authorization": f"token {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/json",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def get_current_user(self) -> GiteaUser:
        """Return the token owner.

        Raises
        ------
        GiteaAuthError
            If the token is rejected.

        """
        response = await self._request("GET", "/user")
        return _decode_json(response, GiteaUser)

    async def get_organization(self, name: str) -> GiteaOrganization | None:
        """Return the organization, or ``None`` when it does not exist."""
        response = await self._get_optional(f"/orgs/{name}")
        if response is None:
            return None
        return _decode_json(response, GiteaOrganization)

    async def create_organization(
        self, name: str, *, visibility: str = "public", description: str = ""
    ) -> GiteaOrganization:
        """Create an organization.

        Raises
        ------
        OrganizationExistsError
            If another creator won the race for ``name``.
        GiteaPermissionError
            If the token owner may not create organizations.

        """
        try:
            response = await self._request(
                "POST",
                "/orgs",
                json={
                    "username": name,
                    "full_name": name,
                    "visibility": visibility,
                    "description": description,
                },
            )
        except GiteaAPIError as exc:
            if exc.status_code == _HTTP_FORBIDDEN:
                raise GiteaPermissionError.cannot_create_org(name, exc.body) from exc
            if exc.is_duplicate:
                raise OrganizationExistsError(
                    name, status_code=exc.status_code, body=exc.body
                ) from exc
            raise
        return _decode_json(response, GiteaOrganization)

    async def get_repository(self, owner: str, repo: str) -> GiteaRepository | None:
        """Return the repository, or ``None`` when it does not exist."""
        response = await self._get_optional(f"/repos/{owner}/{repo}")
        if response is None:
            return None
        return _decode_json(response, GiteaRepository)

    async def migrate_repository(self, request: MigrationRequest) -> GiteaRepository:
        """Create a pull mirror from ``request``."""
        response = await self._request(
            "POST", "/repos/migrate", json=msgspec.to_builtins(request)
        )
        return _decode_json(response, GiteaRepository)

    async def update_repository(
        self, owner: str, repo: str, changes: dict[str, object]
    ) -> GiteaRepository:
        """Patch repository settings such as ``mirror_interval``."""
        response = await self._request(
            "PATCH", f"/repos/{owner}/{repo}", json=changes
        )
        return _decode_json(response, GiteaRepository)

    async def mirror_sync(self, owner: str, repo: str) -> None:
        """Trigger a mirror synchronisation; the body is ignored."""
        await self._request("POST", f"/repos/{owner}/{repo}/mirror-sync")

    async def archive_repository(self, owner: str, repo: str) -> GiteaRepository:
        """Mark the repository archived."""
        return await self.update_repository(owner, repo, {"archived": True})

    async def delete_repository(self, owner: str, repo: str) -> None:
        """Delete the repository."""
        await self._request("DELETE", f"/repos/{owner}/{repo}")

    async def list_labels(self, owner: str, repo: str) -> list[GiteaLabel]:
        """Return every label of the repository."""
        return await self._paginate(f"/repos/{owner}/{repo}/labels", GiteaLabel)

    async def create_label(
        self, owner: str, repo: str, *, name: str, color: str, description: str = ""
    ) -> GiteaLabel:
        """Create a label."""
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/labels",
            json={"name": name, "color": color, "description": description},
        )
        return _decode_json(response, GiteaLabel)

    async def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str,
        labels: list[int],
    ) -> GiteaIssue:
        """Create an open issue."""
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues",
            json={"title": title, "body": body, "labels": labels},
        )
        return _decode_json(response, GiteaIssue)

    async def edit_issue(
        self, owner: str, repo: str, number: int, *, state: str
    ) -> GiteaIssue:
        """Change an issue's state."""
        response = await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/issues/{number}",
            json={"state": state},
        )
        return _decode_json(response, GiteaIssue)

    async def create_issue_comment(
        self, owner: str, repo: str, number: int, *, body: str
    ) -> None:
        """Add a comment to an issue."""
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            json={"body": body},
        )

    async def list_releases(self, owner: str, repo: str) -> list[GiteaRelease]:
        """Return every release of the repository."""
        return await self._paginate(f"/repos/{owner}/{repo}/releases", GiteaRelease)

    async def create_release(  # noqa: PLR0913
        self,
        owner: str,
        repo: str,
        *,
        tag_name: str,
        name: str,
        body: str,
        draft: bool,
        prerelease: bool,
        target_commitish: str | None = None,
    ) -> GiteaRelease:
        """Create a release for an existing tag."""
        payload: dict[str, object] = {
            "tag_name": tag_name,
            "name": name,
            "body": body,
            "draft": draft,
            "prerelease": prerelease,
        }
        if target_commitish:
            payload["target_commitish"] = target_commitish
        response = await self._request(
            "POST", f"/repos/{owner}/{repo}/releases", json=payload
        )
        return _decode_json(response, GiteaRelease)

    async def _paginate[T](self, path: str, item_type: type[T]) -> list[T]:
        """Fetch pages until one comes back short."""
        items: list[T] = []
        page = 1
        while True:
            response = await self._request(
                "GET", path, params={"page": page, "limit": _PAGE_SIZE}
            )
            batch = _decode_json(response, list[item_type])
            items.extend(batch)
            if len(batch) < _PAGE_SIZE:
                return items
            page += 1

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: object | None = None,
        params: dict[str, typ.Any] | None = None,
    ) -> httpx.Response:
        """Send a request through the governor when one is configured."""

        async def call() -> httpx.Response:
            response = await self._send(method, path, json=json, params=params)
            if self._governor is not None:
                await self._governor.update_from_headers(
                    self._user_id, response.headers, provider="gitea"
                )
            return response

        if self._governor is None:
            return await call()
        return await self._governor.retry_with_backoff(
            call, self._user_id, provider="gitea"
        )

    async def _get_optional(self, path: str) -> httpx.Response | None:
        """GET ``path``, mapping a 404 to ``None``."""
        try:
            return await self._request("GET", path)
        except GiteaAPIError as exc:
            if exc.status_code == _HTTP_NOT_FOUND:
                return None
            raise

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: object | None,
        params: dict[str, typ.Any] | None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, path, json=json, params=params
            )
        except httpx.TimeoutException as exc:
            raise GiteaAPIError.timeout() from exc
        except httpx.RequestError as exc:
            raise GiteaAPIError.network_error(str(exc)) from exc
        self._check_response_errors(response)
        return response

    def _check_response_errors(self, response: httpx.Response) -> None:
        """Raise the most specific error for a non-2xx response."""
        if response.status_code == _HTTP_UNAUTHORIZED:
            raise GiteaAuthError.invalid_token(response.text)
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GiteaAPIError.http_error(
                response.status_code,
                response.reason_phrase,
                response.text,
                headers=response.headers,
            )


def _decode_json[T](response: httpx.Response, type_: type[T]) -> T:
    content_type = response.headers.get("content-type", "")
    if "json" not in content_type.lower():
        raise GiteaResponseError.unexpected_content_type(
            response.status_code, content_type, response.text
        )
    try:
        return msgspec.json.decode(response.content, type=type_)
    except msgspec.DecodeError as exc:
        raise GiteaResponseError.invalid_json(
            response.status_code, content_type, response.text, str(exc)
        ) from exc


__all__ = ["DestinationClient", "GiteaClient", "GiteaClientConfig"]
