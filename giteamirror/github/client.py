"""GitHub REST client used for discovery, cleanup and metadata mirroring."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

import httpx
import msgspec

from giteamirror.ratelimit.models import RateLimitSnapshot

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .models import (
    GitHubComment,
    GitHubIssue,
    GitHubMembership,
    GitHubRateLimitResponse,
    GitHubRelease,
    GitHubRepository,
)

if typ.TYPE_CHECKING:
    from giteamirror.ratelimit import RateLimitGovernor

_HTTP_ERROR_STATUS_THRESHOLD = 400
_PAGE_SIZE = 100


class SourceClient(typ.Protocol):
    """Interface for reading the source side of a mirror."""

    async def list_repositories(
        self, *, include_forks: bool = True, include_private: bool = True
    ) -> list[GitHubRepository]:
        """Return repositories the authenticated user owns or can access.

        Collaborator and organization-member repositories are included.
        """
        ...

    async def list_starred_repositories(self) -> list[GitHubRepository]:
        """Return repositories starred by the authenticated user."""
        ...

    async def list_organizations(self) -> list[GitHubMembership]:
        """Return active organization memberships with their roles."""
        ...

    async def list_organization_repositories(
        self, organization: str
    ) -> list[GitHubRepository]:
        """Return every repository of ``organization`` visible to the user."""
        ...

    async def get_rate_limit(self) -> RateLimitSnapshot:
        """Return the current core REST quota."""
        ...

    async def list_issues(self, owner: str, repo: str) -> list[GitHubIssue]:
        """Return issues of every state, pull requests included."""
        ...

    async def list_issue_comments(
        self, owner: str, repo: str, number: int
    ) -> list[GitHubComment]:
        """Return the comments of one issue in creation order."""
        ...

    async def list_releases(
        self, owner: str, repo: str, *, limit: int
    ) -> list[GitHubRelease]:
        """Return at most ``limit`` releases, newest first."""
        ...

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...


@dc.dataclass(frozen=True, slots=True)
class GitHubClientConfig:
    """Configuration for the GitHub REST client."""

    token: str
    api_url: str = "https://api.github.com"
    timeout_s: float = 30.0
    user_agent: str = "giteamirror/0.1"


class GitHubClient:
    """httpx implementation of :class:`SourceClient`.

    Pagination follows the ``Link: <...>; rel="next"`` header. When a
    :class:`~giteamirror.ratelimit.RateLimitGovernor` is supplied every
    request runs through :meth:`RateLimitGovernor.retry_with_backoff` and each
    response's quota headers are recorded for ``user_id``.
    """

    def __init__(
        self,
        config: GitHubClientConfig,
        *,
        user_id: str = "",
        governor: RateLimitGovernor | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._user_id = user_id
        self._governor = governor
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.api_url,
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def list_repositories(
        self, *, include_forks: bool = True, include_private: bool = True
    ) -> list[GitHubRepository]:
        """Return repositories the authenticated user owns or can access.

        Collaborator and organization-member repositories are included,
        matching the API's default affiliation.

        Parameters
        ----------
        include_forks
            Keep forked repositories.
        include_private
            Request private repositories as well as public ones.

        """
        repos = await self._paginate(
            "/user/repos",
            list[GitHubRepository],
            params={
                "affiliation": "owner,collaborator,organization_member",
                "visibility": "all" if include_private else "public",
                "sort": "full_name",
            },
        )
        if include_forks:
            return repos
        return [repo for repo in repos if not repo.fork]

    async def list_starred_repositories(self) -> list[GitHubRepository]:
        """Return repositories starred by the authenticated user."""
        return await self._paginate("/user/starred", list[GitHubRepository])

    async def list_organizations(self) -> list[GitHubMembership]:
        """Return active organization memberships with their roles."""
        return await self._paginate(
            "/user/memberships/orgs",
            list[GitHubMembership],
            params={"state": "active"},
        )

    async def list_organization_repositories(
        self, organization: str
    ) -> list[GitHubRepository]:
        """Return every repository of ``organization`` visible to the user."""
        return await self._paginate(
            f"/orgs/{organization}/repos",
            list[GitHubRepository],
            params={"type": "all"},
        )

    async def get_rate_limit(self) -> RateLimitSnapshot:
        """Return the current core REST quota."""
        response = await self._send("GET", "/rate_limit")
        payload = _decode(response, GitHubRateLimitResponse, "/rate_limit")
        core = payload.resources.core
        return RateLimitSnapshot.build(
            limit=core.limit,
            remaining=core.remaining,
            used=core.used,
            reset_at=dt.datetime.fromtimestamp(core.reset, tz=dt.UTC),
        )

    async def list_issues(self, owner: str, repo: str) -> list[GitHubIssue]:
        """Return issues of every state, oldest first, pull requests included."""
        return await self._paginate(
            f"/repos/{owner}/{repo}/issues",
            list[GitHubIssue],
            params={"state": "all", "sort": "created", "direction": "asc"},
        )

    async def list_issue_comments(
        self, owner: str, repo: str, number: int
    ) -> list[GitHubComment]:
        """Return the comments of one issue in creation order."""
        comments = await self._paginate(
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            list[GitHubComment],
        )
        return sorted(comments, key=lambda comment: comment.created_at)

    async def list_releases(
        self, owner: str, repo: str, *, limit: int
    ) -> list[GitHubRelease]:
        """Return at most ``limit`` releases, newest first."""
        if limit <= 0:
            return []
        return await self._paginate(
            f"/repos/{owner}/{repo}/releases",
            list[GitHubRelease],
            per_page=min(limit, _PAGE_SIZE),
            max_items=limit,
        )

    async def _paginate[T](
        self,
        path: str,
        page_type: type[list[T]],
        *,
        params: dict[str, str] | None = None,
        per_page: int = _PAGE_SIZE,
        max_items: int | None = None,
    ) -> list[T]:
        """Fetch every page of a list endpoint by following ``rel="next"``."""
        items: list[T] = []
        url: str | None = path
        query: dict[str, str] | None = {**(params or {}), "per_page": str(per_page)}
        while url is not None:
            response = await self._send("GET", url, params=query)
            items.extend(_decode(response, page_type, path))
            if max_items is not None and len(items) >= max_items:
                return items[:max_items]
            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string.
            query = None
        return items

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Issue a request, honouring the governor when one is configured."""

        async def call() -> httpx.Response:
            response = await self._request(method, url, params=params)
            if self._governor is not None:
                await self._governor.update_from_headers(
                    self._user_id, response.headers
                )
            return response

        if self._governor is None:
            return await call()
        return await self._governor.retry_with_backoff(call, self._user_id)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, params=params)
        except httpx.TimeoutException as exc:
            raise GitHubAPIError.timeout() from exc
        except httpx.RequestError as exc:
            raise GitHubAPIError.network_error(str(exc)) from exc
        self._check_response_errors(response)
        return response

    def _check_response_errors(self, response: httpx.Response) -> None:
        """Raise :class:`GitHubAPIError` for non-2xx responses."""
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(
                response.status_code,
                headers=response.headers,
                body=response.text,
            )


def _decode[T](response: httpx.Response, type_: type[T], endpoint: str) -> T:
    try:
        return msgspec.json.decode(response.content, type=type_)
    except msgspec.DecodeError as exc:
        raise GitHubResponseShapeError.invalid(endpoint, str(exc)) from exc


__all__ = ["GitHubClient", "GitHubClientConfig", "SourceClient"]
