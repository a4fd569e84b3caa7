"""Per-configuration operation context and client construction.

Operations never build HTTP clients themselves. A :class:`ClientFactory`
turns a :class:`~giteamirror.config.MirrorConfig` into a
:class:`MirrorContext` holding the configuration and both clients, which the
caller uses as an async context manager so owned connections are closed.
Tests substitute a factory returning fake clients.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from giteamirror.gitea import GiteaClient, GiteaClientConfig
from giteamirror.github import GitHubClient, GitHubClientConfig

if typ.TYPE_CHECKING:
    from types import TracebackType

    from giteamirror.config import MirrorConfig
    from giteamirror.gitea import DestinationClient
    from giteamirror.github import SourceClient
    from giteamirror.ratelimit import RateLimitGovernor


@dc.dataclass(slots=True)
class MirrorContext:
    """Configuration plus the clients used to act on it.

    Attributes
    ----------
    config
        Decoded configuration.
    source
        GitHub-side client.
    destination
        Gitea-side client.
    verified_owners
        Lower-cased destination owners already confirmed to exist during
        this context's lifetime.

    """

    config: MirrorConfig
    source: SourceClient
    destination: DestinationClient
    verified_owners: set[str] = dc.field(default_factory=set)

    @property
    def user_id(self) -> str:
        """Return the owning user's id."""
        return self.config.user_id

    async def aclose(self) -> None:
        """Close both clients."""
        await self.source.aclose()
        await self.destination.aclose()

    async def __aenter__(self) -> MirrorContext:
        """Return the context itself."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close both clients."""
        await self.aclose()


class ClientFactory(typ.Protocol):
    """Build a :class:`MirrorContext` for a configuration."""

    def __call__(self, config: MirrorConfig) -> MirrorContext:
        """Return a context with clients authenticated for ``config``."""
        ...


class HttpClientFactory:
    """Build httpx-backed GitHub and Gitea clients sharing one governor."""

    def __init__(
        self,
        *,
        governor: RateLimitGovernor | None = None,
        github_api_url: str = "https://api.github.com",
        timeout_s: float = 30.0,
    ) -> None:
        """Store shared client settings."""
        self._governor = governor
        self._github_api_url = github_api_url
        self._timeout_s = timeout_s

    def __call__(self, config: MirrorConfig) -> MirrorContext:
        """Return a context with fresh clients for ``config``."""
        source = GitHubClient(
            GitHubClientConfig(
                token=config.source.token,
                api_url=self._github_api_url,
                timeout_s=self._timeout_s,
            ),
            user_id=config.user_id,
            governor=self._governor,
        )
        destination = GiteaClient(
            GiteaClientConfig(
                url=config.destination.url,
                token=config.destination.token,
                timeout_s=self._timeout_s,
            ),
            user_id=config.user_id,
            governor=self._governor,
        )
        return MirrorContext(config=config, source=source, destination=destination)


__all__ = ["ClientFactory", "HttpClientFactory", "MirrorContext"]
