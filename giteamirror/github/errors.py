"""GitHub client errors."""

from __future__ import annotations

import typing as typ

from giteamirror.errors import HTTPStatusError

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class GitHubAPIError(HTTPStatusError):
    """Raised when GitHub returns an error response or cannot be reached."""

    @classmethod
    def http_error(
        cls,
        status_code: int,
        *,
        headers: cabc.Mapping[str, str] | None = None,
        body: str = "",
    ) -> GitHubAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(
            f"GitHub API HTTP {status_code}: {body[:200]}".rstrip(": "),
            status_code=status_code,
            headers=headers,
            body=body,
        )

    @classmethod
    def timeout(cls) -> GitHubAPIError:
        """Return an error for request timeouts."""
        return cls("GitHub API request timed out")

    @classmethod
    def network_error(cls, detail: str) -> GitHubAPIError:
        """Return an error for DNS, connection and TLS failures."""
        return cls(f"GitHub API network error: {detail}")


class GitHubResponseShapeError(RuntimeError):
    """Raised when a GitHub payload does not match the expected shape."""

    @classmethod
    def invalid(cls, endpoint: str, detail: str) -> GitHubResponseShapeError:
        """Return an error for a payload that failed to decode."""
        return cls(f"GitHub response from {endpoint} has unexpected shape: {detail}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")
