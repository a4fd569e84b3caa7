"""Base errors shared by the API clients and mirror operations."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR_THRESHOLD = 500


class HTTPStatusError(RuntimeError):
    """Raised when a REST API answers with an error status.

    Attributes
    ----------
    status_code
        HTTP status code, or ``None`` for transport failures.
    headers
        Response headers, used to recover quota information.
    body
        Raw response text kept for diagnostics.

    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        headers: cabc.Mapping[str, str] | None = None,
        body: str = "",
    ) -> None:
        """Initialise with a message and optional response context."""
        self.status_code = status_code
        self.headers: cabc.Mapping[str, str] = headers or {}
        self.body = body
        super().__init__(message)

    @property
    def is_rate_limited(self) -> bool:
        """Return whether this is a primary rate-limit rejection (403)."""
        if self.status_code != HTTP_FORBIDDEN:
            return False
        text = f"{self} {self.body}".lower()
        return "rate limit" in text

    @property
    def is_too_many_requests(self) -> bool:
        """Return whether the server asked the client to slow down (429)."""
        return self.status_code == HTTP_TOO_MANY_REQUESTS

    @property
    def is_server_error(self) -> bool:
        """Return whether the failure is a 5xx response."""
        return (
            self.status_code is not None
            and self.status_code >= _HTTP_SERVER_ERROR_THRESHOLD
        )


class MirrorOperationError(RuntimeError):
    """Base for operation failures that another attempt cannot fix."""


__all__ = [
    "HTTP_FORBIDDEN",
    "HTTP_TOO_MANY_REQUESTS",
    "HTTPStatusError",
    "MirrorOperationError",
]
