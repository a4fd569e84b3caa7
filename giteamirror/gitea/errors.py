"""Gitea client errors.

Destination failures are split so callers can tell a resolvable race (an
organization that already exists) from genuine failures such as missing
permissions or malformed responses.
"""

from __future__ import annotations

import typing as typ

from giteamirror.errors import HTTPStatusError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_BODY_PREVIEW_LIMIT = 500
_DUPLICATE_MARKERS = ("duplicate", "already exists", "uqe_user_lower_name", "constraint")


def _preview(body: str) -> str:
    if len(body) > _BODY_PREVIEW_LIMIT:
        return body[:_BODY_PREVIEW_LIMIT] + "..."
    return body


class GiteaAPIError(HTTPStatusError):
    """Raised when Gitea answers with an error status.

    Attributes
    ----------
    status_text
        Reason phrase of the response.

    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        status_text: str = "",
        headers: cabc.Mapping[str, str] | None = None,
        body: str = "",
    ) -> None:
        """Initialise with the response status, reason and raw body."""
        self.status_text = status_text
        super().__init__(message, status_code=status_code, headers=headers, body=body)

    @classmethod
    def http_error(
        cls,
        status_code: int,
        status_text: str,
        body: str,
        *,
        headers: cabc.Mapping[str, str] | None = None,
    ) -> GiteaAPIError:
        """Return an error for a non-2xx response."""
        return cls(
            f"Gitea API HTTP {status_code} {status_text}: {_preview(body)}",
            status_code=status_code,
            status_text=status_text,
            headers=headers,
            body=body,
        )

    @classmethod
    def timeout(cls) -> GiteaAPIError:
        """Return an error for request timeouts."""
        return cls("Gitea API request timed out")

    @classmethod
    def network_error(cls, detail: str) -> GiteaAPIError:
        """Return an error for DNS, connection and TLS failures."""
        return cls(f"Gitea API network error: {detail}")

    @property
    def is_duplicate(self) -> bool:
        """Return whether the body reports a uniqueness conflict."""
        text = self.body.lower()
        return any(marker in text for marker in _DUPLICATE_MARKERS)


class GiteaAuthError(GiteaAPIError):
    """Raised when the destination rejects the configured token (401)."""

    @classmethod
    def invalid_token(cls, body: str = "") -> GiteaAuthError:
        """Return an error for a rejected token."""
        return cls(
            "Gitea authentication failed: check the destination token",
            status_code=401,
            status_text="Unauthorized",
            body=body,
        )


class GiteaPermissionError(GiteaAPIError):
    """Raised when the destination user lacks a permission (403)."""

    @classmethod
    def cannot_create_org(cls, name: str, body: str = "") -> GiteaPermissionError:
        """Return an error for a forbidden organization creation."""
        return cls(
            f"Permission denied creating organization {name!r}: the token owner "
            "may not create organizations",
            status_code=403,
            status_text="Forbidden",
            body=body,
        )


class OrganizationExistsError(GiteaAPIError):
    """Raised when creating an organization lost a race with another creator.

    This is resolvable: the caller should re-query the organization rather
    than treat the conflict as a failure.
    """

    def __init__(self, name: str, *, status_code: int | None, body: str) -> None:
        """Record the organization name and the conflicting response."""
        self.name = name
        super().__init__(
            f"Organization {name!r} already exists; re-query to resolve",
            status_code=status_code,
            status_text="Conflict",
            body=body,
        )


class GiteaResponseError(RuntimeError):
    """Raised when a Gitea response cannot be interpreted.

    Attributes
    ----------
    status_code
        HTTP status code of the response.
    content_type
        Declared content type.
    body
        Raw response body.

    """

    def __init__(
        self, message: str, *, status_code: int, content_type: str, body: str
    ) -> None:
        """Store the diagnostic context."""
        self.status_code = status_code
        self.content_type = content_type
        self.body = body
        super().__init__(message)

    @classmethod
    def unexpected_content_type(
        cls, status_code: int, content_type: str, body: str
    ) -> GiteaResponseError:
        """Return an error for a non-JSON answer where JSON was expected."""
        return cls(
            f"Gitea returned {content_type or 'no content type'} (HTTP "
            f"{status_code}) where JSON was expected: {_preview(body)}",
            status_code=status_code,
            content_type=content_type,
            body=body,
        )

    @classmethod
    def invalid_json(
        cls, status_code: int, content_type: str, body: str, detail: str
    ) -> GiteaResponseError:
        """Return an error for a JSON body that failed to parse or decode."""
        return cls(
            f"Failed to parse Gitea JSON response (HTTP {status_code}, "
            f"{content_type}): {detail}; body: {_preview(body)}",
            status_code=status_code,
            content_type=content_type,
            body=body,
        )
