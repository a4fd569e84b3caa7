"""Errors raised by mirror operations."""

from __future__ import annotations

from giteamirror.errors import MirrorOperationError


class RepositoryNotFoundError(MirrorOperationError):
    """Raised when an operation names a unit that is not tracked."""

    @classmethod
    def for_id(cls, repository_id: str) -> RepositoryNotFoundError:
        """Return an error for an unknown repository id."""
        return cls(f"Repository {repository_id} is not tracked")


class OrganizationNotFoundError(MirrorOperationError):
    """Raised when an operation names an organization that is not tracked."""

    @classmethod
    def for_id(cls, organization_id: str) -> OrganizationNotFoundError:
        """Return an error for an unknown organization id."""
        return cls(f"Organization {organization_id} is not tracked")


class DestinationNotFoundError(MirrorOperationError):
    """Raised when a unit to sync has no repository on the destination."""

    @classmethod
    def for_unit(cls, full_name: str, *locations: str) -> DestinationNotFoundError:
        """Return an error listing every location that was checked."""
        checked = ", ".join(locations) or "no candidate location"
        return cls(
            f"Repository {full_name} was not found on the destination "
            f"(checked: {checked}); mirror it before syncing"
        )


class NotAMirrorError(MirrorOperationError):
    """Raised when the destination repository exists but is not a mirror."""

    @classmethod
    def for_location(cls, location: str) -> NotAMirrorError:
        """Return an error asking for manual intervention."""
        return cls(
            f"Repository {location} exists on the destination but is not a "
            "mirror; manual intervention required (delete it or convert it "
            "to a mirror)"
        )


class OrganizationResolutionError(MirrorOperationError):
    """Raised when an organization reported as existing cannot be found."""

    @classmethod
    def still_missing(cls, name: str) -> OrganizationResolutionError:
        """Return an error for an organization missing after a create race."""
        return cls(
            f"Organization {name!r} was reported as existing but could not be "
            "retrieved"
        )


__all__ = [
    "DestinationNotFoundError",
    "NotAMirrorError",
    "OrganizationNotFoundError",
    "OrganizationResolutionError",
    "RepositoryNotFoundError",
]
