"""Mirror unit status values and their legal transitions.

A unit moves ``imported → mirroring → mirrored | failed`` on its first
mirror and ``mirrored → syncing → synced | failed`` on every later sync.
``failed`` units re-enter ``mirroring``/``syncing`` on retry. ``skipped`` and
``ignored`` units stay put until somebody resets them by hand; the scheduler
never selects them.
"""

from __future__ import annotations

import enum
import typing as typ


class RepositoryStatus(enum.StrEnum):
    """Lifecycle states for a mirror unit (and for organizations)."""

    IMPORTED = "imported"
    PENDING = "pending"
    MIRRORING = "mirroring"
    MIRRORED = "mirrored"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    ARCHIVED = "archived"


_S = RepositoryStatus

# Destination presence may converge any not-yet-mirrored unit to MIRRORED.
LEGAL_TRANSITIONS: typ.Final[dict[RepositoryStatus, frozenset[RepositoryStatus]]] = {
    _S.IMPORTED: frozenset(
        {_S.MIRRORING, _S.MIRRORED, _S.SKIPPED, _S.IGNORED, _S.ARCHIVED}
    ),
    _S.PENDING: frozenset(
        {_S.MIRRORING, _S.MIRRORED, _S.SYNCING, _S.SKIPPED, _S.IGNORED, _S.ARCHIVED}
    ),
    _S.MIRRORING: frozenset({_S.MIRRORING, _S.MIRRORED, _S.FAILED}),
    _S.MIRRORED: frozenset(
        {
            _S.MIRRORING,
            _S.MIRRORED,
            _S.SYNCING,
            _S.SKIPPED,
            _S.IGNORED,
            _S.ARCHIVED,
        }
    ),
    _S.SYNCING: frozenset({_S.SYNCING, _S.SYNCED, _S.FAILED}),
    _S.SYNCED: frozenset(
        {
            _S.MIRRORING,
            _S.SYNCING,
            _S.SYNCED,
            _S.SKIPPED,
            _S.IGNORED,
            _S.ARCHIVED,
        }
    ),
    _S.FAILED: frozenset(
        {
            _S.MIRRORING,
            _S.SYNCING,
            _S.MIRRORED,
            _S.FAILED,
            _S.SKIPPED,
            _S.IGNORED,
            _S.ARCHIVED,
        }
    ),
    _S.SKIPPED: frozenset({_S.IMPORTED}),
    _S.IGNORED: frozenset({_S.IMPORTED}),
    _S.ARCHIVED: frozenset({_S.IMPORTED}),
}

AUTO_MIRROR_STATUSES: typ.Final = (_S.IMPORTED, _S.PENDING, _S.FAILED)
SYNC_STATUSES: typ.Final = (_S.MIRRORED, _S.SYNCED, _S.FAILED, _S.PENDING)
IN_FLIGHT_STATUSES: typ.Final = (_S.MIRRORING, _S.SYNCING)
MANUAL_ONLY_STATUSES: typ.Final = (_S.SKIPPED, _S.IGNORED)
MIRRORED_STATUSES: typ.Final = (_S.MIRRORED, _S.SYNCED)


class IllegalStatusTransitionError(RuntimeError):
    """Raised when a unit is asked to move to a status it cannot reach."""

    def __init__(self, current: RepositoryStatus, target: RepositoryStatus) -> None:
        """Record both ends of the rejected transition."""
        self.current = current
        self.target = target
        super().__init__(f"Illegal status transition: {current} -> {target}")


def can_transition(current: str, target: str) -> bool:
    """Return whether ``current → target`` is a legal unit transition."""
    return RepositoryStatus(target) in LEGAL_TRANSITIONS[RepositoryStatus(current)]


def ensure_transition(current: str, target: str) -> RepositoryStatus:
    """Validate ``current → target`` and return the target status.

    Raises
    ------
    IllegalStatusTransitionError
        If ``target`` is not a legal successor of ``current``.

    """
    current_status = RepositoryStatus(current)
    target_status = RepositoryStatus(target)
    if target_status not in LEGAL_TRANSITIONS[current_status]:
        raise IllegalStatusTransitionError(current_status, target_status)
    return target_status


__all__ = [
    "AUTO_MIRROR_STATUSES",
    "IN_FLIGHT_STATUSES",
    "LEGAL_TRANSITIONS",
    "MANUAL_ONLY_STATUSES",
    "MIRRORED_STATUSES",
    "SYNC_STATUSES",
    "IllegalStatusTransitionError",
    "RepositoryStatus",
    "can_transition",
    "ensure_transition",
]
