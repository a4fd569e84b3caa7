"""Unit tests for the mirror unit status machine."""

from __future__ import annotations

import pytest

from giteamirror.status import (
    AUTO_MIRROR_STATUSES,
    IN_FLIGHT_STATUSES,
    LEGAL_TRANSITIONS,
    SYNC_STATUSES,
    IllegalStatusTransitionError,
    RepositoryStatus,
    can_transition,
    ensure_transition,
)

S = RepositoryStatus


class TestTransitions:
    """Tests for the legal transition table."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.IMPORTED, S.MIRRORING),
            (S.MIRRORING, S.MIRRORED),
            (S.MIRRORING, S.FAILED),
            (S.MIRRORED, S.SYNCING),
            (S.SYNCING, S.SYNCED),
            (S.SYNCED, S.SYNCING),
            (S.FAILED, S.MIRRORING),
            (S.FAILED, S.SYNCING),
            (S.IMPORTED, S.MIRRORED),
            (S.SKIPPED, S.IMPORTED),
            (S.MIRRORED, S.ARCHIVED),
        ],
    )
    def test_legal_transitions(
        self, current: RepositoryStatus, target: RepositoryStatus
    ) -> None:
        """Lifecycle steps are accepted."""
        assert can_transition(current, target)
        assert ensure_transition(current, target) is target

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.IMPORTED, S.SYNCING),
            (S.IMPORTED, S.SYNCED),
            (S.MIRRORING, S.SYNCING),
            (S.SYNCING, S.MIRRORED),
            (S.SKIPPED, S.MIRRORING),
            (S.IGNORED, S.SYNCING),
            (S.ARCHIVED, S.MIRRORING),
            (S.MIRRORING, S.ARCHIVED),
        ],
    )
    def test_illegal_transitions_raise(
        self, current: RepositoryStatus, target: RepositoryStatus
    ) -> None:
        """Rejected transitions carry both ends of the move."""
        assert not can_transition(current, target)
        with pytest.raises(IllegalStatusTransitionError) as excinfo:
            ensure_transition(current, target)
        assert excinfo.value.current is current
        assert excinfo.value.target is target

    def test_every_status_has_an_entry(self) -> None:
        """The table covers every status."""
        assert set(LEGAL_TRANSITIONS) == set(RepositoryStatus)

    def test_accepts_raw_strings(self) -> None:
        """Stored column values are plain strings."""
        assert ensure_transition("failed", "mirroring") is S.MIRRORING


def test_manual_only_statuses_never_selected() -> None:
    """Skipped and ignored units are excluded from automatic phases."""
    selectable = set(AUTO_MIRROR_STATUSES) | set(SYNC_STATUSES)
    assert S.SKIPPED not in selectable
    assert S.IGNORED not in selectable
    assert not selectable & set(IN_FLIGHT_STATUSES)
