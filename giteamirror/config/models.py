"""Typed per-user configuration sections.

Configurations are persisted as loosely structured JSON columns. They are
decoded once, at the store boundary, into the msgspec structs defined here so
the rest of the engine works with validated values (for example a real
:class:`MirrorStrategy` member rather than a free-form string).
"""

from __future__ import annotations

import dataclasses as dc
import enum
import fnmatch
import typing as typ

import msgspec

if typ.TYPE_CHECKING:
    import datetime as dt


class MirrorStrategy(enum.StrEnum):
    """How source ownership maps onto destination owners."""

    PRESERVE = "preserve"
    SINGLE_ORG = "single-org"
    FLAT_USER = "flat-user"
    MIXED = "mixed"


class StarredReposMode(enum.StrEnum):
    """Destination policy for starred repositories."""

    DEDICATED_ORG = "dedicated-org"
    PRESERVE_OWNER = "preserve-owner"


class OrgVisibility(enum.StrEnum):
    """Visibility applied to organizations created on the destination."""

    PUBLIC = "public"
    PRIVATE = "private"
    LIMITED = "limited"


class OrphanAction(enum.StrEnum):
    """Disposition for units that disappeared upstream."""

    SKIP = "skip"
    ARCHIVE = "archive"
    DELETE = "delete"


class SourceSettings(msgspec.Struct, kw_only=True):
    """GitHub account and discovery options."""

    username: str = ""
    token: str = ""
    skip_forks: bool = False
    private_repositories: bool = True
    include_starred: bool = False
    include_organizations: bool = True


class DestinationSettings(msgspec.Struct, kw_only=True):
    """Gitea endpoint, credentials and placement defaults."""

    url: str = ""
    token: str = ""
    username: str = ""
    organization: str = ""
    visibility: OrgVisibility = OrgVisibility.PUBLIC
    starred_repos_org: str = "starred"
    mirror_interval: str = "8h"
    wiki: bool = False
    lfs: bool = False


class MirrorOptions(msgspec.Struct, kw_only=True):
    """Placement strategy and optional metadata mirroring."""

    strategy: MirrorStrategy = MirrorStrategy.PRESERVE
    starred_repos_mode: StarredReposMode = StarredReposMode.DEDICATED_ORG
    mirror_issues: bool = False
    mirror_releases: bool = False
    skip_starred_issues: bool = False
    release_limit: int = 10


class ScheduleSettings(msgspec.Struct, kw_only=True):
    """Scheduling policy for a configuration.

    ``interval`` accepts a duration string, a cron expression or a number of
    seconds; ``None`` defers to the destination mirror interval.
    """

    enabled: bool = False
    interval: str | int | None = None
    auto_mirror: bool = True
    auto_sync: bool = True
    batch_size: int = 10
    pause_between_batches_ms: int = 2000
    sync_pause_between_batches_ms: int = 5000
    concurrent: bool = False
    max_retries: int = 2
    retry_delay_ms: int = 1000
    skip_recently_mirrored: bool = True
    recent_threshold: str = "1h"
    only_mirror_updated: bool = False
    update_interval: str = "24h"


class CleanupSettings(msgspec.Struct, kw_only=True):
    """Orphan handling policy."""

    enabled: bool = False
    retention_days: int = 7
    delete_if_not_in_github: bool = False
    orphaned_repo_action: OrphanAction = OrphanAction.ARCHIVE
    dry_run: bool = False


@dc.dataclass(frozen=True, slots=True)
class MirrorConfig:
    """Decoded view of one persisted configuration row."""

    id: str
    user_id: str
    source: SourceSettings
    destination: DestinationSettings
    schedule: ScheduleSettings = dc.field(default_factory=ScheduleSettings)
    cleanup: CleanupSettings = dc.field(default_factory=CleanupSettings)
    mirror: MirrorOptions = dc.field(default_factory=MirrorOptions)
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    name: str = "default"
    is_active: bool = True
    last_run: dt.datetime | None = None
    next_run: dt.datetime | None = None

    @property
    def default_owner(self) -> str:
        """Destination account that owns units with no better home."""
        return self.destination.username

    @property
    def has_credentials(self) -> bool:
        """Return whether both tokens and the destination username are set.

        The username is the default owner, so a configuration without one
        cannot place units.
        """
        return bool(
            self.source.token.strip()
            and self.destination.token.strip()
            and self.destination.username.strip()
        )

    def includes(self, full_name: str) -> bool:
        """Apply the include/exclude glob filters to a source full name."""
        candidate = full_name.lower()
        if self.include and not any(
            fnmatch.fnmatchcase(candidate, pattern.lower()) for pattern in self.include
        ):
            return False
        return not any(
            fnmatch.fnmatchcase(candidate, pattern.lower()) for pattern in self.exclude
        )


__all__ = [
    "CleanupSettings",
    "DestinationSettings",
    "MirrorConfig",
    "MirrorOptions",
    "MirrorStrategy",
    "OrgVisibility",
    "OrphanAction",
    "ScheduleSettings",
    "SourceSettings",
    "StarredReposMode",
]
