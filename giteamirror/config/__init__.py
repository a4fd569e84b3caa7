"""Per-user configuration structs and process-level settings."""

from __future__ import annotations

from .errors import ConfigurationError
from .models import (
    CleanupSettings,
    DestinationSettings,
    MirrorConfig,
    MirrorOptions,
    MirrorStrategy,
    OrgVisibility,
    OrphanAction,
    ScheduleSettings,
    SourceSettings,
    StarredReposMode,
)
from .settings import EngineSettings
from .store import ConfigurationStore, decode_configuration, encode_section

__all__ = [
    "CleanupSettings",
    "ConfigurationError",
    "ConfigurationStore",
    "DestinationSettings",
    "EngineSettings",
    "MirrorConfig",
    "MirrorOptions",
    "MirrorStrategy",
    "OrgVisibility",
    "OrphanAction",
    "ScheduleSettings",
    "SourceSettings",
    "StarredReposMode",
    "decode_configuration",
    "encode_section",
]
