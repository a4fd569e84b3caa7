"""SQLAlchemy models and storage bootstrap for the mirror engine."""

from __future__ import annotations

from .models import (
    Base,
    Configuration,
    Event,
    MirrorJob,
    NaiveDatetimeError,
    Organization,
    RateLimitState,
    Repository,
    UTCDateTime,
    init_storage,
)

__all__ = [
    "Base",
    "Configuration",
    "Event",
    "MirrorJob",
    "NaiveDatetimeError",
    "Organization",
    "RateLimitState",
    "Repository",
    "UTCDateTime",
    "init_storage",
]
