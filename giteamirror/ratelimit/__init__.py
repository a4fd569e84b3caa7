"""Rate-limit governor for source and destination API quotas."""

from __future__ import annotations

from .governor import GITEA, GITHUB, BackoffPolicy, RateLimitGovernor
from .models import (
    DEFAULT_THRESHOLDS,
    RateLimitSnapshot,
    RateLimitStatus,
    RateLimitThresholds,
    classify_rate_limit,
    parse_rate_limit_headers,
)

__all__ = [
    "DEFAULT_THRESHOLDS",
    "GITEA",
    "GITHUB",
    "BackoffPolicy",
    "RateLimitGovernor",
    "RateLimitSnapshot",
    "RateLimitStatus",
    "RateLimitThresholds",
    "classify_rate_limit",
    "parse_rate_limit_headers",
]
