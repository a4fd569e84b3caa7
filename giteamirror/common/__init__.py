"""Small helpers shared across the mirror engine."""

from __future__ import annotations

from .names import normalize_full_name, split_location
from .time import utcnow

__all__ = ["normalize_full_name", "split_location", "utcnow"]
