"""Repository name helpers.

Full names follow the ``owner/name`` notation used by both hosting platforms.
Lookups are case-insensitive, so stored rows also carry a normalised copy.
"""

from __future__ import annotations


def normalize_full_name(full_name: str) -> str:
    """Return the case-insensitive lookup key for a repository full name.

    Examples
    --------
    >>> normalize_full_name(" Octo/Reef ")
    'octo/reef'

    """
    return full_name.strip().lower()


def split_location(location: str | None) -> tuple[str, str] | None:
    """Split a destination ``owner/name`` location.

    Returns ``None`` for empty or malformed locations instead of raising, as
    recorded locations may predate a successful mirror.

    Examples
    --------
    >>> split_location("starred/reef")
    ('starred', 'reef')
    >>> split_location("") is None
    True

    """
    if not location:
        return None
    cleaned = location.strip()
    if cleaned.count("/") != 1:
        return None
    owner, name = cleaned.split("/")
    if not owner or not name:
        return None
    return owner, name
