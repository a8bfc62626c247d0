"""
Utility functions shared by the relay, the store and the REST surface.
"""

from datetime import datetime, timezone
from typing import Iterable

USER_ROOM_PREFIX = "user_"
PREVIEW_SUFFIX = "..."


def utc_now_iso() -> str:
    """Server timestamp in ISO-8601 UTC with millisecond precision and Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def ordered_pair(user_ids: Iterable[str]) -> tuple[str, str]:
    """
    Normalize an unordered pair of user ids to a sorted tuple.

    Raises:
        ValueError: if the pair does not hold exactly two distinct ids
    """
    pair = sorted(set(user_ids))
    if len(pair) != 2:
        raise ValueError("a thread needs exactly two distinct participants")
    return pair[0], pair[1]


def user_room(user_id: str) -> str:
    """Name of a user's personal notification room."""
    return f"{USER_ROOM_PREFIX}{user_id}"


def post_room(post_id: str) -> str:
    """Name of the conversation room for a post."""
    return str(post_id)


def preview_text(text: str, limit: int = 50) -> str:
    """
    Truncate a message for notification previews.

    The first ``limit`` characters are kept and "..." is appended only
    when the original text is longer than ``limit``.
    """
    if len(text) > limit:
        return text[:limit] + PREVIEW_SUFFIX
    return text
