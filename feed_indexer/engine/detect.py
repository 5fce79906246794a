"""Identify the feed source and item ids from navigation paths and links."""

from __future__ import annotations

import re
from urllib.parse import urlparse

RESERVED_PATHS = frozenset(
    {
        "home",
        "explore",
        "search",
        "notifications",
        "messages",
        "settings",
        "i",
        "compose",
        "login",
        "signup",
        "tos",
        "privacy",
    }
)

_HANDLE_PATTERN = re.compile(r"^/([a-zA-Z0-9_]{1,15})/?$")
_STATUS_PATTERN = re.compile(r"/status/(\d+)")


def handle_from_path(path_or_url: str) -> str | None:
    """Return the lower-cased source handle for a profile path, else ``None``.

    Accepts either a bare path (``/someone``) or a full URL.
    """

    path = urlparse(path_or_url).path if "://" in path_or_url else path_or_url
    match = _HANDLE_PATTERN.match(path)
    if not match:
        return None
    handle = match.group(1).lower()
    if handle in RESERVED_PATHS:
        return None
    return handle


def is_source_page(path_or_url: str) -> bool:
    return handle_from_path(path_or_url) is not None


def item_id_from_url(url: str) -> str | None:
    match = _STATUS_PATTERN.search(url)
    return match.group(1) if match else None


__all__ = ["RESERVED_PATHS", "handle_from_path", "is_source_page", "item_id_from_url"]
