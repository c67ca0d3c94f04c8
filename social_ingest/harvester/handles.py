"""
Handle extraction for catalog-provided social links.

Catalog entries carry full profile URLs (x.com/..., warpcast.com/...) or
bare handles with or without a leading @. These helpers reduce both to the
username the fetchers expect, or None when nothing usable is present.
"""

import re
from typing import Optional

TWITTER_URL_RE = re.compile(r"(?:twitter\.com|x\.com)/([^/?#]+)", re.IGNORECASE)
TWITTER_HANDLE_RE = re.compile(r"^@?[A-Za-z0-9_]+$")

FARCASTER_URL_RE = re.compile(r"(?:warpcast\.com|farcaster\.xyz)/([^/?#]+)", re.IGNORECASE)
FARCASTER_USERNAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
FARCASTER_MAX_LENGTH = 50


def is_twitter_url(value: str) -> bool:
    lowered = value.strip().lower()
    return "twitter.com/" in lowered or "x.com/" in lowered


def is_valid_twitter_handle(value: Optional[str]) -> bool:
    if not value or not value.strip():
        return False
    value = value.strip()
    return is_twitter_url(value) or bool(TWITTER_HANDLE_RE.match(value))


def extract_twitter_handle(value: Optional[str]) -> Optional[str]:
    """x.com/foo?s=20, https://twitter.com/foo/, @foo, foo -> foo."""
    if not value:
        return None
    value = value.strip()

    if is_twitter_url(value):
        match = TWITTER_URL_RE.search(value)
        if not match:
            return None
        value = match.group(1)

    value = value.split("?")[0].lstrip("@").strip()
    return value if value and TWITTER_HANDLE_RE.match(value) else None


def is_farcaster_url(value: str) -> bool:
    lowered = value.strip().lower()
    return "warpcast.com/" in lowered or "farcaster.xyz/" in lowered


def is_valid_farcaster_username(value: Optional[str]) -> bool:
    if not value:
        return False
    value = value.strip().lstrip("@")
    return bool(FARCASTER_USERNAME_RE.match(value)) and len(value) <= FARCASTER_MAX_LENGTH


def extract_farcaster_username(value: Optional[str]) -> Optional[str]:
    """warpcast.com/alice, farcaster.xyz/alice.eth, @alice, alice -> username."""
    if not value:
        return None
    value = value.strip()

    if is_farcaster_url(value):
        match = FARCASTER_URL_RE.search(value)
        if not match:
            return None
        value = match.group(1)

    value = value.lstrip("@").strip()
    return value if is_valid_farcaster_username(value) else None
