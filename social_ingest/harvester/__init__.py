"""
Harvester - platform fetchers for project social activity.
"""
from .base import (
    FetchOutcome,
    FetchResult,
    IncrementalFetcher,
    SocialPost,
    SourceItem,
    select_incremental,
)
from .farcaster import FarcasterFetcher
from .handles import extract_farcaster_username, extract_twitter_handle
from .twitter import TwitterFetcher

__all__ = [
    "FetchOutcome",
    "FetchResult",
    "IncrementalFetcher",
    "SocialPost",
    "SourceItem",
    "select_incremental",
    "FarcasterFetcher",
    "TwitterFetcher",
    "extract_farcaster_username",
    "extract_twitter_handle",
]
