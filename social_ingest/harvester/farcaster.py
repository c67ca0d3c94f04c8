"""
Farcaster Fetcher - Incremental cast reads through free public endpoints.

Two lookups per handle:
1. FName registry: username -> FID (cached 24h, misses cached 1h)
2. Warpcast profile-casts: newest-first casts for the FID, cursor-paged

No login is needed, so the session is always ready; throttling is handled
by pausing between page requests.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from ..common.http_client import create_source_client
from ..config.settings import settings
from .base import IncrementalFetcher, SocialPost, SourceItem, SourceUnavailableError
from .handles import extract_farcaster_username
from .twitter import raise_for_source_status

logger = logging.getLogger(__name__)


class TTLCache:
    """Simple in-memory cache with per-entry TTL."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._clock = clock

    def get(self, key: str) -> Tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return False, None
        return True, value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()


def parse_cast_timestamp(value: Any) -> Optional[datetime]:
    """Warpcast timestamps are epoch milliseconds."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class FarcasterFetcher(IncrementalFetcher):
    """Incremental fetcher for Farcaster casts."""

    platform = "farcaster"

    def __init__(
        self,
        fname_registry_url: Optional[str] = None,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        cache: Optional[TTLCache] = None,
    ):
        kwargs = {"sleep": sleep} if sleep else {}
        super().__init__(
            max_items=settings.farcaster_max_posts,
            max_scanned=settings.farcaster_max_scanned,
            **kwargs,
        )
        self.fname_registry_url = fname_registry_url or settings.farcaster_fname_registry_url
        self.api_url = (api_url or settings.farcaster_api_url).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._fid_cache = cache or TTLCache()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_source_client(transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def normalize_handle(self, handle: str) -> Optional[str]:
        return extract_farcaster_username(handle)

    async def get_fid(self, username: str) -> Optional[int]:
        """Resolve a username to its FID via the FName registry.

        Returns None when the name is unknown or released. Network and
        server errors raise so the fetch is reported as transient.
        """
        cache_key = username.lower()
        hit, cached = self._fid_cache.get(cache_key)
        if hit:
            return cached

        name = username[:-4] if username.endswith(".eth") else username
        response = await self._get_client().get(self.fname_registry_url, params={"name": name})
        raise_for_source_status(response)
        transfers = response.json().get("transfers")
        if not isinstance(transfers, list):
            raise SourceUnavailableError("Invalid response format from FName registry")

        # to == 0 means the name was released
        active = [t for t in transfers if t.get("to")]
        if not active:
            reason = "not found" if not transfers else "released"
            logger.warning(f"Farcaster username {username} {reason}")
            self._fid_cache.set(cache_key, None, settings.fid_negative_cache_ttl)
            return None

        latest = max(active, key=lambda t: t.get("timestamp") or 0)
        fid = int(latest["to"])
        self._fid_cache.set(cache_key, fid, settings.fid_cache_ttl)
        logger.debug(f"Resolved Farcaster FID for {username}: {fid}")
        return fid

    def _to_item(self, cast: Dict[str, Any], username: str) -> Optional[SourceItem]:
        cast_hash = cast.get("hash")
        if not cast_hash:
            return None
        author = (cast.get("author") or {}).get("username") or username
        return SourceItem(
            id=str(cast_hash),
            text=cast.get("text") or "",
            timestamp=parse_cast_timestamp(cast.get("timestamp")),
            url=f"https://warpcast.com/{author}/{str(cast_hash)[:10]}",
            author=author,
        )

    async def iter_items(self, handle: str) -> AsyncIterator[SourceItem]:
        fid = await self.get_fid(handle)
        if fid is None:
            return

        client = self._get_client()
        cursor: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"fid": fid, "limit": settings.farcaster_page_size}
            if cursor:
                params["cursor"] = cursor
            # Throttled API: pace every page request
            await self.pause()

            response = await client.get(f"{self.api_url}/profile-casts", params=params)
            raise_for_source_status(response)
            body = response.json()

            casts = (body.get("result") or {}).get("casts")
            if not isinstance(casts, list):
                raise SourceUnavailableError("Invalid response format from Warpcast API")

            for cast in casts:
                item = self._to_item(cast, handle)
                if item is not None:
                    yield item

            cursor = (body.get("next") or {}).get("cursor")
            if not cursor or not casts:
                return

    def to_post(self, handle: str, item: SourceItem) -> SocialPost:
        return SocialPost(
            external_id=item.id,
            text=item.text,
            timestamp=item.timestamp,
            url=item.url,
            platform=self.platform,
            author=item.author,
        )
