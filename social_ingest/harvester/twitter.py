"""
Twitter/X Fetcher - Incremental timeline reads for project accounts.

Uses X API v2 with Bearer Token authentication:
1. /users/by/username/{handle} with the pinned_tweet_id expansion
   (the pinned tweet is yielded first and flagged as pinned)
2. /users/{id}/tweets, paged newest-first via meta.next_token

SETUP:
- Set TWITTER_BEARER_TOKEN. Without it the session is never ready and every
  fetch reports auth_failed instead of raising.

The session is checked lazily on first use with a single username lookup
and cached until the API answers 401/403.
"""

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx

from ..common.http_client import create_source_client
from ..config.settings import settings
from .base import IncrementalFetcher, SocialPost, SourceAuthError, SourceItem, SourceUnavailableError
from .handles import extract_twitter_handle

logger = logging.getLogger(__name__)

TWEET_FIELDS = "created_at,author_id"


def parse_twitter_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def raise_for_source_status(response: httpx.Response) -> None:
    """Map HTTP status codes onto the fetcher error taxonomy."""
    if response.status_code in (401, 403):
        raise SourceAuthError(f"HTTP {response.status_code} from {response.request.url.host}")
    if response.status_code == 429 or response.status_code >= 500:
        raise SourceUnavailableError(f"HTTP {response.status_code} from {response.request.url.host}")
    response.raise_for_status()


class TwitterFetcher(IncrementalFetcher):
    """Incremental fetcher for X/Twitter timelines."""

    platform = "twitter"

    def __init__(
        self,
        bearer_token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        kwargs = {"sleep": sleep} if sleep else {}
        super().__init__(
            max_items=settings.twitter_max_posts,
            max_scanned=settings.twitter_max_scanned,
            **kwargs,
        )
        self.bearer_token = settings.twitter_bearer_token if bearer_token is None else bearer_token
        self.base_url = (base_url or settings.twitter_api_base_url).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._authenticated = False

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_source_client(
                extra_headers={"Authorization": f"Bearer {self.bearer_token}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._authenticated = False

    async def ensure_session(self) -> bool:
        """Validate the bearer token once; failures are retried on the next call.

        False means no token or a rejected one (401/403). Rate limits, server
        errors and network failures raise so the fetch counts as transient.
        """
        if self._authenticated:
            return True
        if not self.bearer_token:
            logger.warning("TWITTER_BEARER_TOKEN not configured")
            return False

        try:
            response = await self._get_client().get(
                f"{self.base_url}/users/by/username/{settings.twitter_session_check_username}"
            )
        except httpx.HTTPError as e:
            logger.warning(f"Twitter session check failed: {type(e).__name__}: {e}")
            raise

        if response.status_code in (401, 403):
            logger.error(f"Twitter authentication rejected (HTTP {response.status_code})")
            return False
        raise_for_source_status(response)

        self._authenticated = True
        logger.info("Twitter session established")
        return True

    def invalidate_session(self) -> None:
        self._authenticated = False

    def normalize_handle(self, handle: str) -> Optional[str]:
        return extract_twitter_handle(handle)

    def _to_item(self, tweet: Dict[str, Any], handle: str, pinned: bool = False) -> SourceItem:
        return SourceItem(
            id=str(tweet["id"]),
            text=tweet.get("text", ""),
            timestamp=parse_twitter_datetime(tweet.get("created_at")),
            url=f"https://x.com/{handle}/status/{tweet['id']}",
            is_pinned=pinned,
            author=handle,
        )

    async def iter_items(self, handle: str) -> AsyncIterator[SourceItem]:
        client = self._get_client()

        response = await client.get(
            f"{self.base_url}/users/by/username/{handle}",
            params={
                "user.fields": "pinned_tweet_id",
                "expansions": "pinned_tweet_id",
                "tweet.fields": TWEET_FIELDS,
            },
        )
        if response.status_code == 404:
            logger.warning(f"Twitter user not found: {handle}")
            return
        raise_for_source_status(response)

        body = response.json()
        user = body.get("data")
        if not user:
            logger.warning(f"Twitter user not found: {handle}")
            return

        pinned_id = user.get("pinned_tweet_id")
        if pinned_id:
            for tweet in body.get("includes", {}).get("tweets", []):
                if str(tweet.get("id")) == str(pinned_id):
                    yield self._to_item(tweet, handle, pinned=True)

        next_token: Optional[str] = None
        while True:
            params = {
                "max_results": max(5, min(settings.twitter_page_size, 100)),
                "tweet.fields": TWEET_FIELDS,
                "exclude": "retweets",
            }
            if next_token:
                params["pagination_token"] = next_token
                await self.pause()

            response = await client.get(f"{self.base_url}/users/{user['id']}/tweets", params=params)
            raise_for_source_status(response)
            page = response.json()

            for tweet in page.get("data") or []:
                if pinned_id and str(tweet.get("id")) == str(pinned_id):
                    continue
                yield self._to_item(tweet, handle)

            next_token = page.get("meta", {}).get("next_token")
            if not next_token:
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
