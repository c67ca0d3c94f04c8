"""
Base Fetcher - Incremental, cursor-based fetching of social posts.

Every platform fetcher implements:
- ensure_session(): Lazily log in (or report readiness) and cache the session
- iter_items(): Reverse-chronological stream of raw items for a handle
- to_post(): Convert a raw item into a normalized SocialPost

fetch_incremental() drives the stream through select_incremental(), which
stops reading as soon as an item older than the cursor shows up, so each
run only pays for what is new since the last one.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from ..archivist.models import as_naive_utc, utc_now_naive
from ..common.rate_limit import backoff_delay, delay_window, jittered_delay
from ..config.settings import settings

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Not authenticated"


class SourceAuthError(Exception):
    """The source rejected our session/credentials."""


class SourceUnavailableError(Exception):
    """Rate limited or server-side failure; worth retrying later."""


# Errors that mean "try again later" wherever they surface during a fetch
TRANSIENT_ERRORS = (SourceUnavailableError, httpx.HTTPError, asyncio.TimeoutError)


class FetchOutcome(str, Enum):
    OK = "ok"
    AUTH_FAILED = "auth_failed"
    TRANSIENT_ERROR = "transient_error"


@dataclass
class SourceItem:
    """Raw item as listed by a source."""
    id: str
    text: str
    timestamp: Optional[datetime]
    url: Optional[str] = None
    is_pinned: bool = False
    author: Optional[str] = None


@dataclass
class SocialPost:
    """Normalized post ready for storage."""
    external_id: str
    text: str
    timestamp: datetime
    url: Optional[str]
    platform: str
    author: Optional[str] = None


@dataclass
class FetchResult:
    items: List[SocialPost] = field(default_factory=list)
    outcome: FetchOutcome = FetchOutcome.OK
    error: Optional[str] = None
    scanned: int = 0
    stop_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == FetchOutcome.OK


@dataclass
class Selection:
    items: List[SourceItem]
    scanned: int
    stop_reason: str


async def select_incremental(
    stream: AsyncIterator[SourceItem],
    since: Optional[datetime],
    lookback_days: int,
    max_items: int,
    max_scanned: int,
    now: Optional[datetime] = None,
) -> Selection:
    """Walk a newest-first stream and keep only items newer than the cutoff.

    The cutoff is the later of the cursor and the lookback window start. An
    item on the cursor itself is not new. Pinned items can appear out of
    order, so an old pinned item is skipped instead of ending the scan. The
    first old regular item ends the scan: nothing after it can qualify.
    """
    now = as_naive_utc(now) if now else utc_now_naive()
    window_start = now - timedelta(days=lookback_days)
    since = as_naive_utc(since) if since else None

    if since is not None and since >= window_start:
        def is_new(ts: datetime) -> bool:
            return ts > since
    else:
        def is_new(ts: datetime) -> bool:
            return ts >= window_start

    accepted: List[SourceItem] = []
    seen_ids = set()
    scanned = 0
    stop_reason = "exhausted"

    try:
        async for item in stream:
            scanned += 1

            if item.timestamp is None or item.id in seen_ids:
                pass
            elif is_new(as_naive_utc(item.timestamp)):
                accepted.append(item)
                seen_ids.add(item.id)
            elif not item.is_pinned:
                stop_reason = "cutoff"
                break

            if len(accepted) >= max_items:
                stop_reason = "max_items"
                break
            if scanned >= max_scanned:
                stop_reason = "max_scanned"
                break
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    return Selection(items=accepted, scanned=scanned, stop_reason=stop_reason)


@dataclass
class HandleResult:
    handle: str
    success: bool
    posts: List[SocialPost] = field(default_factory=list)
    outcome: FetchOutcome = FetchOutcome.OK
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class BatchFetchReport:
    results: List[HandleResult] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        total = len(self.results)
        successful = sum(1 for r in self.results if r.success)
        return {
            "total": total,
            "successful": successful,
            "failed": total - successful,
            "success_rate": round(successful / total * 100, 1) if total else 0.0,
            "failed_handles": [r.handle for r in self.results if not r.success],
            "total_posts": sum(len(r.posts) for r in self.results),
        }


class IncrementalFetcher(ABC):
    """
    Abstract base class for platform fetchers.

    Fetchers never raise for network or auth problems: the outcome is
    reported on the FetchResult and the items list is empty.
    """

    platform: str = ""

    def __init__(
        self,
        lookback_days: Optional[int] = None,
        max_items: int = 10,
        max_scanned: int = 30,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.lookback_days = lookback_days or settings.lookback_days
        self.max_items = max_items
        self.max_scanned = max_scanned
        self._sleep = sleep

    async def ensure_session(self) -> bool:
        """Make sure a usable session exists. Sources without login are always ready.

        Returns False only when the source rejects our credentials. Rate
        limits and network failures during the check raise instead.
        """
        return True

    def invalidate_session(self) -> None:
        """Forget a cached session after the source rejected it."""

    async def close(self) -> None:
        """Release HTTP resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def normalize_handle(self, handle: str) -> Optional[str]:
        return handle.strip() or None

    @abstractmethod
    def iter_items(self, handle: str) -> AsyncIterator[SourceItem]:
        """Newest-first stream of raw items for a handle."""

    @abstractmethod
    def to_post(self, handle: str, item: SourceItem) -> SocialPost:
        """Convert a raw item to a SocialPost."""

    async def pause(self) -> None:
        """Rate-limit pause between requests to this source."""
        await self._sleep(jittered_delay(*delay_window(self.platform)))

    async def fetch_incremental(self, handle: str, since: Optional[datetime] = None) -> FetchResult:
        """Return posts newer than `since` (or within the lookback window)."""
        normalized = self.normalize_handle(handle or "")
        if not normalized:
            logger.warning(f"Invalid {self.platform} handle: {handle!r}")
            return FetchResult(error=f"Invalid handle: {handle!r}")

        try:
            authenticated = await self.ensure_session()
        except TRANSIENT_ERRORS as e:
            logger.warning(f"{self.platform} session check failed for {normalized}: {type(e).__name__}: {e}")
            return FetchResult(outcome=FetchOutcome.TRANSIENT_ERROR, error=f"{type(e).__name__}: {e}")
        if not authenticated:
            logger.warning(f"FETCH_AUTH_FAILED: {self.platform} session unavailable, skipping {normalized}")
            return FetchResult(outcome=FetchOutcome.AUTH_FAILED, error=NOT_AUTHENTICATED)

        try:
            selection = await select_incremental(
                self.iter_items(normalized),
                since=since,
                lookback_days=self.lookback_days,
                max_items=self.max_items,
                max_scanned=self.max_scanned,
            )
        except SourceAuthError as e:
            self.invalidate_session()
            logger.warning(f"FETCH_AUTH_FAILED: {self.platform} rejected session for {normalized}: {e}")
            return FetchResult(outcome=FetchOutcome.AUTH_FAILED, error=str(e) or NOT_AUTHENTICATED)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"{self.platform} fetch failed for {normalized}: {type(e).__name__}: {e}")
            return FetchResult(outcome=FetchOutcome.TRANSIENT_ERROR, error=f"{type(e).__name__}: {e}")

        posts = [self.to_post(normalized, item) for item in selection.items]
        logger.info(
            f"{self.platform}: {len(posts)} new posts for {normalized} "
            f"(scanned={selection.scanned}, stop={selection.stop_reason}, "
            f"since={since.isoformat() if since else None})"
        )
        return FetchResult(items=posts, scanned=selection.scanned, stop_reason=selection.stop_reason)

    async def _fetch_with_retry(self, handle: str, since: Optional[datetime]) -> HandleResult:
        result = FetchResult()
        attempt = 0
        for attempt in range(1, settings.source_max_retries + 1):
            result = await self.fetch_incremental(handle, since)
            if result.outcome != FetchOutcome.TRANSIENT_ERROR:
                break
            if attempt < settings.source_max_retries:
                delay = backoff_delay(attempt, settings.source_retry_base_delay, settings.source_retry_jitter)
                logger.info(f"{self.platform}: retrying {handle} in {delay:.1f}s (attempt {attempt})")
                await self._sleep(delay)

        return HandleResult(
            handle=handle,
            success=result.ok,
            posts=result.items,
            outcome=result.outcome,
            error=result.error,
            attempts=attempt,
        )

    async def fetch_batch(self, requests: Sequence[Tuple[str, Optional[datetime]]]) -> BatchFetchReport:
        """Fetch several handles with one login, pacing and retrying per handle."""
        report = BatchFetchReport()

        try:
            authenticated = await self.ensure_session()
        except TRANSIENT_ERRORS as e:
            # Each handle checks the session again inside its own retry loop
            logger.warning(f"{self.platform} batch session check failed: {type(e).__name__}: {e}")
        else:
            if not authenticated:
                logger.warning(f"FETCH_AUTH_FAILED: {self.platform} batch of {len(requests)} skipped")
                report.results = [
                    HandleResult(handle=handle, success=False, outcome=FetchOutcome.AUTH_FAILED, error=NOT_AUTHENTICATED)
                    for handle, _ in requests
                ]
                return report

        for index, (handle, since) in enumerate(requests):
            if index > 0:
                await self.pause()
            report.results.append(await self._fetch_with_retry(handle, since))

        summary = report.summary()
        logger.info(
            f"{self.platform} batch: {summary['successful']}/{summary['total']} handles ok, "
            f"{summary['total_posts']} posts"
        )
        return report
