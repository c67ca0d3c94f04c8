"""
Tests for FarcasterFetcher: FID resolution, caching and cast paging.
"""

from datetime import timezone

import httpx
import pytest

from social_ingest.harvester.base import FetchOutcome
from social_ingest.harvester.farcaster import FarcasterFetcher, TTLCache, parse_cast_timestamp

from tests.test_helpers import hours_ago, no_sleep

REGISTRY_URL = "https://fnames.farcaster.xyz/transfers"
API_URL = "https://client.warpcast.com/v2"


def millis(hours: float) -> int:
    return int(hours_ago(hours).replace(tzinfo=timezone.utc).timestamp() * 1000)


def cast(cast_hash: str, hours: float, author: str = "alice") -> dict:
    return {"hash": cast_hash, "text": f"cast {cast_hash}", "timestamp": millis(hours), "author": {"username": author}}


class FakeFarcaster:

    def __init__(self, transfers=None, pages=None, casts_body=None):
        self.transfers = transfers if transfers is not None else [{"to": 7, "timestamp": 1}]
        self.pages = pages or [[]]
        self.casts_body = casts_body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "fnames.farcaster.xyz":
            return httpx.Response(200, json={"transfers": self.transfers})

        if self.casts_body is not None:
            return httpx.Response(200, json=self.casts_body)
        cursor = request.url.params.get("cursor")
        index = int(cursor) if cursor else 0
        body = {"result": {"casts": self.pages[index]}}
        if index + 1 < len(self.pages):
            body["next"] = {"cursor": str(index + 1)}
        return httpx.Response(200, json=body)

    def registry_calls(self):
        return [r for r in self.requests if r.url.host == "fnames.farcaster.xyz"]

    def cast_calls(self):
        return [r for r in self.requests if r.url.path.endswith("/profile-casts")]


def make_fetcher(api: FakeFarcaster, cache: TTLCache = None) -> FarcasterFetcher:
    return FarcasterFetcher(
        fname_registry_url=REGISTRY_URL,
        api_url=API_URL,
        transport=httpx.MockTransport(api),
        sleep=no_sleep,
        cache=cache,
    )


class TestFidResolution:

    @pytest.mark.asyncio
    async def test_latest_active_transfer_wins(self):
        api = FakeFarcaster(transfers=[
            {"to": 10, "timestamp": 100},
            {"to": 20, "timestamp": 500},
            {"to": 0, "timestamp": 50},
        ])
        async with make_fetcher(api) as fetcher:
            assert await fetcher.get_fid("alice") == 20

    @pytest.mark.asyncio
    async def test_eth_suffix_is_stripped_for_lookup(self):
        api = FakeFarcaster()
        async with make_fetcher(api) as fetcher:
            await fetcher.get_fid("alice.eth")

        assert api.registry_calls()[0].url.params["name"] == "alice"

    @pytest.mark.asyncio
    async def test_hits_and_misses_are_cached(self):
        api = FakeFarcaster(transfers=[])
        async with make_fetcher(api) as fetcher:
            assert await fetcher.get_fid("ghost") is None
            assert await fetcher.get_fid("ghost") is None

        assert len(api.registry_calls()) == 1

    @pytest.mark.asyncio
    async def test_cache_entry_expires(self):
        now = [0.0]
        cache = TTLCache(clock=lambda: now[0])
        api = FakeFarcaster()
        async with make_fetcher(api, cache=cache) as fetcher:
            await fetcher.get_fid("alice")
            now[0] = 86400 + 1
            await fetcher.get_fid("alice")

        assert len(api.registry_calls()) == 2

    @pytest.mark.asyncio
    async def test_released_name_yields_no_items(self):
        api = FakeFarcaster(transfers=[{"to": 0, "timestamp": 5}])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("alice")

        assert result.ok
        assert result.items == []
        assert api.cast_calls() == []


class TestCasts:

    @pytest.mark.asyncio
    async def test_casts_are_paged_until_cutoff(self, no_delays):
        api = FakeFarcaster(pages=[
            [cast("0xaaaaaaaaaaaa", 1), cast("0xbbbbbbbbbbbb", 2, author="bob")],
            [cast("0xcccccccccccc", 4), cast("0xdddddddddddd", 24 * 95)],
        ])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("warpcast.com/alice")

        assert [p.external_id for p in result.items] == ["0xaaaaaaaaaaaa", "0xbbbbbbbbbbbb", "0xcccccccccccc"]
        first = result.items[0]
        assert first.platform == "farcaster"
        assert first.url == "https://warpcast.com/alice/0xaaaaaaaa"
        assert result.items[1].author == "bob"
        assert api.cast_calls()[0].url.params["fid"] == "7"

    @pytest.mark.asyncio
    async def test_casts_without_hash_are_ignored(self, no_delays):
        api = FakeFarcaster(pages=[[{"text": "no hash", "timestamp": millis(1)}, cast("0x1", 1)]])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("alice")

        assert [p.external_id for p in result.items] == ["0x1"]

    @pytest.mark.asyncio
    async def test_malformed_response_is_transient(self, no_delays):
        api = FakeFarcaster(casts_body={"result": {}})
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("alice")

        assert result.outcome == FetchOutcome.TRANSIENT_ERROR


def test_parse_cast_timestamp():
    parsed = parse_cast_timestamp(1700000000000)
    assert parsed.year == 2023
    assert parsed.tzinfo is not None
    assert parse_cast_timestamp(None) is None
    assert parse_cast_timestamp("nope") is None
