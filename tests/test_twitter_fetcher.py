"""
Tests for TwitterFetcher against a mocked X API v2.
"""

import httpx
import pytest

from social_ingest.harvester.base import NOT_AUTHENTICATED, FetchOutcome
from social_ingest.harvester.twitter import TwitterFetcher, parse_twitter_datetime

from tests.test_helpers import hours_ago, no_sleep

BASE_URL = "https://api.twitter.com/2"


def iso(hours: float) -> str:
    return hours_ago(hours).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def tweet(tweet_id: str, hours: float) -> dict:
    return {"id": tweet_id, "text": f"tweet {tweet_id}", "created_at": iso(hours)}


class FakeXApi:
    """Routes requests like the X API; records every path it served."""

    def __init__(self, pages, pinned=None, session_status=200, session_failures=None, tweets_status=None):
        self.pages = pages
        self.pinned = pinned
        self.session_status = session_status
        # statuses or exceptions served by the session check before session_status
        self.session_failures = list(session_failures or [])
        self.tweets_status = list(tweets_status or [])
        self.paths = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.paths.append(path)

        if path == "/2/users/by/username/X":
            if self.session_failures:
                failure = self.session_failures.pop(0)
                if isinstance(failure, Exception):
                    raise failure
                return httpx.Response(failure, json={})
            return httpx.Response(self.session_status, json={"data": {"id": "1", "username": "X"}})

        if path.startswith("/2/users/by/username/"):
            user = {"id": "42", "username": path.rsplit("/", 1)[-1]}
            body = {"data": user}
            if self.pinned:
                user["pinned_tweet_id"] = self.pinned["id"]
                body["includes"] = {"tweets": [self.pinned]}
            return httpx.Response(200, json=body)

        if path == "/2/users/42/tweets":
            if self.tweets_status:
                return httpx.Response(self.tweets_status.pop(0), json={})
            token = request.url.params.get("pagination_token")
            index = int(token) if token else 0
            body = {"data": self.pages[index], "meta": {}}
            if index + 1 < len(self.pages):
                body["meta"]["next_token"] = str(index + 1)
            return httpx.Response(200, json=body)

        return httpx.Response(404, json={})

    def count(self, path: str) -> int:
        return self.paths.count(path)


def make_fetcher(api: FakeXApi, token: str = "token") -> TwitterFetcher:
    return TwitterFetcher(
        bearer_token=token,
        base_url=BASE_URL,
        transport=httpx.MockTransport(api),
        sleep=no_sleep,
    )


class TestTwitterSession:

    @pytest.mark.asyncio
    async def test_missing_token_reports_auth_failed(self, no_delays):
        api = FakeXApi(pages=[[]])
        fetcher = make_fetcher(api, token="")

        result = await fetcher.fetch_incremental("project")

        assert result.outcome == FetchOutcome.AUTH_FAILED
        assert result.error == NOT_AUTHENTICATED
        assert result.items == []
        assert api.paths == []

    @pytest.mark.asyncio
    async def test_rejected_token_reports_auth_failed(self, no_delays):
        api = FakeXApi(pages=[[]], session_status=401)
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("project")

        assert result.outcome == FetchOutcome.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_rate_limited_session_check_is_transient(self, no_delays):
        api = FakeXApi(pages=[[tweet("1", 1)]], session_failures=[429])
        async with make_fetcher(api) as fetcher:
            first = await fetcher.fetch_incremental("project")
            second = await fetcher.fetch_incremental("project")

        assert first.outcome == FetchOutcome.TRANSIENT_ERROR
        assert "429" in first.error
        assert second.ok
        assert [p.external_id for p in second.items] == ["1"]

    @pytest.mark.asyncio
    async def test_server_error_on_session_check_is_transient(self, no_delays):
        api = FakeXApi(pages=[[]], session_status=503)
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("project")

        assert result.outcome == FetchOutcome.TRANSIENT_ERROR
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_network_error_on_session_check_is_transient(self, no_delays):
        api = FakeXApi(pages=[[]], session_failures=[httpx.ConnectError("connection refused")])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("project")

        assert result.outcome == FetchOutcome.TRANSIENT_ERROR
        assert "ConnectError" in result.error
        assert result.items == []

    @pytest.mark.asyncio
    async def test_session_is_checked_once(self, no_delays):
        api = FakeXApi(pages=[[tweet("1", 1)]])
        async with make_fetcher(api) as fetcher:
            await fetcher.fetch_incremental("project")
            await fetcher.fetch_incremental("project")

        assert api.count("/2/users/by/username/X") == 1

    @pytest.mark.asyncio
    async def test_401_mid_fetch_invalidates_session(self, no_delays):
        api = FakeXApi(pages=[[tweet("1", 1)]], tweets_status=[401])
        async with make_fetcher(api) as fetcher:
            first = await fetcher.fetch_incremental("project")
            second = await fetcher.fetch_incremental("project")

        assert first.outcome == FetchOutcome.AUTH_FAILED
        assert second.ok
        assert api.count("/2/users/by/username/X") == 2


class TestTwitterTimeline:

    @pytest.mark.asyncio
    async def test_pages_until_cutoff_and_skips_old_pinned(self, no_delays):
        api = FakeXApi(
            pinned=tweet("pinned", 24 * 200),
            pages=[[tweet("a", 1), tweet("b", 2)], [tweet("c", 3), tweet("old", 24 * 100)], [tweet("never", 24 * 101)]],
        )
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("@project")

        assert result.ok
        assert [p.external_id for p in result.items] == ["a", "b", "c"]
        assert result.stop_reason == "cutoff"
        assert api.count("/2/users/42/tweets") == 2
        post = result.items[0]
        assert post.platform == "twitter"
        assert post.url == "https://x.com/project/status/a"
        assert post.author == "project"

    @pytest.mark.asyncio
    async def test_cursor_stops_before_next_page(self, no_delays):
        api = FakeXApi(pages=[[tweet("a", 1), tweet("b", 5)], [tweet("c", 6)]])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("project", since=hours_ago(3))

        assert [p.external_id for p in result.items] == ["a"]
        assert api.count("/2/users/42/tweets") == 1

    @pytest.mark.asyncio
    async def test_new_pinned_tweet_is_kept_once(self, no_delays):
        pinned = tweet("p", 2)
        api = FakeXApi(pinned=pinned, pages=[[tweet("a", 1), pinned]])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("project")

        assert [p.external_id for p in result.items] == ["p", "a"]

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self, no_delays):
        api = FakeXApi(pages=[[]], tweets_status=[429])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("project")

        assert result.outcome == FetchOutcome.TRANSIENT_ERROR
        assert "429" in result.error

    @pytest.mark.asyncio
    async def test_invalid_handle(self, no_delays):
        api = FakeXApi(pages=[[]])
        async with make_fetcher(api) as fetcher:
            result = await fetcher.fetch_incremental("not a handle!")

        assert result.outcome == FetchOutcome.OK
        assert result.items == []
        assert "Invalid handle" in result.error
        assert api.paths == []


class TestTwitterBatch:

    @pytest.mark.asyncio
    async def test_batch_without_session(self, no_delays):
        fetcher = make_fetcher(FakeXApi(pages=[[]]), token="")

        report = await fetcher.fetch_batch([("one", None), ("two", None)])
        summary = report.summary()

        assert summary["total"] == 2
        assert summary["failed"] == 2
        assert summary["failed_handles"] == ["one", "two"]
        assert all(r.error == NOT_AUTHENTICATED for r in report.results)

    @pytest.mark.asyncio
    async def test_batch_retries_transient_errors(self, no_delays):
        api = FakeXApi(pages=[[tweet("a", 1)]], tweets_status=[503])
        async with make_fetcher(api) as fetcher:
            report = await fetcher.fetch_batch([("one", None), ("two", None)])

        first, second = report.results
        assert first.success and first.attempts == 2
        assert second.success and second.attempts == 1
        assert report.summary()["success_rate"] == 100.0
        assert report.summary()["total_posts"] == 2

    @pytest.mark.asyncio
    async def test_batch_retries_rate_limited_session_check(self, no_delays):
        # batch-level check and the first handle's first attempt both see 429
        api = FakeXApi(pages=[[tweet("a", 1)]], session_failures=[429, 429])
        async with make_fetcher(api) as fetcher:
            report = await fetcher.fetch_batch([("one", None), ("two", None)])

        first, second = report.results
        assert first.success and first.attempts == 2
        assert second.success and second.attempts == 1
        assert all(r.outcome == FetchOutcome.OK for r in report.results)


def test_parse_twitter_datetime():
    parsed = parse_twitter_datetime("2026-01-02T03:04:05.000Z")
    assert parsed.year == 2026 and parsed.hour == 3
    assert parsed.utcoffset().total_seconds() == 0
    assert parse_twitter_datetime("garbage") is None
    assert parse_twitter_datetime(None) is None
