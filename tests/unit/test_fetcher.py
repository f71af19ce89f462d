"""Unit tests for exicon_enricher.fetcher module.

The network is replaced with httpx.MockTransport; the cache lives in tmp_path.
"""

import json
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from exicon_enricher.exceptions import FetchError
from exicon_enricher.fetcher import ContentFetcher
from exicon_enricher.models import RawListEntry

API = "https://api.test"


def post(external_id: str, slug: str, title: str | None = None) -> dict:
    return {"_id": external_id, "urlSlug": slug, "title": title or slug.title(), "description": ""}


def detail(slug: str) -> dict:
    return {"blogPost": {"rawHTML": f"<p>{slug} body</p>", "categories": [{"label": "Core"}]}}


def make_fetcher(
    tmp_path: Path, handler: Callable[[httpx.Request], httpx.Response], **kwargs
) -> tuple[httpx.AsyncClient, ContentFetcher]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = ContentFetcher(
        client,
        tmp_path / "cache",
        api_base_url=API,
        location_id="loc",
        blog_id="blog",
        request_delay=0.0,
        **kwargs,
    )
    return client, fetcher


class TestFetchList:
    """Tests for fetch_list."""

    async def test_pages_until_count_reached(self, tmp_path: Path) -> None:
        """Pages are requested by offset until `count` posts are collected."""
        pages = {
            "0": [post("1", "burpee"), post("2", "merkin")],
            "2": [post("3", "al-gore")],
        }
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            params = dict(request.url.params)
            seen.append(params)
            return httpx.Response(200, json={"blogPosts": pages[params["offset"]], "count": 3})

        client, fetcher = make_fetcher(tmp_path, handler, page_size=2)
        async with client:
            entries = await fetcher.fetch_list()

        assert [e.external_id for e in entries] == ["1", "2", "3"]
        assert [p["offset"] for p in seen] == ["0", "2"]
        assert seen[0]["blogId"] == "blog"
        assert seen[0]["locationId"] == "loc"
        assert seen[0]["limit"] == "2"

    async def test_stops_on_empty_page(self, tmp_path: Path) -> None:
        """An empty page ends pagination even if count says otherwise."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            posts = [post("1", "burpee")] if calls == 1 else []
            return httpx.Response(200, json={"blogPosts": posts, "count": 50})

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            entries = await fetcher.fetch_list()

        assert len(entries) == 1
        assert calls == 2

    async def test_stops_when_offset_ignored(self, tmp_path: Path) -> None:
        """A server that repeats the same page ends pagination instead of looping."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            posts = [post("1", "burpee"), post("2", "merkin")]
            return httpx.Response(200, json={"blogPosts": posts, "count": 10})

        client, fetcher = make_fetcher(tmp_path, handler, page_size=2)
        async with client:
            entries = await fetcher.fetch_list()

        assert [e.external_id for e in entries] == ["1", "2"]
        assert calls == 2

    async def test_cached_list_skips_network(self, tmp_path: Path) -> None:
        """A second fetch reads the cache file."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"blogPosts": [post("1", "burpee")], "count": 1})

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            await fetcher.fetch_list()
            again = await fetcher.fetch_list()

        assert fetcher.network_requests == 1
        assert [e.urlSlug for e in again] == ["burpee"]
        assert fetcher.list_cache_path().name == "blog-posts-list.json"

    async def test_malformed_entries_skipped(self, tmp_path: Path) -> None:
        """Posts missing required fields are dropped."""
        cache = tmp_path / "cache"
        cache.mkdir()
        (cache / "blog-posts-list.json").write_text(
            json.dumps({"blogPosts": [post("1", "burpee"), {"_id": "2", "title": "No slug"}]})
        )

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("network should not be used")

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            entries = await fetcher.fetch_list()

        assert [e.external_id for e in entries] == ["1"]

    async def test_list_failure_raises(self, tmp_path: Path) -> None:
        """An HTTP error on the list endpoint raises FetchError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch_list()

        assert exc_info.value.status == 503
        assert not fetcher.list_cache_path().exists()


class TestFetchDetail:
    """Tests for fetch_detail."""

    async def test_cache_hit_makes_one_request(self, tmp_path: Path) -> None:
        """Two fetches of the same slug hit the network once."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=detail("burpee"))

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            first = await fetcher.fetch_detail("burpee")
            second = await fetcher.fetch_detail("burpee")

        assert len(requests) == 1
        assert requests[0].url.params["urlSlug"] == "burpee"
        assert first == second
        assert first.rawHTML == "<p>burpee body</p>"
        assert fetcher.detail_cache_path("burpee").exists()

    async def test_http_error_carries_status_and_slug(self, tmp_path: Path) -> None:
        """A 404 raises FetchError with the status and slug."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "not found"})

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch_detail("merkin")

        assert exc_info.value.status == 404
        assert exc_info.value.slug == "merkin"
        assert not fetcher.detail_cache_path("merkin").exists()

    async def test_transport_error(self, tmp_path: Path) -> None:
        """A connection failure raises FetchError without a status."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch_detail("merkin")

        assert exc_info.value.status is None
        assert exc_info.value.slug == "merkin"

    async def test_invalid_json(self, tmp_path: Path) -> None:
        """A non-JSON body raises FetchError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        client, fetcher = make_fetcher(tmp_path, handler)
        async with client:
            with pytest.raises(FetchError, match="not valid JSON"):
                await fetcher.fetch_detail("merkin")

    async def test_corrupt_cache_refetched(self, tmp_path: Path) -> None:
        """An unreadable cache file is ignored and replaced."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=detail("burpee"))

        client, fetcher = make_fetcher(tmp_path, handler)
        path = fetcher.detail_cache_path("burpee")
        path.parent.mkdir(parents=True)
        path.write_text("{truncated")

        async with client:
            result = await fetcher.fetch_detail("burpee")

        assert fetcher.network_requests == 1
        assert result.rawHTML == "<p>burpee body</p>"
        assert json.loads(path.read_text()) == detail("burpee")

    def test_cache_prefix(self, tmp_path: Path) -> None:
        """Lexicon and Exicon caches can share a directory."""
        client, fetcher = make_fetcher(
            tmp_path, lambda r: httpx.Response(200), cache_prefix="lexicon-"
        )
        assert fetcher.list_cache_path().name == "lexicon-blog-posts-list.json"
        assert fetcher.detail_cache_path("ao").name == "lexicon-ao-detail.json"


class TestFetchDetails:
    """Tests for fetch_details."""

    @pytest.fixture
    def entries(self) -> list[RawListEntry]:
        return [
            RawListEntry.model_validate(post(str(i), slug))
            for i, slug in enumerate(["burpee", "missing", "merkin"], 1)
        ]

    @staticmethod
    def handler(request: httpx.Request) -> httpx.Response:
        slug = request.url.params["urlSlug"]
        if slug == "missing":
            return httpx.Response(404)
        return httpx.Response(200, json=detail(slug))

    async def test_failed_items_skipped(self, tmp_path: Path, entries) -> None:
        """A failing slug is logged and omitted; the rest continue."""
        client, fetcher = make_fetcher(tmp_path, self.handler)
        async with client:
            pairs = await fetcher.fetch_details(entries)

        assert [entry.urlSlug for entry, _ in pairs] == ["burpee", "merkin"]
        assert all(d is not None for _, d in pairs)

    async def test_keep_failed(self, tmp_path: Path, entries) -> None:
        """keep_failed keeps the entry with a None detail."""
        client, fetcher = make_fetcher(tmp_path, self.handler)
        async with client:
            pairs = await fetcher.fetch_details(entries, keep_failed=True)

        assert [entry.urlSlug for entry, _ in pairs] == ["burpee", "missing", "merkin"]
        assert pairs[1][1] is None

    async def test_delay_only_between_network_fetches(
        self, tmp_path: Path, entries, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Cached items and the last item are not followed by a pause."""
        sleeps: list[float] = []

        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)

        monkeypatch.setattr("exicon_enricher.fetcher.asyncio.sleep", fake_sleep)
        client, fetcher = make_fetcher(tmp_path, self.handler)
        fetcher.request_delay = 0.5
        ok = [entries[0], entries[2]]
        async with client:
            await fetcher.fetch_details(ok)
            await fetcher.fetch_details(ok)

        assert sleeps == [0.5]
