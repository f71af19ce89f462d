"""Cached client for the blog content API that hosts the Exicon and Lexicon.

Every successful response is written to a JSON file under the cache
directory, and later calls read that file instead of touching the network.
Delete the cache directory to force a full refresh.

Example:
    >>> async with httpx.AsyncClient() as http:
    ...     fetcher = ContentFetcher(http, Path("data/cache/api"), ...)
    ...     entries = await fetcher.fetch_list()
    ...     pairs = await fetcher.fetch_details(entries)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Final

import httpx
from pydantic import ValidationError

from .exceptions import FetchError
from .models import RawDetail, RawListEntry

logger = logging.getLogger(__name__)

LIST_PATH: Final[str] = "/blogs/posts/list"
DETAIL_PATH: Final[str] = "/blogs/posts/content"
LIST_CACHE_NAME: Final[str] = "blog-posts-list.json"


def _cache_safe(slug: str) -> str:
    return re.sub(r"[^\w.-]", "_", slug)


class ContentFetcher:
    """Fetches blog posts with an on-disk cache keyed by slug.

    Attributes:
        client: Shared httpx client (owned by the caller)
        cache_dir: Directory for cached responses
        blog_id: Blog to list posts from
        cache_prefix: Prefix for cache file names, so two blogs can share a directory
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache_dir: Path,
        *,
        api_base_url: str,
        location_id: str,
        blog_id: str,
        cache_prefix: str = "",
        page_size: int = 10000,
        request_delay: float = 0.1,
    ) -> None:
        self.client = client
        self.cache_dir = Path(cache_dir)
        self.api_base_url = api_base_url.rstrip("/")
        self.location_id = location_id
        self.blog_id = blog_id
        self.cache_prefix = cache_prefix
        self.page_size = page_size
        self.request_delay = request_delay
        self.network_requests = 0

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def list_cache_path(self) -> Path:
        return self.cache_dir / f"{self.cache_prefix}{LIST_CACHE_NAME}"

    def detail_cache_path(self, slug: str) -> Path:
        return self.cache_dir / f"{self.cache_prefix}{_cache_safe(slug)}-detail.json"

    def _read_cache(self, path: Path) -> Any | None:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache file {path}: {e}")
            return None

    def _write_cache(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    async def _get_json(self, path: str, params: dict[str, Any], slug: str | None = None) -> Any:
        """GET a JSON document, raising FetchError on any failure."""
        url = f"{self.api_base_url}{path}"
        self.network_requests += 1
        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {path} failed: {e}", status=None, slug=slug) from e

        if not response.is_success:
            raise FetchError(
                f"Request to {path} returned HTTP {response.status_code}",
                status=response.status_code,
                slug=slug,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(
                f"Response from {path} is not valid JSON",
                status=response.status_code,
                slug=slug,
            ) from e

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_list(self) -> list[RawListEntry]:
        """Return every post of the blog, reading the cache when present.

        Raises:
            FetchError: If a page request fails and nothing is cached
        """
        cache_path = self.list_cache_path()
        payload = self._read_cache(cache_path)
        if payload is not None:
            logger.info(f"Using cached post list: {cache_path}")
        else:
            payload = await self._fetch_all_pages()
            self._write_cache(cache_path, payload)
            logger.info(f"Cached {len(payload['blogPosts'])} posts to {cache_path}")

        entries: list[RawListEntry] = []
        for post in payload.get("blogPosts") or []:
            try:
                entries.append(RawListEntry.model_validate(post))
            except ValidationError as e:
                logger.warning(f"Skipping malformed list entry {post.get('_id')!r}: {e}")
        logger.info(f"Loaded {len(entries)} list entries")
        return entries

    async def _fetch_all_pages(self) -> dict[str, Any]:
        posts: list[dict[str, Any]] = []
        seen_ids: set[Any] = set()
        total: int | None = None
        offset = 0
        while total is None or len(posts) < total:
            page = await self._get_json(
                LIST_PATH,
                {
                    "locationId": self.location_id,
                    "limit": self.page_size,
                    "offset": offset,
                    "blogId": self.blog_id,
                },
            )
            page_posts = page.get("blogPosts") or []
            try:
                total = int(page.get("count") or 0)
            except (TypeError, ValueError):
                total = 0
            logger.info(f"Fetched {len(page_posts)} posts at offset {offset} (total {total})")
            if not page_posts:
                break
            page_ids = {p.get("_id") for p in page_posts if isinstance(p, dict)}
            if page_ids <= seen_ids:
                logger.warning(f"Page at offset {offset} added no new posts; stopping pagination")
                break
            seen_ids |= page_ids
            posts.extend(page_posts)
            offset += len(page_posts)
        return {"blogPosts": posts, "count": len(posts)}

    async def _detail_payload(self, slug: str) -> tuple[Any, bool]:
        """Return (payload, from_cache) for slug."""
        cache_path = self.detail_cache_path(slug)
        payload = self._read_cache(cache_path)
        if payload is not None:
            return payload, True

        payload = await self._get_json(
            DETAIL_PATH,
            {"locationId": self.location_id, "urlSlug": slug},
            slug=slug,
        )
        self._write_cache(cache_path, payload)
        return payload, False

    async def fetch_detail(self, slug: str) -> RawDetail:
        """Return the detail payload for slug, reading the cache when present.

        Raises:
            FetchError: If the request fails or the payload cannot be read
        """
        payload, _ = await self._detail_payload(slug)
        return self._parse_detail(payload, slug)

    @staticmethod
    def _parse_detail(payload: Any, slug: str) -> RawDetail:
        body = payload.get("blogPost") if isinstance(payload, dict) else None
        try:
            return RawDetail.model_validate(body or {})
        except ValidationError as e:
            raise FetchError("Detail payload has unexpected shape", slug=slug) from e

    async def fetch_details(
        self,
        entries: Iterable[RawListEntry],
        keep_failed: bool = False,
    ) -> list[tuple[RawListEntry, RawDetail | None]]:
        """Fetch details for entries in order.

        A failed item is logged and skipped, or kept with a None detail when
        keep_failed is set. Uncached requests are spaced by request_delay.
        """
        entries = list(entries)
        pairs: list[tuple[RawListEntry, RawDetail | None]] = []
        failures = 0
        for i, entry in enumerate(entries, 1):
            try:
                payload, from_cache = await self._detail_payload(entry.urlSlug)
                detail: RawDetail | None = self._parse_detail(payload, entry.urlSlug)
            except FetchError as e:
                failures += 1
                logger.error(f"[{i}/{len(entries)}] Failed to fetch '{entry.urlSlug}': {e}")
                if keep_failed:
                    pairs.append((entry, None))
                continue

            pairs.append((entry, detail))
            if not from_cache and i < len(entries) and self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

        logger.info(
            f"Fetched details for {len(entries) - failures}/{len(entries)} posts "
            f"({failures} failed)"
        )
        return pairs
