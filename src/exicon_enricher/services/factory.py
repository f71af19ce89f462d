"""Service factory for centralized dependency injection.

The factory is the only place that constructs network clients. Components
receive their clients through their constructors, so tests can build the
same components around fakes.

Example:
    >>> factory = ServiceFactory(EnrichmentConfig.load())
    >>> fetcher = factory.create_fetcher()
    >>> enricher = factory.create_enricher(snapshot=factory.create_snapshot_repository())
    >>> await factory.aclose()
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING, Any

import httpx
from openai import AsyncOpenAI
from pymongo import MongoClient

if TYPE_CHECKING:
    from ..config import EnrichmentConfig
    from ..enricher import BatchEnricher
    from ..fetcher import ContentFetcher
    from ..protocols import SnapshotSink
    from ..repository import SnapshotRepository
    from ..store import MongoStoreWriter
    from ..usage import UsageAccountant


@dataclass
class ServiceFactory:
    """Factory for creating pipeline components with shared clients.

    Attributes:
        config: Configuration for all components

    Note:
        Clients are created lazily on first access and cached, so a run that
        never uploads never opens a MongoDB connection.
    """

    config: EnrichmentConfig

    @cached_property
    def client(self) -> AsyncOpenAI:
        """Shared async OpenAI client (reads OPENAI_API_KEY)."""
        return AsyncOpenAI()

    @cached_property
    def http_client(self) -> httpx.AsyncClient:
        """Shared HTTP client for the content API."""
        return httpx.AsyncClient(
            timeout=self.config.request_timeout,
            headers={"Accept": "application/json"},
        )

    @cached_property
    def mongo_client(self) -> MongoClient[Any]:
        """Shared MongoDB client."""
        return MongoClient(self.config.mongodb_uri)

    def create_fetcher(self, lexicon: bool = False) -> ContentFetcher:
        """Create a cached fetcher for the Exicon, or the Lexicon when lexicon is set."""
        from ..fetcher import ContentFetcher

        return ContentFetcher(
            self.http_client,
            self.config.cache_dir,
            api_base_url=self.config.api_base_url,
            location_id=self.config.location_id,
            blog_id=self.config.lexicon_blog_id if lexicon else self.config.blog_id,
            cache_prefix="lexicon-" if lexicon else "",
            page_size=self.config.page_size,
            request_delay=self.config.request_delay,
        )

    def create_snapshot_repository(self, stem: str = "exicon") -> SnapshotRepository:
        from ..repository import SnapshotRepository

        return SnapshotRepository(self.config.data_dir, stem=stem)

    def create_accountant(self) -> UsageAccountant:
        from ..usage import UsageAccountant

        return UsageAccountant(
            prompt_rate_per_1k=self.config.prompt_cost_per_1k,
            completion_rate_per_1k=self.config.completion_cost_per_1k,
        )

    def create_enricher(self, snapshot: SnapshotSink | None = None) -> BatchEnricher:
        """Create a batch enricher wired to the shared OpenAI client.

        Example:
            >>> enricher = factory.create_enricher(snapshot=repo)
            >>> report = await enricher.enrich_all(items)
        """
        from ..enricher import BatchEnricher
        from ..retry import RetryConfig

        return BatchEnricher(
            client=self.client,
            model=self.config.model,
            batch_size=self.config.batch_size,
            batch_delay=self.config.batch_delay,
            accountant=self.create_accountant(),
            snapshot=snapshot,
            retry=RetryConfig.from_config(self.config),
            debug=self.config.debug_mode,
            debug_dir=self.config.debug_dir if self.config.debug_mode else None,
        )

    def create_store_writer(self, lexicon: bool = False) -> MongoStoreWriter:
        """Create a writer for the exercise collection, or the lexicon collection."""
        from ..store import EXICON_INDEXES, LEXICON_INDEXES, MongoStoreWriter

        name = self.config.lexicon_collection_name if lexicon else self.config.collection_name
        collection = self.mongo_client[self.config.mongodb_db][name]
        return MongoStoreWriter(
            collection,
            batch_size=self.config.store_batch_size,
            indexes=LEXICON_INDEXES if lexicon else EXICON_INDEXES,
        )

    async def aclose(self) -> None:
        """Close any clients that were created."""
        if "http_client" in self.__dict__:
            await self.http_client.aclose()
        if "client" in self.__dict__:
            await self.client.close()
        if "mongo_client" in self.__dict__:
            self.mongo_client.close()
