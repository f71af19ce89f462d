"""Unit tests for exicon_enricher.services package.

Tests ServiceFactory client caching and component creation.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx

from exicon_enricher.config import EnrichmentConfig
from exicon_enricher.enricher import BatchEnricher
from exicon_enricher.fetcher import ContentFetcher
from exicon_enricher.repository import SnapshotRepository
from exicon_enricher.services import ServiceFactory
from exicon_enricher.store import EXICON_INDEXES, LEXICON_INDEXES, MongoStoreWriter


class TestServiceFactoryInit:
    """Tests for ServiceFactory initialization."""

    def test_init_with_config(self, default_config: EnrichmentConfig) -> None:
        """ServiceFactory stores config."""
        factory = ServiceFactory(config=default_config)
        assert factory.config is default_config


@patch("exicon_enricher.services.factory.AsyncOpenAI")
class TestServiceFactoryClient:
    """Tests for ServiceFactory.client property."""

    def test_client_is_cached(self, mock_openai: MagicMock, default_config) -> None:
        """Client property creates one AsyncOpenAI instance."""
        factory = ServiceFactory(config=default_config)

        client1 = factory.client
        client2 = factory.client

        mock_openai.assert_called_once()
        assert client1 is client2 is mock_openai.return_value

    def test_create_enricher(self, mock_openai: MagicMock, clean_env: None, tmp_path: Path) -> None:
        """create_enricher wires config values into BatchEnricher."""
        config = EnrichmentConfig(
            model="gpt-4o-mini",
            batch_size=7,
            llm_retry_attempts=3,
            prompt_cost_per_1k=0.01,
            data_dir=tmp_path,
        )
        snapshot = SnapshotRepository(tmp_path)

        enricher = ServiceFactory(config=config).create_enricher(snapshot=snapshot)

        assert isinstance(enricher, BatchEnricher)
        assert enricher.client is mock_openai.return_value
        assert enricher.model == "gpt-4o-mini"
        assert enricher.batch_size == 7
        assert enricher.retry.max_attempts == 3
        assert enricher.accountant.prompt_rate_per_1k == 0.01
        assert enricher.snapshot is snapshot
        assert enricher.debug_dir is None

    def test_debug_dir_under_data_dir(
        self, mock_openai: MagicMock, clean_env: None, tmp_path: Path
    ) -> None:
        """Debug dumps go to data_dir/debug."""
        config = EnrichmentConfig(data_dir=tmp_path, debug_mode=True)
        enricher = ServiceFactory(config=config).create_enricher()
        assert enricher.debug_dir == tmp_path / "debug"


class TestServiceFactoryFetcher:
    """Tests for create_fetcher."""

    async def test_exicon_fetcher(self, default_config: EnrichmentConfig) -> None:
        """The default fetcher targets the Exicon blog with no cache prefix."""
        factory = ServiceFactory(config=default_config)
        fetcher = factory.create_fetcher()

        assert isinstance(fetcher, ContentFetcher)
        assert isinstance(fetcher.client, httpx.AsyncClient)
        assert fetcher.blog_id == default_config.blog_id
        assert fetcher.cache_prefix == ""
        assert fetcher.cache_dir == default_config.cache_dir
        await factory.aclose()

    async def test_lexicon_fetcher_shares_client(self, default_config: EnrichmentConfig) -> None:
        """The lexicon fetcher uses its own blog and cache prefix but the same client."""
        factory = ServiceFactory(config=default_config)
        exicon = factory.create_fetcher()
        lexicon = factory.create_fetcher(lexicon=True)

        assert lexicon.blog_id == default_config.lexicon_blog_id
        assert lexicon.cache_prefix == "lexicon-"
        assert lexicon.client is exicon.client
        await factory.aclose()
        assert exicon.client.is_closed


@patch("exicon_enricher.services.factory.MongoClient")
class TestServiceFactoryStore:
    """Tests for create_store_writer."""

    def test_exicon_collection(self, mock_mongo: MagicMock, default_config) -> None:
        """The writer targets the configured database and collection."""
        factory = ServiceFactory(config=default_config)
        writer = factory.create_store_writer()

        mock_mongo.assert_called_once_with(default_config.mongodb_uri)
        database = mock_mongo.return_value.__getitem__
        database.assert_called_with(default_config.mongodb_db)
        database.return_value.__getitem__.assert_called_with("exicon-items")
        assert isinstance(writer, MongoStoreWriter)
        assert writer.indexes == EXICON_INDEXES
        assert writer.batch_size == default_config.store_batch_size

    def test_lexicon_collection(self, mock_mongo: MagicMock, default_config) -> None:
        """lexicon=True targets the lexicon collection and indexes."""
        writer = ServiceFactory(config=default_config).create_store_writer(lexicon=True)
        mock_mongo.return_value.__getitem__.return_value.__getitem__.assert_called_with("lexicon")
        assert writer.indexes == LEXICON_INDEXES

    async def test_aclose_closes_mongo(self, mock_mongo: MagicMock, default_config) -> None:
        """aclose closes clients that were created, and only those."""
        factory = ServiceFactory(config=default_config)
        factory.create_store_writer()

        await factory.aclose()

        mock_mongo.return_value.close.assert_called_once()
        assert "client" not in factory.__dict__
        assert "http_client" not in factory.__dict__
