"""Pipeline architecture for Exicon enrichment.

The run is split into explicit stages that share a PipelineContext:

1. **FetchStage**: list posts and fetch their details (cached)
2. **NormalizeStage**: flatten and deduplicate
3. **EnrichmentStage**: batched LLM enrichment with per-batch snapshots
4. **LoadSnapshotStage**: read a previous snapshot for upload
5. **StoreStage**: idempotent upsert into MongoDB

Lexicon terms have their own fetch and store stages and skip enrichment.

Example:
    >>> ctx = PipelineContext(config=config)
    >>> await create_default_pipeline().run(ctx, factory)
    >>> print(len(ctx.enriched))
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import EnrichmentConfig
    from .enricher import RunReport
    from .models import EnrichedItem, LexiconItem, NormalizedItem, RawDetail, RawListEntry
    from .services.factory import ServiceFactory
    from .store import UpsertResult

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Shared state passed through pipeline stages.

    Attributes:
        config: Run configuration
        stem: Snapshot file name prefix
        snapshot_path: Snapshot to upload (defaults to the stem's JSON snapshot)

        entries: List entries (populated by FetchStage)
        details: (entry, detail) pairs (populated by FetchStage)
        items: Normalized, deduplicated items (populated by NormalizeStage)
        run_report: Enrichment report (populated by EnrichmentStage)
        enriched: Enriched items (populated by EnrichmentStage or LoadSnapshotStage)
        upsert_result: Store outcome (populated by StoreStage)
        lexicon_items: Lexicon terms (populated by LexiconFetchStage)
        lexicon_result: Store outcome (populated by LexiconStoreStage)
    """

    # Required inputs
    config: EnrichmentConfig
    stem: str = "exicon"
    snapshot_path: Path | None = None

    # Populated by stages
    entries: list[RawListEntry] = field(default_factory=list)
    details: list[tuple[RawListEntry, RawDetail | None]] = field(default_factory=list)
    items: list[NormalizedItem] = field(default_factory=list)
    run_report: RunReport | None = None
    enriched: list[EnrichedItem] = field(default_factory=list)
    upsert_result: UpsertResult | None = None
    lexicon_items: list[LexiconItem] = field(default_factory=list)
    lexicon_result: UpsertResult | None = None

    # Progress tracking
    progress_callback: Callable[[str, int, int], None] | None = None

    def report_progress(self, stage: str, current: int, total: int) -> None:
        """Report progress to callback if set."""
        if self.progress_callback:
            self.progress_callback(stage, current, total)


class PipelineStage(ABC):
    """Abstract base class for pipeline stages.

    Stages hold no state of their own; everything goes through the context.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this stage."""
        ...

    @abstractmethod
    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        """Execute this pipeline stage."""
        ...


class FetchStage(PipelineStage):
    """Fetch the Exicon post list and every post's detail.

    Items whose detail cannot be fetched are logged and left out.

    Populates:
        - ctx.entries
        - ctx.details
    """

    @property
    def name(self) -> str:
        return "Fetch"

    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        fetcher = factory.create_fetcher()
        ctx.entries = await fetcher.fetch_list()
        ctx.details = await fetcher.fetch_details(ctx.entries)
        logger.info(f"Fetched {len(ctx.details)}/{len(ctx.entries)} posts with details")


class NormalizeStage(PipelineStage):
    """Flatten fetched posts and drop duplicate names.

    Populates:
        - ctx.items
    """

    @property
    def name(self) -> str:
        return "Normalize"

    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        from .normalizer import deduplicate_by_name, normalize

        normalized = [
            normalize(entry, detail, ctx.config.base_post_url)
            for entry, detail in ctx.details
            if detail is not None
        ]
        ctx.items = deduplicate_by_name(normalized)
        logger.info(
            f"Normalized {len(normalized)} items, {len(normalized) - len(ctx.items)} "
            f"duplicates removed"
        )


class EnrichmentStage(PipelineStage):
    """Enrich ctx.items in batches, writing snapshots after every batch.

    Populates:
        - ctx.run_report
        - ctx.enriched
    """

    @property
    def name(self) -> str:
        return "Enrichment"

    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        if not ctx.items:
            logger.warning("No items to enrich")
            return

        snapshot = factory.create_snapshot_repository(ctx.stem)
        enricher = factory.create_enricher(snapshot=snapshot)
        ctx.run_report = await enricher.enrich_all(
            ctx.items,
            progress_callback=lambda done, total: ctx.report_progress(self.name, done, total),
        )
        ctx.enriched = ctx.run_report.items


class LoadSnapshotStage(PipelineStage):
    """Load enriched items from a JSON snapshot.

    Populates:
        - ctx.enriched

    Raises:
        SnapshotError: If the snapshot is missing or invalid
    """

    @property
    def name(self) -> str:
        return "Load snapshot"

    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        repository = factory.create_snapshot_repository(ctx.stem)
        ctx.enriched = repository.load(ctx.snapshot_path)


class StoreStage(PipelineStage):
    """Upsert ctx.enriched into the exercise collection.

    Populates:
        - ctx.upsert_result

    Raises:
        StoreError: If indexes cannot be created
    """

    @property
    def name(self) -> str:
        return "Store"

    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        writer = factory.create_store_writer()
        await asyncio.to_thread(writer.ensure_indexes)
        ctx.upsert_result = await asyncio.to_thread(writer.upsert, ctx.enriched)


class LexiconFetchStage(PipelineStage):
    """Fetch Lexicon terms, keeping terms whose detail fails with their list description.

    Populates:
        - ctx.lexicon_items
    """

    @property
    def name(self) -> str:
        return "Lexicon fetch"

    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        from .normalizer import normalize_lexicon

        fetcher = factory.create_fetcher(lexicon=True)
        entries = await fetcher.fetch_list()
        pairs = await fetcher.fetch_details(entries, keep_failed=True)
        ctx.lexicon_items = [normalize_lexicon(entry, detail) for entry, detail in pairs]
        logger.info(f"Prepared {len(ctx.lexicon_items)} lexicon terms")


class LexiconStoreStage(PipelineStage):
    """Upsert ctx.lexicon_items into the lexicon collection.

    Populates:
        - ctx.lexicon_result
    """

    @property
    def name(self) -> str:
        return "Lexicon store"

    async def execute(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        writer = factory.create_store_writer(lexicon=True)
        await asyncio.to_thread(writer.ensure_indexes)
        ctx.lexicon_result = await asyncio.to_thread(writer.upsert, ctx.lexicon_items)


class EnrichmentPipeline:
    """Runs stages in order against a shared context.

    Example:
        >>> pipeline = EnrichmentPipeline([FetchStage(), NormalizeStage()])
        >>> await pipeline.run(ctx, factory)
    """

    def __init__(self, stages: list[PipelineStage]) -> None:
        self.stages = stages

    async def run(self, ctx: PipelineContext, factory: ServiceFactory) -> None:
        """Execute all stages in order; the first failing stage aborts the run."""
        for stage in self.stages:
            logger.info(f"Starting stage: {stage.name}")
            await stage.execute(ctx, factory)
            logger.info(f"Completed stage: {stage.name}")


def create_fetch_pipeline() -> EnrichmentPipeline:
    """Fetch and normalize only (warms the cache)."""
    return EnrichmentPipeline([FetchStage(), NormalizeStage()])


def create_default_pipeline() -> EnrichmentPipeline:
    """Fetch, normalize and enrich, leaving the result in the snapshots."""
    return EnrichmentPipeline([FetchStage(), NormalizeStage(), EnrichmentStage()])


def create_upload_pipeline() -> EnrichmentPipeline:
    """Upload an existing snapshot."""
    return EnrichmentPipeline([LoadSnapshotStage(), StoreStage()])


def create_full_pipeline() -> EnrichmentPipeline:
    """Fetch, normalize, enrich and upload in one run."""
    return EnrichmentPipeline([FetchStage(), NormalizeStage(), EnrichmentStage(), StoreStage()])


def create_lexicon_pipeline() -> EnrichmentPipeline:
    """Fetch and upload Lexicon terms."""
    return EnrichmentPipeline([LexiconFetchStage(), LexiconStoreStage()])
