#!/usr/bin/env python3
"""Batch enrichment of normalized exercises through OpenAI function calling.

Items are sent in fixed-size batches, one chat completion per batch. Each
batch moves through BUILT → CALLED → PARSED → RECONCILED → PERSISTED, and
always produces exactly one EnrichedItem per input item: results the model
omitted, mangled or never returned are replaced by sentinel defaults.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from itertools import chain
from pathlib import Path
from typing import Any, Final

from openai import (
    APIConnectionError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)

from .exceptions import EnrichmentError, ExiconEnricherError, RetryableError
from .models import EnrichedItem, NormalizedItem
from .prompt_library import TOOL_NAME, EnrichmentRequest, build_request
from .protocols import SnapshotSink
from .reconciliation import (
    CountMismatch,
    Malformed,
    ParseOutcome,
    Reconciliation,
    parse_outcome,
    reconcile,
)
from .retry import RetryConfig, with_retry
from .usage import BatchUsage, UsageAccountant, UsageSummary

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================


class BatchState(str, Enum):
    """Lifecycle of a single batch."""

    BUILT = "built"
    CALLED = "called"
    PARSED = "parsed"
    RECONCILED = "reconciled"
    PERSISTED = "persisted"


@dataclass
class BatchReport:
    """What happened to one batch."""

    index: int
    size: int
    state: BatchState = BatchState.BUILT
    finish_reason: str | None = None
    outcomes: list[ParseOutcome] = field(default_factory=list)
    reconciliation: Reconciliation | None = None
    usage: BatchUsage | None = None
    error: str | None = None

    @property
    def is_success(self) -> bool:
        """Check if the LLM call itself succeeded."""
        return self.error is None

    @property
    def defaulted_count(self) -> int:
        """Number of items that fell back to sentinel defaults."""
        if self.reconciliation is None:
            return self.size
        return len(self.reconciliation.missing_ids)

    @property
    def duplicate_count(self) -> int:
        if self.reconciliation is None:
            return 0
        return len(self.reconciliation.duplicate_ids)

    @property
    def malformed_calls(self) -> int:
        return sum(1 for outcome in self.outcomes if isinstance(outcome, Malformed))


@dataclass
class RunReport:
    """Accumulated output of a whole enrichment run."""

    items: list[EnrichedItem]
    batches: list[BatchReport]
    usage: UsageSummary

    @property
    def failed_batches(self) -> int:
        return sum(1 for b in self.batches if not b.is_success)

    @property
    def defaulted_items(self) -> int:
        return sum(b.defaulted_count for b in self.batches)

    @property
    def duplicate_results(self) -> int:
        return sum(b.duplicate_count for b in self.batches)


def chunked(items: Sequence[NormalizedItem], size: int) -> list[list[NormalizedItem]]:
    """Split items into consecutive batches of at most size."""
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


# ============================================================================
# BatchEnricher
# ============================================================================


class BatchEnricher:
    """Enriches normalized items in sequential batches.

    Attributes:
        client: Async OpenAI client (injected)
        model: Chat model used for every batch
        batch_size: Items per LLM call
        batch_delay: Pause between batches (seconds)
        accountant: Collects token usage and cost
        snapshot: Receives the full accumulated result after every batch

    Example:
        >>> enricher = BatchEnricher(client, snapshot=SnapshotRepository(Path("data")))
        >>> report = await enricher.enrich_all(items)
        >>> print(f"{len(report.items)} items, ${report.usage.total_cost:.2f}")
    """

    DEFAULT_MODEL: Final[str] = "o4-mini"
    DEFAULT_BATCH_SIZE: Final[int] = 20
    DEFAULT_BATCH_DELAY: Final[float] = 2.0

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_MODEL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        accountant: UsageAccountant | None = None,
        snapshot: SnapshotSink | None = None,
        retry: RetryConfig | None = None,
        debug: bool = False,
        debug_dir: Path | None = None,
    ) -> None:
        """Initialize the enricher.

        Args:
            client: Async OpenAI client
            model: Chat model name
            batch_size: Items per batch
            batch_delay: Seconds to wait between batches
            accountant: Usage accountant (a default one is created if omitted)
            snapshot: Snapshot sink written after every batch (optional)
            retry: Retry policy for the LLM call (default: a single attempt)
            debug: Whether to dump request/response JSON for every batch
            debug_dir: Directory for debug dumps (timestamped under data/debug if None)
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.client = client
        self.model = model
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.accountant = accountant if accountant is not None else UsageAccountant()
        self.snapshot = snapshot
        self.retry = retry if retry is not None else RetryConfig()
        self.debug = debug
        self._call_llm = with_retry(**self.retry.to_kwargs())(self._call_llm_once)

        if self.debug:
            if debug_dir is not None:
                self.debug_dir: Path | None = debug_dir
            else:
                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                self.debug_dir = Path("data/debug") / timestamp
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Debug output will be saved to: {self.debug_dir}")
        else:
            self.debug_dir = None

        logger.info(
            f"Initialized BatchEnricher with model: {model}, batch size: {batch_size}, "
            f"attempts per batch: {self.retry.max_attempts}"
        )

    # ------------------------------------------------------------------
    # LLM call
    # ------------------------------------------------------------------

    async def _call_llm_once(self, request: EnrichmentRequest) -> Any:
        """Make one chat completion call, classifying failures.

        Raises:
            RetryableError: For rate limits, connection problems and server errors
            EnrichmentError: For any other API failure or an empty response
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=request.messages,  # type: ignore[arg-type]
                tools=request.tools,  # type: ignore[arg-type]
                tool_choice="required",
            )
        except RateLimitError as e:
            raise RetryableError(
                f"Rate limited: {e}", retry_after=_retry_after(e), model=self.model
            ) from e
        except (APIConnectionError, InternalServerError) as e:
            raise RetryableError(f"Transient API failure: {e}", model=self.model) from e
        except OpenAIError as e:
            raise EnrichmentError(f"LLM call failed: {e}", model=self.model) from e

        if not getattr(response, "choices", None):
            raise EnrichmentError("LLM response has no choices", model=self.model)
        return response

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def enrich_batch(
        self,
        batch: Sequence[NormalizedItem],
        index: int = 1,
        total: int = 1,
    ) -> tuple[list[EnrichedItem], BatchReport]:
        """Enrich one batch.

        Never raises for LLM failures: the batch is filled with defaults instead.

        Returns:
            (enriched items in input order, batch report)
        """
        report = BatchReport(index=index, size=len(batch))
        request = build_request(batch)
        prefix = f"Batch {index}/{total}"
        logger.info(f"{prefix}: {BatchState.BUILT.value} ({len(batch)} items)")
        self._dump(index, "request", {"model": self.model, **asdict(request)})

        try:
            response = await self._call_llm(request)
        except ExiconEnricherError as e:
            report.error = str(e)
            logger.error(f"{prefix}: LLM call failed, using defaults for all items: {e}")
            report.reconciliation = reconcile(batch, [])
            report.state = BatchState.RECONCILED
            return self._merge(batch, report), report

        report.state = BatchState.CALLED
        self._dump(index, "response", _to_jsonable(response))

        report.usage = BatchUsage.from_response(response)
        if report.usage is not None:
            self.accountant.record(report.usage)

        choice = response.choices[0]
        report.finish_reason = choice.finish_reason
        tool_calls = [
            call
            for call in (choice.message.tool_calls or [])
            if getattr(call, "function", None) is not None and call.function.name == TOOL_NAME
        ]
        logger.info(
            f"{prefix}: {report.state.value} (finish_reason={report.finish_reason}, "
            f"{len(tool_calls)} tool call(s))"
        )
        if not tool_calls:
            logger.warning(f"{prefix}: response contained no {TOOL_NAME} tool call")

        report.outcomes = [
            parse_outcome(call.function.arguments, report.finish_reason, len(batch))
            for call in tool_calls
        ]
        report.state = BatchState.PARSED
        for outcome in report.outcomes:
            if isinstance(outcome, CountMismatch):
                logger.warning(
                    f"{prefix}: tool call returned {outcome.actual} results, "
                    f"expected {outcome.expected}"
                )

        raw_results = list(chain.from_iterable(outcome.results for outcome in report.outcomes))
        report.reconciliation = reconcile(batch, raw_results)
        report.state = BatchState.RECONCILED
        logger.info(
            f"{prefix}: {report.state.value} ({len(raw_results)} received, "
            f"{report.defaulted_count} defaulted, {report.duplicate_count} duplicates)"
        )

        enriched = self._merge(batch, report)
        self._dump(index, "parsed-result", [item.model_dump() for item in enriched])
        return enriched, report

    @staticmethod
    def _merge(batch: Sequence[NormalizedItem], report: BatchReport) -> list[EnrichedItem]:
        assert report.reconciliation is not None
        return [
            EnrichedItem.merge(item, result)
            for item, result in zip(batch, report.reconciliation.results, strict=True)
        ]

    async def enrich_all(
        self,
        items: Sequence[NormalizedItem],
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> RunReport:
        """Enrich every item, batch by batch, snapshotting after each batch.

        Args:
            items: Normalized items (external_id must be unique)
            progress_callback: Called with (batches done, total batches)

        Returns:
            RunReport with one EnrichedItem per input item, in input order
        """
        batches = chunked(items, self.batch_size)
        accumulated: list[EnrichedItem] = []
        reports: list[BatchReport] = []
        logger.info(f"Enriching {len(items)} items in {len(batches)} batches")

        for index, batch in enumerate(batches, 1):
            enriched, report = await self.enrich_batch(batch, index, len(batches))
            accumulated.extend(enriched)
            if self.snapshot is not None:
                self.snapshot.save(accumulated)
            report.state = BatchState.PERSISTED
            reports.append(report)
            logger.info(
                f"Batch {index}/{len(batches)}: {report.state.value} "
                f"({len(accumulated)}/{len(items)} items so far)"
            )

            if progress_callback:
                progress_callback(index, len(batches))

            if index < len(batches) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        run = RunReport(items=accumulated, batches=reports, usage=self.accountant.summary())
        logger.info(
            f"Enrichment complete - {len(run.items)} items, {run.failed_batches} failed batches, "
            f"{run.defaulted_items} defaulted items, {run.duplicate_results} duplicate results, "
            f"{run.usage.total_tokens} tokens, ${run.usage.total_cost:.4f}"
        )
        return run

    # ------------------------------------------------------------------
    # Debug output
    # ------------------------------------------------------------------

    def _dump(self, index: int, kind: str, data: Any) -> None:
        """Write a debug JSON file for batch index, when debug output is enabled."""
        if not self.debug_dir:
            return
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        debug_file = self.debug_dir / f"{kind}-batch{index:03d}-{timestamp}.json"
        debug_file.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        logger.debug(f"Saved {kind} to {debug_file}")


def _retry_after(error: RateLimitError) -> float:
    """Read the Retry-After header of a rate-limit response, defaulting to 1s."""
    response = getattr(error, "response", None)
    header = response.headers.get("retry-after") if response is not None else None
    try:
        return float(header) if header else 1.0
    except ValueError:
        return 1.0


def _to_jsonable(response: Any) -> Any:
    if hasattr(response, "model_dump"):
        return response.model_dump()
    return repr(response)
