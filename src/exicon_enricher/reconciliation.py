"""Turn raw tool-call output into exactly one result per input item.

A batch response goes through two steps:

1. ``parse_outcome`` classifies one tool call's arguments as ``Ok``,
   ``CountMismatch`` (parsed, but the wrong number of results) or
   ``Malformed`` (nothing recoverable).
2. ``reconcile`` matches the collected results to the batch by
   ``external_id``. Missing ids get sentinel defaults, the last of several
   results for one id wins, and ids that are not in the batch are dropped.

Example:
    >>> outcome = parse_outcome(arguments, finish_reason, expected_count=len(batch))
    >>> report = reconcile(batch, outcome.results)
    >>> assert len(report.results) == len(batch)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from pydantic import ValidationError

from .json_recovery import parse_tool_arguments
from .models import EnrichmentResult, NormalizedItem
from .prompt_library import ALLOWED_TAGS

logger = logging.getLogger(__name__)


# ============================================================================
# Parse outcomes
# ============================================================================


@dataclass(frozen=True)
class Ok:
    """Arguments parsed and held the expected number of results."""

    results: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class CountMismatch:
    """Arguments parsed but the number of results differs from the batch size."""

    expected: int
    actual: int
    results: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class Malformed:
    """Nothing usable could be recovered from the arguments."""

    raw: str

    @property
    def results(self) -> tuple[dict[str, Any], ...]:
        return ()


ParseOutcome: TypeAlias = Ok | CountMismatch | Malformed


def parse_outcome(raw: str | None, finish_reason: str | None, expected_count: int) -> ParseOutcome:
    """Parse one tool call's arguments and classify the result."""
    parsed = parse_tool_arguments(raw, finish_reason)
    if parsed is None:
        return Malformed(raw or "")

    results = parsed.get("results")
    if not isinstance(results, list):
        logger.warning("Tool call returned a response without a valid results array")
        return Malformed(raw or "")

    objects = tuple(r for r in results if isinstance(r, dict))
    if len(objects) < len(results):
        logger.warning(f"Ignoring {len(results) - len(objects)} non-object result entries")

    count_verification = parsed.get("count_verification")
    if count_verification is None:
        logger.warning("No count_verification field found in response")
    elif count_verification != expected_count:
        logger.warning(
            f"Count verification mismatch: got {count_verification}, expected {expected_count}"
        )

    if len(objects) != expected_count:
        logger.warning(f"Result count mismatch: got {len(objects)}, expected {expected_count}")
        return CountMismatch(expected=expected_count, actual=len(objects), results=objects)
    return Ok(objects)


# ============================================================================
# Reconciliation
# ============================================================================


@dataclass
class Reconciliation:
    """Results for a batch in input order, plus what had to be fixed up."""

    results: list[EnrichmentResult]
    missing_ids: list[str] = field(default_factory=list)
    duplicate_ids: list[str] = field(default_factory=list)
    unknown_ids: list[str] = field(default_factory=list)
    invalid_count: int = 0

    @property
    def is_clean(self) -> bool:
        """True when every item got exactly one valid result."""
        return not (self.missing_ids or self.duplicate_ids or self.unknown_ids or self.invalid_count)


def reconcile(batch: Sequence[NormalizedItem], raw_results: Iterable[dict[str, Any]]) -> Reconciliation:
    """Match raw results to batch items by external_id.

    Returns:
        A Reconciliation whose results list has one entry per batch item, in
        batch order
    """
    expected = {item.external_id for item in batch}
    matched: dict[str, EnrichmentResult] = {}
    duplicate_ids: list[str] = []
    unknown_ids: list[str] = []
    invalid_count = 0

    for raw in raw_results:
        external_id = str(raw.get("external_id") or "")
        if external_id not in expected:
            unknown_ids.append(external_id)
            logger.warning(f"Ignoring result for unknown id {external_id!r}")
            continue

        try:
            result = EnrichmentResult.model_validate(raw)
        except ValidationError as e:
            invalid_count += 1
            logger.warning(f"Discarding invalid result for {external_id}: {e}")
            continue

        if external_id in matched:
            duplicate_ids.append(external_id)
            logger.warning(f"Duplicate result for {external_id}; keeping the later one")

        off_taxonomy = [tag for tag in result.tags if tag not in ALLOWED_TAGS]
        if off_taxonomy:
            logger.debug(f"{external_id}: tags outside the taxonomy: {off_taxonomy}")

        matched[external_id] = result

    results: list[EnrichmentResult] = []
    missing_ids: list[str] = []
    for item in batch:
        result = matched.get(item.external_id)
        if result is None:
            missing_ids.append(item.external_id)
            logger.info(f"Adding default result for '{item.name}' ({item.external_id})")
            result = EnrichmentResult.defaults_for(item)
        results.append(result)

    if missing_ids:
        logger.warning(f"Missing results for items: {', '.join(missing_ids)}")

    return Reconciliation(
        results=results,
        missing_ids=missing_ids,
        duplicate_ids=duplicate_ids,
        unknown_ids=unknown_ids,
        invalid_count=invalid_count,
    )
