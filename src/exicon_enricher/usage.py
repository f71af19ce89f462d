"""Token usage and cost accounting for an enrichment run.

Usage is recorded once per successful LLM call. Cost is a straight
per-1000-token rate for prompt and completion tokens.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchUsage:
    """Token counts reported for one completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: BatchUsage) -> BatchUsage:
        return BatchUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )

    @classmethod
    def from_response(cls, response: Any) -> BatchUsage | None:
        """Read usage from an OpenAI completion, or None when it has none."""
        usage = getattr(response, "usage", None)
        if usage is None:
            return None
        return cls(
            prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        )


@dataclass(frozen=True)
class UsageSummary:
    """Totals for a finished run."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    total_cost: float
    elapsed_seconds: float
    batches: int


class UsageAccountant:
    """Accumulates token usage and cost across batches.

    Example:
        >>> accountant = UsageAccountant()
        >>> round(accountant.record(BatchUsage(prompt_tokens=1000, completion_tokens=1000)), 4)
        0.02
    """

    def __init__(
        self,
        prompt_rate_per_1k: float = 0.005,
        completion_rate_per_1k: float = 0.015,
    ) -> None:
        self.prompt_rate_per_1k = prompt_rate_per_1k
        self.completion_rate_per_1k = completion_rate_per_1k
        self.totals = BatchUsage()
        self.total_cost = 0.0
        self.batches = 0
        self._started = time.monotonic()

    def cost_of(self, usage: BatchUsage) -> float:
        return (
            usage.prompt_tokens / 1000 * self.prompt_rate_per_1k
            + usage.completion_tokens / 1000 * self.completion_rate_per_1k
        )

    def record(self, usage: BatchUsage) -> float:
        """Add one batch's usage and return its cost in USD."""
        cost = self.cost_of(usage)
        self.totals = self.totals + usage
        self.total_cost += cost
        self.batches += 1
        logger.info(
            f"Batch token usage: {usage.prompt_tokens} prompt + {usage.completion_tokens} "
            f"completion = {usage.total_tokens} total (${cost:.4f}); "
            f"running cost ${self.total_cost:.4f}"
        )
        return cost

    def summary(self) -> UsageSummary:
        return UsageSummary(
            prompt_tokens=self.totals.prompt_tokens,
            completion_tokens=self.totals.completion_tokens,
            total_tokens=self.totals.total_tokens,
            total_cost=self.total_cost,
            elapsed_seconds=time.monotonic() - self._started,
            batches=self.batches,
        )
