"""
Exicon Enricher - Batch LLM enrichment for the F3 exercise lexicon.

This package fetches Exicon entries from the public content API, flattens them
into plain records, asks an LLM for structured metadata (aliases, tags, scores)
in fixed-size batches, and upserts the result into MongoDB.
"""

__version__ = "0.1.0"

from .enricher import BatchEnricher
from .models import Alias, EnrichedItem, EnrichmentResult, NormalizedItem
from .reconciliation import CountMismatch, Malformed, Ok, ParseOutcome

__all__ = [
    "Alias",
    "BatchEnricher",
    "CountMismatch",
    "EnrichedItem",
    "EnrichmentResult",
    "Malformed",
    "NormalizedItem",
    "Ok",
    "ParseOutcome",
]
