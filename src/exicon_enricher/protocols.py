"""Protocol definitions for exicon_enricher.

These describe the seams between pipeline components so tests can pass
light fakes instead of HTTP clients, files or databases.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import EnrichedItem, RawDetail, RawListEntry


@runtime_checkable
class ContentSource(Protocol):
    """Something that can list posts and return a post's detail."""

    async def fetch_list(self) -> list[RawListEntry]:
        """Return every post of the source.

        Raises:
            FetchError: If the list cannot be retrieved
        """
        ...

    async def fetch_detail(self, slug: str) -> RawDetail:
        """Return the detail payload for slug.

        Raises:
            FetchError: If the detail cannot be retrieved
        """
        ...


@runtime_checkable
class SnapshotSink(Protocol):
    """Receives the full accumulated result after every batch."""

    def save(self, items: Sequence[EnrichedItem]) -> None:
        """Persist items, replacing any previous snapshot."""
        ...


@runtime_checkable
class StoreDocument(Protocol):
    """A record that can be upserted by external_id."""

    external_id: str

    def to_document(self) -> dict[str, Any]:
        """Return the fields to write under `$set`."""
        ...
