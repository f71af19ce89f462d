"""Idempotent MongoDB writer for enriched exercises and lexicon terms.

Documents are keyed by ``_id = external_id`` and written with
``UpdateOne(..., upsert=True)``: ``$set`` replaces every field and stamps
``updatedAt``; ``$setOnInsert`` sets ``createdAt`` only the first time.
Running the same upload twice leaves the document count unchanged.

Example:
    >>> writer = MongoStoreWriter(db["exicon-items"], batch_size=100)
    >>> writer.ensure_indexes()
    >>> result = writer.upsert(items)
    >>> print(result.upserted, result.errors)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Final

from pymongo import ASCENDING, TEXT, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from .exceptions import StoreError

if TYPE_CHECKING:
    from pymongo.collection import Collection

    from .protocols import StoreDocument

logger = logging.getLogger(__name__)

IndexSpec = list[tuple[str, Any]]

EXICON_INDEXES: Final[tuple[IndexSpec, ...]] = (
    [("name", TEXT), ("description", TEXT), ("text", TEXT)],
    [("categories", ASCENDING)],
    [("tags", ASCENDING)],
)

LEXICON_INDEXES: Final[tuple[IndexSpec, ...]] = (
    [("title", TEXT), ("description", TEXT)],
    [("urlSlug", ASCENDING)],
    [("title", ASCENDING)],
)


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of an upload.

    Attributes:
        upserted: Documents inserted by this upload
        modified: Existing documents whose fields changed
        errors: Chunks that failed to write
    """

    upserted: int = 0
    modified: int = 0
    errors: int = 0


def build_update(document_id: str, fields: dict[str, Any], now: datetime) -> UpdateOne:
    """Build the upsert operation for one document."""
    return UpdateOne(
        {"_id": document_id},
        {
            "$set": {**fields, "updatedAt": now},
            "$setOnInsert": {"createdAt": now},
        },
        upsert=True,
    )


class MongoStoreWriter:
    """Writes documents to one collection in fixed-size bulk upserts.

    Attributes:
        collection: Target pymongo collection
        batch_size: Operations per bulk_write call
        indexes: Index key specifications created by ensure_indexes()
    """

    def __init__(
        self,
        collection: Collection[Any],
        batch_size: int = 100,
        indexes: Sequence[IndexSpec] = EXICON_INDEXES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.collection = collection
        self.batch_size = batch_size
        self.indexes = indexes
        self.clock = clock or (lambda: datetime.now(UTC))

    def ensure_indexes(self) -> None:
        """Create the collection's indexes if they do not exist.

        Raises:
            StoreError: If the server rejects index creation or is unreachable
        """
        try:
            for keys in self.indexes:
                self.collection.create_index(keys)
        except PyMongoError as e:
            raise StoreError(
                "Could not create indexes",
                collection=self.collection.name,
                error=str(e),
            ) from e
        logger.info(f"Ensured {len(self.indexes)} indexes on {self.collection.name}")

    def upsert(self, items: Iterable[StoreDocument]) -> UpsertResult:
        """Upsert items in chunks of batch_size.

        A failing chunk is logged, counted in ``errors`` and skipped. Writes the
        server applied before a ``BulkWriteError`` still count.
        """
        items = list(items)
        now = self.clock()
        upserted = modified = errors = 0
        total_chunks = (len(items) + self.batch_size - 1) // self.batch_size

        for chunk_no, start in enumerate(range(0, len(items), self.batch_size), 1):
            chunk = items[start : start + self.batch_size]
            operations = [build_update(item.external_id, item.to_document(), now) for item in chunk]
            try:
                result = self.collection.bulk_write(operations, ordered=False)
            except BulkWriteError as e:
                # Unordered writes still apply every operation that did not fail
                errors += 1
                upserted += e.details.get("nUpserted", 0)
                modified += e.details.get("nModified", 0)
                logger.error(
                    f"Chunk {chunk_no}/{total_chunks} ({len(chunk)} documents) partially failed: "
                    f"{len(e.details.get('writeErrors', []))} write errors"
                )
                continue
            except PyMongoError as e:
                errors += 1
                logger.error(
                    f"Chunk {chunk_no}/{total_chunks} ({len(chunk)} documents) failed: {e}"
                )
                continue

            upserted += result.upserted_count
            modified += result.modified_count
            logger.info(
                f"Chunk {chunk_no}/{total_chunks}: {result.upserted_count} upserted, "
                f"{result.modified_count} modified"
            )

        logger.info(
            f"Upload to {self.collection.name} complete: {upserted} upserted, "
            f"{modified} modified, {errors} failed chunks"
        )
        return UpsertResult(upserted=upserted, modified=modified, errors=errors)
