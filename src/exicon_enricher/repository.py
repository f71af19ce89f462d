"""Snapshot repository for enrichment runs.

After every batch the whole accumulated result is written to
``<stem>-batch-revised.json`` and ``<stem>-batch-revised.csv`` so an
interrupted run still leaves usable output. The upload stage reads the JSON
snapshot back.

Example:
    >>> repo = SnapshotRepository(Path("data"), stem="exicon")
    >>> repo.save(items)
    >>> items = repo.load()
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Final

from pydantic import ValidationError

from .exceptions import SnapshotError
from .models import EnrichedItem

logger = logging.getLogger(__name__)

CSV_COLUMNS: Final[tuple[str, ...]] = (
    "external_id",
    "name",
    "categories",
    "description",
    "aliases",
    "alias_ids",
    "tags",
    "confidence",
    "quality",
    "author",
    "difficulty",
    "text",
    "video_url",
    "urlSlug",
    "postURL",
)

LIST_SEPARATOR: Final[str] = "; "


def slugify(text: str) -> str:
    """Convert text to a file-name-safe slug.

    Example:
        >>> slugify("Exicon Items (2024)")
        'exicon-items-2024'
    """
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug)
    slug = slug.strip("-")
    return slug or "exicon"


def escape_csv_field(value: Any) -> str:
    """Render value as a CSV field, quoting it when it holds a comma, quote or newline.

    Example:
        >>> escape_csv_field('say "hi", then go')
        '"say ""hi"", then go"'
    """
    if value is None:
        return ""
    text = str(value)
    if any(ch in text for ch in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def unescape_csv_field(field: str) -> str:
    """Inverse of escape_csv_field."""
    if len(field) >= 2 and field.startswith('"') and field.endswith('"'):
        return field[1:-1].replace('""', '"')
    return field


def _csv_row(item: EnrichedItem) -> list[str]:
    values: dict[str, Any] = {
        "external_id": item.external_id,
        "name": item.name,
        "categories": item.categories,
        "description": item.description,
        "aliases": LIST_SEPARATOR.join(alias.name for alias in item.aliases),
        "alias_ids": LIST_SEPARATOR.join(alias.id for alias in item.aliases),
        "tags": LIST_SEPARATOR.join(item.tags),
        "confidence": item.confidence,
        "quality": item.quality,
        "author": item.author,
        "difficulty": item.difficulty,
        "text": item.text,
        "video_url": item.video_url,
        "urlSlug": item.urlSlug,
        "postURL": item.postURL,
    }
    return [escape_csv_field(values[column]) for column in CSV_COLUMNS]


def to_csv(items: Sequence[EnrichedItem]) -> str:
    """Render items as CSV text with a header row."""
    lines = [",".join(CSV_COLUMNS)]
    lines.extend(",".join(_csv_row(item)) for item in items)
    return "\n".join(lines) + "\n"


class SnapshotRepository:
    """Reads and writes the progressive JSON/CSV snapshots of a run.

    Attributes:
        output_dir: Directory the snapshots live in
        stem: File name prefix (slugified)
    """

    def __init__(self, output_dir: Path, stem: str = "exicon") -> None:
        self.output_dir = Path(output_dir)
        self.stem = slugify(stem)

    @property
    def json_path(self) -> Path:
        return self.output_dir / f"{self.stem}-batch-revised.json"

    @property
    def csv_path(self) -> Path:
        return self.output_dir / f"{self.stem}-batch-revised.csv"

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)

    def save(self, items: Sequence[EnrichedItem]) -> None:
        """Overwrite both snapshots with items."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        payload = [item.model_dump() for item in items]
        self._write_atomic(self.json_path, json.dumps(payload, ensure_ascii=False, indent=2))
        self._write_atomic(self.csv_path, to_csv(items))
        logger.info(f"Snapshot of {len(items)} items written to {self.json_path}")

    def load(self, path: Path | None = None) -> list[EnrichedItem]:
        """Read enriched items from a JSON snapshot.

        Raises:
            SnapshotError: If the file is missing, unreadable, or not a list of items
        """
        path = Path(path) if path is not None else self.json_path
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotError("Could not read snapshot", path=str(path), error=str(e)) from e

        if not isinstance(data, list):
            raise SnapshotError("Snapshot is not a JSON array", path=str(path))

        try:
            items = [EnrichedItem.model_validate(entry) for entry in data]
        except ValidationError as e:
            raise SnapshotError(
                "Snapshot contains an invalid item", path=str(path), error=str(e)
            ) from e

        logger.info(f"Loaded {len(items)} items from {path}")
        return items
