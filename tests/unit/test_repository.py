"""Unit tests for exicon_enricher.repository module."""

import json
from pathlib import Path

import pytest

from exicon_enricher.exceptions import SnapshotError
from exicon_enricher.models import Alias, EnrichedItem, EnrichmentResult
from exicon_enricher.repository import (
    CSV_COLUMNS,
    SnapshotRepository,
    escape_csv_field,
    slugify,
    to_csv,
    unescape_csv_field,
)


@pytest.fixture
def enriched(make_item) -> list[EnrichedItem]:
    burpee = make_item("A", "Burpee", description="Squat, plank, jump")
    merkin = make_item("B", "Merkin")
    return [
        EnrichedItem.merge(
            burpee,
            EnrichmentResult(
                external_id="A",
                aliases=[Alias(name="Up Down"), Alias(name="Squat Thrust")],
                tags=["full-body", "burpee"],
                confidence=0.9,
                time=2,
            ),
        ),
        EnrichedItem.merge(merkin, EnrichmentResult.defaults_for(merkin)),
    ]


class TestCsvFields:
    """Tests for CSV field escaping."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("a,b", '"a,b"'),
            ('say "hi"', '"say ""hi"""'),
            ("line\nbreak", '"line\nbreak"'),
            ("plain", "plain"),
            (None, ""),
            (0.5, "0.5"),
        ],
    )
    def test_escape(self, value, expected: str) -> None:
        """Fields are quoted only when needed."""
        assert escape_csv_field(value) == expected

    def test_comma_round_trip(self) -> None:
        """A field containing a comma survives escape and unescape."""
        assert unescape_csv_field(escape_csv_field("a,b")) == "a,b"


class TestToCsv:
    """Tests for to_csv."""

    def test_header_and_rows(self, enriched: list[EnrichedItem]) -> None:
        """The header lists the fixed columns; list fields are joined with '; '."""
        lines = to_csv(enriched).splitlines()

        assert lines[0] == ",".join(CSV_COLUMNS)
        assert len(lines) == 3
        assert lines[1].startswith('A,Burpee,full-body,"Squat, plank, jump",Up Down; Squat Thrust,')
        assert "up-down; squat-thrust" in lines[1]
        assert "full-body; burpee" in lines[1]

    def test_default_item_row(self, enriched: list[EnrichedItem]) -> None:
        """A defaulted item has empty aliases and tags and author N/A."""
        row = to_csv(enriched).splitlines()[2]
        assert row.startswith("B,Merkin,full-body,Description of B,,,,0.0,0.0,N/A,0.0,")


class TestSnapshotRepository:
    """Tests for SnapshotRepository."""

    def test_paths_use_slugified_stem(self, tmp_path: Path) -> None:
        """File names follow <stem>-batch-revised.{json,csv}."""
        repo = SnapshotRepository(tmp_path, stem="Exicon Items")
        assert repo.json_path == tmp_path / "exicon-items-batch-revised.json"
        assert repo.csv_path == tmp_path / "exicon-items-batch-revised.csv"

    def test_save_and_load(self, tmp_path: Path, enriched: list[EnrichedItem]) -> None:
        """Saved items load back unchanged."""
        repo = SnapshotRepository(tmp_path / "out")
        repo.save(enriched)

        assert repo.csv_path.exists()
        assert not list((tmp_path / "out").glob("*.tmp"))
        assert repo.load() == enriched

    def test_save_overwrites(self, tmp_path: Path, enriched: list[EnrichedItem]) -> None:
        """Each save replaces the previous snapshot."""
        repo = SnapshotRepository(tmp_path)
        repo.save(enriched[:1])
        repo.save(enriched)
        assert len(json.loads(repo.json_path.read_text())) == 2

    def test_load_missing_file(self, tmp_path: Path) -> None:
        """A missing snapshot raises SnapshotError."""
        with pytest.raises(SnapshotError, match="Could not read snapshot"):
            SnapshotRepository(tmp_path).load()

    def test_load_not_a_list(self, tmp_path: Path) -> None:
        """A JSON object instead of an array is rejected."""
        path = tmp_path / "snap.json"
        path.write_text('{"items": []}')
        with pytest.raises(SnapshotError, match="not a JSON array"):
            SnapshotRepository(tmp_path).load(path)

    def test_load_invalid_item(self, tmp_path: Path) -> None:
        """An entry missing required fields is rejected."""
        path = tmp_path / "snap.json"
        path.write_text('[{"name": "No id"}]')
        with pytest.raises(SnapshotError, match="invalid item"):
            SnapshotRepository(tmp_path).load(path)


def test_slugify_fallback() -> None:
    """Text with nothing usable falls back to 'exicon'."""
    assert slugify("!!!") == "exicon"
