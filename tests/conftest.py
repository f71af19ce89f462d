"""Pytest configuration and fixtures for exicon_enricher tests.

Fixtures follow pytest best practices:
- Use monkeypatch for environment manipulation
- Use tmp_path for file operations
- Fake the network and database at the client boundary
"""

import json
import sys
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove EXICON_ENRICHER_* and MongoDB environment variables."""
    import os

    for key in list(os.environ.keys()):
        if key.startswith("EXICON_ENRICHER_") or key in ("MONGODB_URI", "MONGODB_DB_NAME"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Provide a helper to set EXICON_ENRICHER_* environment variables.

    Example:
        def test_env_loading(mock_env):
            mock_env["BATCH_SIZE"] = "5"
            # EXICON_ENRICHER_BATCH_SIZE is now set
    """

    class EnvSetter(dict[str, str]):
        def __setitem__(self, key: str, value: str) -> None:
            super().__setitem__(key, value)
            monkeypatch.setenv(f"EXICON_ENRICHER_{key}", value)

    return EnvSetter()


@pytest.fixture
def default_config(clean_env: None, tmp_path: Path):
    """Create an EnrichmentConfig rooted in a temporary data directory."""
    from exicon_enricher.config import EnrichmentConfig

    return EnrichmentConfig(data_dir=tmp_path / "data", batch_delay=0.0, request_delay=0.0)


# ============================================================================
# Model Fixtures
# ============================================================================


@pytest.fixture
def make_item() -> Callable[..., Any]:
    """Return a builder for NormalizedItem instances."""
    from exicon_enricher.models import NormalizedItem

    def _make(external_id: str, name: str | None = None, **overrides: Any) -> NormalizedItem:
        slug = (name or external_id).lower().replace(" ", "-")
        data: dict[str, Any] = {
            "external_id": external_id,
            "urlSlug": slug,
            "name": name or f"Exercise {external_id}",
            "description": f"Description of {external_id}",
            "text": f"Do exercise {external_id} for ten reps.",
            "categories": "full-body",
            "postURL": f"https://f3nation.com/exicon/{slug}",
        }
        data.update(overrides)
        return NormalizedItem(**data)

    return _make


@pytest.fixture
def abc_batch(make_item: Callable[..., Any]) -> list[Any]:
    """Three items with ids A, B and C."""
    return [make_item("A", "Burpee"), make_item("B", "Merkin"), make_item("C", "Al Gore")]


@pytest.fixture
def result_for() -> Callable[..., dict[str, Any]]:
    """Return a builder for raw tool-call result objects."""

    def _result(external_id: str, **overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "external_id": external_id,
            "urlSlug": external_id.lower(),
            "aliases": [{"name": f"{external_id} Alias", "id": f"{external_id.lower()}-alias"}],
            "tags": ["full-body"],
            "confidence": 0.9,
            "quality": 0.8,
            "difficulty": 0.5,
            "time": 5,
            "author": "N/A",
        }
        data.update(overrides)
        return data

    return _result


# ============================================================================
# OpenAI Client Mocking Fixtures
# ============================================================================


@pytest.fixture
def make_completion() -> Callable[..., Any]:
    """Return a builder for chat completion responses with tool calls.

    Each entry of ``arguments`` becomes one tool call; dicts are JSON-encoded
    and strings are passed through unchanged.
    """
    from exicon_enricher.prompt_library import TOOL_NAME

    def _completion(
        *arguments: Any,
        finish_reason: str = "stop",
        prompt_tokens: int = 1000,
        completion_tokens: int = 500,
        tool_name: str = TOOL_NAME,
    ) -> SimpleNamespace:
        calls = [
            SimpleNamespace(
                id=f"call_{i}",
                type="function",
                function=SimpleNamespace(
                    name=tool_name,
                    arguments=arg if isinstance(arg, str) else json.dumps(arg),
                ),
            )
            for i, arg in enumerate(arguments)
        ]
        message = SimpleNamespace(role="assistant", content=None, tool_calls=calls or None)
        return SimpleNamespace(
            choices=[SimpleNamespace(index=0, finish_reason=finish_reason, message=message)],
            usage=SimpleNamespace(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    return _completion


@pytest.fixture
def mock_async_openai_client() -> MagicMock:
    """Create a mock AsyncOpenAI client whose chat.completions.create is an AsyncMock."""
    client = MagicMock()
    client.chat = MagicMock()
    client.chat.completions = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


# ============================================================================
# MongoDB Fixtures
# ============================================================================


class FakeCollection:
    """In-memory stand-in for a pymongo Collection.

    Applies the ``$set``/``$setOnInsert`` of UpdateOne operations the way
    MongoDB does for ``{_id: ...}`` filters. Calls listed in ``fail_calls``
    (1-indexed) raise PyMongoError.
    """

    def __init__(self, name: str = "exicon-items") -> None:
        self.name = name
        self.docs: dict[str, dict[str, Any]] = {}
        self.indexes: list[Any] = []
        self.bulk_calls = 0
        self.fail_calls: set[int] = set()

    def create_index(self, keys: Any, **kwargs: Any) -> str:
        self.indexes.append(keys)
        return "_".join(f"{field}_{kind}" for field, kind in keys)

    def bulk_write(self, operations: list[Any], ordered: bool = True) -> SimpleNamespace:
        from pymongo.errors import PyMongoError

        self.bulk_calls += 1
        if self.bulk_calls in self.fail_calls:
            raise PyMongoError("simulated bulk write failure")

        upserted = modified = 0
        for op in operations:
            doc_id = op._filter["_id"]
            update = op._doc
            existing = self.docs.get(doc_id)
            if existing is None:
                if not op._upsert:
                    continue
                self.docs[doc_id] = {
                    "_id": doc_id,
                    **update.get("$setOnInsert", {}),
                    **update.get("$set", {}),
                }
                upserted += 1
            else:
                new = {**existing, **update.get("$set", {})}
                if new != existing:
                    modified += 1
                self.docs[doc_id] = new
        return SimpleNamespace(upserted_count=upserted, modified_count=modified)

    def count_documents(self, _filter: dict[str, Any]) -> int:
        return len(self.docs)


@pytest.fixture
def fake_collection() -> FakeCollection:
    """Provide an empty in-memory collection."""
    return FakeCollection()
