"""Pydantic models for raw API payloads and enriched exercise records.

Raw models mirror the content API and ignore fields we do not use. The
enrichment models apply the sentinel defaults: any field the LLM leaves
empty or null is replaced so every stored record has the same shape.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_AUTHOR = "N/A"
DEFAULT_TIME = 1.0


def kebab_case(text: str) -> str:
    """Lowercase text and join whitespace-separated words with hyphens.

    Example:
        >>> kebab_case("Inch Worm")
        'inch-worm'
    """
    return re.sub(r"\s+", "-", text.strip().lower())


# ============================================================================
# Raw API payloads
# ============================================================================


class Category(BaseModel):
    """A blog category attached to a post."""

    label: str = ""

    model_config = ConfigDict(extra="ignore", frozen=True)


class RawListEntry(BaseModel):
    """One post from the paginated list endpoint."""

    external_id: str = Field(alias="_id")
    title: str = ""
    urlSlug: str  # noqa: N815
    description: str | None = ""
    categories: list[Category] = Field(default_factory=list)
    imageUrl: str | None = None  # noqa: N815
    publishedAt: str | None = None  # noqa: N815

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class RawDetail(BaseModel):
    """The `blogPost` body of the detail endpoint."""

    external_id: str | None = Field(default=None, alias="_id")
    rawHTML: str | None = ""  # noqa: N815
    categories: list[Category] = Field(default_factory=list)
    imageUrl: str | None = None  # noqa: N815
    publishedAt: str | None = None  # noqa: N815

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


# ============================================================================
# Normalized and enriched records
# ============================================================================


class NormalizedItem(BaseModel):
    """Flat exercise record ready to be sent to the LLM."""

    external_id: str
    urlSlug: str  # noqa: N815
    name: str
    description: str = ""
    text: str = ""
    video_url: str | None = None
    image_url: str | None = None
    categories: str = ""
    postURL: str = ""  # noqa: N815
    publishedAt: str | None = None  # noqa: N815

    model_config = ConfigDict(extra="ignore")


class Alias(BaseModel):
    """Alternate name for an exercise.

    A bare string is accepted in place of an object, and a missing id is
    derived from the name.
    """

    name: str
    id: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        return data

    @model_validator(mode="after")
    def _derive_id(self) -> Alias:
        if not self.id:
            self.id = kebab_case(self.name)
        return self


class EnrichmentFields(BaseModel):
    """Metadata produced by the LLM, with sentinel defaults for anything missing."""

    aliases: list[Alias] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    quality: float = 0.0
    difficulty: float = 0.0
    time: float = DEFAULT_TIME
    author: str = DEFAULT_AUTHOR

    @field_validator("aliases", "tags", mode="before")
    @classmethod
    def _empty_list(cls, value: Any) -> Any:
        return value or []

    @field_validator("tags", mode="after")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        return [tag.strip() for tag in value if tag and tag.strip()]

    @field_validator("confidence", "quality", "difficulty", mode="before")
    @classmethod
    def _unit_score(cls, value: Any) -> float:
        try:
            score = float(value or 0.0)
        except (TypeError, ValueError):
            return 0.0
        return min(max(score, 0.0), 1.0)

    @field_validator("time", mode="before")
    @classmethod
    def _duration(cls, value: Any) -> float:
        try:
            minutes = float(value or DEFAULT_TIME)
        except (TypeError, ValueError):
            return DEFAULT_TIME
        return max(minutes, 0.0)

    @field_validator("author", mode="before")
    @classmethod
    def _author(cls, value: Any) -> str:
        return str(value).strip() if value else DEFAULT_AUTHOR


class EnrichmentResult(EnrichmentFields):
    """One entry of the `results` array returned by the tool call."""

    external_id: str
    urlSlug: str = ""  # noqa: N815

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def defaults_for(cls, item: NormalizedItem) -> EnrichmentResult:
        """Build the sentinel result used when the LLM returned nothing for item."""
        return cls(external_id=item.external_id, urlSlug=item.urlSlug)

    def is_default(self) -> bool:
        """Check whether every enrichment field still holds its sentinel value."""
        return self.model_dump(exclude={"external_id", "urlSlug"}) == EnrichmentFields().model_dump()


class EnrichedItem(NormalizedItem, EnrichmentFields):
    """A normalized item merged with its enrichment result."""

    @classmethod
    def merge(cls, item: NormalizedItem, result: EnrichmentResult) -> EnrichedItem:
        """Combine item with result. The item's id and slug always win."""
        data = item.model_dump()
        data.update(result.model_dump(exclude={"external_id", "urlSlug"}))
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        """Fields written to the document store under `$set`."""
        return self.model_dump()


class LexiconItem(BaseModel):
    """A term from the F3 Lexicon blog."""

    external_id: str = Field(alias="_id")
    title: str
    description: str = ""
    urlSlug: str  # noqa: N815
    rawHTML: str = ""  # noqa: N815

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Fields written to the document store under `$set`."""
        return self.model_dump(exclude={"external_id"})
