"""
Prompt Library for Batch Exercise Enrichment
============================================

Builds the chat messages and the function-calling schema for one batch of
exercises. The schema pins `results` and `count_verification` to the batch
size so the model is told, twice, exactly how many entries to return.

Example:
    >>> request = build_request(batch)
    >>> await client.chat.completions.create(
    ...     model="o4-mini", messages=request.messages, tools=request.tools,
    ...     tool_choice="required",
    ... )
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final

from .models import NormalizedItem

TOOL_NAME: Final[str] = "processBatchExercises"


# =============================================================================
# FIXED VOCABULARY
# =============================================================================

# (tag, optional hint shown to the model)
TAG_TAXONOMY: Final[tuple[tuple[str, str], ...]] = (
    ("upper-body", ""),
    ("shoulders", ""),
    ("chest", ""),
    ("triceps", ""),
    ("lower-body", ""),
    ("glutes", ""),
    ("squats", ""),
    ("calves", ""),
    ("lunges", ""),
    ("core", ""),
    ("plank", ""),
    ("full-body", ""),
    ("burpee", ""),
    ("merkin", ""),
    ("crawl", ""),
    ("flexibility", "involving a stretch"),
    ("endurance", "e.g. cardio"),
    ("sprints", ""),
    ("run", ""),
    ("plyometrics", ""),
    ("hill", ""),
    ("stairs", ""),
    ("routine", "consisting of multiple exercises in one"),
    ("base-routine", "a routine that can be used to design a workout, e.g. 11s, Dora, etc"),
    ("partner", "involves 1 or 2 partners, not a group"),
    ("coupon", "a coupon is a weight like a block"),
    ("bench", "involves a bench or platform or box"),
    ("pull-up-bar", ""),
    ("playground-swing", ""),
    ("water", ""),
    ("timer", ""),
    ("music", "involves music"),
    ("field", ""),
    ("parking-lot", ""),
    ("playground", ""),
    ("track", ""),
    ("game", ""),
    ("jump", ""),
)

ALLOWED_TAGS: Final[frozenset[str]] = frozenset(tag for tag, _ in TAG_TAXONOMY)

GLOSSARY: Final[tuple[tuple[str, str], ...]] = (
    (
        "Murder Bunny",
        "bending over with hands on the block, hop forward, and once landed pick up the "
        "block and move it as far forward as you can reach, then repeat",
    ),
    ("Merkin", "push up (derkin - decline pushup)"),
    (
        "Dora",
        "A routine involving a partner where you must perform a specific number of reps "
        "of an exercise together",
    ),
    (
        "11s",
        "A ladder exercise in which you start with 1 rep of one exercise and 10 reps of "
        "another exercise, then add one additional rep to the first exercise and subtract "
        "one rep from the second",
    ),
    ("6 Minutes of Marys", "abs routine"),
    ("al gore", "holding a squat"),
    ("SSH / side straddle hop", "jumping jack"),
)

SCORING_GUIDE: Final[str] = """\
   confidence: Assign a confidence score between 0 and 1 for determining the accuracy of the tags.
   quality: Assign a quality score between 0 and 1 for determining the quality of the description.
   difficulty: Assign a difficulty score between 0 and 1 for determining the difficulty of the exercise.
   time: Estimated time in minutes to complete the exercise / routine. Keep in mind a typical F3 workout is 45-60 minutes and most exercises are well under that.
   author: If the description contains an explicit "author" or "submitted by" reference, use that. Otherwise "N/A"."""


# =============================================================================
# TEMPLATES
# =============================================================================

SYSTEM_TEMPLATE: Final[str] = """\
You are a precise metadata extraction assistant. Your task is to analyze {count} exercises and extract structured metadata for EACH ONE WITHOUT EXCEPTION.
You must return EXACTLY {count} results, with each result corresponding to one input exercise.
Never skip any exercise or return fewer than {count} results."""

USER_TEMPLATE: Final[str] = """\
I need you to analyze a batch of exactly {count} exercises and extract metadata for EACH ONE.

This batch contains the following {count} exercises that ALL need processing:
{id_list}

For EACH of these {count} exercises, I need you to extract:

1. Aliases:
   - Find all possible aliases for each exercise
   - Look for terms after "aka" or phrases like "also called", "sometimes called", etc.
   - For each alias, provide both a display name and a kebab-case identifier
   - The display name should be the original alias text
   - The identifier should be lowercase with hyphens instead of spaces

   Examples:
   "Wooly Worm aka Inch Worm" → [{{"name": "Wooly Worm", "id": "wooly-worm"}}, {{"name": "Inch Worm", "id": "inch-worm"}}]
   "The Swimmer" → [{{"name": "Swimmer", "id": "swimmer"}}]

2. Tags:
   Determine the tags for each exercise. Possible tags are:
{tag_list}

3. Additional Metadata:
{scoring}

Some basic definitions that may help determine the tags:
{glossary}

Here are all {count} exercises to analyze - YOU MUST PROCESS EACH ONE:
{exercises}

CRITICAL REQUIREMENTS:
1. You MUST return EXACTLY {count} results - one for EACH exercise.
2. Set count_verification to exactly {count} to confirm you processed all exercises.
3. Each result MUST have an external_id matching one of the original exercise IDs.
4. Never omit or duplicate any exercise - process ALL {count} exercises exactly once.
5. Double-check your results count before responding.

Your response MUST include results for these specific {count} IDs:
{ids_json}"""


# =============================================================================
# BUILDERS
# =============================================================================


@dataclass(frozen=True)
class EnrichmentRequest:
    """Messages and tools for one chat completion call."""

    messages: list[dict[str, str]]
    tools: list[dict[str, Any]]
    expected_ids: tuple[str, ...]

    @property
    def size(self) -> int:
        return len(self.expected_ids)


def _format_tag_list() -> str:
    lines = []
    for tag, hint in TAG_TAXONOMY:
        lines.append(f"   - {tag} ({hint})" if hint else f"   - {tag}")
    return "\n".join(lines)


def _format_glossary() -> str:
    return "\n".join(f"- {term}: {meaning}" for term, meaning in GLOSSARY)


def build_messages(batch: Sequence[NormalizedItem]) -> list[dict[str, str]]:
    """Build the system and user messages for batch."""
    count = len(batch)
    ids = [item.external_id for item in batch]
    id_list = "\n".join(
        f'  {i}. ID: "{item.external_id}" - {item.name}' for i, item in enumerate(batch, 1)
    )
    exercises = [
        {"id": item.external_id, "urlSlug": item.urlSlug, "name": item.name, "text": item.text}
        for item in batch
    ]

    user = USER_TEMPLATE.format(
        count=count,
        id_list=id_list,
        tag_list=_format_tag_list(),
        scoring=SCORING_GUIDE,
        glossary=_format_glossary(),
        exercises=json.dumps(exercises, indent=2, ensure_ascii=False),
        ids_json=json.dumps(ids),
    )
    return [
        {"role": "system", "content": SYSTEM_TEMPLATE.format(count=count)},
        {"role": "user", "content": user},
    ]


def _unit_score(description: str) -> dict[str, Any]:
    return {"type": "number", "description": description, "minimum": 0, "maximum": 1}


def build_tool_schema(size: int) -> list[dict[str, Any]]:
    """Build the function tool whose result cardinality is pinned to size."""
    result_item = {
        "type": "object",
        "properties": {
            "external_id": {
                "type": "string",
                "description": (
                    "ID of the exercise to match with input. "
                    "This MUST match one of the input exercise IDs."
                ),
            },
            "urlSlug": {
                "type": "string",
                "description": "URL slug of the exercise to match with input",
            },
            "aliases": {
                "type": "array",
                "description": "Array of alias objects with display name and identifier",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Display name for the alias"},
                        "id": {"type": "string", "description": "Identifier in kebab-case format"},
                    },
                    "required": ["name", "id"],
                },
            },
            "tags": {
                "type": "array",
                "description": "Array of tags for the exercise",
                "items": {"type": "string"},
            },
            "confidence": _unit_score("Confidence score between 0 and 1"),
            "quality": _unit_score("Quality score between 0 and 1"),
            "difficulty": _unit_score("Difficulty score between 0 and 1"),
            "time": {
                "type": "number",
                "description": "Estimated time in minutes to complete the exercise",
                "minimum": 0,
            },
            "author": {"type": "string", "description": "Author of the exercise if mentioned"},
        },
        "required": [
            "external_id",
            "urlSlug",
            "aliases",
            "tags",
            "confidence",
            "quality",
            "difficulty",
            "time",
            "author",
        ],
    }

    return [
        {
            "type": "function",
            "function": {
                "name": TOOL_NAME,
                "description": (
                    f"Process a batch of {size} exercises and extract metadata. "
                    f"You MUST return exactly {size} results."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "count_verification": {
                            "type": "integer",
                            "description": (
                                f"MUST be exactly {size}. This is a validation check to "
                                "ensure you processed all items."
                            ),
                            "minimum": size,
                            "maximum": size,
                        },
                        "results": {
                            "type": "array",
                            "description": (
                                f"Results array MUST contain EXACTLY {size} entries - one for "
                                "each input exercise, no more, no less."
                            ),
                            "minItems": size,
                            "maxItems": size,
                            "items": result_item,
                        },
                    },
                    "required": ["count_verification", "results"],
                },
            },
        }
    ]


def build_request(batch: Sequence[NormalizedItem]) -> EnrichmentRequest:
    """Build the full request for batch.

    Raises:
        ValueError: If batch is empty
    """
    if not batch:
        raise ValueError("Cannot build an enrichment request for an empty batch")
    return EnrichmentRequest(
        messages=build_messages(batch),
        tools=build_tool_schema(len(batch)),
        expected_ids=tuple(item.external_id for item in batch),
    )
