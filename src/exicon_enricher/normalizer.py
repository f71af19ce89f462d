"""Flatten raw Exicon and Lexicon payloads into plain records.

Everything here is a pure function of its inputs; the fetcher does the I/O.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from bs4 import BeautifulSoup

from .models import Category, LexiconItem, NormalizedItem, RawDetail, RawListEntry

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")

# Decoded in this order, after whitespace is collapsed.
_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


def extract_text(html: str | None) -> str:
    """Strip tags from html and return single-spaced plain text.

    Only the six entities listed in _ENTITIES are decoded.

    Example:
        >>> extract_text("<p>Side&nbsp;Straddle   Hop</p>")
        'Side Straddle Hop'
    """
    if not html:
        return ""
    text = _TAG_RE.sub(" ", html)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def extract_video_url(html: str | None) -> str | None:
    """Return the src of the first <video> element with a non-empty src."""
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    video = soup.find("video", src=True)
    if video is None:
        return None
    src = str(video.get("src") or "").strip()
    return src or None


def format_categories(categories: Iterable[Category]) -> str:
    """Canonicalize category labels into a comma-separated string.

    Example:
        >>> format_categories([Category(label="Full Body"), Category(label="Core")])
        'full-body, core'
    """
    labels = (_WHITESPACE_RE.sub("-", c.label.strip().lower()) for c in categories)
    return ", ".join(label for label in labels if label)


def normalize(entry: RawListEntry, detail: RawDetail, base_post_url: str) -> NormalizedItem:
    """Combine a list entry with its detail payload into a NormalizedItem."""
    raw_html = detail.rawHTML or ""
    return NormalizedItem(
        external_id=entry.external_id,
        urlSlug=entry.urlSlug,
        name=entry.title,
        description=entry.description or "",
        text=extract_text(raw_html),
        video_url=extract_video_url(raw_html),
        image_url=entry.imageUrl or detail.imageUrl or None,
        categories=format_categories(detail.categories),
        postURL=f"{base_post_url}{entry.urlSlug}",
        publishedAt=entry.publishedAt or detail.publishedAt,
    )


def normalize_lexicon(entry: RawListEntry, detail: RawDetail | None) -> LexiconItem:
    """Build a LexiconItem, keeping the list description when detail is missing."""
    raw_html = (detail.rawHTML or "") if detail is not None else ""
    description = extract_text(raw_html) or entry.description or ""
    return LexiconItem(
        external_id=entry.external_id,
        title=entry.title,
        description=description,
        urlSlug=entry.urlSlug,
        rawHTML=raw_html,
    )


def deduplicate_by_name(items: Iterable[NormalizedItem]) -> list[NormalizedItem]:
    """Drop items whose name repeats an earlier one, ignoring case.

    The first occurrence wins and input order is preserved.
    """
    seen: dict[str, NormalizedItem] = {}
    unique: list[NormalizedItem] = []
    for item in items:
        key = item.name.strip().lower()
        if key in seen:
            logger.info(
                f"Dropping duplicate '{item.name}' ({item.external_id}); "
                f"keeping {seen[key].external_id}"
            )
            continue
        seen[key] = item
        unique.append(item)
    return unique
