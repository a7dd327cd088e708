"""Utility functions for reviewindex.

This module contains small string helpers used throughout the codebase:
slug handling, title derivation, category normalisation, date cleaning and
excerpt extraction.

Key functions:
    slugify: Convert a title or filename to a URL slug.
    is_valid_slug: Check that a slug is safe to send to the content store.
    titleize: Convert a slug or filename to a human-readable title.
    normalize_categories: Lower-case a category value into a list.
    clean_date: Reduce a date value to YYYY-MM-DD, never in the future.
    parse_date: Parse a frontmatter date into a datetime.
    first_paragraph: Extract the first plain-text paragraph of a body.
    youtube_id: Extract an 11-character video id from a URL or id.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from pathlib import PurePosixPath

SLUG_RE = re.compile(r"[a-z0-9][a-z0-9_-]*", re.IGNORECASE)
_YOUTUBE_ID_RE = re.compile(
    r"(?:youtu\.be/|/embed/|/v/|/shorts/|[?&]v=)([A-Za-z0-9_-]{11})(?![A-Za-z0-9_-])"
)
_BARE_YOUTUBE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

# Categories too broad to relate two documents.
GENERIC_CATEGORIES = frozenset({"review", "reviews", "comparison", "comparisons"})


def slugify(name: str) -> str:
    """Convert a title or filename (without extension) to a slug.

    Args:
        name: Title or filename stem.

    Returns:
        URL-friendly slug, or ``untitled`` when nothing usable remains.

    Examples:
        >>> slugify("Widget X: The Review!")
        'widget-x-the-review'
    """
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", name)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "untitled"


def is_valid_slug(slug: str) -> bool:
    """Check that a slug is a single safe path segment."""
    return bool(slug) and len(slug) <= 200 and bool(SLUG_RE.fullmatch(slug))


def titleize(name: str) -> str:
    """Convert a slug or filename to a human-readable title.

    Replaces hyphens and underscores with spaces and capitalizes each word.
    A trailing ``.md`` extension is dropped.

    Args:
        name: Slug or filename.

    Returns:
        Human-readable title string.

    Examples:
        >>> titleize("best-air-fryers")
        'Best Air Fryers'

        >>> titleize("widget_x.md")
        'Widget X'
    """
    base = PurePosixPath(name).stem if name.endswith(".md") else name
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word[:1].upper() + word[1:] for word in words if word) or "Untitled"


def normalize_categories(categories) -> list[str]:
    """Normalise a category value to a list of lower-case strings.

    Args:
        categories: A list of categories, a single string, or None.

    Returns:
        Lower-cased, stripped, non-empty category names.
    """
    if not categories:
        return []
    if isinstance(categories, str):
        categories = [categories]
    result = []
    for category in categories:
        value = str(category).strip().lower()
        if value:
            result.append(value)
    return result


def specific_categories(categories) -> list[str]:
    """Return normalised categories without the generic site sections."""
    return [c for c in normalize_categories(categories) if c not in GENERIC_CATEGORIES]


def parse_date(value) -> datetime | None:
    """Parse a frontmatter date value.

    Accepts ``YYYY-MM-DD`` and ISO-8601 timestamps (a trailing ``Z`` is
    understood). Quotes are tolerated.

    Args:
        value: Raw value, usually a string.

    Returns:
        A timezone-aware datetime (UTC when no offset was given), or None.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip().strip("\"'")
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.strptime(text[:10], "%Y-%m-%d")
            except ValueError:
                return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def clean_date(value, today: date | None = None) -> str:
    """Reduce a date value to ``YYYY-MM-DD``.

    Missing or unparseable values, and dates after ``today``, collapse to
    ``today``.

    Examples:
        >>> clean_date("2024-03-01T10:00:00Z", today=date(2025, 1, 1))
        '2024-03-01'

        >>> clean_date("garbage", today=date(2025, 1, 1))
        '2025-01-01'
    """
    today = today or datetime.now(timezone.utc).date()
    parsed = parse_date(value)
    if parsed is None or parsed.date() > today:
        return today.isoformat()
    return parsed.date().isoformat()


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first paragraph from markdown text.

    Skips headings, images, tables and fenced code; strips HTML tags and
    inline markdown markers; collapses whitespace and truncates to ``limit``.

    Args:
        text: Markdown text content.
        limit: Maximum character length of result.

    Returns:
        Cleaned first paragraph, truncated to limit characters.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith(("#", "![", "```", "|", "<iframe", "---")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        para = re.sub(r"!?\[([^\]]*)\]\([^)]*\)(\{:[^}]*\})?", r"\1", para)
        para = re.sub(r"[*_`>]", "", para)
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed[:limit]
    return ""


def strip_markdown(text: str) -> str:
    """Remove markdown emphasis, heading and link markup from a short string."""
    text = re.sub(r"\[([^\]]*)\]\([^)]*\)", r"\1", text)
    return re.sub(r"[*_`#\[\]]", "", text).strip()


def youtube_id(value: str | None) -> str | None:
    """Extract a YouTube video id from a bare id or any common URL form.

    Examples:
        >>> youtube_id("https://youtu.be/dQw4w9WgXcQ")
        'dQw4w9WgXcQ'

        >>> youtube_id("not a video") is None
        True
    """
    if not value:
        return None
    value = value.strip()
    if _BARE_YOUTUBE_ID_RE.match(value):
        return value
    match = _YOUTUBE_ID_RE.search(value)
    return match.group(1) if match else None
