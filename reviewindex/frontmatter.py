"""Frontmatter parsing for reviewindex.

Every document in the content store starts with a ``---`` delimited header of
``key: value`` lines. This module splits a raw document into that header and
its markdown body, turns the header into a typed ``Frontmatter`` record and
writes mappings back out in the same syntax.

The header syntax is deliberately small and permissive:

- one ``key: value`` per line, split at the first colon;
- ``"quoted"`` or ``'quoted'`` values lose their quotes;
- ``[a, b, "c"]`` values become lists of strings;
- anything else (lines without a colon, nested YAML) is ignored rather
  than reported.

Key functions and classes:
- parse_frontmatter: Split raw text into (mapping, body).
- dump_frontmatter: Serialize a mapping back into a header block.
- Frontmatter: Named, defaulted view of a parsed mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from .utils import normalize_categories, titleize, youtube_id

FieldValue = Union[str, list[str]]

DELIMITER = "---"


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_value(raw: str) -> FieldValue:
    """Convert the text after a key's colon into a field value.

    Args:
        raw: Value text, untrimmed.

    Returns:
        A list of strings for ``[...]`` values, otherwise the trimmed,
        quote-stripped string.

    Examples:
        >>> parse_value(' "Widget X" ')
        'Widget X'

        >>> parse_value("[a, 'b c', \\"d\\"]")
        ['a', 'b c', 'd']
    """
    value = raw.strip()
    if len(value) >= 2 and value.startswith("[") and value.endswith("]"):
        inner = value[1:-1].strip()
        if not inner:
            return []
        return [_strip_quotes(item.strip()) for item in inner.split(",")]
    return _strip_quotes(value)


def _split_block(text: str) -> tuple[str, str] | None:
    """Return (header block, body) when ``text`` opens with a closed header."""
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n") != DELIMITER:
        return None
    for index in range(1, len(lines)):
        if lines[index].rstrip("\r\n") == DELIMITER:
            block = "".join(lines[1:index])
            body = "".join(lines[index + 1 :])
            return block, body
    return None


def parse_frontmatter(text: str) -> tuple[dict[str, FieldValue], str]:
    """Split a raw document into its frontmatter mapping and markdown body.

    The document must begin with a line that is exactly ``---``; the header
    runs to the next line that is exactly ``---``. Without a closing line the
    whole text is treated as body. Blank lines and lines without a colon are
    skipped, later duplicate keys win.

    Args:
        text: Raw document text.

    Returns:
        Tuple of (frontmatter mapping, body). The body has surrounding blank
        space removed when a header was present, and is ``text`` unchanged
        otherwise.
    """
    if not text:
        return {}, text or ""
    split = _split_block(text)
    if split is None:
        return {}, text
    block, body = split

    data: dict[str, FieldValue] = {}
    for line in block.splitlines():
        if not line.strip() or ":" not in line:
            continue
        key, _, raw = line.partition(":")
        key = key.strip()
        if not key:
            continue
        data[key] = parse_value(raw)
    return data, body.strip()


def _quote(value: str) -> str:
    return f'"{value}"'


def dump_frontmatter(data: dict[str, FieldValue]) -> str:
    """Serialize a mapping into a ``---`` delimited header block.

    Strings are written double-quoted and lists as ``["a", "b"]`` so that
    ``parse_frontmatter`` reads back the same mapping. List items must not
    contain commas; keys must not contain colons.

    Args:
        data: Mapping of field name to string or list of strings.

    Returns:
        The header block including both delimiter lines and a trailing
        newline.
    """
    lines = [DELIMITER]
    for key, value in data.items():
        if isinstance(value, (list, tuple)):
            items = ", ".join(_quote(str(item)) for item in value)
            lines.append(f"{key}: [{items}]")
        elif isinstance(value, bool):
            lines.append(f"{key}: {'true' if value else 'false'}")
        else:
            lines.append(f"{key}: {_quote(str(value))}")
    lines.append(DELIMITER)
    return "\n".join(lines) + "\n"


def compose_document(data: dict[str, FieldValue], body: str) -> str:
    """Join a header and a markdown body into one document."""
    return f"{dump_frontmatter(data)}\n{body.strip()}\n"


def _as_text(value: FieldValue | None) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(value)
    return value


def _as_list(value: FieldValue | None) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [item for item in value if item]
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_bool(value: FieldValue | None) -> bool:
    return isinstance(value, str) and value.strip().lower() in ("true", "yes", "1")


def _as_rating(value: FieldValue | None) -> int | None:
    text = _as_text(value).strip()
    try:
        rating = int(float(text))
    except (ValueError, OverflowError):
        return None
    if 1 <= rating <= 5:
        return rating
    return None


# Schema field -> accepted frontmatter keys, first match wins.
_ALIASES = {
    "title": ("title",),
    "description": ("description", "excerpt", "summary"),
    "date": ("date", "published"),
    "categories": ("categories", "category"),
    "tags": ("tags",),
    "image": ("image", "featured_image", "featuredImage"),
    "rating": ("rating",),
    "affiliate_link": ("affiliate_link", "affiliateLink"),
    "youtube_id": ("youtube_id", "youtubeId", "youtube"),
    "comparison_products": ("comparison_products", "products"),
    "author": ("author",),
    "keywords": ("keywords",),
    "checked": ("checked",),
}


@dataclass
class Frontmatter:
    """Named view of a document header with explicit defaults.

    Attributes:
        title: Page title; derived from the slug when absent.
        description: Short summary used for meta tags and cards.
        date: Publication date exactly as written (may be empty).
        categories: Category names as written.
        tags: Free-form tags.
        image: Social/hero image URL.
        rating: Integer rating 1-5, or None when absent or invalid.
        affiliate_link: Call-to-action URL.
        youtube_id: Eleven-character YouTube id, or None.
        comparison_products: Products compared on a comparison page.
        author: Author name.
        keywords: SEO keywords.
        checked: Whether related documents were already computed upstream.
        extra: Every key not covered by a named field.
    """

    title: str
    description: str = ""
    date: str = ""
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    image: str = ""
    rating: int | None = None
    affiliate_link: str = ""
    youtube_id: str | None = None
    comparison_products: list[str] = field(default_factory=list)
    author: str = ""
    keywords: list[str] = field(default_factory=list)
    checked: bool = False
    extra: dict[str, FieldValue] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: dict[str, FieldValue], slug: str = "") -> Frontmatter:
        """Build a record from a parsed mapping.

        Args:
            data: Mapping returned by ``parse_frontmatter``.
            slug: Document slug, used to derive the default title.

        Returns:
            A populated ``Frontmatter``; never raises for odd values.
        """
        used: set[str] = set()

        def pick(name: str) -> FieldValue | None:
            for key in _ALIASES[name]:
                if key in data:
                    used.add(key)
                    return data[key]
            return None

        title = _as_text(pick("title")).strip()
        record = cls(
            title=title or (titleize(slug) if slug else "Untitled"),
            description=_as_text(pick("description")).strip(),
            date=_as_text(pick("date")).strip(),
            categories=_as_list(pick("categories")),
            tags=_as_list(pick("tags")),
            image=_as_text(pick("image")).strip(),
            rating=_as_rating(pick("rating")),
            affiliate_link=_as_text(pick("affiliate_link")).strip(),
            youtube_id=youtube_id(_as_text(pick("youtube_id"))),
            comparison_products=_as_list(pick("comparison_products")),
            author=_as_text(pick("author")).strip(),
            keywords=_as_list(pick("keywords")),
            checked=_as_bool(pick("checked")),
        )
        record.extra = {k: v for k, v in data.items() if k not in used}
        return record

    @property
    def normalized_categories(self) -> list[str]:
        """Lower-cased categories for matching."""
        return normalize_categories(self.categories)

    def get(self, key: str, default: str = "") -> FieldValue:
        """Return an unmapped header value by its original key."""
        return self.extra.get(key, default)
