"""Content loading for reviewindex.

This module turns documents from the content store into the objects the page
templates consume.

Key classes:
- Document: A parsed store document (frontmatter + markdown body).
- Summary: The listing view of a document.
- Winners: Comparison winners pulled out of a comparison body.
- Page: Everything a page template needs for one document.
- ContentRepository: Cached access to documents and listings.

Key functions:
- build_page: Render a Document into a Page.
- related_documents: Rank summaries sharing categories with a document.
- extract_winners: Find the winner lines of a comparison.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta

import structlog

from .cache import API_TTL, ReadThroughCache, cache_key
from .collections import SummaryCollection
from .frontmatter import FieldValue, Frontmatter, parse_frontmatter
from .html_utils import join_root_url
from .protocols import ContentRenderer, ContentSource
from .renderers import Heading
from .utils import first_paragraph, is_valid_slug, specific_categories, strip_markdown

__all__ = [
    "Document",
    "Heading",
    "Page",
    "Summary",
    "Winners",
    "ContentRepository",
    "build_page",
    "extract_winners",
    "related_documents",
]

log = structlog.get_logger()

# Collection name -> URL prefix
URL_PREFIXES = {"review": "/review", "comparison": "/comparison"}

RELATED_LIMITS = {"review": 4, "comparison": 2}


def document_url(collection: str, slug: str) -> str:
    return f"{URL_PREFIXES.get(collection, '/' + collection)}/{slug}"


@dataclass
class Document:
    """A document read from the content store.

    Attributes:
        slug: Store file name without ``.md``.
        collection: ``review`` or ``comparison``.
        data: Frontmatter mapping exactly as parsed.
        meta: Typed view of ``data``.
        body: Markdown body.
    """

    slug: str
    collection: str
    data: dict[str, FieldValue]
    meta: Frontmatter
    body: str

    @classmethod
    def from_text(cls, text: str, slug: str, collection: str) -> Document:
        data, body = parse_frontmatter(text)
        return cls(
            slug=slug,
            collection=collection,
            data=data,
            meta=Frontmatter.from_mapping(data, slug),
            body=body,
        )

    @property
    def url(self) -> str:
        return document_url(self.collection, self.slug)


@dataclass
class Summary:
    """Listing entry for a document."""

    slug: str
    collection: str
    title: str
    description: str = ""
    date: str = ""
    categories: list[str] = field(default_factory=list)
    image: str = ""
    rating: int | None = None

    @classmethod
    def from_document(cls, document: Document) -> Summary:
        meta = document.meta
        return cls(
            slug=document.slug,
            collection=document.collection,
            title=meta.title,
            description=meta.description or first_paragraph(document.body),
            date=meta.date,
            categories=list(meta.categories),
            image=meta.image,
            rating=meta.rating,
        )

    @property
    def url(self) -> str:
        return document_url(self.collection, self.slug)

    def to_dict(self) -> dict:
        return {
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "categories": list(self.categories),
            "image": self.image,
            "rating": self.rating,
            "url": self.url,
        }


@dataclass
class Winners:
    overall: str = ""
    budget: str = ""
    performance: str = ""

    def __bool__(self) -> bool:
        return bool(self.overall or self.budget or self.performance)


@dataclass
class Page:
    """A rendered document ready for a page template.

    Attributes:
        document: Source document.
        content: Sanitized HTML body.
        toc: Headings in document order.
        canonical_url: Absolute URL of the page.
        related: Related summaries, best match first.
        winners: Comparison winners (empty for reviews).
    """

    document: Document
    content: str
    toc: list[Heading]
    canonical_url: str
    related: list[Summary] = field(default_factory=list)
    winners: Winners = field(default_factory=Winners)

    @property
    def slug(self) -> str:
        return self.document.slug

    @property
    def kind(self) -> str:
        return self.document.collection

    @property
    def meta(self) -> Frontmatter:
        return self.document.meta

    @property
    def description(self) -> str:
        return self.meta.description or first_paragraph(self.document.body)


def related_documents(
    document: Document,
    candidates: Iterable[Summary],
    limit: int | None = None,
) -> list[Summary]:
    """Rank candidates by the number of specific categories they share.

    Generic categories (``review``, ``comparisons`` and so on) never count as
    a match. Candidates keep their incoming order among equal scores.

    Args:
        document: The document being displayed.
        candidates: Summaries to choose from, usually newest first.
        limit: Maximum results; defaults to the collection's limit.

    Returns:
        Matching summaries, excluding the document itself.
    """
    if limit is None:
        limit = RELATED_LIMITS.get(document.collection, 4)
    wanted = set(specific_categories(document.meta.categories))
    if not wanted or limit <= 0:
        return []
    scored = []
    for candidate in candidates:
        if candidate.slug == document.slug:
            continue
        matches = len(wanted & set(specific_categories(candidate.categories)))
        if matches:
            scored.append((matches, candidate))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [candidate for _, candidate in scored[:limit]]


_WINNER_RULES = (
    ("overall", re.compile(r"overall winner\s*[:\-]?\s*(.+)", re.IGNORECASE), "\U0001f3c6"),
    ("budget", re.compile(r"best value\s*[:\-]?\s*(.+)", re.IGNORECASE), "\U0001f4b0"),
    ("performance", re.compile(r"performance king\s*[:\-]?\s*(.+)", re.IGNORECASE), "⚡"),
)
_WINNER_LABELS = {"overall winner", "best value", "performance king"}
_WINNER_FALLBACK_KEYS = {
    "overall": "winner_overall",
    "budget": "winner_budget",
    "performance": "winner_performance",
}


def _winner_value(raw: str) -> str:
    value = strip_markdown(raw).strip(" :-*")
    if value.lower().rstrip(":") in _WINNER_LABELS:
        return ""
    return value


def extract_winners(body: str, meta: Frontmatter | None = None) -> Winners:
    """Find "Overall Winner", "Best Value" and "Performance King" lines.

    A line matches either by its label (``**Overall Winner:** Widget X``) or by
    the label's emoji marker. Values missing from the body fall back to the
    ``winner_overall``, ``winner_budget`` and ``winner_performance`` header
    keys.

    Examples:
        >>> extract_winners("**Overall Winner:** Widget X").overall
        'Widget X'
    """
    found = {name: "" for name, _, _ in _WINNER_RULES}
    for line in body.splitlines():
        for name, label_re, marker in _WINNER_RULES:
            if found[name]:
                continue
            match = label_re.search(line)
            if match is None and marker in line:
                match = re.search(re.escape(marker) + r"\s*(.+)", line)
            if match:
                found[name] = _winner_value(match.group(1))
    if meta is not None:
        for name, key in _WINNER_FALLBACK_KEYS.items():
            if not found[name]:
                value = meta.get(key)
                found[name] = value.strip() if isinstance(value, str) else ""
    return Winners(**found)


def build_page(
    document: Document,
    renderer: ContentRenderer,
    site_url: str = "",
    candidates: Iterable[Summary] = (),
) -> Page:
    """Render a document and attach its related summaries and winners."""
    content, toc = renderer.render(document.body)
    winners = extract_winners(document.body, document.meta)
    if document.collection != "comparison":
        winners = Winners()
    return Page(
        document=document,
        content=content,
        toc=toc,
        canonical_url=join_root_url(site_url, document.url),
        related=related_documents(document, candidates),
        winners=winners,
    )


class ContentRepository:
    """Cached access to store documents, grouped by collection.

    Raw document text and directory listings go through the read-through
    cache under their own keys; page caching happens a level above.

    Attributes:
        directories: Collection name -> store directory.
    """

    def __init__(
        self,
        store: ContentSource,
        cache: ReadThroughCache,
        directories: Mapping[str, str],
        ttl: timedelta = API_TTL,
        concurrency: int = 8,
    ):
        self.store = store
        self.cache = cache
        self.directories = dict(directories)
        self.ttl = ttl
        self._concurrency = max(1, concurrency)

    def document_path(self, collection: str, slug: str) -> str:
        directory = self.directories[collection].strip("/")
        return f"{directory}/{slug}.md" if directory else f"{slug}.md"

    async def fetch_text(self, collection: str, slug: str) -> str | None:
        """Return raw document text, or None when the slug is invalid or missing."""
        if collection not in self.directories or not is_valid_slug(slug):
            log.info("content_slug_rejected", collection=collection, slug=slug)
            return None
        path = self.document_path(collection, slug)

        async def produce() -> bytes | None:
            text = await self.store.fetch_document(path)
            return text.encode("utf-8") if text is not None else None

        payload = await self.cache.get_or_produce(cache_key("doc", path), produce, self.ttl)
        return payload.decode("utf-8") if payload is not None else None

    async def get_document(self, collection: str, slug: str) -> Document | None:
        text = await self.fetch_text(collection, slug)
        if text is None:
            return None
        return Document.from_text(text, slug, collection)

    async def list_slugs(self, collection: str) -> list[str]:
        """Return the markdown slugs in a collection directory, in store order."""
        directory = self.directories[collection]

        async def produce() -> bytes | None:
            entries = await self.store.list_directory(directory)
            slugs = [e.slug for e in entries if e.is_markdown and is_valid_slug(e.slug)]
            return json.dumps(slugs).encode("utf-8") if slugs else None

        payload = await self.cache.get_or_produce(cache_key("dir", directory), produce, self.ttl)
        if payload is None:
            return []
        return list(json.loads(payload))

    async def list_documents(self, collection: str) -> list[Document]:
        """Fetch every document of a collection concurrently; missing ones are skipped."""
        slugs = await self.list_slugs(collection)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def load(slug: str) -> Document | None:
            async with semaphore:
                return await self.get_document(collection, slug)

        documents = await asyncio.gather(*(load(slug) for slug in slugs))
        return [doc for doc in documents if doc is not None]

    async def list_summaries(self, collection: str, limit: int | None = None) -> SummaryCollection:
        """Summaries of the whole collection, newest first, cut to ``limit`` after sorting."""
        documents = await self.list_documents(collection)
        summaries = SummaryCollection(Summary.from_document(doc) for doc in documents).sorted()
        return summaries if limit is None else summaries.latest(limit)
