import asyncio
import copy
from datetime import datetime, timedelta, timezone

import pytest
import structlog

from reviewindex.app import Site, public_settings
from reviewindex.cache import MemoryCacheStore, ReadThroughCache
from reviewindex.config import DEFAULT_CONFIG, directories
from reviewindex.content import ContentRepository
from reviewindex.content_store import StoreEntry
from reviewindex.templates import TemplateEngine

WIDGET_X = """---
title: "Widget X"
description: "A compact widget for small desks."
date: "2024-05-01"
categories: [gadgets, desk, reviews]
rating: 4
affiliateLink: "https://amzn.to/widget"
youtube_id: "https://youtu.be/dQw4w9WgXcQ"
---
# Overview

Hello **world**

[Buy now](https://amzn.to/widget){: .btn .btn-primary}
"""

GIZMO_PRO = """---
title: "Gizmo Pro"
date: "2024-06-01"
categories: [gadgets, audio]
rating: 5
---
The Gizmo Pro is loud.
"""

DESK_LAMP = """---
title: "Desk Lamp"
date: "2024-03-01"
categories: [desk, lighting, gadgets]
---
A lamp for your desk.
"""

BLENDER = """---
title: "Blender 9000"
date: "2024-02-01"
categories: [kitchen]
---
It blends.
"""

WIDGET_VS_GIZMO = """---
title: "Widget X vs Gizmo Pro"
date: "2024-07-01"
categories: [gadgets, comparisons]
comparison_products: ["Widget X", "Gizmo Pro"]
winner_performance: "Gizmo Pro"
---
## Verdict

\U0001f3c6 **Overall Winner:** Widget X
\U0001f4b0 Best Value: Widget X
"""

BLENDER_SHOWDOWN = """---
title: "Blender Showdown"
date: "2024-01-15"
categories: [kitchen]
comparison_products: [Blender 9000, Mixer Max]
---
Two blenders enter.
"""

SAMPLE_DOCUMENTS = {
    "content/reviews/widget-x.md": WIDGET_X,
    "content/reviews/gizmo-pro.md": GIZMO_PRO,
    "content/reviews/desk-lamp.md": DESK_LAMP,
    "content/reviews/blender-9000.md": BLENDER,
    "content/comparisons/widget-x-vs-gizmo.md": WIDGET_VS_GIZMO,
    "content/comparisons/blender-showdown.md": BLENDER_SHOWDOWN,
}


class FakeStore:
    """In-memory stand-in for GitHubContentStore that records every call."""

    def __init__(self, documents=None, delay=0.0):
        self.documents = dict(documents or {})
        self.listed_only: list[str] = []
        self.fetches: list[str] = []
        self.listings: list[str] = []
        self.delay = delay

    async def fetch_document(self, path):
        self.fetches.append(path)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.documents.get(path)

    async def list_directory(self, path):
        self.listings.append(path)
        prefix = path.rstrip("/") + "/"
        entries = []
        for full in sorted([*self.documents, *self.listed_only]):
            if full.startswith(prefix) and "/" not in full[len(prefix):]:
                entries.append(StoreEntry(name=full[len(prefix):], path=full))
        return entries


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def documents():
    return dict(SAMPLE_DOCUMENTS)


@pytest.fixture
def store(documents):
    return FakeStore(documents)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_site():
    """Factory building a Site over a FakeStore and a memory cache."""

    def factory(documents=None, clock=None, cache_store=None, delay=0.0, **overrides):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config.update(owner="acme", repo="content", site_url="https://reviews.example")
        config.update(overrides)
        fake = FakeStore(SAMPLE_DOCUMENTS if documents is None else documents, delay=delay)
        cache = ReadThroughCache(cache_store or MemoryCacheStore(), clock=clock)
        repository = ContentRepository(fake, cache, directories(config))
        templates = TemplateEngine(public_settings(config))
        return Site(config, repository, templates, cache), fake

    return factory
