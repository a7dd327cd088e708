"""Tests for the protocol seams between the site and its backends."""

import httpx

from conftest import FakeStore
from reviewindex.cache import MemoryCacheStore, SqliteCacheStore
from reviewindex.content_store import GitHubContentStore
from reviewindex.protocols import CacheStore, ContentRenderer, ContentSource
from reviewindex.renderers import MarkdownRenderer


def test_github_store_is_a_content_source():
    """Test GitHubContentStore satisfies ContentSource."""
    store = GitHubContentStore(httpx.AsyncClient(), "acme", "content")
    assert isinstance(store, ContentSource)


def test_fake_store_is_a_content_source():
    """Test the in-memory test double satisfies ContentSource."""
    assert isinstance(FakeStore(), ContentSource)


def test_cache_backends_are_cache_stores(tmp_path):
    """Test both cache backends satisfy CacheStore."""
    assert isinstance(MemoryCacheStore(), CacheStore)
    assert isinstance(SqliteCacheStore(tmp_path / "c.db"), CacheStore)


def test_markdown_renderer_is_a_content_renderer():
    """Test MarkdownRenderer satisfies ContentRenderer."""
    assert isinstance(MarkdownRenderer(), ContentRenderer)


def test_unrelated_objects_do_not_match():
    """Test objects missing protocol methods are rejected."""
    assert not isinstance(object(), ContentSource)
    assert not isinstance(FakeStore(), CacheStore)
