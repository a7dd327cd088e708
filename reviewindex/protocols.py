"""Protocol definitions for reviewindex.

The application depends on these interfaces rather than on the GitHub client,
the cache backends or mistune directly, so tests can pass in small fakes.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .cache import CacheEntry
    from .content import Heading
    from .content_store import StoreEntry


@runtime_checkable
class ContentSource(Protocol):
    """Protocol for the remote document store.

    Implementations never raise for missing or unreachable documents; they
    return None (or an empty listing) and log the reason.
    """

    @abstractmethod
    async def fetch_document(self, path: str) -> str | None:
        """Return the raw text at ``path``, or None when it cannot be read."""
        ...

    @abstractmethod
    async def list_directory(self, path: str) -> list[StoreEntry]:
        """Return the entries of a directory, or an empty list."""
        ...


@runtime_checkable
class CacheStore(Protocol):
    """Protocol for cache backends.

    Every method may raise ``CacheStoreError``; nothing else may escape.
    ``set`` must replace an entry atomically.
    """

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    async def set(self, entry: CacheEntry) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def clear(self) -> int: ...


@runtime_checkable
class ContentRenderer(Protocol):
    """Protocol for turning a document body into HTML."""

    @abstractmethod
    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render content to sanitized HTML.

        Args:
            content: Markdown body.

        Returns:
            Tuple of (rendered HTML, list of headings for TOC).
        """
        ...

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Return the source type identifier (e.g., 'markdown')."""
        ...
