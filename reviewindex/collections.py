from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .utils import normalize_categories, parse_date, specific_categories

if TYPE_CHECKING:
    from .content import Summary

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SummaryCollection(Sequence["Summary"]):
    """Lightweight helper for working with lists of Summaries in templates and code."""

    def __init__(self, summaries: Iterable[Summary]):
        self._items = list(summaries)
        self._sorted_cache: SummaryCollection | None = None

    def __iter__(self) -> Iterator[Summary]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, item):
        return self._items[item]

    def sorted(self, reverse: bool = True) -> SummaryCollection:
        """Sort summaries by date, then by title.

        Undated summaries sort as the oldest. Titles break ties
        alphabetically in both directions.

        Args:
            reverse: If True (default), newest first.

        Returns:
            A new SummaryCollection.
        """
        if self._sorted_cache is not None and reverse:
            return self._sorted_cache
        by_title = sorted(self._items, key=lambda s: s.title.lower())
        ordered = sorted(by_title, key=lambda s: parse_date(s.date) or _EPOCH, reverse=reverse)
        result = SummaryCollection(ordered)
        if reverse:
            self._sorted_cache = result
        return result

    def latest(self, count: int = 5) -> SummaryCollection:
        return SummaryCollection(self.sorted()[:count])

    def in_category(self, category: str) -> SummaryCollection:
        wanted = category.strip().lower()
        return SummaryCollection(
            s for s in self._items if wanted in normalize_categories(s.categories)
        )

    def excluding(self, slug: str) -> SummaryCollection:
        return SummaryCollection(s for s in self._items if s.slug != slug)

    def search(self, query: str) -> SummaryCollection:
        """Case-insensitive match of every query word against title, description and categories."""
        words = query.lower().split()
        if not words:
            return SummaryCollection(self._items)

        def haystack(s: Summary) -> str:
            return " ".join([s.title, s.description, *s.categories]).lower()

        return SummaryCollection(s for s in self._items if all(w in haystack(s) for w in words))

    def by_category(self) -> CategoryCollection:
        """Group summaries under each specific (non-generic) category."""
        mapping: dict[str, list[Summary]] = {}
        for summary in self._items:
            for category in specific_categories(summary.categories):
                mapping.setdefault(category, []).append(summary)
        return CategoryCollection(dict(sorted(mapping.items())))

    def to_list(self) -> list[dict]:
        return [s.to_dict() for s in self._items]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"SummaryCollection({len(self._items)} summaries)"


class CategoryCollection(Mapping[str, SummaryCollection]):
    """Mapping of category name to SummaryCollection."""

    def __init__(self, mapping: dict[str, Iterable[Summary]]):
        self._mapping = {k: SummaryCollection(v) for k, v in mapping.items()}

    def __getitem__(self, key: str) -> SummaryCollection:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"CategoryCollection({len(self._mapping)} categories)"
