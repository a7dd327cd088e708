"""Feed generation for reviewindex.

This module generates the crawler-facing documents served next to the HTML
pages: ``sitemap.xml`` and ``robots.txt``.

Classes:
    FeedGenerator: Base class for feed generators.
    SitemapGenerator: Generates sitemap.xml.
    RobotsGenerator: Generates robots.txt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date
from typing import TYPE_CHECKING, Any

from .html_utils import escape_html, join_root_url
from .utils import clean_date

if TYPE_CHECKING:
    from .content import Summary


class FeedGenerator(ABC):
    """Abstract base class for feed generators.

    Subclasses implement one document format served at ``filename``.
    """

    content_type = "text/plain; charset=utf-8"

    @property
    @abstractmethod
    def filename(self) -> str:
        """Return the URL file name, such as 'sitemap.xml'."""
        ...

    @abstractmethod
    def generate(
        self,
        summaries: Iterable[Summary],
        data: dict[str, Any],
    ) -> str | None:
        """Generate feed content.

        Args:
            summaries: Documents to list.
            data: Site settings; ``site_url`` is the absolute base URL.

        Returns:
            Feed content, or None if it cannot be generated (no base URL).
        """
        ...


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml following the sitemaps.org protocol.

    The homepage and the comparisons listing come first, followed by every
    document with its publication date as ``lastmod``.
    """

    content_type = "application/xml; charset=utf-8"

    def __init__(self, today: date | None = None):
        self.today = today

    @property
    def filename(self) -> str:
        return "sitemap.xml"

    def _url(self, loc: str, lastmod: str, changefreq: str, priority: str) -> str:
        return (
            f"  <url><loc>{escape_html(loc)}</loc><lastmod>{lastmod}</lastmod>"
            f"<changefreq>{changefreq}</changefreq><priority>{priority}</priority></url>"
        )

    def generate(
        self,
        summaries: Iterable[Summary],
        data: dict[str, Any],
    ) -> str | None:
        base_url = str(data.get("site_url", "")).rstrip("/")
        if not base_url:
            return None
        today = clean_date(None, today=self.today)

        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
            self._url(f"{base_url}/", today, "daily", "1.0"),
            self._url(join_root_url(base_url, "/comparisons"), today, "daily", "0.9"),
        ]
        for summary in summaries:
            lastmod = clean_date(summary.date, today=self.today)
            lines.append(
                self._url(join_root_url(base_url, summary.url), lastmod, "monthly", "0.8")
            )
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"


class RobotsGenerator(FeedGenerator):
    """Generates robots.txt pointing crawlers at the sitemap."""

    disallow = ("/api/",)

    @property
    def filename(self) -> str:
        return "robots.txt"

    def generate(
        self,
        summaries: Iterable[Summary],
        data: dict[str, Any],
    ) -> str | None:
        base_url = str(data.get("site_url", "")).rstrip("/")
        lines = [f"# robots.txt for {data.get('site_name', 'reviewindex')}", "", "User-agent: *"]
        lines.append("Allow: /")
        lines.extend(f"Disallow: {path}" for path in self.disallow)
        if base_url:
            lines.extend(["", f"Sitemap: {base_url}/sitemap.xml"])
        return "\n".join(lines) + "\n"
