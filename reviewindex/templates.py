"""Page assembly for reviewindex.

This module uses Jinja2 to turn rendered documents and listings into full
HTML pages with SEO metadata (title, description, canonical URL, Open Graph
tags and JSON-LD).

Templates ship inside the package (``reviewindex/templates``). A site can
override any of them by pointing ``template_dir`` at a directory holding
files with the same names.

Key class:
- TemplateEngine: Renders review, comparison, index, listing and error pages.

Key functions:
- render_toc: Nested ``<ul>`` table of contents from page headings.
- review_json_ld / comparison_json_ld: Structured data for search engines.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, select_autoescape
from markupsafe import Markup

from .collections import SummaryCollection
from .content import Heading, Page
from .html_utils import escape_html, join_root_url, safe_url
from .utils import clean_date

__all__ = ["TemplateEngine", "render_toc", "review_json_ld", "comparison_json_ld"]


def render_toc(headings: list[Heading]) -> Markup:
    """Render headings as a nested ``<ul><li><a href="#id">`` table of contents.

    Args:
        headings: Headings in document order.

    Returns:
        Markup-safe HTML, or empty Markup when there are no headings.
    """
    if not headings:
        return Markup("")

    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        else:
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(
            f'<li><a href="#{escape_html(heading.id)}">{escape_html(heading.text)}</a>'
        )

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


def review_json_ld(page: Page, site: Mapping[str, Any]) -> dict[str, Any]:
    """Build ``Product`` + ``Review`` structured data for a review page."""
    meta = page.meta
    review: dict[str, Any] = {
        "@type": "Review",
        "name": meta.title,
        "author": {"@type": "Person", "name": meta.author or site.get("site_name", "")},
        "datePublished": clean_date(meta.date),
        "reviewBody": page.description,
    }
    if meta.rating is not None:
        review["reviewRating"] = {
            "@type": "Rating",
            "ratingValue": meta.rating,
            "bestRating": 5,
            "worstRating": 1,
        }
    data: dict[str, Any] = {
        "@context": "https://schema.org",
        "@type": "Product",
        "name": meta.title,
        "description": page.description,
        "url": page.canonical_url,
        "review": review,
    }
    if meta.image:
        data["image"] = meta.image
    return data


def comparison_json_ld(page: Page, site: Mapping[str, Any]) -> dict[str, Any]:
    """Build ``ItemList`` structured data for a comparison page."""
    products = page.meta.comparison_products
    items = []
    for position, name in enumerate(products, start=1):
        item: dict[str, Any] = {"@type": "ListItem", "position": position, "name": name}
        if name == page.winners.overall:
            item["award"] = "Overall Winner"
        items.append(item)
    return {
        "@context": "https://schema.org",
        "@type": "ItemList",
        "name": page.meta.title,
        "description": page.description,
        "url": page.canonical_url,
        "datePublished": clean_date(page.meta.date),
        "numberOfItems": len(items),
        "itemListElement": items,
    }


def _stars(rating: int | None) -> str:
    if not rating:
        return ""
    return "★" * rating + "☆" * (5 - rating)


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        site: Site settings visible to templates as ``site``.
        env: Jinja2 environment.
    """

    def __init__(self, site: Mapping[str, Any], template_dir: Path | None = None):
        """Initialize the template engine.

        Args:
            site: Site settings (at least ``site_name`` and ``site_url``).
            template_dir: Optional directory whose templates take precedence
                over the packaged ones.
        """
        self.site = dict(site)
        loaders = []
        if template_dir is not None:
            loaders.append(FileSystemLoader(str(template_dir)))
        loaders.append(PackageLoader("reviewindex", "templates"))
        self.env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._install_globals()

    def _install_globals(self) -> None:
        self.env.globals["site"] = self.site
        self.env.globals["url_for"] = self._url_for
        self.env.globals["render_toc"] = render_toc
        self.env.filters["safe_url"] = safe_url
        self.env.filters["clean_date"] = clean_date
        self.env.filters["stars"] = _stars

    def _url_for(self, path: str) -> str:
        """Return an absolute URL for a site path when ``site_url`` is set."""
        if path.startswith(("http://", "https://", "//")):
            return path
        path = path if path.startswith("/") else f"/{path}"
        return join_root_url(self.site.get("site_url", ""), path)

    def _render(self, name: str, **context: Any) -> str:
        return self.env.get_template(name).render(**context)

    def render_review(self, page: Page) -> str:
        return self._render(
            "review.html.jinja",
            page=page,
            meta=page.meta,
            json_ld=review_json_ld(page, self.site),
        )

    def render_comparison(self, page: Page) -> str:
        return self._render(
            "comparison.html.jinja",
            page=page,
            meta=page.meta,
            json_ld=comparison_json_ld(page, self.site),
        )

    def render_index(
        self,
        reviews: SummaryCollection,
        comparisons: SummaryCollection | None = None,
        latest: int = 12,
        limit: int | None = None,
    ) -> str:
        """Render the homepage: latest reviews plus a title index of up to ``limit`` reviews."""
        comparisons = comparisons if comparisons is not None else SummaryCollection([])
        return self._render(
            "index.html.jinja",
            latest=reviews.latest(latest),
            reviews=reviews.latest(limit) if limit else reviews,
            comparisons=comparisons.latest(4),
            categories=reviews.by_category(),
        )

    def render_listing(
        self, comparisons: SummaryCollection, query: str = "", limit: int | None = None
    ) -> str:
        """Render the comparisons listing, filtered by ``query`` and showing at most ``limit``."""
        results = comparisons.search(query) if query else comparisons
        total_results = len(results)
        if limit:
            results = results.latest(limit)
        return self._render(
            "comparisons.html.jinja",
            comparisons=results,
            query=query,
            matches=total_results,
            total=len(comparisons),
        )

    def render_error(self, status: int, title: str, message: str) -> str:
        return self._render("error.html.jinja", status=status, title=title, message=message)
