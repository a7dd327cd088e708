"""Markdown rendering for reviewindex.

Converts document bodies to HTML with mistune, then runs the result through
``html_utils.sanitize_html`` so that stored content can never inject script.

Key classes:
- Heading: A heading collected during rendering, for tables of contents.
- MarkdownRenderer: Renders a markdown body to sanitized HTML.

Key functions:
- affiliate_buttons: mistune plugin for ``[text](url){: .btn ...}`` links.
- render_markdown: Convenience wrapper returning only the HTML.
"""

from __future__ import annotations

import html as htmllib
import re
from collections.abc import Iterable
from dataclasses import dataclass

import mistune
import structlog

from .html_utils import (
    DEFAULT_EMBED_DOMAINS,
    escape_html,
    is_external_url,
    safe_url,
    sanitize_html,
    strip_tags,
)

log = structlog.get_logger()

AFFILIATE_BUTTON_PATTERN = (
    r"\[(?P<btn_text>[^\[\]\n]+)\]"
    r"\((?P<btn_url>[^()\s]+)\)"
    r"\{:\s*\.btn\b[^}\n]*\}"
)


@dataclass
class Heading:
    """Represents a heading extracted from markdown content for TOC generation.

    Attributes:
        id: Anchor ID for the heading (URL-friendly slug).
        text: The text content of the heading.
        level: Rendered heading level (1-6).
    """

    id: str
    text: str
    level: int


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text (may contain inline HTML).

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = htmllib.unescape(strip_tags(text)).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-") or "section"


def parse_affiliate_button(inline, m: re.Match, state) -> int:
    state.append_token(
        {
            "type": "affiliate_button",
            "raw": m.group("btn_text"),
            "attrs": {"url": m.group("btn_url")},
        }
    )
    return m.end()


def render_affiliate_button(renderer, text: str, url: str) -> str:
    return (
        f'<a href="{escape_html(safe_url(url))}" class="affiliate-btn" '
        f'target="_blank" rel="nofollow sponsored">{escape_html(text)}</a>'
    )


def affiliate_buttons(md) -> None:
    """mistune plugin turning ``[Buy](url){: .btn .btn-primary}`` into a button."""
    md.inline.register(
        "affiliate_button",
        AFFILIATE_BUTTON_PATTERN,
        parse_affiliate_button,
        before="link",
    )
    if md.renderer and md.renderer.NAME == "html":
        md.renderer.register("affiliate_button", render_affiliate_button)


class _ReviewHTMLRenderer(mistune.HTMLRenderer):
    """mistune renderer with heading ids, safe links and lazy images.

    Attributes:
        heading_offset: Levels added to every heading (capped at 6).
        headings: Headings seen so far, in document order.
    """

    def __init__(self, heading_offset: int = 0):
        super().__init__(escape=False)
        self.heading_offset = heading_offset
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        level = max(1, min(6, level + self.heading_offset))
        base_id = _generate_heading_id(text)

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        plain = htmllib.unescape(strip_tags(text)).strip()
        self.headings.append(Heading(id=heading_id, text=plain, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def link(self, text: str, url: str, title: str | None = None) -> str:
        href = escape_html(safe_url(url))
        out = f'<a href="{href}"'
        if title:
            out += f' title="{escape_html(title)}"'
        if is_external_url(url):
            out += ' target="_blank" rel="noopener noreferrer"'
        return f"{out}>{text}</a>"

    def image(self, text: str, url: str, title: str | None = None) -> str:
        alt = escape_html(htmllib.unescape(strip_tags(text or "")))
        src = escape_html(safe_url(url or ""))
        out = f'<img src="{src}" alt="{alt}"'
        if title:
            out += f' title="{escape_html(title)}"'
        return f'{out} loading="lazy" decoding="async" class="content-image">'

    def block_code(self, code: str, info: str | None = None) -> str:
        lang = (info or "").strip().split(None, 1)
        lang_attr = f' data-lang="{escape_html(lang[0])}"' if lang else ""
        return f'<pre class="code-block"><code{lang_attr}>{escape_html(code)}</code></pre>\n'


class MarkdownRenderer:
    """Renders markdown bodies to sanitized HTML.

    Rendering never raises: if mistune fails on some input the body is
    returned as an escaped paragraph and the failure is logged.

    Attributes:
        heading_offset: Levels added to every markdown heading.
        embed_domains: Hosts whose iframes survive sanitization.
    """

    plugins = ("strikethrough", "table", "url", affiliate_buttons)

    def __init__(
        self,
        heading_offset: int = 0,
        embed_domains: Iterable[str] = DEFAULT_EMBED_DOMAINS,
    ):
        self.heading_offset = heading_offset
        self.embed_domains = tuple(embed_domains)

    @property
    def source_type(self) -> str:
        """Return the source type identifier."""
        return "markdown"

    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render markdown to sanitized HTML.

        Args:
            content: Markdown body (frontmatter already removed).

        Returns:
            Tuple of (sanitized HTML, headings in document order).
        """
        if not content:
            return "", []
        renderer = _ReviewHTMLRenderer(self.heading_offset)
        markdown = mistune.create_markdown(renderer=renderer, plugins=list(self.plugins))
        try:
            html = markdown(content)
        except Exception:
            log.error("markdown_render_failed", length=len(content), exc_info=True)
            html = f"<p>{escape_html(content)}</p>"
            renderer.headings = []
        return sanitize_html(html, self.embed_domains), renderer.headings


def render_markdown(content: str, heading_offset: int = 0) -> str:
    """Render markdown and return only the sanitized HTML."""
    html, _ = MarkdownRenderer(heading_offset=heading_offset).render(content)
    return html
