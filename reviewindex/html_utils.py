"""HTML utility functions for reviewindex.

This module provides HTML string manipulation used by the markdown renderer
and the page templates: escaping, URL safety checks and the sanitization
pass applied to every rendered body.

Following the Single Responsibility Principle, this module focuses
exclusively on HTML string manipulation.

Functions:
    escape_html: Escape special HTML characters in a string.
    safe_url: Neutralise javascript:/vbscript:/data: style URLs.
    is_external_url: Check whether a URL points off-site.
    join_root_url: Join a base URL with a path.
    is_allowed_embed: Check an iframe src against the embed allow-list.
    sanitize_html: Strip scripts, event handlers and foreign iframes.
    strip_tags: Remove all tags from an HTML fragment.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.formatter import HTMLFormatter

# Video hosts whose iframes survive sanitization.
DEFAULT_EMBED_DOMAINS = (
    "youtube.com",
    "youtube-nocookie.com",
    "player.vimeo.com",
)

_HARMFUL_PROTOCOLS = ("javascript:", "vbscript:", "data:", "file:")

_TAG_NAME_RE = re.compile(r"[a-z][a-z0-9-]*", re.IGNORECASE)
_ATTR_NAME_RE = re.compile(r"[a-z_:][-a-z0-9_:.]*", re.IGNORECASE)
_URL_ATTRS = frozenset({"href", "src", "action", "formaction", "xlink:href"})
_EMBED_RE = re.compile(r"\x00EMBED(\d+)\x00")
_ANY_TAG_RE = re.compile(r"<[^>]+>")


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Converts the following characters to their HTML entity equivalents:
    - & becomes &amp;
    - < becomes &lt;
    - > becomes &gt;
    - " becomes &quot;
    - ' becomes &#39;

    Args:
        text: The string to escape.

    Returns:
        The escaped string, safe for inclusion in HTML text and attributes.

    Examples:
        >>> escape_html('<script>alert("XSS")</script>')
        '&lt;script&gt;alert(&quot;XSS&quot;)&lt;/script&gt;'

        >>> escape_html('Tom & Jerry')
        'Tom &amp; Jerry'
    """
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


def safe_url(url: str) -> str:
    """Return the URL unchanged unless it uses a script-capable scheme.

    Args:
        url: URL taken from markdown source.

    Returns:
        The original URL, or ``#`` for javascript:, vbscript:, data: and
        file: URLs.

    Examples:
        >>> safe_url("https://example.com")
        'https://example.com'

        >>> safe_url("JavaScript:alert(1)")
        '#'
    """
    compact = re.sub(r"[\s\x00-\x1f]+", "", url).lower()
    if compact.startswith(_HARMFUL_PROTOCOLS):
        return "#"
    return url


def is_external_url(url: str) -> bool:
    """Check whether a URL is absolute (http, https or protocol-relative)."""
    return url.lower().startswith(("http://", "https://", "//"))


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Args:
        root_url: Base URL (e.g., https://example.com/blog).
        path: Path beginning with or without a leading slash.

    Returns:
        Combined URL with proper slash handling.

    Examples:
        >>> join_root_url('https://example.com', '/about')
        'https://example.com/about'

        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def is_allowed_embed(src: str, domains: Iterable[str] = DEFAULT_EMBED_DOMAINS) -> bool:
    """Check whether an iframe source points at an allow-listed video host.

    Only https (or protocol-relative) URLs whose host is one of ``domains`` or
    a subdomain of one are accepted.

    Args:
        src: The iframe ``src`` attribute value.
        domains: Allowed host names.

    Returns:
        True if the iframe may be kept.
    """
    match = re.match(r"^(?:https:)?//([^/:?#]+)", src.strip(), re.IGNORECASE)
    if not match:
        return False
    host = match.group(1).lower().rstrip(".")
    return any(host == d or host.endswith(f".{d}") for d in domains)


def render_embed(src: str) -> str:
    """Render a video iframe with a fixed, safe attribute set."""
    return (
        '<div class="video-wrap"><iframe src="'
        + escape_html(src)
        + '" frameborder="0" allow="accelerometer; autoplay; encrypted-media; '
        'gyroscope; picture-in-picture" allowfullscreen loading="lazy"></iframe></div>'
    )


def _escape_markup(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


class _SourceOrderFormatter(HTMLFormatter):
    """Serialize attributes in source order without closing void elements."""

    def __init__(self):
        super().__init__(entity_substitution=_escape_markup, void_element_close_prefix=None)

    def attributes(self, tag):
        return list(tag.attrs.items())


_FORMATTER = _SourceOrderFormatter()


def _clean_attributes(tag: Tag) -> None:
    for name in list(tag.attrs):
        lowered = name.lower()
        if lowered.startswith("on") or not _ATTR_NAME_RE.fullmatch(name):
            del tag.attrs[name]
        elif lowered in _URL_ATTRS:
            tag.attrs[name] = safe_url(tag.attrs[name])


def sanitize_html(html: str, embed_domains: Iterable[str] = DEFAULT_EMBED_DOMAINS) -> str:
    """Remove active content from rendered HTML.

    The HTML is parsed into a tree with BeautifulSoup. ``<script>`` elements
    are removed, ``on*`` event-handler attributes are stripped from every tag,
    URL attributes go through ``safe_url`` and tags with malformed names are
    unwrapped. ``<iframe>`` elements are dropped unless their ``src`` is on
    the embed allow-list, in which case the iframe is rebuilt with a fixed
    attribute set.

    Args:
        html: HTML produced by the markdown renderer.
        embed_domains: Hosts whose iframes are kept.

    Returns:
        Sanitized HTML.

    Examples:
        >>> sanitize_html('<p onclick="x()">Hi</p><script>alert(1)</script>')
        '<p>Hi</p>'
    """
    domains = tuple(embed_domains)
    soup = BeautifulSoup(html.replace("\x00", ""), "html.parser", multi_valued_attributes=None)
    embeds: list[str] = []

    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        if tag.name == "script":
            tag.decompose()
        elif tag.name == "iframe":
            src = tag.get("src")
            if src and is_allowed_embed(src, domains):
                embeds.append(render_embed(src))
                tag.replace_with(NavigableString(f"\x00EMBED{len(embeds) - 1}\x00"))
            tag.decompose()
        elif not _TAG_NAME_RE.fullmatch(tag.name):
            tag.unwrap()
        else:
            _clean_attributes(tag)

    output = soup.decode(formatter=_FORMATTER)
    return _EMBED_RE.sub(lambda m: embeds[int(m.group(1))], output)


def strip_tags(html: str) -> str:
    """Remove all HTML tags, keeping the text between them.

    Examples:
        >>> strip_tags('<em>Hello</em> world')
        'Hello world'
    """
    return _ANY_TAG_RE.sub("", html)
