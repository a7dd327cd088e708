"""Request handling for reviewindex.

``Site.handle`` is the single entry point: it maps a request path to a route
handler, serves the response through the whole-page read-through cache and
turns failures into the 404/500 templates. Handlers are coroutines returning
the response body; they signal problems by raising ``HTTPError`` subclasses.

Key classes:
- Request / Response: Transport-neutral request and response values.
- HTTPError, NotFound, BadRequest: Errors that become error pages.
- Route: One entry of the routing table.
- Site: Router, handlers and page caching.

Key functions:
- create_site: Build a Site (HTTP client, store, cache) from configuration.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlsplit

import structlog

from .cache import CacheStoreError, ReadThroughCache, create_store, request_cache_key
from .config import directories
from .content import ContentRepository, Page, build_page
from .content_store import GitHubContentStore, build_http_client
from .feeds import RobotsGenerator, SitemapGenerator
from .html_utils import join_root_url
from .renderers import MarkdownRenderer
from .templates import TemplateEngine
from .utils import is_valid_slug

log = structlog.get_logger()

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

HTML = "text/html; charset=utf-8"
JSON = "application/json"

_MD_URL_RE = re.compile(r"/(?P<kind>review|comparison)/(?P<slug>[^/]+)\.md")
_MAX_QUERY_LENGTH = 100


@dataclass
class Request:
    """An incoming GET/HEAD request.

    Attributes:
        path: URL path without the query string.
        query: Query parameters; the last value wins for repeated names.
        method: HTTP method, upper-cased.
        headers: Request headers with lower-cased names.
    """

    path: str
    query: dict[str, str] = field(default_factory=dict)
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_target(
        cls,
        target: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
    ) -> Request:
        """Build a request from a request-target such as ``/comparisons?q=tv``."""
        parts = urlsplit(target)
        return cls(
            path=parts.path or "/",
            query=dict(parse_qsl(parts.query)),
            method=method.upper(),
            headers={k.lower(): v for k, v in (headers or {}).items()},
        )


@dataclass
class Response:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def json(self) -> Any:
        return json.loads(self.body)


class HTTPError(Exception):
    """A handler outcome that is rendered as an error page.

    Attributes:
        status: HTTP status code.
        title: Short page heading.
        message: Sentence shown to the visitor.
    """

    status = 500
    title = "Server Error"

    def __init__(self, message: str = "Something went wrong while loading this page."):
        self.message = message
        super().__init__(message)


class NotFound(HTTPError):
    status = 404
    title = "Not Found"

    def __init__(self, message: str = "The page you requested was not found."):
        super().__init__(message)


class BadRequest(HTTPError):
    status = 400
    title = "Bad Request"


Handler = Callable[..., Awaitable[bytes]]


@dataclass(frozen=True)
class Route:
    """Routing table entry.

    Attributes:
        name: Route name, also the key of its TTL in ``config["ttl"]``.
        pattern: Full-match path regex; named groups become handler kwargs.
        handler: Coroutine function ``(request, **groups) -> bytes``.
        content_type: Content-Type of a successful response.
    """

    name: str
    pattern: re.Pattern
    handler: Handler
    content_type: str = HTML

    @property
    def is_api(self) -> bool:
        return self.content_type == JSON


class Site:
    """The review site: router, handlers and whole-page caching.

    Only 200 responses are cached; error pages are rendered fresh each time.

    Attributes:
        config: Site configuration (see ``config.DEFAULT_CONFIG``).
        repository: Document access.
        templates: Page assembler.
        cache: Whole-page cache.
    """

    def __init__(
        self,
        config: Mapping[str, Any],
        repository: ContentRepository,
        templates: TemplateEngine,
        cache: ReadThroughCache,
    ):
        self.config = dict(config)
        self.repository = repository
        self.templates = templates
        self.cache = cache
        self.renderer = MarkdownRenderer(
            heading_offset=1, embed_domains=self.config.get("embed_domains", ())
        )
        self.routes = [
            Route("home", re.compile(r"/"), self.home),
            Route("review", re.compile(r"/review/(?P<slug>[^/]+)"), self.review),
            Route("comparison", re.compile(r"/comparison/(?P<slug>[^/]+)"), self.comparison),
            Route("listing", re.compile(r"/comparisons"), self.listing),
            Route(
                "sitemap",
                re.compile(r"/sitemap\.xml"),
                self.sitemap,
                SitemapGenerator.content_type,
            ),
            Route("robots", re.compile(r"/robots\.txt"), self.robots, RobotsGenerator.content_type),
            Route("api", re.compile(r"/api/posts"), self.api_posts, JSON),
            Route("api", re.compile(r"/api/post"), self.api_post, JSON),
        ]
        self._closers: list[Callable[[], Awaitable[None]]] = []

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def ttl(self, route: Route) -> timedelta:
        return timedelta(seconds=int(self.config["ttl"][route.name]))

    def base_url(self, request: Request) -> str:
        """Configured site URL, or one derived from the Host header."""
        if self.config.get("site_url"):
            return str(self.config["site_url"]).rstrip("/")
        host = request.headers.get("host", "")
        return f"http://{host}" if host else ""

    def match(self, path: str) -> tuple[Route, dict[str, str]] | None:
        for route in self.routes:
            found = route.pattern.fullmatch(path)
            if found:
                return route, found.groupdict()
        return None

    async def handle(self, request: Request) -> Response:
        """Serve one request. Never raises."""
        if request.method not in ("GET", "HEAD"):
            return Response(405, b"Method Not Allowed", {"Allow": "GET, HEAD"})

        path = request.path
        if len(path) > 1 and path.endswith("/"):
            path = path.rstrip("/") or "/"

        md_match = _MD_URL_RE.fullmatch(path)
        if md_match:
            location = f"/{md_match.group('kind')}/{md_match.group('slug')}"
            return Response(301, b"", {"Location": location, "Cache-Control": "public, max-age=86400"})

        matched = self.match(path)
        if matched is None:
            log.info("route_not_found", path=path)
            return self.error_response(NotFound())
        route, params = matched

        host = "" if self.config.get("site_url") else request.headers.get("host", "")
        key = request_cache_key(path, request.query, host)
        ttl = self.ttl(route)

        async def produce() -> bytes:
            return await route.handler(request, **params)

        try:
            body = await self.cache.get_or_produce(key, produce, ttl)
        except HTTPError as exc:
            log.info("request_error", path=path, status=exc.status, message=exc.message)
            return self.error_response(exc, api=route.is_api)
        except Exception:
            log.exception("request_failed", path=path, route=route.name)
            return self.error_response(HTTPError(), api=route.is_api)

        headers = {
            "Content-Type": route.content_type,
            "Cache-Control": f"public, max-age={int(ttl.total_seconds())}",
        }
        if route.is_api:
            headers["Access-Control-Allow-Origin"] = "*"
        else:
            headers.update(SECURITY_HEADERS)
        return Response(200, body or b"", headers)

    def error_response(self, error: HTTPError, api: bool = False) -> Response:
        headers = {"Cache-Control": "no-store"}
        if api:
            body = json.dumps({"success": False, "error": error.message}).encode("utf-8")
            headers["Content-Type"] = JSON
            return Response(error.status, body, headers)
        try:
            html = self.templates.render_error(error.status, error.title, error.message)
        except Exception:
            log.exception("error_page_failed", status=error.status)
            html = f"<h1>{error.status} {error.title}</h1><p>{error.message}</p>"
        headers["Content-Type"] = HTML
        headers.update(SECURITY_HEADERS)
        return Response(error.status, html.encode("utf-8"), headers)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def home(self, request: Request) -> bytes:
        reviews = await self.repository.list_summaries("review")
        comparisons = await self.repository.list_summaries("comparison")
        return self.templates.render_index(
            reviews, comparisons, limit=int(self.config["max_listing"])
        ).encode("utf-8")

    async def _document_page(self, kind: str, slug: str) -> Page:
        document = await self.repository.get_document(kind, slug)
        if document is None:
            raise NotFound(f"Sorry, the {kind} you requested was not found.")
        candidates = ()
        if document.meta.categories:
            candidates = await self.repository.list_summaries(kind)
        site_url = str(self.config.get("site_url", ""))
        return build_page(document, self.renderer, site_url, candidates)

    async def review(self, request: Request, slug: str) -> bytes:
        page = await self._document_page("review", slug)
        return self.templates.render_review(page).encode("utf-8")

    async def comparison(self, request: Request, slug: str) -> bytes:
        page = await self._document_page("comparison", slug)
        return self.templates.render_comparison(page).encode("utf-8")

    async def listing(self, request: Request) -> bytes:
        query = request.query.get("q", "").strip()[:_MAX_QUERY_LENGTH]
        comparisons = await self.repository.list_summaries("comparison")
        return self.templates.render_listing(
            comparisons, query, limit=int(self.config["max_listing"])
        ).encode("utf-8")

    async def _all_summaries(self) -> list:
        reviews = await self.repository.list_summaries("review")
        comparisons = await self.repository.list_summaries("comparison")
        return [*reviews, *comparisons]

    async def sitemap(self, request: Request) -> bytes:
        base_url = self.base_url(request)
        if not base_url:
            raise NotFound("No site URL is configured.")
        summaries = await self._all_summaries()
        data = {"site_url": base_url, "site_name": self.config.get("site_name", "")}
        return SitemapGenerator().generate(summaries, data).encode("utf-8")

    async def robots(self, request: Request) -> bytes:
        data = {"site_url": self.base_url(request), "site_name": self.config.get("site_name", "")}
        return RobotsGenerator().generate([], data).encode("utf-8")

    async def api_posts(self, request: Request) -> bytes:
        reviews = await self.repository.list_summaries("review")
        payload = {"success": True, "count": len(reviews), "posts": reviews.to_list()}
        return json.dumps(payload).encode("utf-8")

    async def api_post(self, request: Request) -> bytes:
        slug = request.query.get("slug", "").strip()
        if slug.endswith(".md"):
            slug = slug[:-3]
        if not slug:
            raise BadRequest("The slug parameter is required.")
        if not is_valid_slug(slug):
            raise NotFound("Post not found.")
        document = await self.repository.get_document("review", slug)
        if document is None:
            raise NotFound("Post not found.")
        payload = {
            "success": True,
            "slug": slug,
            "url": join_root_url(str(self.config.get("site_url", "")), document.url),
            "frontmatter": document.data,
        }
        return json.dumps(payload).encode("utf-8")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on_close(self, closer: Callable[[], Awaitable[None]]) -> None:
        self._closers.append(closer)

    async def aclose(self) -> None:
        """Release the HTTP client and cache connections."""
        for closer in reversed(self._closers):
            await closer()
        self._closers.clear()


PUBLIC_SETTINGS = ("site_name", "site_url", "description", "tagline")


def public_settings(config: Mapping[str, Any]) -> dict[str, Any]:
    """The subset of configuration templates may see (never the token)."""
    return {key: config.get(key, "") for key in PUBLIC_SETTINGS}


async def create_site(config: Mapping[str, Any], client=None) -> Site:
    """Build a Site from configuration.

    Args:
        config: Loaded configuration.
        client: Optional ``httpx.AsyncClient``; one is created (and closed by
            ``Site.aclose``) when omitted.

    Returns:
        A ready Site. A cache database that cannot be opened is logged and
        bypassed rather than treated as fatal.
    """
    owns_client = client is None
    if client is None:
        client = build_http_client(float(config["fetch_timeout"]))
    store = GitHubContentStore(
        client,
        owner=config["owner"],
        repo=config["repo"],
        token=config.get("token") or None,
        branch=config.get("branch") or None,
        api_url=config.get("api_url") or "https://api.github.com",
    )

    cache_store = create_store(config["cache_backend"], config.get("cache_path"))
    if hasattr(cache_store, "init_db"):
        try:
            await cache_store.init_db()
        except CacheStoreError:
            log.warning("cache_unavailable", path=str(config.get("cache_path")), exc_info=True)
    cache = ReadThroughCache(cache_store)

    repository = ContentRepository(
        store,
        cache,
        directories(config),
        ttl=timedelta(seconds=int(config["ttl"]["document"])),
    )
    template_dir = Path(config["template_dir"]) if config.get("template_dir") else None
    templates = TemplateEngine(public_settings(config), template_dir)
    site = Site(config, repository, templates, cache)
    site.on_close(cache_store.close)
    if owns_client:
        site.on_close(client.aclose)
    return site
