import asyncio

import httpx
import respx
from structlog.testing import capture_logs

from conftest import WIDGET_X
from reviewindex.app import BadRequest, NotFound, Request, Site, create_site, public_settings
from reviewindex.cache import CacheStoreError
from reviewindex.config import load_config


def get(site, target, **headers):
    return asyncio.run(site.handle(Request.from_target(target, headers=headers)))


def test_request_from_target():
    request = Request.from_target("/comparisons?q=tv&q=blender", "get", {"Host": "a.example"})
    assert request.path == "/comparisons"
    assert request.query == {"q": "blender"}
    assert request.method == "GET"
    assert request.headers == {"host": "a.example"}


def test_review_page(make_site):
    site, _ = make_site()
    response = get(site, "/review/widget-x")
    assert response.status == 200
    assert "<h1>Widget X</h1>" in response.text
    assert "Hello <strong>world</strong>" in response.text
    assert '<h2 id="overview">Overview</h2>' in response.text
    assert "Desk Lamp" in response.text
    assert response.headers["Content-Type"] == "text/html; charset=utf-8"
    assert response.headers["Cache-Control"] == "public, max-age=15552000"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_missing_review_is_404(make_site):
    site, _ = make_site()
    response = get(site, "/review/does-not-exist")
    assert response.status == 404
    assert "not found" in response.text.lower()
    assert "Sorry, the review you requested was not found." in response.text
    assert response.headers["Cache-Control"] == "no-store"


def test_unknown_route_is_404(make_site):
    site, store = make_site()
    response = get(site, "/gallery/widget-x")
    assert response.status == 404
    assert "The page you requested was not found." in response.text
    assert store.fetches == []


def test_invalid_slug_is_404_without_store_access(make_site):
    site, store = make_site()
    assert get(site, "/review/Bad%20Slug").status == 404
    assert get(site, "/review/..").status == 404
    assert store.fetches == []


def test_pages_are_cached(make_site):
    site, store = make_site()
    first = get(site, "/review/widget-x")
    fetches = len(store.fetches)
    second = get(site, "/review/widget-x")
    assert second.body == first.body
    assert len(store.fetches) == fetches
    assert store.fetches.count("content/reviews/widget-x.md") == 1


def test_pages_expire(make_site, clock):
    site, store = make_site(clock=clock)
    get(site, "/review/widget-x")
    clock.advance(days=180, seconds=1)
    assert get(site, "/review/widget-x").status == 200
    assert store.fetches.count("content/reviews/widget-x.md") == 2


def test_not_found_is_not_cached(make_site):
    site, store = make_site()
    assert get(site, "/review/fresh-post").status == 404
    store.documents["content/reviews/fresh-post.md"] = "---\ntitle: Fresh Post\n---\nNew!"
    response = get(site, "/review/fresh-post")
    assert response.status == 200
    assert "<h1>Fresh Post</h1>" in response.text


def test_concurrent_requests_both_succeed(make_site):
    site, _ = make_site(delay=0.01)

    async def run():
        request = Request.from_target("/review/widget-x")
        return await asyncio.gather(site.handle(request), site.handle(request))

    first, second = asyncio.run(run())
    assert first.status == second.status == 200
    assert first.body == second.body


def test_trailing_slash_and_markdown_urls(make_site):
    site, _ = make_site()
    assert get(site, "/review/widget-x/").status == 200
    response = get(site, "/review/widget-x.md")
    assert response.status == 301
    assert response.headers["Location"] == "/review/widget-x"
    assert get(site, "/comparison/widget-x-vs-gizmo.md").headers["Location"] == (
        "/comparison/widget-x-vs-gizmo"
    )


def test_comparison_page(make_site):
    site, _ = make_site()
    response = get(site, "/comparison/widget-x-vs-gizmo")
    assert response.status == 200
    assert '"@type": "ItemList"' in response.text
    assert "<p>Gizmo Pro</p>" in response.text
    assert "Sorry, the comparison you requested was not found." in get(
        site, "/comparison/widget-x"
    ).text


def test_home_page(make_site):
    site, _ = make_site()
    response = get(site, "/")
    assert response.status == 200
    assert "Latest reviews" in response.text
    assert "Gizmo Pro" in response.text
    assert "Blender Showdown" in response.text
    assert response.headers["Cache-Control"] == "public, max-age=10800"


def test_home_page_with_empty_store(make_site):
    site, _ = make_site(documents={})
    response = get(site, "/")
    assert response.status == 200
    assert "No reviews published yet." in response.text


def test_listing_search(make_site):
    site, _ = make_site()
    response = get(site, "/comparisons?q=blender")
    assert response.status == 200
    assert "Blender Showdown" in response.text
    assert "Widget X vs Gizmo Pro" not in response.text
    everything = get(site, "/comparisons")
    assert "Widget X vs Gizmo Pro" in everything.text


def test_listing_query_is_truncated(make_site):
    site, _ = make_site()
    response = get(site, "/comparisons?q=" + "a" * 500)
    assert response.status == 200
    assert "a" * 101 not in response.text


def test_encoded_query_values_get_their_own_cache_entry(make_site):
    site, _ = make_site()
    plain = get(site, "/comparisons?q=blender&page=2")
    encoded = get(site, "/comparisons?q=blender%26page%3D2")
    assert "Blender Showdown" in plain.text
    assert "Blender Showdown" not in encoded.text
    assert "No comparisons found." in encoded.text


def test_sitemap_and_robots(make_site):
    site, _ = make_site()
    sitemap = get(site, "/sitemap.xml")
    assert sitemap.status == 200
    assert sitemap.headers["Content-Type"].startswith("application/xml")
    assert "<loc>https://reviews.example/review/widget-x</loc><lastmod>2024-05-01</lastmod>" in (
        sitemap.text
    )
    assert "<loc>https://reviews.example/comparison/blender-showdown</loc>" in sitemap.text
    robots = get(site, "/robots.txt")
    assert "Sitemap: https://reviews.example/sitemap.xml" in robots.text
    assert "Disallow: /api/" in robots.text


def many_reviews(count=105):
    documents = {
        f"content/reviews/item-{n:03d}.md": f"---\ntitle: Item {n:03d}\ndate: 2024-01-01\n---\nBody"
        for n in range(count)
    }
    documents["content/reviews/zzz-newest.md"] = "---\ntitle: Newest Post\ndate: 2024-12-01\n---\nBody"
    return documents


def test_large_collections_are_listed_in_full(make_site):
    site, _ = make_site(documents=many_reviews())
    sitemap = get(site, "/sitemap.xml").text
    assert "<loc>https://reviews.example/review/zzz-newest</loc>" in sitemap
    assert sitemap.count("<loc>https://reviews.example/review/") == 106
    data = get(site, "/api/posts").json()
    assert data["count"] == 106
    assert data["posts"][0]["slug"] == "zzz-newest"


def test_home_index_is_capped_after_sorting(make_site):
    site, _ = make_site(documents=many_reviews(), max_listing=10)
    html = get(site, "/").text
    index = html.split('<ul id="review-index">', 1)[1].split("</ul>", 1)[0]
    assert index.count("<li>") == 10
    assert "Newest Post" in index


def test_sitemap_uses_host_without_site_url(make_site):
    site, _ = make_site(site_url="")
    response = get(site, "/sitemap.xml", Host="localhost:8000")
    assert "<loc>http://localhost:8000/review/widget-x</loc>" in response.text
    other = get(site, "/sitemap.xml", Host="reviews.local")
    assert "<loc>http://reviews.local/review/widget-x</loc>" in other.text
    assert get(site, "/sitemap.xml").status == 404


def test_api_posts(make_site):
    site, _ = make_site()
    response = get(site, "/api/posts")
    assert response.status == 200
    assert response.headers["Content-Type"] == "application/json"
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    data = response.json()
    assert data["success"] is True
    assert data["count"] == 4
    assert [post["slug"] for post in data["posts"]] == [
        "gizmo-pro",
        "widget-x",
        "desk-lamp",
        "blender-9000",
    ]
    assert data["posts"][1]["url"] == "/review/widget-x"


def test_api_post(make_site):
    site, _ = make_site()
    data = get(site, "/api/post?slug=widget-x.md").json()
    assert data["success"] is True
    assert data["slug"] == "widget-x"
    assert data["url"] == "https://reviews.example/review/widget-x"
    assert data["frontmatter"]["title"] == "Widget X"
    assert data["frontmatter"]["categories"] == ["gadgets", "desk", "reviews"]


def test_api_post_errors(make_site):
    site, _ = make_site()
    missing_param = get(site, "/api/post")
    assert missing_param.status == 400
    assert missing_param.json() == {"success": False, "error": "The slug parameter is required."}
    unknown = get(site, "/api/post?slug=nope")
    assert unknown.status == 404
    assert unknown.json()["error"] == "Post not found."
    assert get(site, "/api/post?slug=../../etc").status == 404


def test_non_get_methods_are_rejected(make_site):
    site, _ = make_site()
    response = asyncio.run(site.handle(Request(path="/", method="POST")))
    assert response.status == 405
    assert response.headers["Allow"] == "GET, HEAD"


def test_handler_crash_is_a_500_page(make_site, monkeypatch):
    site, _ = make_site()

    async def boom(kind, slug):
        raise RuntimeError("store exploded")

    monkeypatch.setattr(site.repository, "get_document", boom)
    with capture_logs() as logs:
        response = get(site, "/review/widget-x")
    assert response.status == 500
    assert "Server Error" in response.text
    assert "exploded" not in response.text
    assert any(e["event"] == "request_failed" and e["log_level"] == "error" for e in logs)


def test_broken_error_template_falls_back(make_site, monkeypatch):
    site, _ = make_site()

    def broken(*args):
        raise RuntimeError("template missing")

    monkeypatch.setattr(site.templates, "render_error", broken)
    response = site.error_response(NotFound())
    assert response.status == 404
    assert response.text == "<h1>404 Not Found</h1><p>The page you requested was not found.</p>"
    assert site.error_response(BadRequest("bad"), api=True).json()["error"] == "bad"


def test_broken_cache_store_still_serves(make_site):
    class BrokenStore:
        async def get(self, key):
            raise CacheStoreError("locked")

        async def set(self, entry):
            raise CacheStoreError("locked")

    site, _ = make_site(cache_store=BrokenStore())
    assert get(site, "/review/widget-x").status == 200


def test_public_settings_hide_the_token():
    settings = public_settings({"site_name": "RI", "token": "secret", "owner": "acme"})
    assert "token" not in settings
    assert settings["site_name"] == "RI"


@respx.mock
def test_create_site_reads_from_github(tmp_path):
    base = "/repos/acme/content/contents/content/reviews"
    document = respx.get(host="api.github.com", path=f"{base}/widget-x.md").mock(
        return_value=httpx.Response(200, text=WIDGET_X)
    )
    respx.get(host="api.github.com", path=base).mock(
        return_value=httpx.Response(
            200, json=[{"name": "widget-x.md", "path": "content/reviews/widget-x.md", "type": "file"}]
        )
    )
    config = load_config(tmp_path, environ={"REVIEWINDEX_GITHUB_TOKEN": "s3cret"})
    config.update(
        owner="acme",
        repo="content",
        cache_backend="sqlite",
        cache_path=str(tmp_path / "cache.sqlite3"),
    )

    async def run():
        site = await create_site(config)
        assert isinstance(site, Site)
        try:
            first = await site.handle(Request.from_target("/review/widget-x"))
            second = await site.handle(Request.from_target("/review/widget-x"))
            return first, second
        finally:
            await site.aclose()

    first, second = asyncio.run(run())
    assert first.status == second.status == 200
    assert "<h1>Widget X</h1>" in first.text
    assert document.call_count == 1
    assert document.calls.last.request.headers["Authorization"] == "token s3cret"
    assert (tmp_path / "cache.sqlite3").exists()


@respx.mock
def test_create_site_survives_unusable_cache_path(tmp_path):
    respx.get(host="api.github.com").mock(return_value=httpx.Response(404))
    blocker = tmp_path / "file"
    blocker.write_text("x")
    config = load_config(tmp_path, environ={})
    config.update(
        owner="acme",
        repo="content",
        cache_backend="sqlite",
        cache_path=str(blocker / "cache.sqlite3"),
    )

    async def run():
        site = await create_site(config)
        try:
            return await site.handle(Request.from_target("/"))
        finally:
            await site.aclose()

    with capture_logs() as logs:
        response = asyncio.run(run())
    assert response.status == 200
    assert any(e["event"] == "cache_unavailable" for e in logs)
