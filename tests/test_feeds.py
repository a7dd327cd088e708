from datetime import date

from reviewindex.content import Summary
from reviewindex.feeds import RobotsGenerator, SitemapGenerator

TODAY = date(2025, 1, 1)


def summaries():
    return [
        Summary(slug="widget-x", collection="review", title="Widget X", date="2024-05-01"),
        Summary(slug="future", collection="review", title="Future", date="2030-01-01"),
        Summary(slug="x-vs-y", collection="comparison", title="X vs Y"),
    ]


def test_sitemap_lists_home_listing_and_documents():
    xml = SitemapGenerator(today=TODAY).generate(summaries(), {"site_url": "https://reviews.example/"})
    lines = xml.splitlines()
    assert lines[0] == '<?xml version="1.0" encoding="UTF-8"?>'
    assert "<loc>https://reviews.example/</loc><lastmod>2025-01-01</lastmod>" in lines[2]
    assert "<priority>1.0</priority>" in lines[2]
    assert "<loc>https://reviews.example/comparisons</loc>" in lines[3]
    assert (
        "<loc>https://reviews.example/review/widget-x</loc><lastmod>2024-05-01</lastmod>"
        "<changefreq>monthly</changefreq><priority>0.8</priority>"
    ) in xml
    assert "<loc>https://reviews.example/comparison/x-vs-y</loc>" in xml
    assert "2030-01-01" not in xml
    assert lines[-1] == "</urlset>"


def test_sitemap_needs_a_base_url():
    assert SitemapGenerator(today=TODAY).generate(summaries(), {"site_url": ""}) is None
    assert SitemapGenerator().filename == "sitemap.xml"
    assert SitemapGenerator.content_type.startswith("application/xml")


def test_sitemap_escapes_locations():
    xml = SitemapGenerator(today=TODAY).generate([], {"site_url": "https://example.com/?a=1&b=2"})
    assert "&amp;b=2" in xml
    assert "&b=2" not in xml


def test_robots_with_sitemap():
    text = RobotsGenerator().generate([], {"site_url": "https://reviews.example", "site_name": "RI"})
    assert text.splitlines() == [
        "# robots.txt for RI",
        "",
        "User-agent: *",
        "Allow: /",
        "Disallow: /api/",
        "",
        "Sitemap: https://reviews.example/sitemap.xml",
    ]


def test_robots_without_base_url():
    text = RobotsGenerator().generate([], {})
    assert "Sitemap" not in text
    assert "Disallow: /api/" in text
    assert RobotsGenerator().filename == "robots.txt"
