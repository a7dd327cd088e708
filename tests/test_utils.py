from datetime import date, timezone

import pytest

from reviewindex.html_utils import (
    escape_html,
    is_allowed_embed,
    is_external_url,
    join_root_url,
    safe_url,
    sanitize_html,
    strip_tags,
)
from reviewindex.utils import (
    clean_date,
    first_paragraph,
    is_valid_slug,
    normalize_categories,
    parse_date,
    slugify,
    specific_categories,
    strip_markdown,
    titleize,
    youtube_id,
)


def test_slugify():
    assert slugify("Widget X: The Review!") == "widget-x-the-review"
    assert slugify("  Multiple   Spaces  ") == "multiple-spaces"
    assert slugify("!!!") == "untitled"


@pytest.mark.parametrize(
    "slug, expected",
    [
        ("widget-x", True),
        ("best_air_fryers-2024", True),
        ("../etc/passwd", False),
        ("widget x", False),
        ("-leading-dash", False),
        ("widget-x\n", False),
        ("", False),
        ("a" * 201, False),
    ],
)
def test_is_valid_slug(slug, expected):
    assert is_valid_slug(slug) is expected


def test_titleize():
    assert titleize("best-air-fryers") == "Best Air Fryers"
    assert titleize("widget_x.md") == "Widget X"
    assert titleize("") == "Untitled"


def test_categories():
    assert normalize_categories("Gadgets") == ["gadgets"]
    assert normalize_categories([" Desk ", "", "AUDIO"]) == ["desk", "audio"]
    assert normalize_categories(None) == []
    assert specific_categories(["Reviews", "Desk", "comparison"]) == ["desk"]


def test_parse_date():
    parsed = parse_date("2024-05-01")
    assert (parsed.year, parsed.month, parsed.day) == (2024, 5, 1)
    assert parsed.tzinfo == timezone.utc
    assert parse_date("2024-05-01T10:30:00Z").hour == 10
    assert parse_date("'2024-05-01'").day == 1
    assert parse_date("2024-05-01 sometime").month == 5
    assert parse_date("soon") is None
    assert parse_date("") is None
    assert parse_date(None) is None


def test_clean_date():
    today = date(2025, 1, 1)
    assert clean_date("2024-03-01T10:00:00Z", today=today) == "2024-03-01"
    assert clean_date("2030-01-01", today=today) == "2025-01-01"
    assert clean_date("garbage", today=today) == "2025-01-01"
    assert clean_date("", today=today) == "2025-01-01"


def test_first_paragraph_skips_non_prose():
    body = (
        "# Widget X\n\n"
        "![hero](/img.png)\n\n"
        "```\ncode\n```\n\n"
        "| a | b |\n\n"
        'The **Widget X** is [small](/x) and <em>quiet</em>.\n\n'
        "Second paragraph."
    )
    assert first_paragraph(body) == "The Widget X is small and quiet."
    assert first_paragraph("word " * 100, limit=20) == "word word word word "[:20]
    assert first_paragraph("# Only a heading") == ""


def test_strip_markdown():
    assert strip_markdown("**Widget X**") == "Widget X"
    assert strip_markdown("[Gizmo Pro](/review/gizmo-pro)") == "Gizmo Pro"


@pytest.mark.parametrize(
    "value",
    [
        "dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
    ],
)
def test_youtube_id_forms(value):
    assert youtube_id(value) == "dQw4w9WgXcQ"


def test_youtube_id_rejects_junk():
    assert youtube_id("") is None
    assert youtube_id(None) is None
    assert youtube_id("https://example.com/video") is None
    assert youtube_id("https://youtu.be/dQw4w9WgXcQextra") is None


def test_escape_html():
    assert escape_html("<a href=\"x\">Tom & 'Jerry'</a>") == (
        "&lt;a href=&quot;x&quot;&gt;Tom &amp; &#39;Jerry&#39;&lt;/a&gt;"
    )


@pytest.mark.parametrize(
    "url",
    ["javascript:alert(1)", " JaVaScRiPt:alert(1)", "java\tscript:x", "vbscript:x", "data:text/html,hi"],
)
def test_safe_url_blocks_script_schemes(url):
    assert safe_url(url) == "#"


def test_safe_url_keeps_normal_urls():
    assert safe_url("https://example.com/a?b=c") == "https://example.com/a?b=c"
    assert safe_url("/review/widget-x") == "/review/widget-x"
    assert safe_url("#section") == "#section"


def test_url_helpers():
    assert is_external_url("https://example.com")
    assert is_external_url("//cdn.example.com/x.js")
    assert not is_external_url("/review/widget-x")
    assert join_root_url("https://example.com/", "about") == "https://example.com/about"
    assert join_root_url("https://example.com", "/about") == "https://example.com/about"
    assert join_root_url("", "/about") == "/about"


@pytest.mark.parametrize(
    "src, expected",
    [
        ("https://www.youtube.com/embed/dQw4w9WgXcQ", True),
        ("https://youtube-nocookie.com/embed/dQw4w9WgXcQ", True),
        ("//player.vimeo.com/video/1", True),
        ("http://www.youtube.com/embed/dQw4w9WgXcQ", False),
        ("https://youtube.com.evil.example/embed", False),
        ("https://notyoutube.com/embed", False),
        ("javascript:alert(1)", False),
    ],
)
def test_is_allowed_embed(src, expected):
    assert is_allowed_embed(src) is expected


def test_sanitize_uses_real_src_attribute():
    html = sanitize_html(
        '<iframe src="https://evil.example/" data-src="https://www.youtube.com/embed/x"></iframe>'
    )
    assert html == ""


def test_sanitize_handles_spliced_script_tags():
    html = sanitize_html("<scr<script></script>ipt>alert(1)</script>")
    assert "<script" not in html.lower()


def test_sanitize_neutralises_script_urls_in_raw_html():
    html = sanitize_html('<a href="javascript:alert(1)" class="x">go</a>')
    assert html == '<a href="#" class="x">go</a>'


def test_sanitize_keeps_escaped_text():
    html = sanitize_html("<p>Tom &amp; Jerry &lt;3 <br></p>")
    assert html == "<p>Tom &amp; Jerry &lt;3 <br></p>"


def test_strip_tags():
    assert strip_tags("<em>Hello</em> world") == "Hello world"
