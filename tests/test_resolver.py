import asyncio
import json

import pytest
from aiohttp import ClientConnectionError

from config import config
from conftest import RSS_SAMPLE, FakeHttpClient
from errors import FetchExhaustedError
from fetcher import (
    DirectFetch,
    HttpResponse,
    FeedResolver,
    JsonApiFallback,
    ProxyFallback,
    ProxyEndpoint,
    ScriptErrorAlternates,
    clean_base_url,
    decode_body,
    extract_feed_links,
    synthesize_rss,
)
from parser import parse_string


@pytest.mark.asyncio
async def test_direct_fetch_returns_valid_feed():
    http = FakeHttpClient({"https://blog.example.com/feed.xml": RSS_SAMPLE})

    text = await FeedResolver(http).fetch_feed_xml("https://blog.example.com/feed.xml")

    assert text == RSS_SAMPLE
    assert http.requests == ["https://blog.example.com/feed.xml"]


@pytest.mark.asyncio
async def test_404_falls_back_to_wordpress_rss2_path():
    http = FakeHttpClient({"https://blog.example.com/feed/rss2/": RSS_SAMPLE})

    text = await FeedResolver(http).fetch_feed_xml("https://blog.example.com/feed/")

    assert text == RSS_SAMPLE
    assert "https://blog.example.com/feed/rss/" in http.requests
    assert http.requests[-1] == "https://blog.example.com/feed/rss2/"


@pytest.mark.asyncio
async def test_php_error_page_triggers_alternates():
    php_page = "<br/><b>Fatal error</b>: require(): Failed opening required wp-blog-header.php"
    http = FakeHttpClient({
        "https://wp.example.com/feed": php_page,
        "https://wp.example.com/feed/atom/": RSS_SAMPLE,
    })

    text = await FeedResolver(http).fetch_feed_xml("https://wp.example.com/feed")

    assert text == RSS_SAMPLE


@pytest.mark.asyncio
async def test_scheme_toggle_after_network_error():
    http = FakeHttpClient({
        "http://old.example.com/rss": ClientConnectionError("refused"),
        "https://old.example.com/rss": RSS_SAMPLE,
    })

    text = await FeedResolver(http).fetch_feed_xml("http://old.example.com/rss")

    assert text == RSS_SAMPLE


@pytest.mark.asyncio
async def test_autodiscovery_from_html_page():
    page = '<html><head><link rel="alternate" type="application/rss+xml" href="/index.xml"></head></html>'
    http = FakeHttpClient({
        "https://site.example.com/": page,
        "https://site.example.com/index.xml": RSS_SAMPLE,
    })

    text = await FeedResolver(http).fetch_feed_xml("https://site.example.com/")

    assert text == RSS_SAMPLE


@pytest.mark.asyncio
async def test_exhausted_raises_with_attempts(monkeypatch):
    monkeypatch.setattr(config, "PLATFORM", "desktop")
    monkeypatch.setattr(config, "PROXIES_ENABLED", True)
    http = FakeHttpClient()

    with pytest.raises(FetchExhaustedError) as excinfo:
        await FeedResolver(http).fetch_feed_xml("https://gone.example.com/feed.xml")

    assert excinfo.value.url == "https://gone.example.com/feed.xml"
    assert excinfo.value.attempts[0] == "direct"
    assert "proxy" in excinfo.value.attempts
    assert excinfo.value.attempts[-1] == "rss2json"


@pytest.mark.asyncio
async def test_proxies_skipped_on_android(monkeypatch):
    monkeypatch.setattr(config, "PLATFORM", "android")
    http = FakeHttpClient()

    with pytest.raises(FetchExhaustedError) as excinfo:
        await FeedResolver(http).fetch_feed_xml("https://gone.example.com/feed.xml")

    assert "proxy" not in excinfo.value.attempts
    assert not any("allorigins" in url or "corsproxy" in url for url in http.requests)


@pytest.mark.asyncio
async def test_proxy_json_envelope_is_unwrapped(monkeypatch):
    monkeypatch.setattr(config, "PLATFORM", "desktop")
    monkeypatch.setattr(config, "PROXIES_ENABLED", True)
    proxy = ProxyEndpoint("test-get", "https://proxy.example.com/get?url={url}", json_field="contents")
    target = "https://cors.example.com/feed.xml"
    http = FakeHttpClient({proxy.build(target): json.dumps({"contents": RSS_SAMPLE})})

    text = await FeedResolver(http, strategies=[ProxyFallback([proxy])]).fetch_feed_xml(target)

    assert text == RSS_SAMPLE


def test_synthesized_rss_from_json_api_is_parseable():
    data = {
        "status": "ok",
        "feed": {"title": "Converted", "link": "https://c.example.com/"},
        "items": [{
            "title": "A & B",
            "link": "https://c.example.com/1",
            "pubDate": "2025-01-07 10:00:00",
            "content": "<p>Body</p>",
            "enclosure": {"link": "https://c.example.com/1.mp3", "type": "audio/mpeg"},
        }],
    }

    feed = parse_string(synthesize_rss(data))

    assert feed.title == "Converted"
    assert feed.items[0].title == "A & B"
    assert feed.items[0].content == "<p>Body</p>"
    assert feed.items[0].enclosure.url == "https://c.example.com/1.mp3"


def test_alternate_paths_depend_on_host():
    strategy = ScriptErrorAlternates()

    blogger = strategy.alternate_urls("https://x.blogspot.com/feed/")
    assert blogger[0] == "https://x.blogspot.com/feeds/posts/default?alt=rss"

    wordpress = strategy.alternate_urls("https://wp.example.com/feed")
    assert wordpress[:2] == ["https://wp.example.com/feed/rss/", "https://wp.example.com/feed/rss2/"]


def test_clean_base_url():
    assert clean_base_url("https://a.example.com/feed/") == "https://a.example.com"
    assert clean_base_url("https://a.example.com/blog/") == "https://a.example.com/blog"
    assert clean_base_url("https://a.example.com/blog/rss.xml") == "https://a.example.com/blog"
    assert clean_base_url("https://a.example.com/index.php?feed=rss2") == "https://a.example.com"


def test_extract_feed_links_prefers_atom_then_rss():
    html = """<html><head>
    <link rel="alternate" type="application/rss+xml" href="/rss.xml">
    <link rel="alternate" type="application/atom+xml" href="https://a.example.com/atom.xml">
    </head></html>"""

    assert extract_feed_links(html, "https://a.example.com/") == [
        "https://a.example.com/atom.xml",
        "https://a.example.com/rss.xml",
    ]


def test_extract_feed_links_falls_back_to_anchors():
    html = '<a href="/about">About</a><a href="/feed/">Subscribe</a>'

    assert extract_feed_links(html, "https://a.example.com/") == ["https://a.example.com/feed/"]


def test_decode_body_honours_xml_declaration_and_bom():
    latin = '<?xml version="1.0" encoding="ISO-8859-1"?><rss>caf\xe9</rss>'.encode("latin-1")
    assert "café" in decode_body(latin, "text/xml")

    assert decode_body("\ufeff<rss/>".encode("utf-8"), None) == "<rss/>"


def test_http_response_ok():
    assert HttpResponse(status=204, text="").ok
    assert not HttpResponse(status=404, text="").ok


@pytest.mark.asyncio
async def test_timeouts_count_as_failures():
    http = FakeHttpClient({"https://slow.example.com/feed": asyncio.TimeoutError()})
    resolver = FeedResolver(http, strategies=[s for s in FeedResolver(http).strategies if s.name == "direct"])

    with pytest.raises(FetchExhaustedError):
        await resolver.fetch_feed_xml("https://slow.example.com/feed")


ARXIV_STUB = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel>
  <title>cs.AI updates on arXiv.org</title>
  <link>https://arxiv.org/list/cs.AI/recent</link>
  <description>No new papers</description>
</channel></rss>"""


@pytest.mark.asyncio
async def test_empty_arxiv_stub_is_refetched_from_export_mirror():
    url = "https://arxiv.org/rss/cs.AI"
    http = FakeHttpClient({url: ARXIV_STUB, "https://export.arxiv.org/rss/cs.AI": RSS_SAMPLE})

    text = await FeedResolver(http).fetch_feed_xml(url)

    assert text == RSS_SAMPLE
    assert http.requests == [url, "https://export.arxiv.org/rss/cs.AI"]


@pytest.mark.asyncio
async def test_empty_mirror_keeps_the_stub():
    url = "https://arxiv.org/rss/cs.AI"
    http = FakeHttpClient({url: ARXIV_STUB, "https://export.arxiv.org/rss/cs.AI": ARXIV_STUB})

    text = await FeedResolver(http).fetch_feed_xml(url)

    assert text == ARXIV_STUB
    assert http.requests == [
        url,
        "https://export.arxiv.org/rss/cs.AI",
        "https://export.arxiv.org/list/cs.AI/recent",
    ]


@pytest.mark.asyncio
async def test_feedburner_suffixes_tried_in_order():
    url = "https://feeds.feedburner.com/example"
    http = FakeHttpClient({url + "?type=xml": RSS_SAMPLE})

    text = await FeedResolver(http).fetch_feed_xml(url)

    assert text == RSS_SAMPLE
    assert http.requests == [url, url + "?format=xml", url + "?fmt=xml", url + "?type=xml"]


@pytest.mark.asyncio
async def test_json_api_conversion_used_as_last_resort():
    url = "https://legacy.example.com/rss"
    api = "https://api.rss2json.com/v1/api.json?rss_url=https%3A%2F%2Flegacy.example.com%2Frss"
    payload = {
        "status": "ok",
        "feed": {"title": "Legacy", "link": "https://legacy.example.com/"},
        "items": [{"title": "Converted post", "link": "https://legacy.example.com/1"}],
    }
    http = FakeHttpClient({url: HttpResponse(status=403, text="Forbidden", url=url), api: json.dumps(payload)})

    text = await FeedResolver(http, strategies=[DirectFetch(), JsonApiFallback()]).fetch_feed_xml(url)

    feed = parse_string(text)
    assert feed.title == "Legacy"
    assert [i.title for i in feed.items] == ["Converted post"]
    assert http.requests == [url, api]


@pytest.mark.asyncio
async def test_missing_feed_file_tries_paths_beside_it():
    url = "https://x.example.com/blog/rss.xml"
    http = FakeHttpClient({"https://x.example.com/blog/feed/rss2/": RSS_SAMPLE})

    alternates = ScriptErrorAlternates().alternate_urls(url)
    text = await FeedResolver(http).fetch_feed_xml(url)

    assert alternates[:2] == ["https://x.example.com/blog/feed/rss/", "https://x.example.com/blog/feed/rss2/"]
    assert not any("rss.xml/" in a for a in alternates)
    assert text == RSS_SAMPLE
    assert http.requests == [
        url,
        "http://x.example.com/blog/rss.xml",
        "https://x.example.com/blog/feed/rss/",
        "https://x.example.com/blog/feed/rss2/",
    ]
