#!/usr/bin/env python3
"""
Feed retrieval with a cascade of remediation strategies.

FeedResolver.fetch_feed_xml() walks an ordered list of strategy objects and
returns the first text that passes is_valid_feed():

1. DirectFetch            plain GET with a browser UA and feed Accept header
2. FeedBurnerVariants     query/path variants that force XML out of FeedBurner
3. SchemeToggle           the same URL with http <-> https swapped
4. MirrorRefetch          stub feeds pointing at a known mirror are refetched there
5. ScriptErrorAlternates  PHP/WordPress error pages (or 404s): well-known feed paths,
                          then discovery, then academic host substitution
6. AutoDiscovery          <link rel=alternate> and feed-looking anchors in the HTML page
7. ProxyFallback          public CORS proxies, skipped where third-party egress is blocked
8. JsonApiFallback        a feed-to-JSON conversion API, re-serialized as RSS 2.0

Strategies run strictly one after another; later ones are slower or involve
third parties. Each one is independently testable through the HttpClient
collaborator, which tests replace with a fake.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse, urlunparse
from xml.sax.saxutils import escape

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from readability import Document

from config import config, get_logger
from errors import FetchExhaustedError
from parser import is_valid_feed
from telemetry import init_telemetry, trace_span
from utils import absolutize_html, to_absolute

logger = get_logger("fetcher")
init_telemetry("feed-dashboard-fetcher")

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
SCRIPT_ERROR_MARKERS = ("<?php", "WordPress", "wp-blog-header.php")
NETWORK_ERRORS = (ClientError, asyncio.TimeoutError, OSError, ValueError, UnicodeError)

FEEDBURNER_SUFFIXES = [
    "?format=xml", "?fmt=xml", "?type=xml", "/feed", "/rss", "/atom",
    ".xml", "/feed.xml", "/rss.xml", "/atom.xml",
]
BLOGGER_PATHS = [
    "/feeds/posts/default?alt=rss", "/feeds/posts/default?alt=atom", "/feeds/posts/default",
    "/feeds/posts/summary?alt=rss", "/feeds/posts/summary?alt=atom", "/feeds/posts/summary",
    "/rss.xml", "/atom.xml", "/feed", "/rss",
]
WORDPRESS_PATHS = [
    "/feed/rss/", "/feed/rss2/", "/feed/atom/", "/rss/", "/rss.xml", "/feed.xml",
    "/index.php/feed/", "/?feed=rss2", "/?feed=rss", "/?feed=atom",
    "/wp-feed.php", "/feed/feed/", "/feed/rdf/",
    "/?feed=rss2&paged=1", "/?feed=rss&paged=1",
    "/feed", "/rss",
    "/index.php?feed=rss2", "/index.php?feed=rss", "/index.php?feed=atom",
]

# Hosts whose feeds are sometimes served as empty stubs pointing at a mirror
MIRROR_HOSTS: Dict[str, str] = {
    "arxiv.org": "export.arxiv.org",
}


@dataclass(frozen=True)
class ProxyEndpoint:
    name: str
    template: str
    encode: bool = True
    json_field: Optional[str] = None

    def build(self, url: str) -> str:
        return self.template.format(url=quote(url, safe="") if self.encode else url)


PROXIES: List[ProxyEndpoint] = [
    ProxyEndpoint("allorigins-get", "https://api.allorigins.win/get?url={url}", json_field="contents"),
    ProxyEndpoint("allorigins-raw", "https://api.allorigins.win/raw?url={url}"),
    ProxyEndpoint("corsproxy", "https://corsproxy.io/?{url}"),
    ProxyEndpoint("isomorphic-git", "https://cors.isomorphic-git.org/{url}", encode=False),
    ProxyEndpoint("codetabs", "https://api.codetabs.com/v1/proxy/?quest={url}"),
]
RSS2JSON_ENDPOINT = "https://api.rss2json.com/v1/api.json?rss_url={url}"


# ---------------------------------------------------------------------------
# HTTP collaborator
# ---------------------------------------------------------------------------

@dataclass
class HttpResponse:
    status: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def decode_body(raw: bytes, content_type: Optional[str] = None) -> str:
    """Decode a response body using the XML-declared encoding, then the HTTP charset."""
    encoding = None
    head = raw[:1024].decode("ascii", errors="ignore")
    declared = re.search(r"<\?xml[^>]*encoding=[\"']([^\"']+)[\"']", head, re.I)
    if declared:
        encoding = declared.group(1).strip().lower()
    elif content_type:
        charset = re.search(r"charset=([\w\-:.]+)", content_type, re.I)
        if charset:
            encoding = charset.group(1).strip().lower()
    if raw.startswith(b"\xef\xbb\xbf"):
        encoding = "utf-8-sig"
    try:
        return raw.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        logger.warning(f"Unknown encoding '{encoding}', falling back to UTF-8")
        return raw.decode("utf-8", errors="replace")


class HttpClient:
    """aiohttp-backed implementation of the request collaborator.

    Bodies are decoded from raw bytes but never otherwise transformed.
    Redirects are followed up to MAX_REDIRECTS.
    """

    def __init__(self, session: Optional[ClientSession] = None, timeout: Optional[int] = None) -> None:
        self._session = session
        self._owns_session = session is None
        self.timeout = timeout or config.HTTP_TIMEOUT

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    @trace_span(
        "http_request",
        tracer_name="fetcher",
        attr_from_args=lambda self, url, method="GET", headers=None: {"http.url": url, "http.method": method},
    )
    async def request(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None) -> HttpResponse:
        session = await self._ensure_session()
        async with session.request(
            method,
            url,
            headers=headers or {"User-Agent": config.USER_AGENT},
            allow_redirects=True,
            max_redirects=config.MAX_REDIRECTS,
        ) as response:
            raw = await response.read()
            return HttpResponse(
                status=response.status,
                text=decode_body(raw, response.headers.get("Content-Type")),
                headers={k: v for k, v in response.headers.items()},
                url=str(response.url),
            )

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


def feed_headers() -> Dict[str, str]:
    return {"User-Agent": config.USER_AGENT, "Accept": config.FEED_ACCEPT_HEADER}


def html_headers() -> Dict[str, str]:
    return {"User-Agent": config.DISCOVERY_USER_AGENT, "Accept": HTML_ACCEPT}


def format_error(error: BaseException) -> str:
    """Describe client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, "status", None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, "os_error", None)
    if os_error is not None and getattr(os_error, "errno", None) is not None:
        parts.append(f"errno={os_error.errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


def has_script_error(text: Optional[str]) -> bool:
    return bool(text) and any(marker in text for marker in SCRIPT_ERROR_MARKERS)


def clean_base_url(url: str) -> str:
    """Directory part of a feed URL, minus any file name and trailing /feed segment."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url.strip().rstrip("/")
    directory, _, last = parsed.path.rpartition("/")
    path = directory if "." in last else parsed.path
    path = re.sub(r"/feed/?$", "", path).rstrip("/")
    return urlunparse(parsed._replace(path=path, params="", query="", fragment=""))


def origin_of(url: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def swap_host(url: str, old_host: str, new_host: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host != old_host and host != f"www.{old_host}":
        return None
    netloc = parsed.netloc.lower().replace(host, new_host, 1)
    return urlunparse(parsed._replace(netloc=netloc))


# ---------------------------------------------------------------------------
# Resolution context and strategies
# ---------------------------------------------------------------------------

@dataclass
class ResolveContext:
    """Mutable state shared by the strategies during one resolution."""

    url: str
    http: HttpClient
    direct_status: Optional[int] = None
    direct_text: Optional[str] = None
    direct_error: Optional[str] = None
    discovery_done: bool = False
    attempts: List[str] = field(default_factory=list)
    tried_urls: List[str] = field(default_factory=list)

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> Optional[HttpResponse]:
        """GET a URL, returning None (logged) on network failure."""
        self.tried_urls.append(url)
        try:
            return await self.http.request(url, method="GET", headers=headers or feed_headers())
        except NETWORK_ERRORS as e:
            logger.debug(f"Request to {url} failed: {format_error(e)}")
            return None

    async def fetch_feed(self, url: str, reject_script_errors: bool = False) -> Optional[str]:
        """GET a URL and return its text only if it is a successful, valid feed."""
        response = await self.fetch(url)
        if response is None:
            return None
        if not response.ok:
            logger.debug(f"{url} answered HTTP {response.status}")
            return None
        if not is_valid_feed(response.text):
            logger.debug(f"{url} did not return feed content")
            return None
        if reject_script_errors and has_script_error(response.text[:4096]):
            return None
        return response.text


def count_entries(text: str) -> int:
    return len(re.findall(r"<(?:item|entry)[\s>]", text, re.I))


def mirror_for_stub(text: Optional[str]) -> Optional[str]:
    """Mirror URL for a valid-but-empty feed whose own link points at a mirrored host."""
    if not text or not is_valid_feed(text) or count_entries(text) > 0:
        return None
    links = re.findall(r"<link[^>]*>([^<]+)</link>", text, re.I)
    links += re.findall(r"<(?:atom:)?link[^>]+href=[\"']([^\"']+)[\"']", text, re.I)
    for link in links:
        for host, mirror in MIRROR_HOSTS.items():
            swapped = swap_host(link.strip(), host, mirror)
            if swapped:
                return swapped
    return None


class FetchStrategy:
    """One step of the fetch cascade."""

    name = "strategy"

    def applies(self, ctx: ResolveContext) -> bool:
        return True

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        raise NotImplementedError


class DirectFetch(FetchStrategy):
    name = "direct"

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        ctx.tried_urls.append(ctx.url)
        try:
            response = await ctx.http.request(ctx.url, method="GET", headers=feed_headers())
        except NETWORK_ERRORS as e:
            ctx.direct_error = format_error(e)
            logger.warning(f"Direct fetch of {ctx.url} failed: {ctx.direct_error}")
            return None
        ctx.direct_status = response.status
        ctx.direct_text = response.text
        if not response.ok:
            logger.warning(f"Direct fetch of {ctx.url} returned HTTP {response.status}")
            return None
        if not is_valid_feed(response.text):
            logger.info(f"Direct fetch of {ctx.url} did not return feed content")
            return None
        if mirror_for_stub(response.text):
            logger.info(f"{ctx.url} returned an empty stub pointing at a mirror")
            return None
        return response.text


class FeedBurnerVariants(FetchStrategy):
    name = "feedburner"

    def applies(self, ctx: ResolveContext) -> bool:
        return "feeds.feedburner.com/" in ctx.url.lower()

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        match = re.search(r"feeds\.feedburner\.com/([^/?#]+)", ctx.url, re.I)
        if not match:
            return None
        base = f"https://feeds.feedburner.com/{match.group(1)}"
        for suffix in FEEDBURNER_SUFFIXES:
            text = await ctx.fetch_feed(base + suffix)
            if text:
                return text
        return None


class SchemeToggle(FetchStrategy):
    name = "scheme-toggle"

    def applies(self, ctx: ResolveContext) -> bool:
        direct_invalid = ctx.direct_text is not None and not is_valid_feed(ctx.direct_text)
        return direct_invalid or ctx.direct_error is not None

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        if ctx.url.lower().startswith("http://"):
            toggled = "https://" + ctx.url[len("http://"):]
        elif ctx.url.lower().startswith("https://"):
            toggled = "http://" + ctx.url[len("https://"):]
        else:
            return None
        return await ctx.fetch_feed(toggled)


class MirrorRefetch(FetchStrategy):
    name = "mirror"

    def applies(self, ctx: ResolveContext) -> bool:
        return mirror_for_stub(ctx.direct_text) is not None

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        mirror_url = mirror_for_stub(ctx.direct_text)
        target = None
        for host, mirror in MIRROR_HOSTS.items():
            target = target or swap_host(ctx.url, host, mirror)
        for candidate in filter(None, (target, mirror_url)):
            text = await ctx.fetch_feed(candidate)
            if text and count_entries(text) > 0:
                return text
        # Nothing better available; an empty feed is still a valid feed
        return ctx.direct_text


class ScriptErrorAlternates(FetchStrategy):
    name = "script-error-alternates"

    def applies(self, ctx: ResolveContext) -> bool:
        return has_script_error(ctx.direct_text) or ctx.direct_status in (404, 410)

    def alternate_urls(self, url: str) -> List[str]:
        base = clean_base_url(url)
        lowered = base.lower()
        if "feeds.feedburner.com" in lowered:
            return [base + suffix for suffix in FEEDBURNER_SUFFIXES]
        if "blogger.com" in lowered or "blogspot.com" in lowered:
            return [base + path for path in BLOGGER_PATHS]
        return [base + path for path in WORDPRESS_PATHS]

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        logger.warning(f"{ctx.url} looks like a server-side error page; trying alternate feed paths")
        for alternate in self.alternate_urls(ctx.url):
            if alternate == ctx.url:
                continue
            text = await ctx.fetch_feed(alternate, reject_script_errors=True)
            if text:
                logger.info(f"Alternate feed path succeeded: {alternate}")
                return text

        ctx.discovery_done = True
        base = clean_base_url(ctx.url)
        discovered = await discover_feed_url(ctx.http, base)
        if discovered:
            text = await ctx.fetch_feed(discovered, reject_script_errors=True)
            if text:
                return text

        for host, mirror in MIRROR_HOSTS.items():
            substituted = swap_host(ctx.url, host, mirror)
            if substituted:
                text = await ctx.fetch_feed(substituted)
                if text:
                    return text
        return None


class AutoDiscovery(FetchStrategy):
    name = "auto-discovery"

    def applies(self, ctx: ResolveContext) -> bool:
        return not ctx.discovery_done

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        ctx.discovery_done = True
        pages = [ctx.url]
        site_root = origin_of(ctx.url)
        if site_root and site_root.rstrip("/") != ctx.url.rstrip("/"):
            pages.append(site_root)

        for page in pages:
            html = None
            if page == ctx.url and ctx.direct_status is not None and 200 <= ctx.direct_status < 300:
                html = ctx.direct_text
            for candidate in await discover_feed_urls(ctx.http, page, html=html):
                if candidate in ctx.tried_urls:
                    continue
                text = await ctx.fetch_feed(candidate)
                if text:
                    logger.info(f"Discovered feed {candidate} from {page}")
                    return text
        return None


class ProxyFallback(FetchStrategy):
    name = "proxy"

    def __init__(self, proxies: Optional[List[ProxyEndpoint]] = None) -> None:
        self.proxies = proxies if proxies is not None else PROXIES

    def applies(self, ctx: ResolveContext) -> bool:
        if not config.proxies_allowed:
            logger.info(f"Skipping CORS proxies on platform '{config.PLATFORM}'")
            return False
        return True

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        for proxy in self.proxies:
            response = await ctx.fetch(proxy.build(ctx.url), headers={"User-Agent": config.USER_AGENT})
            if response is None or not response.ok:
                continue
            text = response.text
            if proxy.json_field:
                try:
                    text = json.loads(text).get(proxy.json_field) or ""
                except (json.JSONDecodeError, AttributeError) as e:
                    logger.debug(f"Proxy {proxy.name} returned unparseable JSON: {e}")
                    continue
            if is_valid_feed(text) and not has_script_error(text[:4096]):
                logger.info(f"Fetched {ctx.url} through proxy {proxy.name}")
                return text
        return None


class JsonApiFallback(FetchStrategy):
    name = "rss2json"

    async def attempt(self, ctx: ResolveContext) -> Optional[str]:
        response = await ctx.fetch(RSS2JSON_ENDPOINT.format(url=quote(ctx.url, safe="")), headers={"User-Agent": config.USER_AGENT})
        if response is None or not response.ok:
            return None
        try:
            data = json.loads(response.text)
        except json.JSONDecodeError as e:
            logger.debug(f"Conversion API returned invalid JSON for {ctx.url}: {e}")
            return None
        if not isinstance(data, dict) or data.get("status") != "ok":
            return None
        return synthesize_rss(data)


def synthesize_rss(data: dict) -> str:
    """Build a minimal RSS 2.0 document from a feed-to-JSON API response."""
    feed = data.get("feed") or {}

    def el(tag: str, value) -> str:
        return f"<{tag}>{escape(str(value))}</{tag}>" if value else ""

    items = []
    for entry in data.get("items") or []:
        if not isinstance(entry, dict):
            continue
        enclosure = entry.get("enclosure") or {}
        enclosure_xml = ""
        if isinstance(enclosure, dict) and enclosure.get("link"):
            enclosure_xml = '<enclosure url="{}" type="{}" length="{}"/>'.format(
                escape(str(enclosure["link"]), {'"': "&quot;"}),
                escape(str(enclosure.get("type") or ""), {'"': "&quot;"}),
                escape(str(enclosure.get("length") or ""), {'"': "&quot;"}),
            )
        items.append(
            "<item>"
            + el("title", entry.get("title"))
            + el("link", entry.get("link"))
            + el("description", entry.get("description"))
            + el("pubDate", entry.get("pubDate"))
            + el("guid", entry.get("guid") or entry.get("link"))
            + el("author", entry.get("author"))
            + el("content:encoded", entry.get("content"))
            + el("category", (entry.get("categories") or [None])[0])
            + enclosure_xml
            + "</item>"
        )
    image = f"<image><url>{escape(str(feed['image']))}</url></image>" if feed.get("image") else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/"><channel>'
        + el("title", feed.get("title"))
        + el("link", feed.get("link"))
        + el("description", feed.get("description"))
        + el("author", feed.get("author"))
        + image
        + "".join(items)
        + "</channel></rss>"
    )


def default_strategies() -> List[FetchStrategy]:
    return [
        DirectFetch(),
        FeedBurnerVariants(),
        SchemeToggle(),
        MirrorRefetch(),
        ScriptErrorAlternates(),
        AutoDiscovery(),
        ProxyFallback(),
        JsonApiFallback(),
    ]


class FeedResolver:
    """Runs the strategy cascade for one URL at a time."""

    def __init__(self, http: HttpClient, strategies: Optional[List[FetchStrategy]] = None) -> None:
        self.http = http
        self.strategies = strategies if strategies is not None else default_strategies()

    @trace_span(
        "fetch_feed_xml",
        tracer_name="fetcher",
        attr_from_args=lambda self, url: {"feed.url": url},
    )
    async def fetch_feed_xml(self, url: str) -> str:
        """Return valid feed text for ``url``.

        Raises:
            FetchExhaustedError: every strategy failed.
        """
        ctx = ResolveContext(url=url.strip(), http=self.http)
        for strategy in self.strategies:
            if not strategy.applies(ctx):
                continue
            ctx.attempts.append(strategy.name)
            try:
                text = await strategy.attempt(ctx)
            except NETWORK_ERRORS as e:
                logger.warning(f"Strategy {strategy.name} failed for {url}: {format_error(e)}")
                continue
            if text is not None:
                if strategy.name != DirectFetch.name:
                    logger.info(f"Resolved {url} via {strategy.name}")
                return text
        logger.error(f"❌ Could not fetch a valid feed from {url} (tried: {', '.join(ctx.attempts)})")
        raise FetchExhaustedError(url, ctx.attempts)


# ---------------------------------------------------------------------------
# Discovery and article content
# ---------------------------------------------------------------------------

FEED_LINK_TYPES = (
    "application/rss+xml",
    "application/atom+xml",
    "application/rdf+xml",
    "application/xml",
    "application/feed+json",
)
_FEEDISH_HREF_RE = re.compile(r"(feed|rss|atom|rdf|xml)", re.I)


def extract_feed_links(html: str, base_url: str) -> List[str]:
    """Feed URLs advertised by an HTML page, best candidates first."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    found: List[Tuple[int, str]] = []

    for link in soup.find_all("link"):
        link_type = (link.get("type") or "").lower().strip()
        href = link.get("href")
        if href and link_type in FEED_LINK_TYPES:
            # Prefer Atom, then RSS, then the generic XML types
            rank = 0 if "atom" in link_type else 1 if "rss" in link_type else 2
            found.append((rank, to_absolute(href.strip(), base_url)))

    if not found:
        base_normalized = base_url.rstrip("/")
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not _FEEDISH_HREF_RE.search(href):
                continue
            absolute = to_absolute(href, base_url)
            if absolute.rstrip("/") == base_normalized or not absolute.startswith(("http://", "https://")):
                continue
            found.append((3, absolute))

    ordered: List[str] = []
    for _, url in sorted(found, key=lambda pair: pair[0]):
        if url not in ordered:
            ordered.append(url)
    return ordered


async def discover_feed_urls(http: HttpClient, site_url: str, html: Optional[str] = None) -> List[str]:
    """Fetch a page (unless its HTML is given) and list the feeds it advertises."""
    if html is None:
        try:
            response = await http.request(site_url, method="GET", headers=html_headers())
        except NETWORK_ERRORS as e:
            logger.debug(f"Error discovering feed from {site_url}: {format_error(e)}")
            return []
        if not response.ok:
            logger.debug(f"Error accessing {site_url}: HTTP {response.status}")
            return []
        html = response.text
    return extract_feed_links(html, site_url)


async def discover_feed_url(http: HttpClient, site_url: str) -> Optional[str]:
    """Best feed URL advertised by a website, or None."""
    logger.info(f"Attempting to discover feed URL from: {site_url}")
    candidates = await discover_feed_urls(http, site_url)
    if candidates:
        logger.info(f"Discovered feed: {candidates[0]}")
        return candidates[0]
    logger.info(f"No feed links found in {site_url}")
    return None


def _parse_with_readability(html_content: str, url: str) -> Optional[str]:
    try:
        return Document(html_content, url=url).summary(html_partial=True)
    except (ValueError, RuntimeError, TypeError) as e:
        logger.error(f"Error in readability parsing for {url}: {e}")
        return None


@trace_span(
    "fetch_original_content",
    tracer_name="fetcher",
    attr_from_args=lambda http, url: {"entry.url": url},
)
async def fetch_original_content(http: HttpClient, url: str) -> Optional[str]:
    """Fetch a web page and return its main content as absolutized HTML."""
    logger.info(f"Fetching original content from: {url}")
    try:
        response = await http.request(url, method="GET", headers=html_headers())
    except NETWORK_ERRORS as e:
        logger.error(f"Error fetching original content from {url}: {format_error(e)}")
        return None
    if not response.ok:
        logger.error(f"Error fetching original content from {url}: HTTP {response.status}")
        return None

    # readability is CPU-bound
    loop = asyncio.get_running_loop()
    content = await loop.run_in_executor(None, partial(_parse_with_readability, response.text, url))
    if not content:
        return None
    return absolutize_html(content, response.url or url)
