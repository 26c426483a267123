#!/usr/bin/env python3
"""
Feed text parsing: format detection, dialect parsers and recovery.

parse_string() is the single entry point. It turns raw feed text into a
ParsedFeed regardless of dialect:

1. Text starting with ``{`` is handed to the JSON Feed parser.
2. Everything else is preprocessed (BOM, stray processing instructions such
   as PHP blocks, leading/trailing garbage, HTML-only entities and bare
   ampersands) and parsed strictly with lxml.
3. If the strict parse fails, the <rss> span (or a bare <channel>, or loose
   <item> elements) is cut out and parsed again.
4. A parsed document is dispatched on its root: RDF -> RSS 1.0, rss/channel
   -> RSS 2.0, feed -> Atom.
5. When none of that works, a regex-based recovery parser extracts whatever
   items still have a title. Its output is flagged ``recovered``.

Per-item defects are repaired with defaults; a single broken item is logged
and skipped, never allowed to fail the feed.
"""

import json
import re
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import urlparse
from xml.sax.saxutils import escape

from lxml import etree

from config import get_logger
from entities import decode, decode_entities, named_to_numeric, strip_cdata
from errors import FeedParseError, UnsupportedFormatError
from models import Enclosure, IeeeInfo, Image, ItunesInfo, ParsedFeed, ParsedItem
from telemetry import trace_span
from utils import extract_first_image, now_iso

logger = get_logger("parser")

FEED_SNIFF_CHARS = 2048
JSON_FEED_VERSION_PREFIX = "https://jsonfeed.org/"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

NAMESPACES = {
    "content": "http://purl.org/rss/1.0/modules/content/",
    "dc": "http://purl.org/dc/elements/1.1/",
    "itunes": "http://www.itunes.com/dtds/podcast-1.0.dtd",
    "media": "http://search.yahoo.com/mrss/",
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "atom": "http://www.w3.org/2005/Atom",
    "prism": "http://prismstandard.org/namespaces/basic/2.0/",
    "rss1": "http://purl.org/rss/1.0/",
}
# Unprefixed names in a lookup also match elements in these default namespaces
DEFAULT_NAMESPACES = frozenset({
    NAMESPACES["atom"],
    NAMESPACES["rss1"],
    "http://my.netscape.com/rdf/simple/0.9/",
    "http://backend.userland.com/rss2",
})
ENVELOPE_NAMESPACES = " ".join(
    f'xmlns:{prefix}="{uri}"' for prefix, uri in NAMESPACES.items() if prefix not in ("rdf", "rss1")
)

IEEE_FIELDS = (
    ("pub_year", "pubYear"),
    ("volume", "volume"),
    ("issue", "issue"),
    ("start_page", "startPage"),
    ("end_page", "endPage"),
    ("file_size", "fileSize"),
    ("authors", "authors"),
)


def _sage_full_text(url: str) -> str:
    if "/doi/abs/" in url:
        return url.replace("/doi/abs/", "/doi/full/")
    return re.sub(r"/doi/(?=10\.)", "/doi/full/", url)


# (host pattern, rewrite) pairs applied to feed and item links
LINK_REWRITES: List[Tuple[re.Pattern, Callable[[str], str]]] = [
    (re.compile(r"(^|\.)journals\.sagepub\.com$", re.I), _sage_full_text),
]


def rewrite_link(url: str) -> str:
    """Apply publisher-specific link normalizations."""
    if not url or url == "#":
        return url
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return url
    for pattern, rewrite in LINK_REWRITES:
        if pattern.search(host):
            return rewrite(url)
    return url


def is_valid_feed(text: str) -> bool:
    """Cheap sniff of the first couple of KB for a feed root element."""
    if not text:
        return False
    head = text[:FEED_SNIFF_CHARS].lower()
    if head.lstrip("\ufeff \t\r\n").startswith("{"):
        return '"version"' in head and "jsonfeed.org" in head
    return (
        "<rss" in head
        or re.search(r"<feed[\s>]", head) is not None
        or "<rdf:rdf" in head
        or re.search(r"<rdf[\s>]", head) is not None
        or "purl.org/rss/1.0" in head
    )


# ---------------------------------------------------------------------------
# lxml element helpers
# ---------------------------------------------------------------------------

def _local(el) -> str:
    tag = el.tag
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _namespace(el) -> Optional[str]:
    tag = el.tag
    if isinstance(tag, str) and tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return None


def _matches(el, name: str) -> bool:
    """Match an element against ``local`` or ``prefix:local`` (``*:local`` for any prefix)."""
    if not isinstance(el.tag, str):
        return False
    if ":" in name:
        prefix, local = name.split(":", 1)
        if _local(el).lower() != local.lower():
            return False
        if prefix == "*":
            return True
        return el.prefix == prefix or _namespace(el) == NAMESPACES.get(prefix)
    if _local(el).lower() != name.lower() or el.prefix is not None:
        return False
    ns = _namespace(el)
    return ns is None or ns in DEFAULT_NAMESPACES


def _child(el, *names: str):
    """First direct child matching any of ``names``, tried in order."""
    if el is None:
        return None
    for name in names:
        for child in el:
            if _matches(child, name):
                return child
    return None


def _first(*elements):
    # lxml elements without children are falsy, so `or` cannot be used here
    for el in elements:
        if el is not None:
            return el
    return None


def _children(el, name: str) -> List:
    if el is None:
        return []
    return [child for child in el if _matches(child, name)]


def _inner(el) -> str:
    """Text of an element; nested markup (inline XHTML) is serialized back."""
    if el is None:
        return ""
    if len(el) == 0:
        return (el.text or "").strip()
    parts = [el.text or ""]
    for child in el:
        parts.append(etree.tostring(child, encoding="unicode", with_tail=True))
    return "".join(parts).strip()


def _text(el, *names: str) -> str:
    return _inner(_child(el, *names))


def _attr(el, name: str) -> Optional[str]:
    if el is None:
        return None
    if ":" in name:
        prefix, local = name.split(":", 1)
        value = el.get(f"{{{NAMESPACES.get(prefix, '')}}}{local}")
        if value is not None:
            return value
        return el.get(local)
    return el.get(name)


def _plain(value: str) -> str:
    """Decoded single-line text for titles and other display fields."""
    return decode(value)


def _null_to_empty(value: str) -> str:
    return "" if value.strip().lower() == "null" else value


# ---------------------------------------------------------------------------
# Raw-text helpers shared by preprocessing and recovery
# ---------------------------------------------------------------------------

_CDATA_SEGMENT_RE = re.compile(r"(<!\[CDATA\[[\s\S]*?\]\]>)")
_BARE_AMP_RE = re.compile(r"&(?!(?:[a-zA-Z][a-zA-Z0-9]*|#\d+|#[xX][0-9a-fA-F]+);)")
_XML_DECL_RE = re.compile(r"<\?xml[\s?][^>]*\?>", re.I)
_PI_RE = re.compile(r"<\?(?!xml[\s?])[\s\S]*?\?>", re.I)
_RSS_OPEN_RE = re.compile(r"<rss[\s>]", re.I)
_RSS_CLOSE_RE = re.compile(r"</rss\s*>", re.I)
_ROOT_OPEN_RE = re.compile(r"<(?:feed|rdf:RDF)[\s>]", re.I)
_FIELD_TEXT = r"((?:<!\[CDATA\[[\s\S]*?\]\]>)|[^<]+)"


def _xml_text(raw: str) -> str:
    """XML character data semantics on a raw fragment: CDATA literal, the rest entity-decoded."""
    if not raw:
        return ""
    pieces = []
    for segment in _CDATA_SEGMENT_RE.split(raw):
        if segment.startswith("<![CDATA["):
            pieces.append(segment[9:-3])
        else:
            pieces.append(decode_entities(strip_cdata(segment)))
    return "".join(pieces).strip()


def _escape_outside_cdata(text: str) -> str:
    pieces = []
    for segment in _CDATA_SEGMENT_RE.split(text):
        if segment.startswith("<![CDATA["):
            pieces.append(segment)
        else:
            pieces.append(named_to_numeric(_BARE_AMP_RE.sub("&amp;", segment)))
    return "".join(pieces)


def _regex_field(pattern: str, text: str) -> Optional[str]:
    match = re.search(pattern, text, re.I)
    return match.group(1) if match else None


class FeedTextParser:
    """Parses feed text of any supported dialect into a ParsedFeed."""

    def __init__(self) -> None:
        self._xml_parser = etree.XMLParser(
            resolve_entities=False,
            no_network=True,
            load_dtd=False,
            huge_tree=True,
            recover=False,
        )

    @trace_span(
        "parse_string",
        tracer_name="parser",
        attr_from_args=lambda self, text: {"feed.text_length": len(text or "")},
    )
    def parse_string(self, text: str) -> ParsedFeed:
        """Parse raw feed text.

        Raises:
            UnsupportedFormatError: for JSON without a JSON Feed version, or
                text from which not even the recovery parser gets anything.
        """
        if not text or not text.strip():
            raise UnsupportedFormatError("Empty feed document")

        stripped = text.lstrip("\ufeff \t\r\n")
        if stripped.startswith("{"):
            return self.parse_json(stripped)

        root = self._parse_xml(self.preprocess(text))
        if root is None:
            extracted = self.extract_rss_content(text)
            if extracted:
                root = self._parse_xml(self.preprocess(extracted))
                if root is not None and not self._has_feed_structure(root):
                    root = None
        if root is None:
            logger.info("Structural parse failed; falling back to recovery parser")
            return self._recover(text)

        try:
            return self._dispatch(root, text)
        except FeedParseError as e:
            logger.warning(f"Dialect parser rejected document ({e}); falling back to recovery parser")
            return self._recover(text)

    def _dispatch(self, root, text: str) -> ParsedFeed:
        name = _local(root).lower()
        if (name == "rdf" and _namespace(root) == NAMESPACES["rdf"]) or NAMESPACES["rss1"] in (root.nsmap or {}).values():
            return self.parse_rss1(root)
        if name in ("rss", "channel"):
            return self.parse_rss2(root)
        if name == "feed":
            return self.parse_atom(root)
        if next(root.iter("{*}channel", "channel"), None) is not None:
            return self.parse_rss2(root)
        logger.warning(f"Unrecognized feed root <{name}>; falling back to recovery parser")
        return self._recover(text)

    def _recover(self, text: str) -> ParsedFeed:
        feed = self.parse_recovery(text)
        if not feed.items and feed.title in ("", "Unknown Feed"):
            raise UnsupportedFormatError("No feed dialect recognized the document")
        feed.recovered = True
        return feed

    # ------------------------------------------------------------------
    # Preprocessing
    # ------------------------------------------------------------------
    def preprocess(self, text: str) -> str:
        """Make real-world feed text palatable to a strict XML parser."""
        processed = text.lstrip("\ufeff")
        processed = _PI_RE.sub("", processed)
        processed = _XML_DECL_RE.sub("", processed)

        rss_open = _RSS_OPEN_RE.search(processed)
        if rss_open:
            processed = processed[rss_open.start():]
            closes = list(_RSS_CLOSE_RE.finditer(processed))
            if closes:
                processed = processed[:closes[-1].end()]
        else:
            root_open = _ROOT_OPEN_RE.search(processed)
            if root_open:
                processed = processed[root_open.start():]

        processed = _escape_outside_cdata(processed.strip())
        return f"{XML_DECLARATION}\n{processed}"

    def _parse_xml(self, text: str):
        try:
            return etree.fromstring(text.encode("utf-8"), self._xml_parser)
        except (etree.XMLSyntaxError, ValueError) as e:
            logger.debug(f"Strict XML parse failed: {e}")
            return None

    def _has_feed_structure(self, root) -> bool:
        name = _local(root).lower()
        if name in ("rss", "feed", "rdf", "channel"):
            return True
        return next(root.iter("{*}item", "item"), None) is not None

    def extract_rss_content(self, text: str) -> Optional[str]:
        """Cut a parseable RSS document out of surrounding garbage.

        Tries, in order: the <rss>...</rss> span, a bare <channel> wrapped in
        an rss envelope, and loose <item> elements wrapped in a synthesized
        channel.
        """
        rss_match = re.search(r"<rss[^>]*>[\s\S]*?</rss>", text, re.I)
        if rss_match:
            return rss_match.group(0)

        envelope = f'<rss version="2.0" {ENVELOPE_NAMESPACES}>'
        channel_match = re.search(r"<channel[^>]*>[\s\S]*?</channel>", text, re.I)
        if channel_match:
            return f"{envelope}{channel_match.group(0)}</rss>"

        items = re.findall(r"<item\b[^>]*>[\s\S]*?</item>", text, re.I)
        if not items:
            return None
        title = _regex_field(r"<title[^>]*>" + _FIELD_TEXT + r"</title>", text) or "Unknown Feed"
        description = _regex_field(r"<description[^>]*>([\s\S]*?)</description>", text) or ""
        link = _regex_field(r"<link[^>]*>([^<]+)</link>", text) or ""
        return (
            f"{envelope}<channel>"
            f"<title>{escape(_xml_text(title))}</title>"
            f"<description>{escape(_xml_text(description))}</description>"
            f"<link>{escape(_xml_text(link))}</link>"
            f"{''.join(items)}</channel></rss>"
        )

    # ------------------------------------------------------------------
    # RSS 2.0
    # ------------------------------------------------------------------
    def parse_rss2(self, root) -> ParsedFeed:
        channel = root if _local(root).lower() == "channel" else _child(root, "channel")
        if channel is None:
            raise FeedParseError("No channel element found")

        feed_image_url = _text(_child(channel, "image"), "url") or None
        feed_itunes_image = _attr(_child(channel, "itunes:image"), "href") or None
        feed = ParsedFeed(
            title=_plain(_text(channel, "title")),
            description=_inner(_child(channel, "description")),
            link=rewrite_link(_plain(_text(channel, "link"))),
            author=_plain(_text(channel, "author", "dc:creator", "itunes:author")),
            image=Image.coerce(feed_itunes_image or feed_image_url),
            type="rss",
            feed_itunes_image=feed_itunes_image,
            feed_image_url=feed_image_url,
        )

        item_elements = _children(channel, "item") or _children(root, "item")
        for index, el in enumerate(item_elements):
            try:
                feed.items.append(self._rss2_item(el))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed RSS item #{index} in '{feed.title}': {e}")
        return feed

    def _rss2_item(self, el) -> ParsedItem:
        link = rewrite_link(_plain(_text(el, "link")))
        description = _null_to_empty(_inner(_child(el, "description")))
        content = _inner(_child(el, "content:encoded")) or description
        ieee = self._ieee(el)
        author = (ieee.authors if ieee else None) or _plain(_text(el, "author", "dc:creator", "itunes:author"))

        return ParsedItem(
            title=_plain(_text(el, "title")),
            link=link,
            description=description,
            pub_date=_plain(_text(el, "pubDate", "dc:date", "published", "updated")),
            guid=_plain(_text(el, "guid")) or link,
            author=author,
            content=content,
            category=_plain(_text(el, "category")),
            enclosure=self._enclosure(_child(el, "enclosure")),
            itunes=self._itunes(el),
            image=self._item_image(el, content),
            ieee=ieee,
        )

    def _enclosure(self, el) -> Optional[Enclosure]:
        url = _attr(el, "url")
        if not url:
            return None
        return Enclosure(url=url.strip(), type=(_attr(el, "type") or "").strip(), length=(_attr(el, "length") or "").strip())

    def _itunes(self, el) -> Optional[ItunesInfo]:
        category_el = _child(el, "itunes:category")
        info = ItunesInfo(
            duration=_plain(_text(el, "itunes:duration")) or None,
            explicit=_plain(_text(el, "itunes:explicit")) or None,
            image=_attr(_child(el, "itunes:image"), "href") or None,
            category=(_attr(category_el, "text") or _plain(_inner(category_el))) or None,
            summary=_text(el, "itunes:summary") or None,
            episode_type=_plain(_text(el, "itunes:episodeType")) or None,
            season=_plain(_text(el, "itunes:season")) or None,
            episode=_plain(_text(el, "itunes:episode")) or None,
        )
        if not any(vars(info).values()):
            return None
        return info

    def _ieee(self, el) -> Optional[IeeeInfo]:
        info = IeeeInfo(**{attr: (_plain(_text(el, f"*:{tag}")) or None) for attr, tag in IEEE_FIELDS})
        return None if info.is_empty() else info

    def _item_image(self, el, content: str) -> Optional[Image]:
        image_el = _child(el, "image")
        if image_el is not None:
            url = _text(image_el, "url") or (_inner(image_el) if len(image_el) == 0 else "")
            if url:
                return Image.coerce(url)
        for media in _children(el, "media:content"):
            medium = (media.get("medium") or "").lower()
            mime = (media.get("type") or "").lower()
            if media.get("url") and (medium == "image" or mime.startswith("image/") or (not medium and not mime)):
                return Image.coerce(media.get("url"))
        group = _child(el, "media:group")
        thumbnail = _first(_child(el, "media:thumbnail"), _child(group, "media:thumbnail"))
        if thumbnail is not None and thumbnail.get("url"):
            return Image.coerce(thumbnail.get("url"))
        return Image.coerce(extract_first_image(content))

    # ------------------------------------------------------------------
    # RSS 1.0 / RDF
    # ------------------------------------------------------------------
    def parse_rss1(self, root) -> ParsedFeed:
        channel = _child(root, "channel")
        feed_image_url = self._rss1_image(root, channel)
        feed = ParsedFeed(
            title=_plain(_text(channel, "title", "dc:title")) or "Unknown Feed",
            description=_inner(_child(channel, "description", "dc:description")),
            link=_plain(_text(channel, "link")),
            author=_plain(_text(channel, "dc:creator", "dc:publisher")),
            image=Image.coerce(feed_image_url),
            type="rss",
            feed_image_url=feed_image_url,
        )

        item_elements = _children(root, "item") or _children(channel, "item")
        for index, el in enumerate(item_elements):
            try:
                feed.items.append(self._rss1_item(el, index))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed RDF item #{index} in '{feed.title}': {e}")
        return feed

    def _rss1_image(self, root, channel) -> Optional[str]:
        image_el = _child(channel, "image")
        if image_el is not None:
            url = _attr(image_el, "rdf:resource") or _text(image_el, "url")
            if url:
                return url.strip()
        root_image = _child(root, "image")
        if root_image is not None:
            url = _text(root_image, "url") or _attr(root_image, "rdf:about")
            if url:
                return url.strip()
        return None

    def _rss1_item(self, el, index: int) -> ParsedItem:
        link = _plain(_text(el, "link", "prism:url")) or "#"
        description = _null_to_empty(_inner(_child(el, "description", "dc:description", "content:encoded")))
        content = _inner(_child(el, "content:encoded")) or description
        creators = [_plain(_inner(c)) for c in _children(el, "dc:creator")]
        guid = (
            _attr(el, "rdf:about")
            or _plain(_text(el, "guid"))
            or (link if link != "#" else "")
            or _plain(_text(el, "prism:url"))
            or f"item-{index}"
        )
        image_el = _child(el, "image")
        image_url = None
        if image_el is not None:
            image_url = _attr(image_el, "rdf:resource") or _text(image_el, "url")

        return ParsedItem(
            title=_plain(_text(el, "dc:title", "title")) or "Untitled",
            link=link,
            description=description,
            pub_date=_plain(_text(el, "dc:date", "pubDate", "prism:publicationDate")) or now_iso(),
            guid=guid.strip(),
            author=", ".join(c for c in creators if c) or _plain(_text(el, "author")),
            content=content,
            category=_plain(_text(el, "dc:subject", "category")),
            enclosure=self._enclosure(_child(el, "enclosure")),
            image=Image.coerce(image_url) or Image.coerce(extract_first_image(content)),
            ieee=self._ieee(el),
        )

    # ------------------------------------------------------------------
    # Atom
    # ------------------------------------------------------------------
    def parse_atom(self, root) -> ParsedFeed:
        if _local(root).lower() != "feed":
            raise FeedParseError("No feed element found")

        icon = _plain(_text(root, "icon", "logo")) or None
        author_el = _child(root, "author")
        feed = ParsedFeed(
            title=_plain(_text(root, "title")),
            description=_inner(_child(root, "subtitle")),
            link=self._atom_link(root),
            author=_plain(_text(author_el, "name")) if author_el is not None else "",
            image=Image.coerce(icon),
            type="atom",
            feed_image_url=icon,
        )

        for index, el in enumerate(_children(root, "entry")):
            try:
                feed.items.append(self._atom_entry(el))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed Atom entry #{index} in '{feed.title}': {e}")
        return feed

    def _atom_link(self, el) -> str:
        links = [l for l in _children(el, "link") if l.get("href")]
        for link in links:
            if (link.get("rel") or "alternate") == "alternate" and (link.get("type") or "").lower() == "text/html":
                return link.get("href").strip()
        for link in links:
            if (link.get("rel") or "alternate") == "alternate":
                return link.get("href").strip()
        return links[0].get("href").strip() if links else ""

    def _atom_entry(self, el) -> ParsedItem:
        link = self._atom_link(el)
        group = _child(el, "media:group")
        summary = _inner(_child(el, "summary")) or _inner(_child(group, "media:description"))
        content = _inner(_child(el, "content")) or summary
        author_el = _child(el, "author")

        enclosure = None
        for link_el in _children(el, "link"):
            if link_el.get("rel") == "enclosure" and link_el.get("href"):
                enclosure = Enclosure(
                    url=link_el.get("href").strip(),
                    type=(link_el.get("type") or "").strip(),
                    length=(link_el.get("length") or "").strip(),
                )
                break

        thumbnail = _first(_child(group, "media:thumbnail"), _child(el, "media:thumbnail"))
        image = Image.coerce(thumbnail.get("url")) if thumbnail is not None else None

        return ParsedItem(
            title=_plain(_text(el, "title")),
            link=link,
            description=summary or content,
            pub_date=_plain(_text(el, "published", "updated", "issued")),
            guid=_plain(_text(el, "id")) or link,
            author=_plain(_text(author_el, "name")) if author_el is not None else _plain(_text(el, "dc:creator")),
            content=content,
            category=(_attr(_child(el, "category"), "term") or "").strip(),
            enclosure=enclosure,
            image=image or Image.coerce(extract_first_image(content)),
        )

    # ------------------------------------------------------------------
    # JSON Feed
    # ------------------------------------------------------------------
    def parse_json(self, text: str) -> ParsedFeed:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise UnsupportedFormatError(f"Invalid JSON feed: {e}") from e
        if not isinstance(data, dict) or not str(data.get("version", "")).startswith(JSON_FEED_VERSION_PREFIX):
            raise UnsupportedFormatError("Unsupported JSON feed format")

        authors = data.get("authors") or ([data["author"]] if isinstance(data.get("author"), dict) else [])
        icon = data.get("icon") or data.get("favicon")
        feed = ParsedFeed(
            title=_plain(str(data.get("title") or "")),
            description=str(data.get("description") or ""),
            link=str(data.get("home_page_url") or ""),
            author=_first_author(authors),
            image=Image.coerce(icon),
            type="json",
            feed_image_url=icon if isinstance(icon, str) else None,
        )

        for index, entry in enumerate(data.get("items") or []):
            if not isinstance(entry, dict):
                logger.warning(f"Skipping non-object JSON feed item #{index}")
                continue
            feed.items.append(self._json_item(entry))
        return feed

    def _json_item(self, entry: dict) -> ParsedItem:
        link = str(entry.get("url") or entry.get("external_url") or "")
        content = str(entry.get("content_html") or entry.get("content_text") or "")
        summary = str(entry.get("summary") or "")
        authors = entry.get("authors") or ([entry["author"]] if isinstance(entry.get("author"), dict) else [])
        tags = entry.get("tags") or []
        attachments = [a for a in (entry.get("attachments") or []) if isinstance(a, dict) and a.get("url")]
        enclosure = None
        if attachments:
            first = attachments[0]
            enclosure = Enclosure(
                url=str(first["url"]),
                type=str(first.get("mime_type") or ""),
                length=str(first.get("size_in_bytes") or ""),
            )
        return ParsedItem(
            title=_plain(str(entry.get("title") or "")),
            link=link,
            description=summary or content,
            pub_date=str(entry.get("date_published") or entry.get("date_modified") or ""),
            guid=str(entry.get("id") or link),
            author=_first_author(authors),
            content=content or summary,
            category=str(entry.get("category") or (tags[0] if tags else "")),
            enclosure=enclosure,
            image=Image.coerce(entry.get("image") or entry.get("banner_image")) or Image.coerce(extract_first_image(content)),
        )

    # ------------------------------------------------------------------
    # Regex recovery
    # ------------------------------------------------------------------
    def parse_recovery(self, text: str) -> ParsedFeed:
        """Extract what can be salvaged from XML too broken to parse.

        Never raises for missing fields; items without a title are dropped.
        """
        cleaned = _PI_RE.sub("", text.lstrip("\ufeff"))
        rss_open = _RSS_OPEN_RE.search(cleaned)
        if rss_open:
            cleaned = cleaned[rss_open.start():]
            close = _RSS_CLOSE_RE.search(cleaned)
            if close:
                cleaned = cleaned[:close.end()]

        title = _regex_field(r"<channel[^>]*>[\s\S]*?<title[^>]*>" + _FIELD_TEXT + r"</title>", cleaned)
        description = _regex_field(r"<channel[^>]*>[\s\S]*?<description[^>]*>([\s\S]*?)</description>", cleaned)
        link = _regex_field(r"<channel[^>]*>[\s\S]*?<link[^>]*>" + _FIELD_TEXT + r"</link>", cleaned)
        feed = ParsedFeed(
            title=decode(_xml_text(title or "")) or "Unknown Feed",
            description=_xml_text(description or ""),
            link=rewrite_link(decode(_xml_text(link or ""))),
            type="rss",
        )

        for index, item_xml in enumerate(self._item_spans(cleaned, text)):
            item = self._recover_item(item_xml)
            if item is None:
                logger.debug(f"Recovery parser dropped item #{index}: no title")
                continue
            feed.items.append(item)
        logger.info(f"Recovery parser salvaged {len(feed.items)} items from '{feed.title}'")
        return feed

    def _item_spans(self, cleaned: str, original: str) -> Iterable[str]:
        spans = re.findall(r"<item\b[^>]*>([\s\S]*?)</item>", cleaned, re.I)
        if spans:
            return spans

        # No closed items: each item runs to the next <item, </channel> or </rss>
        starts = [m for m in re.finditer(r"<item\b[^>]*>", cleaned, re.I)]
        if starts:
            manual = []
            for i, start in enumerate(starts):
                body_start = start.end()
                ends = [len(cleaned)]
                if i + 1 < len(starts):
                    ends.append(starts[i + 1].start())
                for closing in (r"</channel>", r"</rss>"):
                    found = re.search(closing, cleaned[body_start:], re.I)
                    if found:
                        ends.append(body_start + found.start())
                manual.append(cleaned[body_start:min(ends)])
            return manual

        return re.findall(r"<item\b[^>]*>([\s\S]*?)</item>", original, re.I)

    def _recover_item(self, item_xml: str) -> Optional[ParsedItem]:
        raw_title = _regex_field(r"<title[^>]*>" + _FIELD_TEXT + r"</title>", item_xml)
        title = decode(_xml_text(raw_title or ""))
        if not title:
            return None

        link = decode(_xml_text(_regex_field(r"<link[^>]*>" + _FIELD_TEXT + r"</link>", item_xml) or "")) or "#"
        link = rewrite_link(link)
        description = _null_to_empty(_xml_text(_regex_field(r"<description[^>]*>([\s\S]*?)</description>", item_xml) or ""))
        content = _xml_text(_regex_field(r"<content:encoded[^>]*>([\s\S]*?)</content:encoded>", item_xml) or "") or description
        pub_date = decode(_xml_text(_regex_field(r"<pubDate[^>]*>([^<]+)</pubDate>", item_xml) or "")) or now_iso()
        guid = decode(_xml_text(_regex_field(r"<guid[^>]*>" + _FIELD_TEXT + r"</guid>", item_xml) or "")) or link

        author = ""
        for pattern in (
            r"<author[^>]*>([^<]+)</author>",
            r"<dc:creator[^>]*>([^<]+)</dc:creator>",
            r"<dc:creator[^>]*><!\[CDATA\[([\s\S]*?)\]\]></dc:creator>",
            r"<creator[^>]*>([^<]+)</creator>",
        ):
            found = _regex_field(pattern, item_xml)
            if found and found.strip():
                author = decode(found)
                break

        ieee = IeeeInfo(**{
            attr: (decode(_xml_text(_regex_field(rf"<(?:\w+:)?{tag}[^>]*>([^<]+)</(?:\w+:)?{tag}>", item_xml) or "")) or None)
            for attr, tag in IEEE_FIELDS
        })
        if ieee.is_empty():
            ieee = None
        elif ieee.authors:
            author = ieee.authors

        enclosure = None
        enclosure_tag = re.search(r"<enclosure\b[^>]*>", item_xml, re.I)
        if enclosure_tag:
            attrs = dict((k.lower(), v) for k, v in re.findall(r'(\w+)\s*=\s*["\']([^"\']*)["\']', enclosure_tag.group(0)))
            if attrs.get("url"):
                enclosure = Enclosure(url=decode_entities(attrs["url"]), type=attrs.get("type", ""), length=attrs.get("length", ""))

        return ParsedItem(
            title=title,
            link=link,
            description=description,
            pub_date=pub_date,
            guid=guid,
            author=author,
            content=content,
            category=decode(_xml_text(_regex_field(r"<category[^>]*>" + _FIELD_TEXT + r"</category>", item_xml) or "")),
            enclosure=enclosure,
            image=Image.coerce(extract_first_image(content)),
            ieee=ieee,
        )


def _first_author(authors) -> str:
    if isinstance(authors, list) and authors and isinstance(authors[0], dict):
        return _plain(str(authors[0].get("name") or ""))
    return ""


# Shared default instance
feed_text_parser = FeedTextParser()


def parse_string(text: str) -> ParsedFeed:
    """Module-level convenience wrapper around the shared FeedTextParser."""
    return feed_text_parser.parse_string(text)
