#!/usr/bin/env python3
"""
Media classification for feeds: article, video or podcast.

classify() is a pure transform over a merged Feed. It decides the feed-wide
media type and fills the type-specific item fields (video id and thumbnail,
video URL, audio URL, duration). Cover-image selection for podcast items and
the feed-wide placeholder suppression rule live here as well, since both the
merge engine and the classifier need them.

The only I/O in this module is resolve_youtube_feed_url(), which may scrape a
channel page to turn a handle into a channel id.
"""

import re
from collections import Counter
from dataclasses import replace
from typing import Iterable, List, Optional, Set

from config import get_logger
from fetcher import NETWORK_ERRORS, format_error, html_headers
from models import Feed, FeedItem, MediaSettings, MediaType, ParsedFeed, ParsedItem, Tag
from utils import extract_cover_image, to_absolute

logger = get_logger("media")

YOUTUBE_PATTERNS = [
    "youtube.com/feeds/videos.xml",
    "youtube.com/channel/",
    "youtube.com/user/",
    "youtube.com/c/",
    "youtube.com/@",
    "youtube.com/watch",
    "youtu.be/",
    "youtube.com/playlist",
]

_VIDEO_ID_PATTERNS = [
    re.compile(
        r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/|youtube\.com/e/"
        r"|youtube\.com/user/[^/]+/u/\d+/videos/|youtube\.com/user/[^/]+/|youtube\.com/.*[?&]v="
        r"|youtube\.com/.*[?&]v%3D|youtube\.com/.+/|youtube\.com/(?:user|c)/[^/]+/#p/a/u/\d+/"
        r"|youtube\.com/playlist\?list=|youtube\.com/user/[^/]+/videos/|youtube\.com/user/[^/]+/)"
        r"([^\"&?/\s]{11})",
        re.I,
    ),
    re.compile(r"(?:youtube\.com/embed/|youtube\.com/v/|youtu\.be/)([^\"&?/\s]{11})", re.I),
]

THUMBNAIL_QUALITIES = ["maxresdefault", "hqdefault", "mqdefault", "sddefault", "default"]

_AUDIO_EXT = r"\.(?:mp3|m4a|wav|ogg|opus|aac|flac)"
_AUDIO_PATTERNS = [
    re.compile(r"<enclosure[^>]*url=[\"']([^\"']*" + _AUDIO_EXT + r")[\"']", re.I),
    re.compile(r"<audio[^>]*src=[\"']([^\"']*" + _AUDIO_EXT + r")[\"']", re.I),
    re.compile(r"href=[\"']([^\"']*" + _AUDIO_EXT + r")[\"']", re.I),
    re.compile(r"<source[^>]*src=[\"']([^\"']*" + _AUDIO_EXT + r")[\"']", re.I),
]

_DURATION_PATTERNS = [
    re.compile(r"duration[^0-9]*(\d+:\d+(?::\d+)?)", re.I),
    re.compile(r"length[^0-9]*(\d+:\d+(?::\d+)?)", re.I),
    re.compile(r"time[^0-9]*(\d+:\d+(?::\d+)?)", re.I),
    re.compile(r"(\d+:\d+(?::\d+)?)\s*(?:min|minutes|mins)", re.I),
]

PODCAST_AUTHOR_HINTS = ("podcast", "radio", "audio")
PODCAST_DESCRIPTION_HINTS = ("<enclosure", "audio/", ".mp3", "podcast", "episode", "duration", "length")

# A cover shared by this share of items (and at least this many) is a host placeholder
DEFAULT_COVER_SHARE = 0.8
DEFAULT_COVER_MIN_COUNT = 2

_CHANNEL_ID_RE = re.compile(r"^UC[\w-]{22}$")
_CHANNEL_URL_RE = re.compile(r"youtube\.com/channel/(UC[\w-]{22})")
_CHANNEL_SCRAPE_RE = re.compile(r"channelId\"?\s*:\s*\"(UC[\w-]{22})\"")
_USER_URL_RE = re.compile(r"youtube\.com/user/([^/?#]+)")
_CUSTOM_URL_RE = re.compile(r"youtube\.com/c/([^/?#]+)")


def is_youtube_feed(url: Optional[str]) -> bool:
    if not url:
        return False
    return any(pattern in url for pattern in YOUTUBE_PATTERNS)


def extract_youtube_video_id(link: Optional[str]) -> Optional[str]:
    """11-character video id from a YouTube link, or None."""
    if not link:
        return None
    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(link)
        if match and len(match.group(1)) == 11:
            return match.group(1)
    return None


def youtube_thumbnail_candidates(video_id: str) -> List[str]:
    return [f"https://img.youtube.com/vi/{video_id}/{quality}.jpg" for quality in THUMBNAIL_QUALITIES]


def youtube_thumbnail(video_id: str) -> str:
    """Best thumbnail URL; the first of the quality waterfall."""
    return youtube_thumbnail_candidates(video_id)[0]


def extract_podcast_audio(html: Optional[str]) -> Optional[str]:
    """Audio file URL referenced by an enclosure, audio, link or source tag."""
    if not html:
        return None
    for pattern in _AUDIO_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(1)
    return None


def extract_podcast_duration(html: Optional[str]) -> Optional[str]:
    """Duration such as 45:10 or 1:02:33 mentioned in an episode description."""
    if not html:
        return None
    for pattern in _DURATION_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(1)
    return None


def is_podcast_feed(feed: Feed) -> bool:
    """Heuristic podcast detection over the first three items."""
    if not feed.items:
        return False
    author = (feed.author or "").lower()
    for item in feed.items[:3]:
        if item.enclosure and (item.enclosure.type or "").startswith("audio/"):
            return True
        if item.duration or (item.itunes and item.itunes.duration):
            return True
        if any(hint in author for hint in PODCAST_AUTHOR_HINTS):
            return True
        if not item.description:
            continue
        if extract_podcast_audio(item.description):
            return True
        description = item.description.lower()
        if any(hint in description for hint in PODCAST_DESCRIPTION_HINTS):
            return True
    return False


def is_podcast_item(item: ParsedItem) -> bool:
    return bool(
        (item.itunes and item.itunes.duration)
        or (item.enclosure and (item.enclosure.type or "").startswith("audio/"))
    )


def podcast_cover_image(item: ParsedItem, parsed: ParsedFeed, base_url: str) -> Optional[str]:
    """Episode artwork: item itunes image, item image, feed itunes image, feed image, then content."""
    candidates = [
        item.itunes.image if item.itunes else None,
        item.image.url if item.image else None,
        parsed.feed_itunes_image,
        parsed.feed_image_url,
        parsed.image.url if parsed.image else None,
    ]
    for candidate in candidates:
        if candidate:
            resolved = to_absolute(candidate, base_url)
            if resolved:
                return resolved
    return extract_cover_image(item.content or item.description, base_url)


def suppress_default_cover_images(items: List[FeedItem], logo_candidates: Iterable[str]) -> List[FeedItem]:
    """Clear cover images that merely repeat the feed logo across most items.

    Returns a new list; items that keep their cover are returned as-is.
    """
    logos: Set[str] = {logo for logo in logo_candidates if logo}
    if not items or not logos:
        return list(items)
    counts = Counter(item.cover_image for item in items if item.cover_image)
    threshold = max(DEFAULT_COVER_MIN_COUNT, int(len(items) * DEFAULT_COVER_SHARE))
    placeholders = {url for url, count in counts.items() if url in logos and count >= threshold}
    if not placeholders:
        return list(items)
    logger.debug(f"Suppressing {len(placeholders)} placeholder cover image(s)")
    return [replace(item, cover_image=None) if item.cover_image in placeholders else item for item in items]


def _process_youtube(feed: Feed) -> Feed:
    items = []
    for item in feed.items:
        video_id = extract_youtube_video_id(item.link)
        cover = youtube_thumbnail(video_id) if video_id else item.cover_image
        items.append(replace(item, media_type=MediaType.VIDEO, video_id=video_id, cover_image=cover or item.cover_image))
    return replace(feed, media_type=MediaType.VIDEO, items=items)


def _process_video_enclosures(feed: Feed) -> Feed:
    items = []
    for item in feed.items:
        if item.enclosure and (item.enclosure.type or "").startswith("video/"):
            item = replace(item, media_type=MediaType.VIDEO, video_url=item.enclosure.url)
        items.append(item)
    return replace(feed, media_type=MediaType.VIDEO, items=items)


def _process_podcast(feed: Feed) -> Feed:
    items = []
    for item in feed.items:
        audio_url = item.enclosure.url if item.enclosure and item.enclosure.url else None
        if not audio_url and item.link and item.link.lower().split("?")[0].endswith(".mp3"):
            audio_url = item.link
        if not audio_url:
            audio_url = extract_podcast_audio(item.description)
        duration = (
            item.duration
            or (item.itunes.duration if item.itunes else None)
            or extract_podcast_duration(item.description)
        )
        items.append(replace(item, media_type=MediaType.PODCAST, audio_url=audio_url, duration=duration))
    return replace(feed, media_type=MediaType.PODCAST, items=items)


def classify(feed: Feed) -> Feed:
    """Return a copy of ``feed`` with feed and item media types decided.

    YouTube URLs are always video, even with no items. Otherwise any video
    enclosure makes the feed video, then the podcast heuristics apply, and
    everything else is an article.
    """
    if is_youtube_feed(feed.url):
        return _process_youtube(feed)
    if any(item.enclosure and (item.enclosure.type or "").startswith("video/") for item in feed.items):
        return _process_video_enclosures(feed)
    if is_podcast_feed(feed):
        return _process_podcast(feed)
    return replace(
        feed,
        media_type=MediaType.ARTICLE,
        items=[replace(item, media_type=MediaType.ARTICLE) for item in feed.items],
    )


def media_tag_name(feed: Feed) -> Optional[str]:
    if feed.media_type == MediaType.VIDEO:
        return "youtube" if is_youtube_feed(feed.url) else "video"
    if feed.media_type == MediaType.PODCAST:
        return "podcast"
    return None


def apply_media_tags(feed: Feed, available_tags: List[Tag]) -> Feed:
    """Tag every item with the vocabulary tag matching the feed media type.

    Items already carrying a tag of that name (case-insensitive) are left alone.
    """
    tag_name = media_tag_name(feed)
    if not tag_name:
        return feed
    media_tag = next((t for t in available_tags if t.name.lower() == tag_name), None)
    if media_tag is None:
        return feed
    items = []
    for item in feed.items:
        if not item.has_tag(tag_name):
            item = replace(item, tags=list(item.tags) + [Tag(name=media_tag.name, color=media_tag.color)])
        items.append(item)
    return replace(feed, items=items)


def apply_custom_tags(feed: Feed) -> Feed:
    """Add the feed's own tags to each of its items, skipping names an item already has."""
    if not feed.custom_tags:
        return feed
    items = []
    for item in feed.items:
        missing = [Tag(name=t.name, color=t.color) for t in feed.custom_tags if not item.has_tag(t.name)]
        if missing:
            item = replace(item, tags=list(item.tags) + missing)
        items.append(item)
    return replace(feed, items=items)


def assign_media_folder(feed: Feed, media: MediaSettings, had_folder: bool) -> Feed:
    """Move a newly classified video/podcast feed into the configured media folder."""
    if had_folder:
        return feed
    if feed.media_type == MediaType.VIDEO:
        return replace(feed, folder=media.default_video_folder)
    if feed.media_type == MediaType.PODCAST:
        return replace(feed, folder=media.default_podcast_folder)
    return feed


def _channel_feed(channel_id: str) -> str:
    return f"https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"


async def _scrape_channel_id(http, page_url: str) -> Optional[str]:
    try:
        response = await http.request(page_url, method="GET", headers=html_headers())
    except NETWORK_ERRORS as e:
        logger.warning(f"Error fetching YouTube channel page {page_url}: {format_error(e)}")
        return None
    if not response.ok or not response.text:
        logger.warning(f"YouTube channel page {page_url} returned HTTP {response.status}")
        return None
    match = _CHANNEL_SCRAPE_RE.search(response.text)
    return match.group(1) if match else None


async def resolve_youtube_feed_url(value: str, http) -> Optional[str]:
    """Turn a channel URL, channel id, @handle, /c/ or /user/ URL or username into a feed URL."""
    value = (value or "").strip()
    if not value:
        return None

    if _CHANNEL_ID_RE.match(value):
        return _channel_feed(value)
    if "youtube.com/feeds/videos.xml" in value:
        return value

    channel_id = None
    username = None
    if "youtube.com/channel/" in value:
        match = _CHANNEL_URL_RE.search(value)
        channel_id = match.group(1) if match else None
    elif "@" in value:
        handle = ""
        if "youtube.com/@" in value:
            handle = re.split(r"[?#/]", value.split("youtube.com/@", 1)[1])[0]
        elif value.startswith("@"):
            handle = value[1:]
        if handle:
            channel_id = await _scrape_channel_id(http, f"https://www.youtube.com/@{handle}")
    elif "youtube.com/user/" in value:
        match = _USER_URL_RE.search(value)
        username = match.group(1) if match else None
    elif "youtube.com/c/" in value:
        match = _CUSTOM_URL_RE.search(value)
        if match:
            channel_id = await _scrape_channel_id(http, f"https://www.youtube.com/c/{match.group(1)}")
    elif not re.search(r"\s", value) and "/" not in value:
        username = value

    if channel_id:
        return _channel_feed(channel_id)
    if username:
        return f"https://www.youtube.com/feeds/videos.xml?user={username}"
    logger.warning(f"Could not resolve a YouTube feed for '{value}'")
    return None


def apply_declared_type(feed: Feed) -> Feed:
    """Process items according to the feed's stored media type, without detection."""
    if feed.media_type == MediaType.VIDEO:
        return _process_youtube(feed) if is_youtube_feed(feed.url) else _process_video_enclosures(feed)
    if feed.media_type == MediaType.PODCAST:
        return _process_podcast(feed)
    return feed
