#!/usr/bin/env python3
"""
Incremental merge of a fresh parse into a feed's stored state.

All functions here are pure: they return new Feed/FeedItem values and never
mutate their inputs. The orchestrator assigns the result back into the
settings object, which is the only mutation point.

Merge rules:
- items are keyed by their guid (falling back to link) resolved to an
  absolute URL against the feed URL
- matched items are refreshed from the parse but keep read, starred, saved,
  saved_file_path and tags
- existing items no longer listed by the feed are retained
- output order is retained-unmatched, then updated, then new (parsed order)
- per-feed retention (count and age) runs last; read items are never evicted
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from config import get_logger
from media import is_podcast_item, podcast_cover_image, suppress_default_cover_images
from models import Enclosure, Feed, FeedItem, Image, MediaType, ParsedFeed, ParsedItem
from telemetry import trace_span
from utils import absolutize_html, extract_cover_image, extract_summary, parse_date, date_sort_key, to_absolute

logger = get_logger("merge")

DEFAULT_FEED_TITLE = "Unnamed Feed"
DEFAULT_ITEM_TITLE = "No title"
EXPLICIT_VALUES = ("yes", "true", "explicit")


def normalize_guid(guid_or_link: Optional[str], feed_url: str) -> str:
    """Merge key for an item: its guid or link as an absolute URL."""
    return to_absolute((guid_or_link or "").strip(), feed_url)


def _item_key(item, feed_url: str) -> str:
    return normalize_guid(item.guid or item.link, feed_url)


def _to_int(value: Optional[str]) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return None


def _itunes_image(item: ParsedItem) -> Optional[str]:
    return item.itunes.image if item.itunes and item.itunes.image else None


def _derive_cover(item: ParsedItem, parsed: ParsedFeed, feed_url: str) -> Optional[str]:
    if is_podcast_item(item):
        return podcast_cover_image(item, parsed, feed_url)
    from_content = extract_cover_image(item.content or item.description, feed_url)
    if from_content:
        return from_content
    own = _itunes_image(item) or (item.image.url if item.image else None)
    if own:
        return to_absolute(own, feed_url)
    if parsed.image:
        return to_absolute(parsed.image.url, feed_url)
    return None


def _derive_image(item: ParsedItem, parsed: ParsedFeed, feed_url: str) -> Optional[Image]:
    url = _itunes_image(item) or (item.image.url if item.image else None) or (parsed.image.url if parsed.image else None)
    if url:
        return Image.coerce(to_absolute(url, feed_url))
    return None


def _enclosure(item: ParsedItem, feed_url: str) -> Optional[Enclosure]:
    if not item.enclosure or not item.enclosure.url:
        return None
    return Enclosure(
        url=to_absolute(item.enclosure.url, feed_url),
        type=item.enclosure.type,
        length=item.enclosure.length,
    )


def _audio_url(item: ParsedItem, feed_url: str) -> Optional[str]:
    if is_podcast_item(item) and item.enclosure and item.enclosure.url:
        return to_absolute(item.enclosure.url, feed_url)
    return None


def build_item(parsed_item: ParsedItem, parsed: ParsedFeed, feed: Feed, feed_url: str,
               now: Optional[datetime] = None) -> FeedItem:
    """New FeedItem for a parsed item never seen before. User state starts cleared."""
    itunes = parsed_item.itunes
    content_html = parsed_item.content or parsed_item.description
    image = _derive_image(parsed_item, parsed, feed_url)
    if image is None:
        image = Image.coerce(extract_cover_image(content_html, feed_url))
    pub_date = parsed_item.pub_date
    if not pub_date:
        pub_date = (now or datetime.now(timezone.utc)).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    return FeedItem(
        title=parsed_item.title or DEFAULT_ITEM_TITLE,
        link=to_absolute(parsed_item.link, feed_url),
        description=absolutize_html(parsed_item.description, feed_url),
        content=absolutize_html(parsed_item.content, feed_url),
        pub_date=pub_date,
        guid=_item_key(parsed_item, feed_url),
        read=False,
        starred=False,
        tags=[],
        feed_title=feed.title,
        feed_url=feed.url,
        cover_image=_derive_cover(parsed_item, parsed, feed_url),
        summary=extract_summary(content_html),
        author=parsed_item.author or parsed.author,
        saved=False,
        media_type=MediaType.PODCAST if is_podcast_item(parsed_item) else MediaType.ARTICLE,
        duration=itunes.duration if itunes else None,
        explicit=bool(itunes and (itunes.explicit or "").lower() in EXPLICIT_VALUES),
        image=image,
        category=(itunes.category if itunes and itunes.category else parsed_item.category) or "",
        episode_type=itunes.episode_type if itunes else None,
        season=_to_int(itunes.season) if itunes else None,
        episode=_to_int(itunes.episode) if itunes else None,
        enclosure=_enclosure(parsed_item, feed_url),
        audio_url=_audio_url(parsed_item, feed_url),
        itunes=itunes,
        ieee=parsed_item.ieee,
    )


def update_item(existing: FeedItem, parsed_item: ParsedItem, parsed: ParsedFeed, feed: Feed,
                feed_url: str) -> FeedItem:
    """Refresh a known item from a new parse, keeping every user-owned field."""
    itunes = parsed_item.itunes
    content_html = parsed_item.content or parsed_item.description
    fresh_media = MediaType.PODCAST if is_podcast_item(parsed_item) else None

    return replace(
        existing,
        guid=_item_key(parsed_item, feed_url),
        title=parsed_item.title or existing.title,
        description=absolutize_html(parsed_item.description, feed_url),
        content=absolutize_html(parsed_item.content, feed_url),
        pub_date=parsed_item.pub_date or existing.pub_date,
        author=parsed_item.author or parsed.author or existing.author,
        feed_title=feed.title,
        feed_url=feed.url,
        cover_image=_derive_cover(parsed_item, parsed, feed_url) or existing.cover_image,
        summary=extract_summary(content_html) or existing.summary,
        image=_derive_image(parsed_item, parsed, feed_url) or existing.image,
        duration=(itunes.duration if itunes else None) or existing.duration,
        explicit=bool(itunes and (itunes.explicit or "").lower() in EXPLICIT_VALUES) or existing.explicit,
        category=(itunes.category if itunes and itunes.category else parsed_item.category) or existing.category,
        episode_type=(itunes.episode_type if itunes else None) or existing.episode_type,
        season=(_to_int(itunes.season) if itunes else None) or existing.season,
        episode=(_to_int(itunes.episode) if itunes else None) or existing.episode,
        enclosure=_enclosure(parsed_item, feed_url) or existing.enclosure,
        itunes=itunes or existing.itunes,
        ieee=parsed_item.ieee or existing.ieee,
        audio_url=_audio_url(parsed_item, feed_url) or existing.audio_url,
        media_type=fresh_media or existing.media_type,
        # user state
        read=existing.read,
        starred=existing.starred,
        saved=existing.saved,
        saved_file_path=existing.saved_file_path,
        tags=list(existing.tags),
    )


@trace_span(
    "merge_feed",
    tracer_name="merge",
    attr_from_args=lambda existing, parsed, feed_url, now=None: {
        "feed.url": feed_url,
        "feed.parsed_items": len(parsed.items),
        "feed.existing_items": len(existing.items) if existing else 0,
    },
)
def merge(existing: Optional[Feed], parsed: ParsedFeed, feed_url: str, now: Optional[datetime] = None) -> Feed:
    """Reconcile a fresh parse with the stored feed and return the new feed state."""
    now = now or datetime.now(timezone.utc)
    if existing is not None:
        feed = replace(
            existing,
            title=existing.title or parsed.title or DEFAULT_FEED_TITLE,
            author=existing.author or parsed.author,
        )
    else:
        feed = Feed(title=parsed.title or DEFAULT_FEED_TITLE, url=feed_url, author=parsed.author)

    existing_by_key: Dict[str, FeedItem] = {}
    for item in (existing.items if existing else []):
        existing_by_key.setdefault(_item_key(item, feed_url), item)

    updated: List[FeedItem] = []
    new: List[FeedItem] = []
    matched: set = set()
    seen: set = set()
    for parsed_item in parsed.items:
        key = _item_key(parsed_item, feed_url)
        if key in seen:
            logger.debug(f"Skipping duplicate item {key} in {feed_url}")
            continue
        seen.add(key)
        current = existing_by_key.get(key)
        if current is not None:
            matched.add(key)
            updated.append(update_item(current, parsed_item, parsed, feed, feed_url))
        else:
            new.append(build_item(parsed_item, parsed, feed, feed_url, now=now))

    retained = [item for item in (existing.items if existing else []) if _item_key(item, feed_url) not in matched]

    feed = replace(feed, items=retained + updated + new, last_updated=int(now.timestamp() * 1000))
    feed = apply_feed_limits(feed, now=now)

    logos = [to_absolute(logo, feed_url) for logo in parsed.logo_candidates()]
    feed = replace(feed, items=suppress_default_cover_images(feed.items, logos))

    logger.debug(
        f"Merged {feed_url}: {len(retained)} retained, {len(updated)} updated, {len(new)} new, {len(feed.items)} kept"
    )
    return feed


def apply_feed_limits(feed: Feed, now: Optional[datetime] = None) -> Feed:
    """Apply max-items and max-age retention. Read items are exempt from both."""
    items = list(feed.items)

    if feed.max_items_limit and feed.max_items_limit > 0 and len(items) > feed.max_items_limit:
        read_count = sum(1 for item in items if item.read)
        allowance = max(0, feed.max_items_limit - read_count)
        unread = sorted(
            (index for index, item in enumerate(items) if not item.read),
            key=lambda index: date_sort_key(items[index].pub_date),
            reverse=True,
        )
        keep = set(unread[:allowance])
        items = [item for index, item in enumerate(items) if item.read or index in keep]

    if feed.auto_delete_duration and feed.auto_delete_duration > 0:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=feed.auto_delete_duration)

        def recent(item: FeedItem) -> bool:
            published = parse_date(item.pub_date)
            return published is not None and published > cutoff

        items = [item for item in items if item.read or recent(item)]

    if len(items) == len(feed.items):
        return feed
    logger.info(f"Retention trimmed {len(feed.items) - len(items)} item(s) from {feed.title}")
    return replace(feed, items=items)


def apply_limits_to_all(feeds: List[Feed], now: Optional[datetime] = None) -> Tuple[List[Feed], int]:
    """Apply retention to every feed; returns the new list and how many feeds changed."""
    result: List[Feed] = []
    changed = 0
    for feed in feeds:
        limited = apply_feed_limits(feed, now=now)
        if limited is not feed:
            changed += 1
        result.append(limited)
    return result, changed
