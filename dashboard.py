#!/usr/bin/env python3
"""
Feed dashboard orchestration.

FeedDashboard sequences fetch -> parse -> merge -> classify for one feed or a
batch and owns the Settings object it was given. Every mutation of
``settings.feeds`` happens here, between awaits, on the single event loop
task that drives the dashboard; merge and classification themselves are pure.

Failure boundaries:
- parse_feed() raises FeedError subclasses to its caller
- refresh_feed() never raises; it logs and hands back the previous state
- batch operations continue past individual feed failures
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from aiohttp import ClientError

from config import config, get_logger
from errors import FeedError
from fetcher import FeedResolver, HttpClient
from importer import ImportQueue
from media import (
    apply_custom_tags,
    apply_declared_type,
    apply_media_tags,
    assign_media_folder,
    classify,
    resolve_youtube_feed_url,
)
from merge import apply_limits_to_all, merge, normalize_guid
from models import Feed, FeedItem, FeedMetadata, ImportStatus, MediaType, Settings, Tag
from opml import DEFAULT_FOLDER, ensure_folder, merge_folders, parse_opml
from parser import feed_text_parser
from telemetry import trace_span
from utils import date_sort_key, now_ms

logger = get_logger("dashboard")

REFRESH_ERRORS = (FeedError, ClientError, asyncio.TimeoutError, OSError, ValueError, ArithmeticError)


class FeedDashboard:
    """Owns the feed list and drives every fetch/merge cycle."""

    def __init__(
        self,
        settings: Settings,
        http: HttpClient,
        resolver: Optional[FeedResolver] = None,
        parser=None,
        on_change: Optional[Callable[[Settings], object]] = None,
    ) -> None:
        self.settings = settings
        self.http = http
        self.resolver = resolver or FeedResolver(http)
        self.parser = parser or feed_text_parser
        self.on_change = on_change
        self.import_queue = ImportQueue(self._import_one, on_checkpoint=self.checkpoint)

    # ------------------------------------------------------------------
    # Persistence hook
    # ------------------------------------------------------------------

    def checkpoint(self) -> None:
        """Sync queue state into settings and hand them to the persistence hook."""
        self.settings.pending_imports = [
            m for m in self.import_queue.finished + self.import_queue.pending
            if m.import_status != ImportStatus.COMPLETED
        ]
        if self.on_change is not None:
            self.on_change(self.settings)

    def _store_feed(self, feed: Feed) -> None:
        for index, current in enumerate(self.settings.feeds):
            if current.url == feed.url:
                self.settings.feeds[index] = feed
                return
        self.settings.feeds.append(feed)

    # ------------------------------------------------------------------
    # Single feed
    # ------------------------------------------------------------------

    @trace_span(
        "parse_feed",
        tracer_name="dashboard",
        attr_from_args=lambda self, url, existing=None: {"feed.url": url, "feed.refresh": existing is not None},
    )
    async def parse_feed(self, url: str, existing: Optional[Feed] = None) -> Feed:
        """Fetch, parse and merge one feed and return its new state.

        Raises:
            FetchExhaustedError: no strategy produced a valid feed.
            UnsupportedFormatError: the text matched no feed dialect.
        """
        if not url:
            raise ValueError("Feed URL is required")

        text = await self.resolver.fetch_feed_xml(url)
        parsed = self.parser.parse_string(text)
        if parsed.recovered:
            logger.warning(f"Feed {url} was only partially recovered from malformed XML")

        feed = merge(existing, parsed, url)

        media = self.settings.media
        declared = existing.media_type if existing else MediaType.ARTICLE
        detect = media.auto_detect_media_type and (existing is None or existing.auto_detect)
        if detect:
            feed = classify(feed)
        elif declared != MediaType.ARTICLE:
            feed = apply_declared_type(feed)
        feed = assign_media_folder(feed, media, had_folder=bool(existing and existing.folder))
        feed = apply_media_tags(feed, self.settings.available_tags)
        feed = apply_custom_tags(feed)
        if not feed.folder:
            feed = replace(feed, folder=DEFAULT_FOLDER)

        logger.info(f"Parsed {url}: {len(feed.items)} items ({feed.media_type})")
        return feed

    async def refresh_feed(self, feed: Feed) -> Feed:
        """Refresh one feed; on any failure the previous state is returned unchanged."""
        try:
            return await self.parse_feed(feed.url, feed)
        except REFRESH_ERRORS as e:
            logger.error(f"❌ Error refreshing feed {feed.title}: {e}")
            return feed

    @trace_span(
        "refresh_all_feeds",
        tracer_name="dashboard",
        attr_from_args=lambda self, feeds=None: {"feed.count": len(feeds) if feeds is not None else len(self.settings.feeds)},
    )
    async def refresh_all_feeds(self, feeds: Optional[List[Feed]] = None) -> List[Feed]:
        """Refresh feeds one at a time and write the results back into settings."""
        targets = list(self.settings.feeds if feeds is None else feeds)
        logger.info(f"📡 Refreshing {len(targets)} feed(s)")
        updated: List[Feed] = []
        for feed in targets:
            refreshed = await self.refresh_feed(feed)
            self._store_feed(refreshed)
            updated.append(refreshed)
        failed = sum(1 for before, after in zip(targets, updated) if before is after)
        logger.info(f"✅ Refreshed {len(updated) - failed}/{len(updated)} feed(s)")
        return updated

    def feeds_due(self, now: Optional[datetime] = None) -> List[Feed]:
        """Feeds whose own scan interval (or the global cadence) has elapsed."""
        now_stamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
        due = []
        for feed in self.settings.feeds:
            minutes = feed.scan_interval if feed.scan_interval and feed.scan_interval > 0 else self.settings.refresh_interval
            if now_stamp - (feed.last_updated or 0) >= minutes * 60_000:
                due.append(feed)
        return due

    async def refresh_due_feeds(self, now: Optional[datetime] = None) -> List[Feed]:
        due = self.feeds_due(now)
        if not due:
            logger.debug("No feeds due for refresh")
            return []
        return await self.refresh_all_feeds(due)

    async def refresh_folder(self, path: str) -> List[Feed]:
        """Refresh every feed in a folder and its subfolders."""
        prefix = path.strip("/")
        feeds = [
            f for f in self.settings.feeds
            if f.folder == prefix or (f.folder or "").startswith(prefix + "/")
        ]
        return await self.refresh_all_feeds(feeds)

    # ------------------------------------------------------------------
    # Feed management
    # ------------------------------------------------------------------

    async def add_feed(
        self,
        title: Optional[str],
        url: str,
        folder: Optional[str] = None,
        max_items_limit: int = 0,
        auto_delete_duration: int = 0,
        scan_interval: int = 0,
        media_type: str = MediaType.ARTICLE,
        auto_detect: bool = True,
        custom_tags: Optional[List[Tag]] = None,
        custom_folder: Optional[str] = None,
        custom_template: Optional[str] = None,
    ) -> Feed:
        """Subscribe to a feed and fetch it for the first time.

        ``custom_tags`` are added to every item of the feed; ``custom_folder``
        and ``custom_template`` override the article saving defaults.

        Raises:
            ValueError: the URL is already subscribed.
            FeedError: the feed could not be fetched or parsed.
        """
        url = url.strip()
        if self.settings.find_feed(url) is not None:
            raise ValueError(f"Feed already exists: {url}")

        seed = Feed(
            title=(title or "").strip(),
            url=url,
            folder=(folder or "").strip("/"),
            media_type=media_type,
            max_items_limit=max_items_limit,
            auto_delete_duration=auto_delete_duration,
            scan_interval=scan_interval,
            auto_detect=auto_detect,
            custom_tags=list(custom_tags or []),
            custom_folder=custom_folder,
            custom_template=custom_template,
        )
        feed = await self.parse_feed(url, seed)
        self._store_feed(feed)
        self.settings.folders = ensure_folder(self.settings.folders, feed.folder)
        logger.info(f"➕ Added feed {feed.title} in {feed.folder}")
        return feed

    async def add_youtube_feed(self, value: str, title: Optional[str] = None, folder: Optional[str] = None) -> Feed:
        """Subscribe to a YouTube channel given a URL, channel id, handle or username."""
        url = await resolve_youtube_feed_url(value, self.http)
        if not url:
            raise ValueError(f"Could not find a YouTube feed for '{value}'")
        return await self.add_feed(title, url, folder=folder, media_type=MediaType.VIDEO)

    def remove_feed(self, url: str) -> bool:
        before = len(self.settings.feeds)
        self.settings.feeds = [f for f in self.settings.feeds if f.url != url]
        removed = len(self.settings.feeds) != before
        if removed:
            logger.info(f"➖ Removed feed {url}")
        return removed

    def apply_feed_limits_to_all(self) -> int:
        """Apply every feed's retention settings now; returns how many feeds changed."""
        self.settings.feeds, changed = apply_limits_to_all(self.settings.feeds)
        logger.info(f"Applied retention limits: {changed} feed(s) changed")
        return changed

    def find_item(self, feed_url: str, guid: str) -> Optional[FeedItem]:
        feed = self.settings.find_feed(feed_url)
        if feed is None:
            return None
        key = normalize_guid(guid, feed_url)
        return next((i for i in feed.items if normalize_guid(i.guid or i.link, feed_url) == key), None)

    def replace_item(self, feed_url: str, item: FeedItem) -> None:
        feed = self.settings.find_feed(feed_url)
        if feed is None:
            raise KeyError(f"Unknown feed: {feed_url}")
        key = normalize_guid(item.guid or item.link, feed_url)
        items = [item if normalize_guid(i.guid or i.link, feed_url) == key else i for i in feed.items]
        self._store_feed(replace(feed, items=items))

    def mark_item(
        self,
        feed_url: str,
        guid: str,
        read: Optional[bool] = None,
        starred: Optional[bool] = None,
        saved: Optional[bool] = None,
        tags: Optional[List[Tag]] = None,
    ) -> FeedItem:
        """Update user state on one item.

        Raises:
            KeyError: no such feed or item.
        """
        item = self.find_item(feed_url, guid)
        if item is None:
            raise KeyError(f"No item {guid} in {feed_url}")
        changes = {}
        if read is not None:
            changes["read"] = read
        if starred is not None:
            changes["starred"] = starred
        if saved is not None:
            changes["saved"] = saved
            if not saved:
                changes["saved_file_path"] = None
        if tags is not None:
            changes["tags"] = list(tags)
        updated = replace(item, **changes)
        self.replace_item(feed_url, updated)
        return updated

    def newest_items(self, limit: int = 20, unread_only: bool = False) -> List[FeedItem]:
        items = [i for f in self.settings.feeds for i in f.items if not (unread_only and i.read)]
        items.sort(key=lambda i: date_sort_key(i.pub_date), reverse=True)
        return items[:limit]

    # ------------------------------------------------------------------
    # OPML import
    # ------------------------------------------------------------------

    def import_opml(self, content: str) -> List[FeedMetadata]:
        """Add OPML feeds (without items) and queue them for background fetching.

        Raises:
            ValueError: the OPML could not be parsed.
        """
        metadata, folders = parse_opml(content)
        new = [m for m in metadata if m.url and self.settings.find_feed(m.url) is None]
        seen = set()
        queued: List[FeedMetadata] = []
        media = self.settings.media
        for m in new:
            if m.url in seen:
                continue
            seen.add(m.url)
            if not m.max_items_limit:
                m.max_items_limit = config.IMPORT_MAX_ITEMS
            feed = m.to_feed()
            feed.last_updated = now_ms()
            if feed.folder in ("", DEFAULT_FOLDER):
                feed = assign_media_folder(feed, media, had_folder=False)
            m.folder = feed.folder
            self._store_feed(feed)
            queued.append(m)

        self.settings.folders = merge_folders(self.settings.folders, folders)
        self.import_queue.enqueue(*queued)
        self.settings.pending_imports = self.import_queue.pending
        logger.info(f"📥 Imported {len(queued)} new feed(s) from OPML ({len(metadata) - len(queued)} skipped)")
        return queued

    def resume_imports(self) -> int:
        """Re-queue imports left pending by a previous run."""
        leftover = [m for m in self.settings.pending_imports if m.import_status in (ImportStatus.PENDING, ImportStatus.PROCESSING)]
        self.import_queue.enqueue(*leftover)
        return len(leftover)

    async def process_imports(self) -> int:
        return await self.import_queue.drain()

    async def _import_one(self, metadata: FeedMetadata) -> None:
        current = self.settings.find_feed(metadata.url) or metadata.to_feed()
        feed = await self.parse_feed(metadata.url, replace(current, items=[]))
        feed = replace(feed, items=feed.items[:config.IMPORT_MAX_ITEMS])
        self._store_feed(feed)
