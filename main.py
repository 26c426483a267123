#!/usr/bin/env python3
"""
Feed Dashboard Command Line

Each command loads the settings store, opens one HTTP client, runs a single
dashboard operation and writes the settings back:

- add / add-youtube: subscribe to a feed and fetch it
- remove: unsubscribe from a feed
- refresh: refresh everything, one feed or one folder
- import-opml / export-opml: bulk subscription exchange
- list: newest items across all feeds
- save: write an item to the vault as a Markdown note
- apply-limits / fix-saved: housekeeping
- run: the pull-based refresh loop
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from aiohttp import ClientError

from article_saver import ArticleSaver, fix_saved_file_paths
from config import config, get_logger
from dashboard import FeedDashboard
from errors import FeedError
from fetcher import HttpClient
from models import MediaType, Tag
from opml import generate_opml
from scheduler import create_scheduler
from store import SettingsStore
from telemetry import init_telemetry, trace_span

logger = get_logger("orchestrator")
init_telemetry("feed-dashboard-orchestrator")


class DashboardOrchestrator:
    """Runs dashboard operations against the persisted settings."""

    def __init__(self, settings_path: Optional[str] = None, vault_path: Optional[str] = None) -> None:
        self.store = SettingsStore(settings_path)
        self.vault_path = Path(vault_path or config.VAULT_PATH)

    async def _with_dashboard(self, action: Callable[[FeedDashboard], Awaitable[Any]], persist: bool = True) -> Any:
        settings = self.store.load_or_default()
        async with HttpClient() as http:
            dashboard = FeedDashboard(settings, http, on_change=self.store.save if persist else None)
            result = await action(dashboard)
        if persist:
            self.store.save(dashboard.settings)
        return result

    async def run_add(self, url: str, title: Optional[str] = None, folder: Optional[str] = None,
                      max_items: int = 0, auto_delete: int = 0, scan_interval: int = 0,
                      media_type: str = MediaType.ARTICLE, auto_detect: bool = True,
                      tags: Optional[List[str]] = None, save_folder: Optional[str] = None) -> bool:
        """Subscribe to a feed."""
        logger.info(f"➕ Adding feed {url}")
        try:
            feed = await self._with_dashboard(
                lambda d: d.add_feed(title, url, folder=folder, max_items_limit=max_items,
                                     auto_delete_duration=auto_delete, scan_interval=scan_interval, media_type=media_type,
                                     auto_detect=auto_detect, custom_tags=[Tag(name=t) for t in tags or []],
                                     custom_folder=save_folder)
            )
            print(f"✅ {feed.title} ({len(feed.items)} items) in {feed.folder}")
            return True
        except Exception as e:
            logger.error(f"❌ Could not add feed: {e}")
            return False

    async def run_add_youtube(self, value: str, title: Optional[str] = None, folder: Optional[str] = None) -> bool:
        logger.info(f"📺 Adding YouTube channel {value}")
        try:
            feed = await self._with_dashboard(lambda d: d.add_youtube_feed(value, title=title, folder=folder))
            print(f"✅ {feed.title} ({len(feed.items)} videos) in {feed.folder}")
            return True
        except Exception as e:
            logger.error(f"❌ Could not add YouTube channel: {e}")
            return False

    async def run_refresh(self, url: Optional[str] = None, folder: Optional[str] = None) -> bool:
        """Refresh all feeds, a single feed or a folder."""
        logger.info("📡 Running refresh")
        try:
            return await self._run_refresh_impl(url, folder)
        except Exception as e:
            logger.error(f"❌ Refresh failed: {e}")
            return False

    @trace_span(
        "run_refresh",
        tracer_name="orchestrator",
        attr_from_args=lambda self, url=None, folder=None: {"feed.url": url or "", "feed.folder": folder or ""},
    )
    async def _run_refresh_impl(self, url: Optional[str], folder: Optional[str]) -> bool:
        async def action(dashboard: FeedDashboard) -> bool:
            if url:
                feed = dashboard.settings.find_feed(url)
                if feed is None:
                    logger.error(f"❌ Unknown feed: {url}")
                    return False
                await dashboard.refresh_all_feeds([feed])
            elif folder:
                await dashboard.refresh_folder(folder)
            else:
                await dashboard.refresh_all_feeds()
            return True

        return await self._with_dashboard(action)

    async def run_import_opml(self, opml_path: str, fetch: bool = True) -> bool:
        """Import subscriptions from an OPML file and optionally fetch them now."""
        logger.info(f"📥 Importing OPML from {opml_path}")
        try:
            content = Path(opml_path).read_text(encoding="utf-8")

            async def action(dashboard: FeedDashboard) -> int:
                queued = dashboard.import_opml(content)
                if fetch:
                    await dashboard.process_imports()
                return len(queued)

            count = await self._with_dashboard(action)
            print(f"✅ Imported {count} feed(s)")
            return True
        except Exception as e:
            logger.error(f"❌ OPML import failed: {e}")
            return False

    def run_export_opml(self, output: Optional[str] = None) -> bool:
        try:
            settings = self.store.load_or_default()
            opml = generate_opml(settings.feeds, settings.folders)
            if output:
                Path(output).write_text(opml, encoding="utf-8")
                logger.info(f"📤 Exported {len(settings.feeds)} feed(s) to {output}")
            else:
                print(opml)
            return True
        except Exception as e:
            logger.error(f"❌ OPML export failed: {e}")
            return False

    def run_list(self, limit: int = 20, unread_only: bool = False) -> bool:
        settings = self.store.load_or_default()
        dashboard = FeedDashboard(settings, HttpClient())
        items = dashboard.newest_items(limit, unread_only=unread_only)
        if not items:
            print("📭 No items")
            return True
        for item in items:
            marker = " " if item.read else "•"
            print(f"{marker} [{item.feed_title}] {item.title}")
            print(f"    {item.link}")
            print(f"    guid: {item.guid}  feed: {item.feed_url}")
        return True

    async def run_save(self, feed_url: str, guid: str, full_content: Optional[bool] = None,
                       folder: Optional[str] = None) -> bool:
        """Save one item to the vault."""
        logger.info(f"💾 Saving {guid} from {feed_url}")
        try:
            async def action(dashboard: FeedDashboard) -> bool:
                feed = dashboard.settings.find_feed(feed_url)
                item = dashboard.find_item(feed_url, guid)
                if feed is None or item is None:
                    logger.error(f"❌ No item {guid} in {feed_url}")
                    return False
                saver = ArticleSaver(dashboard.settings, self.vault_path, dashboard.http)
                saved = await saver.save_feed_item(feed, item, folder=folder, full_content=full_content)
                dashboard.replace_item(feed_url, saved)
                print(f"✅ Saved to {self.vault_path / saved.saved_file_path}")
                return True

            return await self._with_dashboard(action)
        except (FeedError, ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.error(f"❌ Could not save article: {e}")
            return False

    def run_remove(self, url: str) -> bool:
        settings = self.store.load_or_default()
        dashboard = FeedDashboard(settings, HttpClient())
        if not dashboard.remove_feed(url):
            logger.error(f"❌ No feed subscribed at {url}")
            return False
        self.store.save(dashboard.settings)
        print(f"✅ Removed {url}")
        return True

    def run_apply_limits(self) -> bool:
        settings = self.store.load_or_default()
        dashboard = FeedDashboard(settings, HttpClient())
        changed = dashboard.apply_feed_limits_to_all()
        self.store.save(dashboard.settings)
        print(f"✅ {changed} feed(s) trimmed")
        return True

    def run_fix_saved(self) -> bool:
        settings = self.store.load_or_default()
        settings.feeds, reset = fix_saved_file_paths(settings.feeds, self.vault_path)
        self.store.save(settings)
        print(f"✅ {reset} item(s) no longer have a saved note")
        return True

    async def run_scheduled(self) -> bool:
        """Run the refresh loop until interrupted."""
        settings = self.store.load_or_default()
        async with HttpClient() as http:
            dashboard = FeedDashboard(settings, http, on_change=self.store.save)
            scheduler = create_scheduler(dashboard, self.store)
            scheduler.print_schedule_status()
            await scheduler.run()
        return True

    def print_status(self) -> None:
        settings = self.store.load_or_default()
        items = [i for f in settings.feeds for i in f.items]
        print(f"\n📊 Feed Dashboard Status")
        print(f"💾 Settings: {self.store.path}")
        print(f"📡 Feeds: {len(settings.feeds)} in {len(settings.folders)} top-level folder(s)")
        print(f"📰 Items: {len(items)} ({sum(1 for i in items if not i.read)} unread, {sum(1 for i in items if i.saved)} saved)")
        print(f"📥 Pending imports: {len(settings.pending_imports)}")
        logger.debug(f"Configuration: {config.get_config_summary()}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Feed Dashboard')
    parser.add_argument('--settings', type=str, help='Settings JSON path')
    parser.add_argument('--vault', type=str, help='Vault directory for saved articles')
    sub = parser.add_subparsers(dest='command', required=True)

    add = sub.add_parser('add', help='Subscribe to a feed')
    add.add_argument('url')
    add.add_argument('--title')
    add.add_argument('--folder')
    add.add_argument('--max-items', type=int, default=0)
    add.add_argument('--auto-delete', type=int, default=0, help='Drop unread items older than this many days (0 = keep)')
    add.add_argument('--scan-interval', type=int, default=0, help='Minutes between refreshes (0 = global)')
    add.add_argument('--media-type', choices=[MediaType.ARTICLE, MediaType.VIDEO, MediaType.PODCAST],
                     default=MediaType.ARTICLE)
    add.add_argument('--no-auto-detect', action='store_true', help='Keep the declared media type on refresh')
    add.add_argument('--tag', action='append', help='Tag added to every item (repeatable)')
    add.add_argument('--save-folder', help='Vault folder for notes saved from this feed')

    yt = sub.add_parser('add-youtube', help='Subscribe to a YouTube channel')
    yt.add_argument('channel', help='Channel URL, id, @handle or username')
    yt.add_argument('--title')
    yt.add_argument('--folder')

    remove = sub.add_parser('remove', help='Unsubscribe from a feed')
    remove.add_argument('url')

    refresh = sub.add_parser('refresh', help='Refresh feeds')
    refresh.add_argument('--url')
    refresh.add_argument('--folder')

    imp = sub.add_parser('import-opml', help='Import subscriptions from OPML')
    imp.add_argument('path')
    imp.add_argument('--no-fetch', action='store_true', help='Queue feeds without fetching them now')

    exp = sub.add_parser('export-opml', help='Export subscriptions as OPML')
    exp.add_argument('--output')

    lst = sub.add_parser('list', help='List newest items')
    lst.add_argument('--limit', type=int, default=20)
    lst.add_argument('--unread', action='store_true')

    save = sub.add_parser('save', help='Save an item as a Markdown note')
    save.add_argument('feed_url')
    save.add_argument('guid')
    save.add_argument('--folder')
    full = save.add_mutually_exclusive_group()
    full.add_argument('--full', dest='full_content', action='store_true', default=None)
    full.add_argument('--no-full', dest='full_content', action='store_false')

    sub.add_parser('apply-limits', help='Apply retention limits to every feed')
    sub.add_parser('fix-saved', help='Clear saved state for notes that no longer exist')
    sub.add_parser('status', help='Show dashboard status')
    sub.add_parser('run', help='Run the refresh scheduler')
    return parser


def main():
    """Main entry point."""
    args = _build_parser().parse_args()
    orchestrator = DashboardOrchestrator(args.settings, args.vault)

    try:
        if args.command == 'add':
            success = asyncio.run(orchestrator.run_add(
                args.url, title=args.title, folder=args.folder, max_items=args.max_items,
                auto_delete=args.auto_delete, scan_interval=args.scan_interval, media_type=args.media_type,
                auto_detect=not args.no_auto_detect, tags=args.tag, save_folder=args.save_folder,
            ))
        elif args.command == 'add-youtube':
            success = asyncio.run(orchestrator.run_add_youtube(args.channel, title=args.title, folder=args.folder))
        elif args.command == 'remove':
            success = orchestrator.run_remove(args.url)
        elif args.command == 'refresh':
            success = asyncio.run(orchestrator.run_refresh(url=args.url, folder=args.folder))
        elif args.command == 'import-opml':
            success = asyncio.run(orchestrator.run_import_opml(args.path, fetch=not args.no_fetch))
        elif args.command == 'export-opml':
            success = orchestrator.run_export_opml(args.output)
        elif args.command == 'list':
            success = orchestrator.run_list(args.limit, unread_only=args.unread)
        elif args.command == 'save':
            success = asyncio.run(orchestrator.run_save(args.feed_url, args.guid, args.full_content, args.folder))
        elif args.command == 'apply-limits':
            success = orchestrator.run_apply_limits()
        elif args.command == 'fix-saved':
            success = orchestrator.run_fix_saved()
        elif args.command == 'status':
            orchestrator.print_status()
            success = True
        else:
            success = asyncio.run(orchestrator.run_scheduled())
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        logger.info("👋 Feed dashboard shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
