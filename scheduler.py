#!/usr/bin/env python3
"""
Pull-based refresh scheduler.

The scheduler wakes up, refreshes every feed whose scan interval (or the
global refresh cadence) has elapsed, drains any pending background imports,
persists the settings and sleeps until the next feed becomes due. Refresh is
sequential: one feed at a time, one fetch at a time.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from aiohttp import ClientError

from config import get_logger
from dashboard import FeedDashboard
from errors import FeedError
from store import SettingsStore
from telemetry import init_telemetry, trace_span

logger = get_logger("scheduler")

init_telemetry("feed-dashboard-scheduler")

MIN_SLEEP_SECONDS = 1.0
ERROR_BACKOFF_SECONDS = 60.0


class RefreshScheduler:
    """Runs refresh cycles for a dashboard until stopped."""

    def __init__(self, dashboard: FeedDashboard, store: Optional[SettingsStore] = None) -> None:
        self.dashboard = dashboard
        self.store = store
        self._stop_event = asyncio.Event()
        self.cycles = 0

    def stop(self) -> None:
        """Stop after the current cycle; an in-flight fetch is not interrupted."""
        self._stop_event.set()
        self.dashboard.import_queue.stop()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def seconds_until_next_due(self, now: Optional[datetime] = None) -> float:
        """Seconds until the earliest feed becomes due (global cadence when there are no feeds)."""
        now = now or datetime.now(timezone.utc)
        now_stamp = now.timestamp() * 1000
        settings = self.dashboard.settings
        fallback = settings.refresh_interval * 60.0
        if not settings.feeds:
            return fallback
        waits = []
        for feed in settings.feeds:
            minutes = feed.scan_interval if feed.scan_interval and feed.scan_interval > 0 else settings.refresh_interval
            due_at = (feed.last_updated or 0) + minutes * 60_000
            waits.append((due_at - now_stamp) / 1000.0)
        return max(MIN_SLEEP_SECONDS, min(waits))

    def get_schedule_status(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {
            "current_time": now.isoformat(),
            "feeds": len(self.dashboard.settings.feeds),
            "feeds_due": len(self.dashboard.feeds_due(now)),
            "pending_imports": len(self.dashboard.import_queue),
            "seconds_until_next_due": self.seconds_until_next_due(now),
            "refresh_interval_minutes": self.dashboard.settings.refresh_interval,
        }

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self.dashboard.settings)
        except OSError as e:
            logger.error(f"❌ Could not save settings: {e}")

    @trace_span("scheduler.cycle", tracer_name="scheduler")
    async def run_once(self, now: Optional[datetime] = None) -> int:
        """One cycle: refresh due feeds, drain imports, persist. Returns feeds refreshed."""
        refreshed = await self.dashboard.refresh_due_feeds(now)
        if len(self.dashboard.import_queue) and not self.stopped:
            await self.dashboard.process_imports()
        self._persist()
        self.cycles += 1
        return len(refreshed)

    @trace_span("scheduler.main_loop", tracer_name="scheduler")
    async def run(self) -> None:
        """Refresh until stop() is called or the task is cancelled."""
        logger.info(f"🚀 Starting refresh scheduler for {len(self.dashboard.settings.feeds)} feed(s)")
        resumed = self.dashboard.resume_imports()
        if resumed:
            logger.info(f"Resuming {resumed} pending import(s)")

        while not self.stopped:
            try:
                count = await self.run_once()
                if count:
                    logger.info(f"✅ Refresh cycle completed ({count} feed(s))")
                sleep_time = self.seconds_until_next_due()
                logger.info(f"😴 Sleeping {sleep_time / 60:.1f} minutes until the next feed is due")
                await self._sleep_until(sleep_time)
            except asyncio.CancelledError:
                logger.info("📶 Scheduler cancelled - shutting down")
                self._persist()
                raise
            except (FeedError, ClientError, OSError, ValueError) as e:
                logger.error(f"💥 Error in refresh cycle: {e}")
                await self._sleep_until(ERROR_BACKOFF_SECONDS)
        self._persist()
        logger.info("👋 Refresh scheduler stopped")

    @trace_span(
        "scheduler.sleep",
        tracer_name="scheduler",
        attr_from_args=lambda self, sleep_time: {"sleep.seconds": float(sleep_time)},
    )
    async def _sleep_until(self, sleep_time: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_time)
        except asyncio.TimeoutError:
            pass

    def print_schedule_status(self) -> None:
        status = self.get_schedule_status()
        print(f"\n🕐 Refresh Scheduler Status")
        print(f"⏰ Current time: {status['current_time']}")
        print(f"📡 Feeds: {status['feeds']} ({status['feeds_due']} due)")
        print(f"📥 Pending imports: {status['pending_imports']}")
        print(f"⏭️  Next feed due in {status['seconds_until_next_due'] / 60:.1f} minutes")


def create_scheduler(dashboard: FeedDashboard, store: Optional[SettingsStore] = None) -> RefreshScheduler:
    """Create a scheduler instance."""
    return RefreshScheduler(dashboard, store)
