from datetime import datetime, timedelta, timezone

import pytest

from conftest import RSS_SAMPLE, FakeHttpClient
from dashboard import FeedDashboard
from models import Feed, Settings
from scheduler import MIN_SLEEP_SECONDS, create_scheduler
from store import SettingsStore

BLOG = "https://blog.example.com/feed.xml"
NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


def _stamp(minutes_ago):
    return int((NOW - timedelta(minutes=minutes_ago)).timestamp() * 1000)


def _scheduler(feeds, store=None, routes=None):
    dashboard = FeedDashboard(Settings(refresh_interval=60, feeds=feeds), FakeHttpClient(routes))
    return create_scheduler(dashboard, store)


def test_sleep_until_earliest_due_feed():
    scheduler = _scheduler([
        Feed(title="Hourly", url="https://a.example.com/", last_updated=_stamp(50)),
        Feed(title="Quarter", url="https://b.example.com/", last_updated=_stamp(5), scan_interval=15),
    ])

    assert scheduler.seconds_until_next_due(NOW) == pytest.approx(600.0)


def test_sleep_is_floored_and_defaults_to_refresh_interval():
    overdue = _scheduler([Feed(title="Old", url="https://a.example.com/", last_updated=_stamp(600))])
    empty = _scheduler([])

    assert overdue.seconds_until_next_due(NOW) == MIN_SLEEP_SECONDS
    assert empty.seconds_until_next_due(NOW) == 3600.0


@pytest.mark.asyncio
async def test_run_once_refreshes_due_feeds_and_persists(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    scheduler = _scheduler(
        [
            Feed(title="Blog", url=BLOG),
            Feed(title="Fresh", url="https://fresh.example.com/", last_updated=int(datetime.now(timezone.utc).timestamp() * 1000)),
        ],
        store=store,
        routes={BLOG: RSS_SAMPLE},
    )

    assert await scheduler.run_once() == 1
    assert scheduler.cycles == 1
    saved = store.load()
    assert len(saved.find_feed(BLOG).items) == 2
    assert scheduler.dashboard.http.requests == [BLOG]


@pytest.mark.asyncio
async def test_run_stops_after_stop_is_called(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    scheduler = _scheduler([Feed(title="Blog", url=BLOG)], store=store, routes={BLOG: RSS_SAMPLE})
    original = scheduler.run_once

    async def run_once_then_stop(now=None):
        count = await original(now)
        scheduler.stop()
        return count

    scheduler.run_once = run_once_then_stop
    await scheduler.run()

    assert scheduler.stopped
    assert scheduler.cycles == 1
    assert store.load().find_feed(BLOG).items
