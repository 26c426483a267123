from datetime import datetime, timedelta, timezone

import pytest

from config import config
from conftest import PODCAST_SAMPLE, RSS_SAMPLE, FakeHttpClient
from dashboard import FeedDashboard
from errors import FetchExhaustedError
from models import Feed, ImportStatus, MediaType, Settings, Tag

BLOG = "https://blog.example.com/feed.xml"
CAST = "https://cast.example.com/feed.xml"

OPML = f"""<?xml version="1.0"?>
<opml version="2.0"><body>
  <outline text="News">
    <outline type="rss" text="Blog" xmlUrl="{BLOG}"/>
    <outline type="rss" text="Gone" xmlUrl="https://gone.example.com/rss"/>
  </outline>
</body></opml>"""


@pytest.fixture
def android(monkeypatch):
    # Fewer fallback requests when a feed is meant to fail
    monkeypatch.setattr(config, "PLATFORM", "android")


def _dashboard(routes=None, settings=None, on_change=None):
    return FeedDashboard(settings or Settings.defaults(), FakeHttpClient(routes), on_change=on_change)


@pytest.mark.asyncio
async def test_add_feed_fetches_and_files_it():
    dashboard = _dashboard({BLOG: RSS_SAMPLE})

    feed = await dashboard.add_feed(None, BLOG)

    assert feed.title == "Example Blog"
    assert feed.folder == "Uncategorized"
    assert feed.media_type == MediaType.ARTICLE
    assert len(feed.items) == 2
    assert dashboard.settings.find_feed(BLOG) is feed
    assert "Uncategorized" in [f.name for f in dashboard.settings.folders]


@pytest.mark.asyncio
async def test_add_feed_rejects_duplicates():
    dashboard = _dashboard({BLOG: RSS_SAMPLE})
    await dashboard.add_feed("Mine", BLOG, folder="Blogs/")

    with pytest.raises(ValueError, match="already exists"):
        await dashboard.add_feed(None, BLOG)

    assert dashboard.settings.feeds[0].title == "Mine"
    assert dashboard.settings.feeds[0].folder == "Blogs"


@pytest.mark.asyncio
async def test_podcast_goes_to_media_folder_with_tag():
    dashboard = _dashboard({CAST: PODCAST_SAMPLE})

    feed = await dashboard.add_feed(None, CAST)

    assert feed.media_type == MediaType.PODCAST
    assert feed.folder == dashboard.settings.media.default_podcast_folder
    assert all(item.has_tag("podcast") for item in feed.items)


@pytest.mark.asyncio
async def test_refresh_failure_keeps_previous_state(android):
    stale = Feed(title="Stale", url="https://gone.example.com/rss", folder="News")
    dashboard = _dashboard(settings=Settings(feeds=[stale]))

    refreshed = await dashboard.refresh_all_feeds()

    assert refreshed == [stale]
    assert dashboard.settings.feeds[0] is stale


@pytest.mark.asyncio
async def test_parse_feed_raises_for_unreachable_feed(android):
    dashboard = _dashboard()

    with pytest.raises(FetchExhaustedError):
        await dashboard.parse_feed("https://gone.example.com/rss")


def test_feeds_due_respects_scan_interval():
    now = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)
    ten_minutes_ago = int((now - timedelta(minutes=10)).timestamp() * 1000)
    settings = Settings(refresh_interval=60, feeds=[
        Feed(title="Hourly", url="https://a.example.com/", last_updated=ten_minutes_ago),
        Feed(title="Fast", url="https://b.example.com/", last_updated=ten_minutes_ago, scan_interval=5),
        Feed(title="Never", url="https://c.example.com/"),
    ])

    due = _dashboard(settings=settings).feeds_due(now)

    assert [f.title for f in due] == ["Fast", "Never"]


@pytest.mark.asyncio
async def test_mark_item_updates_user_state():
    dashboard = _dashboard({BLOG: RSS_SAMPLE})
    await dashboard.add_feed(None, BLOG)

    item = dashboard.mark_item(BLOG, "https://blog.example.com/posts/1", read=True, starred=True)

    assert item.read and item.starred
    assert dashboard.find_item(BLOG, "https://blog.example.com/posts/1").read
    assert not dashboard.find_item(BLOG, "https://blog.example.com/posts/2").read
    assert [i.title for i in dashboard.newest_items(unread_only=True)] == ["Second post"]

    with pytest.raises(KeyError):
        dashboard.mark_item(BLOG, "https://blog.example.com/posts/404", read=True)


@pytest.mark.asyncio
async def test_opml_import_runs_in_background_queue(android):
    saves = []
    dashboard = _dashboard({BLOG: RSS_SAMPLE}, on_change=lambda s: saves.append(len(s.pending_imports)))
    dashboard.import_queue.delay_seconds = 0

    queued = dashboard.import_opml(OPML)

    assert [m.url for m in queued] == [BLOG, "https://gone.example.com/rss"]
    assert all(f.items == [] for f in dashboard.settings.feeds)
    assert len(dashboard.settings.pending_imports) == 2

    assert await dashboard.process_imports() == 2

    blog = dashboard.settings.find_feed(BLOG)
    assert blog.title == "Blog"
    assert blog.folder == "News"
    assert len(blog.items) == 2
    assert [m.url for m in dashboard.settings.pending_imports] == ["https://gone.example.com/rss"]
    assert dashboard.settings.pending_imports[0].import_status == ImportStatus.FAILED
    assert saves[-1] == 1

    # Already subscribed feeds are not queued twice
    assert dashboard.import_opml(OPML) == []


def test_resume_imports_requeues_unfinished_work():
    settings = Settings.defaults()
    dashboard = _dashboard(settings=settings)
    dashboard.import_opml(OPML)
    settings.pending_imports[0].import_status = ImportStatus.PROCESSING
    settings.pending_imports[1].import_status = ImportStatus.FAILED

    restarted = _dashboard(settings=settings)

    assert restarted.resume_imports() == 1
    assert [m.url for m in restarted.import_queue.pending] == [BLOG]


@pytest.mark.asyncio
async def test_remove_feed():
    dashboard = _dashboard({BLOG: RSS_SAMPLE})
    await dashboard.add_feed(None, BLOG)

    assert dashboard.remove_feed(BLOG)
    assert not dashboard.remove_feed(BLOG)
    assert dashboard.settings.feeds == []


BAD_SEASON = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
<channel>
  <title>Broken Numbers</title>
  <item>
    <title>Episode</title>
    <guid>https://odd.example.com/ep</guid>
    <itunes:season>1e999</itunes:season>
    <itunes:episode>inf</itunes:episode>
  </item>
</channel>
</rss>"""


@pytest.mark.asyncio
async def test_batch_refresh_survives_out_of_range_episode_numbers():
    odd = "https://odd.example.com/feed"
    settings = Settings(feeds=[Feed(title="Odd", url=odd), Feed(title="Blog", url=BLOG)])
    dashboard = _dashboard({odd: BAD_SEASON, BLOG: RSS_SAMPLE}, settings=settings)

    refreshed = await dashboard.refresh_all_feeds()

    assert [len(f.items) for f in refreshed] == [1, 2]
    assert refreshed[0].items[0].season is None
    assert refreshed[0].items[0].episode is None


@pytest.mark.asyncio
async def test_feed_tags_and_disabled_detection_are_kept_across_refresh():
    dashboard = _dashboard({CAST: PODCAST_SAMPLE})

    feed = await dashboard.add_feed(None, CAST, auto_detect=False, custom_tags=[Tag(name="Listen", color="#123456")])

    assert feed.media_type == MediaType.ARTICLE
    assert feed.folder == "Uncategorized"
    assert all(item.has_tag("Listen") and not item.has_tag("podcast") for item in feed.items)

    refreshed = await dashboard.refresh_feed(feed)

    assert refreshed.media_type == MediaType.ARTICLE
    assert all([t.name for t in item.tags].count("Listen") == 1 for item in refreshed.items)
    assert refreshed.items[0].tags[-1].color == "#123456"
