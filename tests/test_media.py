import pytest

from conftest import PODCAST_SAMPLE, FakeHttpClient
from media import (
    apply_media_tags,
    assign_media_folder,
    classify,
    extract_podcast_audio,
    extract_podcast_duration,
    extract_youtube_video_id,
    is_youtube_feed,
    resolve_youtube_feed_url,
    suppress_default_cover_images,
)
from merge import merge
from models import Enclosure, Feed, FeedItem, MediaSettings, MediaType, Tag
from parser import parse_string

CHANNEL_ID = "UCabcdefghijklmnopqrstuv"
CAST_URL = "https://cast.example.com/feed.xml"


def test_podcast_detected_from_audio_enclosures():
    feed = classify(merge(None, parse_string(PODCAST_SAMPLE), CAST_URL))

    assert feed.media_type == MediaType.PODCAST
    first, second = feed.items
    assert first.media_type == MediaType.PODCAST
    assert first.audio_url == "https://cast.example.com/media/ep1.mp3"
    assert first.duration == "45:10"
    assert second.audio_url == "https://cdn.example.com/ep2.mp3"


def test_shared_podcast_logo_is_not_used_as_episode_cover():
    feed = merge(None, parse_string(PODCAST_SAMPLE), CAST_URL)

    assert all(item.cover_image is None for item in feed.items)
    assert all(item.image.url == "https://cast.example.com/logo.jpg" for item in feed.items)


def test_youtube_channel_without_items_is_video():
    feed = Feed(title="Channel", url=f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL_ID}")

    assert classify(feed).media_type == MediaType.VIDEO


def test_youtube_items_get_video_id_and_thumbnail():
    item = FeedItem(title="Clip", link="https://www.youtube.com/watch?v=dQw4w9WgXcQ")
    feed = Feed(title="Channel", url=f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL_ID}", items=[item])

    video = classify(feed).items[0]

    assert video.media_type == MediaType.VIDEO
    assert video.video_id == "dQw4w9WgXcQ"
    assert video.cover_image == "https://img.youtube.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"


def test_video_enclosure_makes_feed_video():
    item = FeedItem(title="Talk", enclosure=Enclosure(url="https://v.example.com/talk.mp4", type="video/mp4"))
    feed = classify(Feed(title="Talks", url="https://v.example.com/feed", items=[item]))

    assert feed.media_type == MediaType.VIDEO
    assert feed.items[0].video_url == "https://v.example.com/talk.mp4"


def test_plain_feed_is_article():
    item = FeedItem(title="Post", description="<p>Just words about cooking</p>")
    feed = classify(Feed(title="Blog", url="https://b.example.com/feed", items=[item]))

    assert feed.media_type == MediaType.ARTICLE
    assert feed.items[0].media_type == MediaType.ARTICLE


def test_video_id_extraction():
    assert extract_youtube_video_id("https://youtu.be/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_youtube_video_id("https://www.youtube.com/embed/dQw4w9WgXcQ?rel=0") == "dQw4w9WgXcQ"
    assert extract_youtube_video_id("https://example.com/watch?v=short") is None
    assert is_youtube_feed("https://www.youtube.com/@somebody")
    assert not is_youtube_feed("https://vimeo.com/channels/staffpicks")


def test_audio_and_duration_from_description():
    html = '<p>Listen <a href="https://a.example.com/show.mp3">here</a>. Duration: 1:02:33</p>'

    assert extract_podcast_audio(html) == "https://a.example.com/show.mp3"
    assert extract_podcast_duration(html) == "1:02:33"


def test_cover_suppression_threshold():
    logo = "https://s.example.com/logo.png"
    items = [FeedItem(title=str(i), cover_image=logo) for i in range(4)] + [FeedItem(title="own", cover_image="https://s.example.com/own.png")]

    suppressed = suppress_default_cover_images(items, {logo})
    assert [i.cover_image for i in suppressed] == [None, None, None, None, "https://s.example.com/own.png"]

    fewer = [FeedItem(title=str(i), cover_image=logo) for i in range(3)] + [FeedItem(title=str(i)) for i in range(2)]
    assert suppress_default_cover_images(fewer, {logo}) == fewer

    # The repeated image must actually be a feed logo
    assert suppress_default_cover_images(items, {"https://s.example.com/other.png"}) == items


def test_media_tags_use_vocabulary_case_and_are_idempotent():
    vocabulary = [Tag(name="YouTube", color="#ff0000")]
    feed = Feed(
        title="Channel",
        url=f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL_ID}",
        media_type=MediaType.VIDEO,
        items=[FeedItem(title="Clip")],
    )

    tagged = apply_media_tags(apply_media_tags(feed, vocabulary), vocabulary)

    assert [t.name for t in tagged.items[0].tags] == ["YouTube"]
    assert apply_media_tags(feed, []) is feed


def test_media_folder_only_for_feeds_without_folder():
    media = MediaSettings(default_video_folder="Videos", default_podcast_folder="Podcasts")
    podcast = Feed(title="Cast", url=CAST_URL, media_type=MediaType.PODCAST, folder="")

    assert assign_media_folder(podcast, media, had_folder=False).folder == "Podcasts"
    assert assign_media_folder(podcast, media, had_folder=True).folder == ""


@pytest.mark.asyncio
async def test_resolve_youtube_feed_urls():
    http = FakeHttpClient({
        "https://www.youtube.com/@handle": f'<script>var data = {{"channelId":"{CHANNEL_ID}"}}</script>',
    })
    expected = f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL_ID}"

    assert await resolve_youtube_feed_url(CHANNEL_ID, http) == expected
    assert await resolve_youtube_feed_url(f"https://www.youtube.com/channel/{CHANNEL_ID}", http) == expected
    assert await resolve_youtube_feed_url("@handle", http) == expected
    assert await resolve_youtube_feed_url("https://www.youtube.com/user/oldname", http) == \
        "https://www.youtube.com/feeds/videos.xml?user=oldname"
    assert await resolve_youtube_feed_url("https://www.youtube.com/@missing", http) is None
