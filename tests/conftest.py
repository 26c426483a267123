import os

# Keep spans in-process and quiet during tests
os.environ.setdefault("DISABLE_TELEMETRY", "true")

import pytest

from fetcher import HttpResponse


class FakeHttpClient:
    """Stand-in for HttpClient answering from a URL -> response table.

    Values may be an HttpResponse, a string (served as HTTP 200) or an
    exception instance to raise. Unknown URLs answer 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    async def request(self, url, method="GET", headers=None):
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return HttpResponse(status=404, text="Not Found", url=url)
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, HttpResponse):
            return route
        return HttpResponse(status=200, text=route, url=url)

    async def close(self):
        pass


RSS_SAMPLE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/" xmlns:dc="http://purl.org/dc/elements/1.1/">
<channel>
  <title>Example Blog</title>
  <link>https://blog.example.com/</link>
  <description>Posts about things</description>
  <item>
    <title>First post</title>
    <link>https://blog.example.com/posts/1</link>
    <guid>https://blog.example.com/posts/1</guid>
    <pubDate>Mon, 06 Jan 2025 10:00:00 +0000</pubDate>
    <dc:creator>Alice</dc:creator>
    <description><![CDATA[<p>Hello <img src="/img/one.png"/> world</p>]]></description>
  </item>
  <item>
    <title>Second post</title>
    <link>https://blog.example.com/posts/2</link>
    <guid>https://blog.example.com/posts/2</guid>
    <pubDate>Tue, 07 Jan 2025 10:00:00 +0000</pubDate>
    <description>Plain text body</description>
  </item>
</channel>
</rss>
"""

PODCAST_SAMPLE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
<channel>
  <title>Example Cast</title>
  <link>https://cast.example.com/</link>
  <itunes:image href="https://cast.example.com/logo.jpg"/>
  <item>
    <title>Episode 1</title>
    <link>https://cast.example.com/ep1</link>
    <guid>ep-1</guid>
    <pubDate>Mon, 06 Jan 2025 10:00:00 +0000</pubDate>
    <enclosure url="/media/ep1.mp3" type="audio/mpeg" length="1234"/>
    <itunes:duration>45:10</itunes:duration>
    <itunes:episode>1</itunes:episode>
  </item>
  <item>
    <title>Episode 2</title>
    <link>https://cast.example.com/ep2</link>
    <guid>ep-2</guid>
    <pubDate>Mon, 13 Jan 2025 10:00:00 +0000</pubDate>
    <enclosure url="https://cdn.example.com/ep2.mp3" type="audio/mpeg" length="5678"/>
    <itunes:duration>50:00</itunes:duration>
  </item>
</channel>
</rss>
"""


@pytest.fixture
def fake_http():
    return FakeHttpClient()


@pytest.fixture
def rss_sample():
    return RSS_SAMPLE


@pytest.fixture
def podcast_sample():
    return PODCAST_SAMPLE
