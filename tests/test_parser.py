import pytest

from errors import UnsupportedFormatError
from parser import is_valid_feed, parse_string, rewrite_link


def test_rss2_feed_and_items(rss_sample):
    feed = parse_string(rss_sample)

    assert feed.type == "rss"
    assert feed.title == "Example Blog"
    assert feed.link == "https://blog.example.com/"
    assert [i.title for i in feed.items] == ["First post", "Second post"]
    first = feed.items[0]
    assert first.author == "Alice"
    assert first.guid == "https://blog.example.com/posts/1"
    assert "<img" in first.description
    assert first.image.url == "/img/one.png"
    assert not feed.recovered


def test_rss2_itunes_and_enclosure(podcast_sample):
    feed = parse_string(podcast_sample)

    assert feed.feed_itunes_image == "https://cast.example.com/logo.jpg"
    episode = feed.items[0]
    assert episode.enclosure.url == "/media/ep1.mp3"
    assert episode.enclosure.type == "audio/mpeg"
    assert episode.itunes.duration == "45:10"
    assert episode.itunes.episode == "1"


def test_atom_feed():
    text = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Site</title>
  <link rel="self" href="https://atom.example.com/feed.atom"/>
  <link rel="alternate" type="text/html" href="https://atom.example.com/"/>
  <author><name>Bob</name></author>
  <entry>
    <title>Entry &amp; more</title>
    <id>tag:atom.example.com,2025:1</id>
    <link rel="alternate" href="https://atom.example.com/1"/>
    <published>2025-01-07T10:00:00Z</published>
    <summary>Short</summary>
    <content type="html">&lt;p&gt;Long body&lt;/p&gt;</content>
  </entry>
</feed>"""
    feed = parse_string(text)

    assert feed.type == "atom"
    assert feed.title == "Atom Site"
    assert feed.link == "https://atom.example.com/"
    assert feed.author == "Bob"
    entry = feed.items[0]
    assert entry.title == "Entry & more"
    assert entry.link == "https://atom.example.com/1"
    assert entry.guid == "tag:atom.example.com,2025:1"
    assert entry.description == "Short"
    assert entry.content == "<p>Long body</p>"


def test_rss1_rdf_feed():
    text = """<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns="http://purl.org/rss/1.0/"
         xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel rdf:about="https://rdf.example.com/">
    <title>RDF Journal</title>
    <link>https://rdf.example.com/</link>
    <description>Papers</description>
  </channel>
  <item rdf:about="https://rdf.example.com/paper/1">
    <title>Paper one</title>
    <link>https://rdf.example.com/paper/1</link>
    <dc:creator>Carol</dc:creator>
    <dc:creator>Dave</dc:creator>
    <dc:date>2025-01-05T00:00:00Z</dc:date>
  </item>
</rdf:RDF>"""
    feed = parse_string(text)

    assert feed.title == "RDF Journal"
    item = feed.items[0]
    assert item.guid == "https://rdf.example.com/paper/1"
    assert item.author == "Carol, Dave"
    assert item.pub_date == "2025-01-05T00:00:00Z"


def test_json_feed():
    text = """{
      "version": "https://jsonfeed.org/version/1.1",
      "title": "JSON Site",
      "home_page_url": "https://json.example.com/",
      "authors": [{"name": "Erin"}],
      "items": [
        {"id": "1", "url": "https://json.example.com/1", "title": "Hello",
         "content_html": "<p>Hi</p>", "date_published": "2025-01-07T10:00:00Z",
         "attachments": [{"url": "https://json.example.com/a.mp3", "mime_type": "audio/mpeg"}]}
      ]
    }"""
    feed = parse_string(text)

    assert feed.type == "json"
    assert feed.author == "Erin"
    item = feed.items[0]
    assert item.guid == "1"
    assert item.content == "<p>Hi</p>"
    assert item.enclosure.type == "audio/mpeg"


def test_json_without_feed_version_is_unsupported():
    with pytest.raises(UnsupportedFormatError):
        parse_string('{"title": "not a feed"}')


def test_html_entities_and_bare_ampersands_survive_strict_parse():
    text = """<rss version="2.0"><channel><title>Tom &amp; Jerry&nbsp;Show</title>
<item><title>Fish & Chips &hellip; review</title><link>https://e.example.com/a?x=1&y=2</link></item>
</channel></rss>"""
    feed = parse_string(text)

    assert feed.title == "Tom & Jerry Show"
    assert feed.items[0].title == "Fish & Chips … review"
    assert feed.items[0].link == "https://e.example.com/a?x=1&y=2"
    assert not feed.recovered


def test_php_warning_before_xml_is_skipped():
    text = (
        "<br />\n<b>Warning</b>:  Cannot modify header information in <b>/var/www/wp.php</b><br />\n"
        '<?xml version="1.0" encoding="UTF-8"?><rss version="2.0"><channel><title>Blog</title>'
        "<item><title>Post</title><link>https://w.example.com/p</link></item></channel></rss>"
    )
    feed = parse_string(text)

    assert feed.title == "Blog"
    assert len(feed.items) == 1


def test_recovery_parser_handles_unclosed_last_item():
    text = """<?xml version="1.0"?>
<rss version="2.0"><channel>
<title>Broken Feed</title>
<item><title>Good one</title><link>https://b.example.com/1</link>
<description>Salt & pepper</description></item>
<item><title>Unclosed</title><link>https://b.example.com/2</link>
</channel></rss>"""
    feed = parse_string(text)

    assert feed.recovered
    assert feed.title == "Broken Feed"
    assert feed.items[0].title == "Good one"
    assert feed.items[0].link == "https://b.example.com/1"
    assert feed.items[0].guid == "https://b.example.com/1"


def test_recovery_drops_items_without_title():
    text = "<rss><channel><title>T</title><item><link>https://x.example.com/1</link></item>" \
           "<item><title>Kept</title></item><item><title>Open</channel></rss>"
    feed = parse_string(text)

    assert [i.title for i in feed.items] == ["Kept"]
    assert feed.items[0].link == "#"


def test_garbage_is_unsupported():
    with pytest.raises(UnsupportedFormatError):
        parse_string("<html><body>Nothing here</body></html>")


def test_is_valid_feed_sniffing():
    assert is_valid_feed('<?xml version="1.0"?><rss version="2.0">')
    assert is_valid_feed('<feed xmlns="http://www.w3.org/2005/Atom">')
    assert is_valid_feed('<rdf:RDF xmlns:rdf="x">')
    assert is_valid_feed('{"version": "https://jsonfeed.org/version/1", "items": []}')
    assert not is_valid_feed("<html><head></head></html>")
    assert not is_valid_feed("")


def test_sage_links_point_at_full_text():
    assert rewrite_link("https://journals.sagepub.com/doi/abs/10.1177/123") == \
        "https://journals.sagepub.com/doi/full/10.1177/123"
    assert rewrite_link("https://journals.sagepub.com/doi/10.1177/123") == \
        "https://journals.sagepub.com/doi/full/10.1177/123"
    assert rewrite_link("https://example.com/doi/abs/1") == "https://example.com/doi/abs/1"
