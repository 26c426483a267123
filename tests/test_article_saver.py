import pytest

from article_saver import ArticleSaver, fix_saved_file_paths, note_filename
from models import Feed, FeedItem, MediaType, Settings, Tag

ITEM = FeedItem(
    title="Hello: A Long Title With Many Words Inside",
    link="https://blog.example.com/hello",
    guid="https://blog.example.com/hello",
    pub_date="2025-01-07T10:00:00Z",
    description="<p>Body <b>text</b></p>",
    feed_title="Example Blog",
    tags=[Tag(name="Important", color="#e74c3c")],
)


def test_note_filename_uses_first_words():
    assert note_filename(ITEM.title) == "Hello A Long Title With"
    assert note_filename("") == "untitled"
    assert len(note_filename("x" * 80)) == 50


@pytest.mark.asyncio
async def test_save_article_writes_note_with_frontmatter(tmp_path):
    saver = ArticleSaver(Settings.defaults(), tmp_path)

    saved = await saver.save_article(ITEM, full_content=False)

    assert saved.saved
    assert saved.saved_file_path == "RSS Articles/Hello A Long Title With.md"
    assert [t.name for t in saved.tags] == ["Important", "saved"]

    note = (tmp_path / saved.saved_file_path).read_text(encoding="utf-8")
    assert note.startswith("---\n")
    assert 'title: "Hello: A Long Title With Many Words Inside"' in note
    assert "date: 2025-01-07T10:00:00Z" in note
    assert "tags: [Important, saved]" in note
    assert "Body **text**" in note
    assert "[Source](https://blog.example.com/hello)" in note


@pytest.mark.asyncio
async def test_name_clash_gets_numeric_suffix_but_resave_overwrites(tmp_path):
    saver = ArticleSaver(Settings.defaults(), tmp_path)

    first = await saver.save_article(ITEM, folder="Notes", full_content=False)
    other = await saver.save_article(FeedItem(title=ITEM.title, link="https://blog.example.com/other"),
                                     folder="Notes", full_content=False)
    again = await saver.save_article(first, folder="Notes", full_content=False)

    assert first.saved_file_path == "Notes/Hello A Long Title With.md"
    assert other.saved_file_path == "Notes/Hello A Long Title With 1.md"
    assert again.saved_file_path == first.saved_file_path
    assert [t.name for t in again.tags].count("saved") == 1


@pytest.mark.asyncio
async def test_custom_template_and_video_frontmatter(tmp_path):
    saver = ArticleSaver(Settings.defaults(), tmp_path)
    video = FeedItem(title="Clip", link="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                     media_type=MediaType.VIDEO, video_id="dQw4w9WgXcQ")

    saved = await saver.save_article(video, folder="", template="---\nsource: {{ source }}\n---\n{{ title }}\n",
                                     full_content=False)

    note = (tmp_path / saved.saved_file_path).read_text(encoding="utf-8")
    assert saved.saved_file_path == "Clip.md"
    assert note.startswith('---\nmediaType: video\nvideoId: "dQw4w9WgXcQ"\n')
    assert note.endswith("Clip\n")


def test_broken_template_falls_back_to_default(tmp_path):
    saver = ArticleSaver(Settings.defaults(), tmp_path)

    note = saver.render(ITEM, "content", template="{% if %}")

    assert note.startswith("---\n")
    assert "# Hello: A Long Title With Many Words Inside" in note


def test_fix_saved_file_paths_clears_missing_notes(tmp_path):
    (tmp_path / "Notes").mkdir()
    (tmp_path / "Notes" / "kept.md").write_text("x", encoding="utf-8")
    kept = FeedItem(title="Kept", saved=True, saved_file_path="/Notes/kept.md")
    gone = FeedItem(title="Gone", saved=True, saved_file_path="Notes/gone.md",
                    tags=[Tag(name="saved"), Tag(name="Important")])
    untouched = Feed(title="Other", url="https://o.example.com/", items=[FeedItem(title="Unsaved")])
    feeds = [Feed(title="Blog", url="https://b.example.com/", items=[kept, gone]), untouched]

    fixed, reset = fix_saved_file_paths(feeds, tmp_path)

    assert reset == 1
    kept_after, gone_after = fixed[0].items
    assert kept_after.saved_file_path == "Notes/kept.md"
    assert not gone_after.saved and gone_after.saved_file_path is None
    assert [t.name for t in gone_after.tags] == ["Important"]
    assert fixed[1] is untouched


@pytest.mark.asyncio
async def test_feed_folder_and_template_apply_unless_overridden(tmp_path):
    saver = ArticleSaver(Settings.defaults(), tmp_path)
    feed = Feed(title="Blog", url="https://b.example.com/", custom_folder="Reading/Later/",
                custom_template="{{ title }} from {{ feedTitle }}\n")

    saved = await saver.save_feed_item(feed, ITEM, full_content=False)
    moved = await saver.save_feed_item(feed, ITEM, folder="Elsewhere", full_content=False)
    plain = await saver.save_feed_item(Feed(title="Plain", url="https://p.example.com/"), ITEM, full_content=False)

    assert saved.saved_file_path == "Reading/Later/Hello A Long Title With.md"
    assert (tmp_path / saved.saved_file_path).read_text(encoding="utf-8") == (
        "Hello: A Long Title With Many Words Inside from Example Blog\n"
    )
    assert moved.saved_file_path == "Elsewhere/Hello A Long Title With.md"
    assert plain.saved_file_path == "RSS Articles/Hello A Long Title With.md"
