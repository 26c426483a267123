#!/usr/bin/env python3
"""
Save feed items as Markdown notes.

Notes are rendered through a Jinja2 template (the configured article
template by default) and written below the vault root. Item HTML is cleaned
and converted with markdownify; in full-content mode the article page is
fetched and reduced to its main content with readability first.

Template variables: title, date, isoDate, link, author, source, feedTitle,
summary, content, tags, guid. The ``yaml_quote`` filter escapes values for
double-quoted YAML frontmatter strings.
"""

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from jinja2 import Environment, TemplateError

from config import DEFAULT_ARTICLE_TEMPLATE, get_logger
from fetcher import HttpClient, fetch_original_content
from models import Feed, FeedItem, MediaType, Settings, Tag
from telemetry import trace_span
from utils import clean_html_to_markdown, parse_date, safe_filename

logger = get_logger("article_saver")

SAVED_TAG = Tag(name="saved", color="#3498db")
FILENAME_MAX_WORDS = 5
FILENAME_MAX_CHARS = 50
# Paywalled full-text pages sometimes only render their abstract page
FULL_TEXT_FALLBACKS = [("journals.sagepub.com", "/doi/full/", "/doi/abs/")]


def _yaml_quote(value) -> str:
    return str(value or "").replace("\\", "\\\\").replace('"', '\\"')


_env = Environment(autoescape=False, keep_trailing_newline=True)
_env.filters["yaml_quote"] = _yaml_quote


def note_filename(title: str) -> str:
    """Short filename from the first words of a title."""
    words = safe_filename(title).split(" ")
    return " ".join(words[:FILENAME_MAX_WORDS])[:FILENAME_MAX_CHARS].strip() or "untitled"


def _normalize_folder(folder: Optional[str]) -> str:
    return (folder or "").strip().strip("/")


def _without_saved_tag(tags: List[Tag]) -> List[Tag]:
    return [t for t in tags if t.name.lower() != SAVED_TAG.name]


class ArticleSaver:
    """Render items to Markdown notes inside a vault directory."""

    def __init__(self, settings: Settings, vault_root: Union[str, Path], http: Optional[HttpClient] = None) -> None:
        self.settings = settings
        self.vault_root = Path(vault_root)
        self.http = http

    @property
    def options(self):
        return self.settings.article_saving

    def _tags_string(self, item: FeedItem) -> str:
        names = [t.name for t in item.tags]
        if self.options.add_saved_tag and not any(n.lower() == SAVED_TAG.name for n in names):
            names.append(SAVED_TAG.name)
        return ", ".join(names)

    def template_context(self, item: FeedItem, content: str) -> Dict[str, str]:
        published = parse_date(item.pub_date)
        return {
            "title": item.title,
            "date": published.strftime("%B %d, %Y") if published else item.pub_date,
            "isoDate": published.isoformat().replace("+00:00", "Z") if published else item.pub_date,
            "link": item.link,
            "author": item.author or "",
            "source": item.feed_title,
            "feedTitle": item.feed_title,
            "summary": item.summary or "",
            "content": content,
            "tags": self._tags_string(item),
            "guid": item.guid,
        }

    def render(self, item: FeedItem, content: str, template: Optional[str] = None) -> str:
        source = template or self.options.default_template or DEFAULT_ARTICLE_TEMPLATE
        context = self.template_context(item, content)
        try:
            rendered = _env.from_string(source).render(**context)
        except TemplateError as e:
            logger.error(f"Article template failed ({e}); using the default template")
            rendered = _env.from_string(DEFAULT_ARTICLE_TEMPLATE).render(**context)
        return self._add_media_frontmatter(item, rendered)

    @staticmethod
    def _add_media_frontmatter(item: FeedItem, note: str) -> str:
        if not note.startswith("---\n"):
            return note
        if item.media_type == MediaType.VIDEO and item.video_id:
            extra = f'mediaType: video\nvideoId: "{item.video_id}"\n'
        elif item.media_type == MediaType.PODCAST and item.audio_url:
            extra = f'mediaType: podcast\naudioUrl: "{item.audio_url}"\n'
        else:
            return note
        return "---\n" + extra + note[len("---\n"):]

    async def fetch_full_content(self, url: str) -> Optional[str]:
        """Main-content HTML of the article page, or None."""
        if not self.http or not url:
            return None
        candidates = [url]
        for host, full, abstract in FULL_TEXT_FALLBACKS:
            if host in url and full in url:
                candidates.append(url.replace(full, abstract))
        for candidate in candidates:
            try:
                html = await asyncio.wait_for(fetch_original_content(self.http, candidate), timeout=self.options.fetch_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out fetching full content from {candidate}")
                continue
            if html:
                return html
        return None

    def _target_path(self, item: FeedItem, folder: str) -> Path:
        directory = self.vault_root / folder if folder else self.vault_root
        stem = note_filename(item.title)
        path = directory / f"{stem}.md"
        previous = self.vault_root / item.saved_file_path if item.saved_file_path else None
        counter = 1
        while path.exists() and path != previous:
            path = directory / f"{stem} {counter}.md"
            counter += 1
        return path

    @trace_span(
        "save_article",
        tracer_name="article_saver",
        attr_from_args=lambda self, item, folder=None, template=None, full_content=None: {
            "entry.url": item.link,
            "article.full_content": bool(full_content),
        },
    )
    async def save_article(self, item: FeedItem, folder: Optional[str] = None, template: Optional[str] = None,
                           full_content: Optional[bool] = None) -> FeedItem:
        """Write ``item`` as a note and return the item marked as saved.

        Raises:
            OSError: the note could not be written.
        """
        want_full = self.options.save_full_content if full_content is None else full_content
        html = None
        if want_full:
            html = await self.fetch_full_content(item.link)
            if not html:
                logger.info(f"Could not fetch full content for {item.link}; saving with available content")
        markdown = clean_html_to_markdown(html or item.content or item.description, item.link)

        target_folder = _normalize_folder(folder if folder is not None else self.options.default_folder)
        path = self._target_path(item, target_folder)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.render(item, markdown, template))

        relative = path.relative_to(self.vault_root).as_posix()
        logger.info(f"💾 Article saved: {relative}")
        tags = list(item.tags)
        if self.options.add_saved_tag and not item.has_tag(SAVED_TAG.name):
            tags.append(Tag(name=SAVED_TAG.name, color=SAVED_TAG.color))
        return replace(item, saved=True, saved_file_path=relative, tags=tags)

    async def save_feed_item(self, feed: Feed, item: FeedItem, folder: Optional[str] = None,
                             full_content: Optional[bool] = None) -> FeedItem:
        """Save an item of ``feed``, using the feed's own folder and template when it has them."""
        if folder is None:
            folder = feed.custom_folder or None
        return await self.save_article(item, folder=folder, template=feed.custom_template or None,
                                       full_content=full_content)


def fix_saved_file_paths(feeds: List[Feed], vault_root: Union[str, Path]) -> Tuple[List[Feed], int]:
    """Clear saved state for items whose note file no longer exists.

    Returns the new feed list and the number of items that were reset.
    """
    root = Path(vault_root)
    reset = 0
    result: List[Feed] = []
    for feed in feeds:
        items = []
        changed = False
        for item in feed.items:
            if item.saved and item.saved_file_path:
                normalized = _normalize_folder(item.saved_file_path)
                if (root / normalized).exists():
                    if normalized != item.saved_file_path:
                        item = replace(item, saved_file_path=normalized)
                        changed = True
                else:
                    item = replace(item, saved=False, saved_file_path=None, tags=_without_saved_tag(item.tags))
                    reset += 1
                    changed = True
            items.append(item)
        result.append(replace(feed, items=items) if changed else feed)
    if reset:
        logger.info(f"Cleared saved state on {reset} item(s) whose notes were removed")
    return result, reset
