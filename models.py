#!/usr/bin/env python3
"""
Data model for parsed feeds and persisted dashboard state.

Two families of records live here:

- ParsedFeed / ParsedItem: ephemeral output of one parse call. Every dialect
  parser (RSS 2.0, RSS 1.0, Atom, JSON Feed, recovery) produces exactly this
  shape, so nothing downstream branches on the source format.
- Feed / FeedItem / Folder / Settings: the persistent state owned by the
  settings store. They serialize to JSON with the camelCase key names used by
  the stored settings file (``pubDate``, ``feedTitle``, ``coverImage`` ...).

Images are always ``Image`` objects (or None), never bare strings; legacy
string values are coerced when loading.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Set

from config import config


class MediaType:
    ARTICLE = "article"
    VIDEO = "video"
    PODCAST = "podcast"

    ALL = (ARTICLE, VIDEO, PODCAST)


class ImportStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _dump(value: Any) -> Any:
    if isinstance(value, _Record):
        return value.to_dict()
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


class _Record:
    """Mixin giving dataclasses camelCase JSON (de)serialization.

    Subclasses list nested record fields in ``_nested`` (single value) and
    ``_nested_lists`` (list of records).
    """

    _nested: ClassVar[Dict[str, Any]] = {}
    _nested_lists: ClassVar[Dict[str, Any]] = {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[_camel(f.name)] = _dump(value)
        return out

    @classmethod
    def from_dict(cls, data: Any):
        if not isinstance(data, dict):
            return None
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            key = _camel(f.name)
            if key not in data:
                continue
            value = data[key]
            if f.name in cls._nested and value is not None:
                value = cls._nested[f.name].from_dict(value)
            elif f.name in cls._nested_lists:
                record_cls = cls._nested_lists[f.name]
                value = [r for r in (record_cls.from_dict(v) for v in (value or [])) if r is not None]
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass
class Image(_Record):
    url: str

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Image"]:
        return cls.coerce(data)

    @classmethod
    def coerce(cls, value: Any) -> Optional["Image"]:
        """Normalize str / {url} / {href} / Image into an Image (or None)."""
        if isinstance(value, Image):
            return value if value.url else None
        if isinstance(value, str):
            value = value.strip()
            return cls(url=value) if value else None
        if isinstance(value, dict):
            return cls.coerce(value.get("url") or value.get("href"))
        return None


@dataclass
class Enclosure(_Record):
    url: str
    type: str = ""
    length: str = ""


@dataclass
class ItunesInfo(_Record):
    duration: Optional[str] = None
    explicit: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = None
    summary: Optional[str] = None
    episode_type: Optional[str] = None
    season: Optional[str] = None
    episode: Optional[str] = None


@dataclass
class IeeeInfo(_Record):
    pub_year: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    start_page: Optional[str] = None
    end_page: Optional[str] = None
    file_size: Optional[str] = None
    authors: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))


@dataclass
class ParsedItem(_Record):
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""
    guid: str = ""
    author: str = ""
    content: str = ""
    category: str = ""
    enclosure: Optional[Enclosure] = None
    itunes: Optional[ItunesInfo] = None
    image: Optional[Image] = None
    ieee: Optional[IeeeInfo] = None

    _nested = {"enclosure": Enclosure, "itunes": ItunesInfo, "image": Image, "ieee": IeeeInfo}


@dataclass
class ParsedFeed(_Record):
    title: str = ""
    description: str = ""
    link: str = ""
    author: str = ""
    image: Optional[Image] = None
    items: List[ParsedItem] = field(default_factory=list)
    type: str = "rss"
    feed_itunes_image: Optional[str] = None
    feed_image_url: Optional[str] = None
    recovered: bool = False

    _nested = {"image": Image}
    _nested_lists = {"items": ParsedItem}

    def logo_candidates(self) -> Set[str]:
        """Feed-level artwork URLs that per-item covers may merely repeat."""
        candidates = {self.feed_itunes_image, self.feed_image_url}
        if self.image:
            candidates.add(self.image.url)
        return {c for c in candidates if c}


@dataclass
class Tag(_Record):
    name: str
    color: str = "#888888"


@dataclass
class Folder(_Record):
    name: str
    subfolders: List["Folder"] = field(default_factory=list)
    created_at: int = 0
    modified_at: int = 0
    pinned: bool = False


Folder._nested_lists = {"subfolders": Folder}


@dataclass
class FeedItem(_Record):
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""
    guid: str = ""
    read: bool = False
    starred: bool = False
    tags: List[Tag] = field(default_factory=list)
    feed_title: str = ""
    feed_url: str = ""
    cover_image: Optional[str] = None
    media_type: str = MediaType.ARTICLE
    video_id: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    duration: Optional[str] = None
    author: str = ""
    summary: str = ""
    content: str = ""
    saved: bool = False
    saved_file_path: Optional[str] = None
    explicit: bool = False
    image: Optional[Image] = None
    category: str = ""
    episode_type: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    enclosure: Optional[Enclosure] = None
    itunes: Optional[ItunesInfo] = None
    ieee: Optional[IeeeInfo] = None

    _nested = {"enclosure": Enclosure, "itunes": ItunesInfo, "image": Image, "ieee": IeeeInfo}
    _nested_lists = {"tags": Tag}

    def has_tag(self, name: str) -> bool:
        lowered = name.lower()
        return any(t.name.lower() == lowered for t in self.tags)


@dataclass
class Feed(_Record):
    title: str
    url: str
    folder: str = "Uncategorized"
    items: List[FeedItem] = field(default_factory=list)
    last_updated: int = 0
    author: str = ""
    media_type: str = MediaType.ARTICLE
    auto_detect: bool = True
    custom_template: Optional[str] = None
    custom_folder: Optional[str] = None
    custom_tags: List[Tag] = field(default_factory=list)
    auto_delete_duration: int = 0
    max_items_limit: int = 0
    scan_interval: int = 0

    _nested_lists = {"items": FeedItem, "custom_tags": Tag}


@dataclass
class FeedMetadata(_Record):
    """A feed awaiting (or done with) background import."""

    title: str
    url: str
    folder: str = "Uncategorized"
    media_type: str = MediaType.ARTICLE
    auto_delete_duration: int = 0
    max_items_limit: int = 0
    scan_interval: int = 0
    import_status: str = ImportStatus.PENDING
    import_error: Optional[str] = None

    def to_feed(self) -> Feed:
        return Feed(
            title=self.title,
            url=self.url,
            folder=self.folder,
            media_type=self.media_type,
            auto_delete_duration=self.auto_delete_duration,
            max_items_limit=self.max_items_limit,
            scan_interval=self.scan_interval,
        )


@dataclass
class MediaSettings(_Record):
    default_video_folder: str = "Videos"
    default_video_tag: str = "youtube"
    default_podcast_folder: str = "Podcasts"
    default_podcast_tag: str = "podcast"
    auto_detect_media_type: bool = True


@dataclass
class ArticleSavingSettings(_Record):
    default_folder: str = "RSS Articles/"
    default_template: str = ""
    save_full_content: bool = True
    add_saved_tag: bool = True
    fetch_timeout: int = 10


@dataclass
class Settings(_Record):
    feeds: List[Feed] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)
    refresh_interval: int = 60
    max_items: int = 25
    available_tags: List[Tag] = field(default_factory=list)
    media: MediaSettings = field(default_factory=MediaSettings)
    article_saving: ArticleSavingSettings = field(default_factory=ArticleSavingSettings)
    pending_imports: List[FeedMetadata] = field(default_factory=list)

    _nested = {"media": MediaSettings, "article_saving": ArticleSavingSettings}
    _nested_lists = {
        "feeds": Feed,
        "folders": Folder,
        "available_tags": Tag,
        "pending_imports": FeedMetadata,
    }

    @classmethod
    def defaults(cls) -> "Settings":
        """Fresh settings seeded from the loaded configuration."""
        return cls(
            refresh_interval=config.REFRESH_INTERVAL_MINUTES,
            max_items=config.DEFAULT_MAX_ITEMS,
            available_tags=[Tag(name=t["name"], color=t["color"]) for t in config.DEFAULT_TAGS],
            media=MediaSettings(
                default_video_folder=config.DEFAULT_VIDEO_FOLDER,
                default_video_tag=config.DEFAULT_VIDEO_TAG,
                default_podcast_folder=config.DEFAULT_PODCAST_FOLDER,
                default_podcast_tag=config.DEFAULT_PODCAST_TAG,
                auto_detect_media_type=config.AUTO_DETECT_MEDIA_TYPE,
            ),
            article_saving=ArticleSavingSettings(
                default_folder=config.ARTICLE_FOLDER,
                default_template=config.ARTICLE_TEMPLATE,
                save_full_content=config.ARTICLE_SAVE_FULL_CONTENT,
                add_saved_tag=config.ARTICLE_ADD_SAVED_TAG,
                fetch_timeout=config.ARTICLE_FETCH_TIMEOUT,
            ),
        )

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Settings"]:
        """Load persisted settings over the configured defaults."""
        if not isinstance(data, dict):
            return None
        base = cls.defaults().to_dict()
        base.update({k: v for k, v in data.items() if v is not None})
        return super().from_dict(base)

    def find_feed(self, url: str) -> Optional[Feed]:
        for feed in self.feeds:
            if feed.url == url:
                return feed
        return None
