#!/usr/bin/env python3
"""
OPML import/export.

Folder outlines nest; a feed's folder is the slash-joined path of the
outlines enclosing it ("Tech/Python"). Feeds outside any folder land in
"Uncategorized". Per-feed retention and media settings round-trip through
custom outline attributes (mediaType, autoDeleteDuration, maxItemsLimit,
scanInterval).
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from xml.etree import ElementTree as ET

from config import get_logger
from models import Feed, FeedMetadata, Folder, MediaType
from utils import now_ms

logger = get_logger("opml")

DEFAULT_FOLDER = "Uncategorized"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'
INT_ATTRIBUTES = {
    "autoDeleteDuration": "auto_delete_duration",
    "maxItemsLimit": "max_items_limit",
    "scanInterval": "scan_interval",
}


def _int_attr(outline: ET.Element, name: str) -> int:
    value = outline.get(name)
    if not value:
        return 0
    try:
        return max(0, int(value))
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r} on outline {outline.get('text')!r}")
        return 0


def _feed_metadata(outline: ET.Element, folder: str) -> FeedMetadata:
    url = outline.get("xmlUrl", "").strip()
    media_type = outline.get("mediaType") or MediaType.ARTICLE
    if media_type not in MediaType.ALL:
        media_type = MediaType.ARTICLE
    return FeedMetadata(
        title=outline.get("title") or outline.get("text") or url,
        url=url,
        folder=folder,
        media_type=media_type,
        auto_delete_duration=_int_attr(outline, "autoDeleteDuration"),
        max_items_limit=_int_attr(outline, "maxItemsLimit"),
        scan_interval=_int_attr(outline, "scanInterval"),
    )


def _walk(outline: ET.Element, path: List[str], feeds: List[FeedMetadata], stamp: int) -> Optional[Folder]:
    """Collect feeds below ``outline``; returns the Folder it represents, if any."""
    if outline.get("xmlUrl"):
        feeds.append(_feed_metadata(outline, "/".join(path) or DEFAULT_FOLDER))
        return None
    name = (outline.get("title") or outline.get("text") or "").strip()
    if not name:
        # Anonymous grouping outline: lift its children into the current level
        for child in outline.findall("outline"):
            _walk(child, path, feeds, stamp)
        return None
    folder = Folder(name=name, created_at=stamp, modified_at=stamp)
    for child in outline.findall("outline"):
        sub = _walk(child, path + [name], feeds, stamp)
        if sub is not None:
            folder.subfolders = merge_folders(folder.subfolders, [sub])
    return folder


def parse_opml(content: str) -> Tuple[List[FeedMetadata], List[Folder]]:
    """
    Parse OPML into feed metadata records and a folder tree.

    Args:
        content: OPML XML content.

    Returns:
        (feeds, folders)

    Raises:
        ValueError: If OPML parsing fails.
    """
    try:
        root = ET.fromstring(content.strip().lstrip("\ufeff"))
    except ET.ParseError as e:
        raise ValueError(f"Invalid OPML format: {e}")

    feeds: List[FeedMetadata] = []
    folders: List[Folder] = []
    body = root.find("body")
    if body is None:
        return feeds, folders

    stamp = now_ms()
    for outline in body.findall("outline"):
        folder = _walk(outline, [], feeds, stamp)
        if folder is not None:
            folders = merge_folders(folders, [folder])

    if any(f.folder == DEFAULT_FOLDER for f in feeds) and not any(f.name == DEFAULT_FOLDER for f in folders):
        folders.append(Folder(name=DEFAULT_FOLDER, created_at=stamp, modified_at=stamp))

    logger.info(f"Parsed OPML: {len(feeds)} feeds in {len(folders)} top-level folders")
    return feeds, folders


def merge_folders(existing: List[Folder], new: List[Folder]) -> List[Folder]:
    """Recursive union of two folder trees by name. Inputs are not modified."""
    merged: List[Folder] = [Folder(f.name, list(f.subfolders), f.created_at, f.modified_at, f.pinned) for f in existing]
    index: Dict[str, Folder] = {f.name: f for f in merged}
    for folder in new:
        current = index.get(folder.name)
        if current is None:
            copy = Folder(folder.name, list(folder.subfolders), folder.created_at, folder.modified_at, folder.pinned)
            merged.append(copy)
            index[folder.name] = copy
        else:
            current.subfolders = merge_folders(current.subfolders, folder.subfolders)
    return merged


def ensure_folder(folders: List[Folder], path: str) -> List[Folder]:
    """Return a folder tree that contains the slash-separated ``path``."""
    parts = [p.strip() for p in (path or "").split("/") if p.strip()]
    if not parts:
        return folders
    stamp = now_ms()
    leaf: Optional[Folder] = None
    for name in reversed(parts):
        leaf = Folder(name=name, subfolders=[leaf] if leaf else [], created_at=stamp, modified_at=stamp)
    return merge_folders(folders, [leaf])


def _feed_outline(parent: ET.Element, feed: Feed) -> None:
    outline = ET.SubElement(
        parent,
        "outline",
        type="rss",
        text=feed.title,
        title=feed.title,
        xmlUrl=feed.url,
    )
    if feed.media_type and feed.media_type != MediaType.ARTICLE:
        outline.set("mediaType", feed.media_type)
    for attr, field_name in INT_ATTRIBUTES.items():
        value = getattr(feed, field_name)
        if value:
            outline.set(attr, str(value))


def _folder_outline(parent: ET.Element, folder: Folder, path: str, by_folder: Dict[str, List[Feed]]) -> None:
    outline = ET.SubElement(parent, "outline", text=folder.name, title=folder.name)
    for sub in folder.subfolders:
        _folder_outline(outline, sub, f"{path}/{sub.name}", by_folder)
    for feed in by_folder.pop(path, []):
        _feed_outline(outline, feed)


def generate_opml(feeds: List[Feed], folders: List[Folder], title: str = "Feed Dashboard Subscriptions") -> str:
    """
    Serialize the folder tree and feed list to OPML.

    Empty folders are kept. Feeds whose folder is not in the tree get their
    folder path created on the fly.
    """
    tree_folders = list(folders)
    for feed in feeds:
        if feed.folder and feed.folder != DEFAULT_FOLDER:
            tree_folders = ensure_folder(tree_folders, feed.folder)

    by_folder: Dict[str, List[Feed]] = {}
    for feed in feeds:
        by_folder.setdefault((feed.folder or DEFAULT_FOLDER).strip("/"), []).append(feed)

    opml = ET.Element("opml", version="2.0")
    head = ET.SubElement(opml, "head")
    ET.SubElement(head, "title").text = title
    ET.SubElement(head, "dateCreated").text = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")

    body = ET.SubElement(opml, "body")
    for folder in tree_folders:
        _folder_outline(body, folder, folder.name, by_folder)
    # Whatever is left had no folder outline (e.g. Uncategorized without a folder entry)
    for path, remaining in by_folder.items():
        parent = ET.SubElement(body, "outline", text=path, title=path)
        for feed in remaining:
            _feed_outline(parent, feed)

    ET.indent(opml, space="  ")
    return XML_DECLARATION + "\n" + ET.tostring(opml, encoding="unicode")
