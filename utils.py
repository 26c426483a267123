#!/usr/bin/env python3
"""
Utility functions shared by the parser, merge engine and article saver.

This module contains URL normalization (including rewriting href/src/srcset
inside HTML), cover-image and summary extraction, date parsing, and the
HTML-to-Markdown sanitizer used when saving articles as notes.
"""

from calendar import timegm
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional
import re
from urllib.parse import urljoin, urlparse

import feedparser
from bs4 import BeautifulSoup
from markdownify import markdownify as md

from config import get_logger
from entities import decode

logger = get_logger("utils")

_SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.\-]*:')
_IMG_SRC_RE = re.compile(r'<img[^>]+src=["\']([^"\']+)["\'][^>]*>', re.I)
_IMAGE_EXT_RE = re.compile(r'\.(?:jpe?g|png|gif|webp|avif)(?:[?#].*)?$', re.I)
_TRACKING_IMG_RE = re.compile(r'(pixel|tracker|counter|spacer|blank\.gif|trans\.gif)', re.I)
_SRCSET_CANDIDATE_RE = re.compile(r'^(\S+)(\s+.+)?$')


def to_absolute(url: str, base_url: Optional[str]) -> str:
    """Resolve ``url`` against ``base_url``.

    ``app://`` links leak from note-taking hosts and become ``https://``;
    protocol-relative links get ``https:``. Anything that cannot be resolved
    is returned unchanged.
    """
    if not url:
        return url
    url = url.strip()
    if url.startswith('app://'):
        return 'https://' + url[len('app://'):]
    if url.startswith('//'):
        return 'https:' + url
    if url.startswith(('http://', 'https://')) or _SCHEME_RE.match(url):
        return url
    if not base_url:
        return url
    try:
        base = urlparse(base_url.strip())
        if not base.scheme or not base.netloc:
            return url
        if url.startswith('/'):
            return f"{base.scheme}://{base.netloc}{url}"
        return urljoin(base_url.strip(), url)
    except ValueError as e:
        logger.debug(f"Could not resolve {url!r} against {base_url!r}: {e}")
        return url


def absolutize_srcset(srcset: str, base_url: Optional[str]) -> str:
    """Resolve every candidate of a srcset value, keeping width/density descriptors."""
    candidates = []
    for part in srcset.split(','):
        part = part.strip()
        if not part:
            continue
        match = _SRCSET_CANDIDATE_RE.match(part)
        if not match:
            candidates.append(part)
            continue
        candidates.append(to_absolute(match.group(1), base_url) + (match.group(2) or ''))
    return ', '.join(candidates)


def absolutize_html(html: str, base_url: Optional[str]) -> str:
    """Rewrite href, src and srcset attributes inside an HTML fragment.

    Returns the input untouched when it has nothing to rewrite or cannot be
    processed.
    """
    if not html or not base_url:
        return html or ""
    if not re.search(r'\b(?:href|src|srcset)\s*=', html, re.I) and 'app://' not in html:
        return html
    try:
        soup = BeautifulSoup(html, 'html.parser')
        for tag in soup.find_all(True):
            for attr in ('href', 'src'):
                value = tag.get(attr)
                if isinstance(value, str) and value:
                    tag[attr] = to_absolute(value, base_url)
            srcset = tag.get('srcset')
            if isinstance(srcset, str) and srcset:
                tag['srcset'] = absolutize_srcset(srcset, base_url)
        return str(soup)
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Failed to absolutize HTML against {base_url}: {e}")
        return html


def extract_first_image(html: str) -> Optional[str]:
    """Return the src of the first <img> tag, with app:// rewritten."""
    if not html:
        return None
    match = _IMG_SRC_RE.search(html)
    if not match:
        return None
    src = match.group(1)
    if src.startswith('app://'):
        src = 'https://' + src[len('app://'):]
    return src


def extract_cover_image(html: str, base_url: Optional[str] = None) -> Optional[str]:
    """Pick the best cover image from article HTML.

    Order: og:image meta, twitter:image meta, first real <img>, then any <img>
    whose src looks like an image file.
    """
    if not html or ('<img' not in html.lower() and '<meta' not in html.lower()):
        return None
    try:
        soup = BeautifulSoup(html, 'html.parser')
    except (ValueError, TypeError) as e:
        logger.debug(f"Cover image extraction failed: {e}")
        return None

    for attrs in ({'property': 'og:image'}, {'name': 'twitter:image'}):
        meta = soup.find('meta', attrs=attrs)
        if meta and meta.get('content'):
            return to_absolute(meta['content'], base_url)

    images = [img.get('src') for img in soup.find_all('img') if img.get('src')]
    for src in images:
        if not _TRACKING_IMG_RE.search(src):
            return to_absolute(src, base_url)
    for src in images:
        if _IMAGE_EXT_RE.search(src):
            return to_absolute(src, base_url)
    return None


def html_to_text(html: str) -> str:
    """Flatten HTML to decoded, whitespace-collapsed text."""
    if not html:
        return ""
    if '<' not in html:
        return decode(html)
    try:
        text = BeautifulSoup(html, 'html.parser').get_text(' ')
    except (ValueError, TypeError):
        text = re.sub(r'<[^>]*>', ' ', html)
    return decode(text)


def extract_summary(html: str, max_length: int = 220) -> str:
    """Plain-text preview of an item body, cut at ``max_length`` characters."""
    text = html_to_text(html)
    if len(text) > max_length:
        return text[:max_length] + '...'
    return text


def parse_date(value) -> Optional[datetime]:
    """Parse a feed date string into an aware UTC datetime.

    Tries feedparser's date handlers, RFC 2822, ISO 8601 and a few formats
    seen in the wild; returns None when nothing matches.
    """
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Millisecond epochs are what the settings store persists
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    date_str = str(value).strip()
    if not date_str:
        return None
    for parser in (_parse_with_feedparser, _parse_with_email_utils, _parse_iso, _parse_with_custom_formats):
        parsed = parser(date_str)
        if parsed is not None:
            return parsed
    return None


def _parse_with_feedparser(date_str: str) -> Optional[datetime]:
    try:
        time_struct = feedparser._parse_date(date_str)
        if time_struct:
            return datetime.fromtimestamp(timegm(time_struct), tz=timezone.utc)
    except (ValueError, TypeError, AttributeError, OverflowError, OSError):
        return None
    return None


def _parse_with_email_utils(date_str: str) -> Optional[datetime]:
    try:
        dt = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _parse_iso(date_str: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(date_str.replace('Z', '+00:00'))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _parse_with_custom_formats(date_str: str) -> Optional[datetime]:
    custom_formats = [
        "%d %b %Y %H:%M:%S %z",
        "%d %b %Y %H:%M:%S %Z",
        "%d %b %Y %H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
        "%d/%m/%Y",
    ]
    for fmt in custom_formats:
        try:
            dt = datetime.strptime(date_str, fmt)
        except (ValueError, TypeError):
            continue
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def date_sort_key(value) -> float:
    """Epoch seconds for sorting; unparseable dates sort as the oldest."""
    parsed = parse_date(value)
    return parsed.timestamp() if parsed else 0.0


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def safe_filename(filename: str, max_length: int = 200) -> str:
    """Convert a string to a safe note filename.

    Args:
        filename: The original filename string
        max_length: Maximum allowed length for the filename

    Returns:
        A sanitized filename safe for filesystem use
    """
    if not filename:
        return "untitled"

    safe_name = re.sub(r'[<>:"/\\|?*#^\[\]]', '', filename)
    safe_name = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', safe_name)
    safe_name = re.sub(r'\s+', ' ', safe_name).strip('. ')

    if not safe_name:
        return "untitled"
    if len(safe_name) > max_length:
        safe_name = safe_name[:max_length].rstrip('. ')
    return safe_name


def clean_html_to_markdown(html_content: str, base_url: Optional[str] = None) -> str:
    """Sanitize article HTML and convert it to Markdown.

    Behavior:
    - Removes scripts, styles, iframes, forms, svg and common ad containers
    - Strips inline event handlers and javascript: URLs
    - Removes tracking pixels
    - Resolves relative href/src/srcset against ``base_url`` when given;
      without a base, non-absolute links become ``#`` and images are dropped
    - Converts the result to Markdown with markdownify
    """
    if not html_content:
        return ""

    try:
        soup = BeautifulSoup(html_content, 'html.parser')

        for tag in soup([
            "script", "style", "iframe", "form", "object", "embed", "noscript",
            "frame", "frameset", "applet", "meta", "base", "link", "svg", "button",
        ]):
            tag.decompose()

        for tag in soup.find_all(class_=re.compile(r'(^|[\s_-])(ad|ads|advert|advertisement|sponsor)([\s_-]|$)', re.I)):
            tag.decompose()

        for tag in soup.find_all(True):
            for attr in list(tag.attrs):
                if attr.lower().startswith('on'):
                    del tag[attr]
                elif attr.lower() in ('href', 'src') and str(tag[attr]).strip().lower().startswith('javascript:'):
                    del tag[attr]

        for img in soup.find_all('img'):
            src = img.get('src', '')
            if _TRACKING_IMG_RE.search(src) or img.get('height') in ('0', '1') or img.get('width') in ('0', '1'):
                img.decompose()

        for tag in soup.find_all(['a', 'img', 'source']):
            for attr in ('href', 'src'):
                value = tag.get(attr)
                if not value:
                    continue
                if attr == 'href' and value.startswith(('mailto:', '#')):
                    continue
                resolved = to_absolute(value, base_url)
                if resolved.startswith(('http://', 'https://')):
                    tag[attr] = resolved
                elif attr == 'href':
                    tag[attr] = '#'
                else:
                    del tag[attr]
            if tag.get('srcset'):
                tag['srcset'] = absolutize_srcset(tag['srcset'], base_url)

        # wrap_width=0 keeps long URLs on one line
        return md(str(soup), heading_style="ATX", wrap_width=0).strip()
    except (ValueError, TypeError, AttributeError) as e:
        logger.error(f"Error cleaning HTML to Markdown: {e}")
        return html_content
