#!/usr/bin/env python3
"""
Character reference decoding and CDATA handling.

Feed text arrives with a mix of XML entities, HTML named entities, numeric
references and CDATA wrappers, often nested in ways that a naive replace loop
would double-decode. Everything here works in a single left-to-right regex
pass so that ``&amp;amp;`` becomes ``&amp;`` and never ``&``.
"""

import re
from html.entities import html5, name2codepoint

# Matches any character reference; the name group accepts the HTML5 names
# that legally omit the trailing semicolon only when the semicolon is present.
_REFERENCE_RE = re.compile(r'&(?:#(\d{1,7})|#[xX]([0-9a-fA-F]{1,6})|([A-Za-z][A-Za-z0-9]{1,31}));')
_CDATA_OPEN_RE = re.compile(r'<!\[CDATA\[')
_CDATA_CLOSE_RE = re.compile(r'\]\]>')
_WHITESPACE_RE = re.compile(r'\s+')
_TAG_RE = re.compile(r'<[^>]*>')

# Entities XML already understands; everything else must become numeric before
# a strict XML parser sees the document.
XML_PREDEFINED = frozenset({'amp', 'lt', 'gt', 'quot', 'apos'})


def _codepoint_to_text(codepoint: int) -> str | None:
    if codepoint <= 0 or codepoint > 0x10FFFF or 0xD800 <= codepoint <= 0xDFFF:
        return None
    return chr(codepoint)


def _replace_reference(match: re.Match) -> str:
    decimal, hexadecimal, name = match.groups()
    if decimal is not None:
        return _codepoint_to_text(int(decimal)) or match.group(0)
    if hexadecimal is not None:
        return _codepoint_to_text(int(hexadecimal, 16)) or match.group(0)
    replacement = html5.get(f"{name};")
    if replacement is None:
        # Case variants such as &AMP; are common in hand-written feeds
        replacement = html5.get(f"{name.lower()};")
    return replacement if replacement is not None else match.group(0)


def decode_entities(text: str) -> str:
    """Replace named and numeric character references in one pass.

    Unknown names and out-of-range code points are left as-is.
    """
    if not text or '&' not in text:
        return text or ""
    return _REFERENCE_RE.sub(_replace_reference, text)


def strip_cdata(text: str) -> str:
    """Remove CDATA delimiters, tolerating unterminated sections."""
    if not text:
        return ""
    return _CDATA_CLOSE_RE.sub('', _CDATA_OPEN_RE.sub('', text))


def decode(text: str) -> str:
    """Strip CDATA, decode references, collapse whitespace and trim."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(' ', decode_entities(strip_cdata(text))).strip()


def sanitize_text(text: str) -> str:
    """Plain-text rendering of a feed field: tags removed, then decoded."""
    if not text:
        return ""
    return decode(_TAG_RE.sub(' ', strip_cdata(text)))


def _named_to_numeric(match: re.Match) -> str:
    decimal, hexadecimal, name = match.groups()
    if name is None or name in XML_PREDEFINED:
        return match.group(0)
    if name in name2codepoint:
        return f"&#{name2codepoint[name]};"
    replacement = html5.get(f"{name};")
    if replacement is None:
        # Not an entity at all; escape the ampersand so the XML stays well formed
        return f"&amp;{name};"
    return "".join(f"&#{ord(ch)};" for ch in replacement)


def named_to_numeric(text: str) -> str:
    """Rewrite HTML-only named entities as numeric references for XML parsing."""
    if not text or '&' not in text:
        return text or ""
    return _REFERENCE_RE.sub(_named_to_numeric, text)
