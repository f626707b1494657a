"""
URL classification and text helpers shared by the transcript providers.
"""

import html
import math
import os
import re
import unicodedata
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, unquote, urlparse

_YOUTUBE_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{11}$')
_TWITTER_HOSTS = {"x.com", "twitter.com", "mobile.twitter.com", "mobile.x.com"}
_TWITTER_STATUS_PATH = re.compile(r'^/[^/]+/status(?:es)?/\d+', re.IGNORECASE)

MEDIA_EXTENSIONS = (
    ".mp3", ".m4a", ".m4b", ".aac", ".wav", ".flac", ".ogg", ".oga", ".opus",
    ".mp4", ".m4v", ".mov", ".webm", ".mkv", ".mpga", ".mpeg",
)

_XML_ENTITIES = [
    (re.compile(r"&amp;", re.IGNORECASE), "&"),
    (re.compile(r"&#38;"), "&"),
    (re.compile(r"&lt;", re.IGNORECASE), "<"),
    (re.compile(r"&gt;", re.IGNORECASE), ">"),
    (re.compile(r"&quot;", re.IGNORECASE), "\""),
    (re.compile(r"&apos;", re.IGNORECASE), "'"),
]

_EMBEDDED_YOUTUBE_PATTERN = re.compile(
    r'<iframe[^>]+src=["\'](?:https?:)?//(?:www\.)?(?:youtube\.com|youtube-nocookie\.com)/embed/([A-Za-z0-9_-]{11})',
    re.IGNORECASE,
)


def normalize_transcript_text(text: str) -> str:
    """
    Normalize transcript text for storage and display.

    Decodes HTML entities, unifies line endings, collapses runs of
    whitespace inside lines and drops blank lines.
    """
    if not text:
        return ""
    decoded = html.unescape(text).replace("\r\n", "\n").replace("\r", "\n")
    lines = []
    for line in decoded.split("\n"):
        collapsed = re.sub(r"[ \t\u00a0]+", " ", line).strip()
        if collapsed:
            lines.append(collapsed)
    return "\n".join(lines)


def extract_youtube_video_id(url: str) -> Optional[str]:
    """Extract an 11-character video id from the common YouTube URL shapes."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if host.startswith("m."):
        host = host[2:]

    candidate = None
    if host == "youtu.be":
        candidate = parsed.path.strip("/").split("/")[0]
    elif host in ("youtube.com", "music.youtube.com", "youtube-nocookie.com"):
        if parsed.path == "/watch":
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in ("shorts", "embed", "live", "v"):
                candidate = parts[1]

    if candidate and _YOUTUBE_ID_PATTERN.match(candidate):
        return candidate
    return None


def extract_embedded_youtube_url(page_html: str) -> Optional[str]:
    """Return a watch URL for the first embedded YouTube player iframe in a page."""
    if not page_html:
        return None
    match = _EMBEDDED_YOUTUBE_PATTERN.search(page_html)
    if not match:
        return None
    return f"https://www.youtube.com/watch?v={match.group(1)}"


def is_twitter_status_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host in _TWITTER_HOSTS and bool(_TWITTER_STATUS_PATH.match(parsed.path))


def is_file_url(url: str) -> bool:
    return url.lower().startswith("file://")


def file_url_to_path(url: str) -> str:
    return unquote(urlparse(url).path)


def path_to_file_url(path: str) -> str:
    return Path(os.path.abspath(path)).as_uri()


def is_direct_media_url(url: str) -> bool:
    """True for http(s) URLs whose path ends in a known audio/video extension."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    return parsed.path.lower().endswith(MEDIA_EXTENSIONS)


def parse_duration_seconds(raw: Optional[str]) -> Optional[int]:
    """
    Parse a duration such as "1:02:03", "02:03" or "3723" into seconds.

    Returns None for empty, zero, negative or non-numeric input.
    """
    if raw is None:
        return None
    value = raw.replace("<![CDATA[", "").replace("]]>", "").strip()
    if not value:
        return None

    if value.isascii() and value.isdigit():
        seconds = int(value)
        return seconds if seconds > 0 else None

    parts = [p.strip() for p in value.split(":")]
    if len(parts) < 2 or len(parts) > 3 or any(not p for p in parts):
        return None
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        return None
    if any(n < 0 or not math.isfinite(n) for n in numbers):
        return None

    if len(numbers) == 3:
        hours, minutes, secs = numbers
        total = round(hours * 3600 + minutes * 60 + secs)
    else:
        minutes, secs = numbers
        total = round(minutes * 60 + secs)
    return total if total > 0 else None


def format_bytes(value: int) -> str:
    """Human size: B/KB/MB/GB, one decimal below 10 units, none for bytes."""
    units = ["B", "KB", "MB", "GB"]
    size = float(max(0, value))
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    decimals = 0 if index == 0 or size >= 10 else 1
    return f"{size:.{decimals}f} {units[index]}"


def decode_xml_entities(value: str) -> str:
    for pattern, replacement in _XML_ENTITIES:
        value = pattern.sub(replacement, value)
    return value


def normalize_loose_title(value: str) -> str:
    """Lowercase, strip diacritics and collapse punctuation for fuzzy title matching."""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    without_marks = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r'[^a-z0-9]+', ' ', without_marks).strip()
