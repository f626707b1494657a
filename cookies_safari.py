"""
Safari cookie reader for X/Twitter session cookies.

Parses the proprietary ``Cookies.binarycookies`` format:

    file    "cook" | page_count (u32 BE) | page_size[page_count] (u32 BE) | pages
    page    00 00 01 00 | cookie_count (u32 LE) | record_offset[count] (u32 LE) | 00000000
    record  size (u32 LE) | flags/unknown (3 x u32) | domain, name, path, value
            offsets (u32 LE, relative to the record start) | expiry/creation | strings

Malformed records are skipped without abandoning the rest of the page.
"""

import os
import shutil
import struct
import sys
import tempfile
from typing import Dict, List, Optional, Sequence

from cookie_utils import (
    CookieExtractionResult, TwitterCookies, TWITTER_COOKIE_DOMAINS,
    cookies_from_jar, host_matches_domains, normalize_value,
)
from logging_setup import get_logger
from log_events import evt

logger = get_logger(__name__)

SAFARI_MAGIC = b"cook"
SAFARI_PAGE_SIGNATURE = b"\x00\x00\x01\x00"
# size word + seven u32 header fields up to and including the value offset
_RECORD_HEADER_SIZE = 4 + 7 * 4


def safari_cookie_paths(home: Optional[str] = None) -> List[str]:
    home = home or os.path.expanduser("~")
    return [
        os.path.join(home, "Library", "Cookies", "Cookies.binarycookies"),
        os.path.join(home, "Library", "Containers", "com.apple.Safari", "Data",
                     "Library", "Cookies", "Cookies.binarycookies"),
    ]


def resolve_safari_cookie_file(home: Optional[str] = None, platform: Optional[str] = None) -> Optional[str]:
    if (platform or sys.platform) != "darwin":
        return None
    for candidate in safari_cookie_paths(home):
        if os.path.isfile(candidate):
            return candidate
    return None


def _read_cstring(data: bytes, start: int, end: int) -> Optional[str]:
    """NUL-terminated UTF-8 string that must terminate before ``end``."""
    if start < 0 or start >= end:
        return None
    terminator = data.find(b"\x00", start, end)
    if terminator < 0:
        return None
    return data[start:terminator].decode("utf-8", errors="replace")


def _parse_record(page: bytes, offset: int, domains: Sequence[str], jar: Dict[str, str]) -> None:
    if offset < 0 or offset + 4 > len(page):
        return
    (record_size,) = struct.unpack_from("<I", page, offset)
    record_end = offset + record_size
    if record_size <= 0 or record_end > len(page):
        return
    if offset + _RECORD_HEADER_SIZE > record_end:
        return

    domain_offset, name_offset, _path_offset, value_offset = struct.unpack_from("<4I", page, offset + 16)
    domain = _read_cstring(page, offset + domain_offset, record_end)
    name = _read_cstring(page, offset + name_offset, record_end)
    value = _read_cstring(page, offset + value_offset, record_end)

    if not name or not value or not host_matches_domains(domain or "", domains):
        return
    normalized = normalize_value(value)
    if normalized and name not in jar:
        jar[name] = normalized


def _parse_page(page: bytes, domains: Sequence[str], jar: Dict[str, str]) -> None:
    if len(page) < 12 or page[:4] != SAFARI_PAGE_SIGNATURE:
        return
    (cookie_count,) = struct.unpack_from("<I", page, 4)
    if not cookie_count:
        return
    offsets_end = 8 + cookie_count * 4
    if offsets_end > len(page):
        return
    for offset in struct.unpack_from(f"<{cookie_count}I", page, 8):
        _parse_record(page, offset, domains, jar)


def parse_binary_cookies(data: bytes, domains: Sequence[str] = TWITTER_COOKIE_DOMAINS) -> Dict[str, str]:
    """Parse a binarycookies blob into a name -> value jar for the target domains."""
    jar: Dict[str, str] = {}
    if len(data) < 8 or data[:4] != SAFARI_MAGIC:
        return jar
    (page_count,) = struct.unpack_from(">I", data, 4)
    cursor = 8
    if cursor + page_count * 4 > len(data):
        return jar
    page_sizes = struct.unpack_from(f">{page_count}I", data, cursor)
    cursor += page_count * 4

    for page_size in page_sizes:
        if cursor + page_size > len(data):
            break
        _parse_page(data[cursor:cursor + page_size], domains, jar)
        cursor += page_size
    return jar


def read_safari_cookies(domains: Sequence[str] = TWITTER_COOKIE_DOMAINS,
                        cookie_file: Optional[str] = None) -> CookieExtractionResult:
    """Extract auth_token/ct0 from Safari. Never raises for missing stores."""
    warnings: List[str] = []
    cookie_file = cookie_file or resolve_safari_cookie_file()
    if not cookie_file or not os.path.isfile(cookie_file):
        warnings.append("Safari cookies database not found.")
        return CookieExtractionResult(TwitterCookies(), warnings)

    temp_dir = tempfile.mkdtemp(prefix="twitter-cookies-")
    cookies = TwitterCookies()
    try:
        copied = os.path.join(temp_dir, "Cookies.binarycookies")
        shutil.copyfile(cookie_file, copied)
        with open(copied, "rb") as f:
            data = f.read()
        cookies = cookies_from_jar(parse_binary_cookies(data, domains), "Safari")
    except OSError as e:
        warnings.append(f"Failed to read Safari cookies: {e}")
        evt("cookie_store_failed", cookie_source="safari", detail=str(e)[:200])
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    if not cookies.auth_token and not cookies.ct0:
        warnings.append("No Twitter cookies found in Safari. Make sure you are logged into x.com in Safari.")
    return CookieExtractionResult(cookies, warnings)
