# cookie_utils.py
"""
Shared helpers for reading X/Twitter session cookies out of browser stores
and handing them to yt-dlp.
"""

import os
import re
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from logging_setup import get_logger
from subprocess_utils import run_command

logger = get_logger(__name__)

TWITTER_COOKIE_DOMAINS = ("x.com", "twitter.com")
AUTH_TOKEN_COOKIE = "auth_token"
CT0_COOKIE = "ct0"
SQLITE_TIMEOUT = 15


@dataclass
class TwitterCookies:
    auth_token: Optional[str] = None
    ct0: Optional[str] = None
    cookie_header: Optional[str] = None
    source: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.auth_token and self.ct0)


@dataclass
class CookieExtractionResult:
    cookies: TwitterCookies
    warnings: List[str] = field(default_factory=list)


def normalize_value(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def build_cookie_header(jar: Dict[str, str]) -> Optional[str]:
    """Serialize cookies as a Cookie header, sorted by name."""
    pairs = [f"{name}={value}" for name, value in sorted(jar.items()) if value]
    return "; ".join(pairs) if pairs else None


def cookies_from_jar(jar: Dict[str, str], source: str) -> TwitterCookies:
    """
    Build a credential bundle from a name -> value jar.

    auth_token/ct0 come only from cookies with exactly those names; the
    header carries every cookie in the jar.
    """
    auth_token = normalize_value(jar.get(AUTH_TOKEN_COOKIE))
    ct0 = normalize_value(jar.get(CT0_COOKIE))
    if not auth_token and not ct0:
        return TwitterCookies(cookie_header=build_cookie_header(jar))
    return TwitterCookies(
        auth_token=auth_token,
        ct0=ct0,
        cookie_header=build_cookie_header(jar),
        source=source,
    )


def host_matches_domains(host: str, domains: Sequence[str] = TWITTER_COOKIE_DOMAINS) -> bool:
    """Exact or suffix match on dot-stripped host names."""
    host = (host or "").strip().lower().lstrip(".")
    if not host:
        return False
    for domain in domains:
        domain = domain.lower().lstrip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def sql_host_list(domains: Sequence[str] = TWITTER_COOKIE_DOMAINS) -> str:
    """Render the SQL IN-list for host keys, with and without the leading dot."""
    hosts = [f".{d}" for d in domains] + list(domains)
    return ", ".join(f"'{h}'" for h in hosts)


NETSCAPE_HEADER = "# Netscape HTTP Cookie File"
# One year; yt-dlp drops rows whose expiry has passed
COOKIE_FILE_LIFETIME = 365 * 24 * 3600


def write_netscape_cookie_file(cookies: TwitterCookies, path: str,
                               domains: Sequence[str] = TWITTER_COOKIE_DOMAINS) -> str:
    """Write auth_token and ct0 as a cookies.txt that yt-dlp accepts via ``--cookies``."""
    expires = str(int(time.time()) + COOKIE_FILE_LIFETIME)
    lines = [NETSCAPE_HEADER]
    for domain in domains:
        for name, value in ((AUTH_TOKEN_COOKIE, cookies.auth_token), (CT0_COOKIE, cookies.ct0)):
            if value:
                lines.append("\t".join([f".{domain}", "TRUE", "/", "TRUE", expires, name, value]))
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
    return path


@contextmanager
def copy_database_to_temp(db_path: str) -> Iterator[str]:
    """
    Copy a cookie database (plus WAL/SHM side files) into a throwaway directory.

    Yields the path of the copied database; the directory is removed on exit.
    """
    temp_dir = tempfile.mkdtemp(prefix="twitter-cookies-")
    try:
        target = os.path.join(temp_dir, os.path.basename(db_path))
        shutil.copyfile(db_path, target)
        for suffix in ("-wal", "-shm"):
            side_file = db_path + suffix
            if os.path.exists(side_file):
                shutil.copyfile(side_file, target + suffix)
        yield target
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def run_sqlite_query(db_path: str, query: str, sqlite3_path: str = "sqlite3",
                     timeout: float = SQLITE_TIMEOUT) -> str:
    """Query a SQLite database through the sqlite3 shell with '|' separated output."""
    result = run_command([sqlite3_path, "-separator", "|", db_path, query], timeout=timeout, check=True)
    return result.stdout.decode("utf-8", errors="replace")


def parse_sqlite_rows(output: str) -> List[Tuple[str, str]]:
    """Split 'name|value' lines; the value may itself contain '|'."""
    rows = []
    for line in output.splitlines():
        line = line.strip()
        if not line or "|" not in line:
            continue
        name, value = line.split("|", 1)
        rows.append((name.strip(), value.strip()))
    return rows


COOKIE_SOURCES = ("safari", "chrome", "firefox")
# Single canonical order for every entry point
DEFAULT_COOKIE_SOURCES = ("safari", "chrome", "firefox")


def parse_cookie_source_list(value, warnings: List[str], origin: Optional[str] = None) -> Optional[List[str]]:
    """
    Parse a cookie source list from a string ("chrome, safari") or a sequence.

    Unknown tokens add one warning each and are dropped; duplicates are
    ignored. Returns None when nothing recognised remains.
    """
    if value is None:
        return None
    if isinstance(value, str):
        tokens = re.split(r'[,\s]+', value)
    else:
        tokens = list(value)

    result: List[str] = []
    for token in tokens:
        token = (token or "").strip().lower()
        if not token:
            continue
        if token in COOKIE_SOURCES:
            if token not in result:
                result.append(token)
            continue
        suffix = f" in {origin}" if origin else ""
        warnings.append(f'Unknown cookie source "{token}"{suffix}')
    return result or None


def looks_like_path(value: str) -> bool:
    return "/" in value or "\\" in value


def expand_profile_path(value: str, home: Optional[str] = None) -> str:
    home = home or os.path.expanduser("~")
    if value.startswith("~/"):
        return os.path.join(home, value[2:])
    return os.path.abspath(value)
