"""
Firefox cookie reader for X/Twitter session cookies.

Firefox stores cookies unencrypted in ``cookies.sqlite`` inside the profile
directory, so a copied database and a plain sqlite3 query are enough.
"""

import os
import subprocess
import sys
from typing import Dict, List, Mapping, Optional, Sequence

from cookie_utils import (
    CookieExtractionResult, TwitterCookies, TWITTER_COOKIE_DOMAINS,
    cookies_from_jar, copy_database_to_temp, expand_profile_path, looks_like_path,
    parse_sqlite_rows, run_sqlite_query, sql_host_list,
)
from logging_setup import get_logger
from log_events import evt
from transcript_errors import SubprocessTimeoutError

logger = get_logger(__name__)


def firefox_profiles_root(home: Optional[str] = None, platform: Optional[str] = None,
                          env: Optional[Mapping[str, str]] = None) -> str:
    home = home or os.path.expanduser("~")
    platform = platform or sys.platform
    env = os.environ if env is None else env
    if platform == "darwin":
        return os.path.join(home, "Library", "Application Support", "Firefox", "Profiles")
    if platform.startswith("win"):
        app_data = env.get("APPDATA") or os.path.join(home, "AppData", "Roaming")
        return os.path.join(app_data, "Mozilla", "Firefox", "Profiles")
    return os.path.join(home, ".mozilla", "firefox")


def pick_firefox_profile(root: str, profile: Optional[str] = None) -> Optional[str]:
    """
    Explicit profile name or path, else one containing 'default-release',
    else the first directory.
    """
    if profile and looks_like_path(profile):
        expanded = expand_profile_path(profile)
        if expanded.endswith("cookies.sqlite"):
            expanded = os.path.dirname(expanded)
        return expanded if os.path.isdir(expanded) else None
    if profile:
        candidate = os.path.join(root, profile)
        return candidate if os.path.isdir(candidate) else None
    try:
        entries = sorted(
            name for name in os.listdir(root)
            if os.path.isdir(os.path.join(root, name))
        )
    except OSError:
        return None
    if not entries:
        return None
    preferred = next((name for name in entries if "default-release" in name), entries[0])
    return os.path.join(root, preferred)


def read_firefox_cookies(profile: Optional[str] = None,
                         domains: Sequence[str] = TWITTER_COOKIE_DOMAINS,
                         sqlite3_path: str = "sqlite3",
                         profiles_root: Optional[str] = None) -> CookieExtractionResult:
    """Extract auth_token/ct0 from a Firefox profile. Never raises for missing stores."""
    warnings: List[str] = []
    root = profiles_root or firefox_profiles_root()
    profile_dir = pick_firefox_profile(root, profile)
    db_path = os.path.join(profile_dir, "cookies.sqlite") if profile_dir else None
    if not db_path or not os.path.isfile(db_path):
        warnings.append("Firefox cookies database not found.")
        return CookieExtractionResult(TwitterCookies(), warnings)

    source = f'Firefox profile "{profile}"' if profile else "Firefox default profile"
    query = f"SELECT name, value FROM moz_cookies WHERE host IN ({sql_host_list(domains)});"

    try:
        with copy_database_to_temp(db_path) as copied:
            output = run_sqlite_query(copied, query, sqlite3_path=sqlite3_path)
    except (OSError, subprocess.CalledProcessError, SubprocessTimeoutError) as e:
        warnings.append(f"Failed to read Firefox cookies: {e}")
        evt("cookie_store_failed", cookie_source="firefox", detail=str(e)[:200])
        return CookieExtractionResult(TwitterCookies(), warnings)

    jar: Dict[str, str] = {}
    for name, value in parse_sqlite_rows(output):
        if name not in jar and value:
            jar[name] = value

    cookies = cookies_from_jar(jar, source)
    if not cookies.auth_token and not cookies.ct0:
        warnings.append("No Twitter cookies found in Firefox. Make sure you are logged into x.com in Firefox.")
    evt("cookie_store_read", cookie_source="firefox", outcome="success" if cookies.complete else "partial",
        rows=len(jar))
    return CookieExtractionResult(cookies, warnings)
