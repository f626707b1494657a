"""
Resolve X/Twitter session credentials (auth_token + ct0).

Precedence, first match wins:
    1. explicit arguments
    2. AUTH_TOKEN / TWITTER_AUTH_TOKEN and CT0 / TWITTER_CT0
    3. browser stores, in the requested (or default) order, stopping at the
       first store that yields both values

Never raises; whatever was found is returned along with warnings.
"""

import os
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from cookie_utils import (
    CookieExtractionResult, TwitterCookies, DEFAULT_COOKIE_SOURCES,
    normalize_value, parse_cookie_source_list,
)
from cookies_chrome import read_chrome_cookies
from cookies_firefox import read_firefox_cookies
from cookies_safari import read_safari_cookies
from logging_setup import get_logger
from log_events import evt

logger = get_logger(__name__)

ENV_AUTH_TOKEN_KEYS = ("AUTH_TOKEN", "TWITTER_AUTH_TOKEN")
ENV_CT0_KEYS = ("CT0", "TWITTER_CT0")

CookieReader = Callable[[], CookieExtractionResult]


def default_cookie_readers(chrome_profile: Optional[str] = None, firefox_profile: Optional[str] = None,
                           sqlite3_path: str = "sqlite3") -> Dict[str, CookieReader]:
    return {
        "safari": lambda: read_safari_cookies(),
        "chrome": lambda: read_chrome_cookies(chrome_profile, sqlite3_path=sqlite3_path),
        "firefox": lambda: read_firefox_cookies(firefox_profile, sqlite3_path=sqlite3_path),
    }


def _first_env_value(env: Mapping[str, str], keys: Sequence[str]):
    for key in keys:
        value = normalize_value(env.get(key))
        if value:
            return key, value
    return None, None


def resolve_twitter_cookies(auth_token: Optional[str] = None,
                            ct0: Optional[str] = None,
                            cookie_source: Union[str, Sequence[str], None] = None,
                            chrome_profile: Optional[str] = None,
                            firefox_profile: Optional[str] = None,
                            env: Optional[Mapping[str, str]] = None,
                            readers: Optional[Mapping[str, CookieReader]] = None,
                            sqlite3_path: str = "sqlite3") -> CookieExtractionResult:
    """Merge explicit, environment and browser-store credentials into one result."""
    env = os.environ if env is None else env
    warnings: List[str] = []
    cookies = TwitterCookies()

    explicit_auth = normalize_value(auth_token)
    explicit_ct0 = normalize_value(ct0)
    if explicit_auth:
        cookies.auth_token = explicit_auth
        cookies.source = "CLI argument"
    if explicit_ct0:
        cookies.ct0 = explicit_ct0
        cookies.source = cookies.source or "CLI argument"

    if not cookies.auth_token:
        key, value = _first_env_value(env, ENV_AUTH_TOKEN_KEYS)
        if value:
            cookies.auth_token = value
            cookies.source = f"env {key}"
    if not cookies.ct0:
        key, value = _first_env_value(env, ENV_CT0_KEYS)
        if value:
            cookies.ct0 = value
            cookies.source = cookies.source or f"env {key}"

    if cookies.complete:
        cookies.cookie_header = f"auth_token={cookies.auth_token}; ct0={cookies.ct0}"
        evt("twitter_cookies_resolved", cookie_source=cookies.source, outcome="success")
        return CookieExtractionResult(cookies, warnings)

    sources = parse_cookie_source_list(cookie_source, warnings) or list(DEFAULT_COOKIE_SOURCES)
    if readers is None:
        readers = default_cookie_readers(chrome_profile, firefox_profile, sqlite3_path)

    for source in sources:
        reader = readers.get(source)
        if reader is None:
            continue
        result = reader()
        warnings.extend(result.warnings)
        if result.cookies.complete:
            evt("twitter_cookies_resolved", cookie_source=result.cookies.source, outcome="success")
            return CookieExtractionResult(result.cookies, warnings)

    if not cookies.auth_token:
        warnings.append(
            "Missing auth_token - provide via AUTH_TOKEN env var, or login to x.com in Safari/Chrome/Firefox"
        )
    if not cookies.ct0:
        warnings.append(
            "Missing ct0 - provide via CT0 env var, or login to x.com in Safari/Chrome/Firefox"
        )

    evt("twitter_cookies_resolved", cookie_source=cookies.source, outcome="incomplete",
        warning_count=len(warnings))
    return CookieExtractionResult(cookies, warnings)
