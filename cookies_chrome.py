"""
Chrome cookie reader for X/Twitter session cookies.

The live ``Cookies`` database is copied to a temp directory and queried via
the sqlite3 shell. Encrypted values (``v10``/``v11`` prefix) are decrypted
with a key derived from the "Chrome Safe Storage" keychain passphrase:
PBKDF2-HMAC-SHA1, salt ``saltysalt``, 1003 iterations, AES-128-CBC with an
IV of sixteen spaces.
"""

import os
import re
import subprocess
import sys
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from cookie_utils import (
    CookieExtractionResult, TwitterCookies, TWITTER_COOKIE_DOMAINS,
    cookies_from_jar, copy_database_to_temp, expand_profile_path, looks_like_path,
    parse_sqlite_rows, run_sqlite_query, sql_host_list,
)
from logging_setup import get_logger
from log_events import evt
from subprocess_utils import run_command
from transcript_errors import SubprocessTimeoutError

logger = get_logger(__name__)

CHROME_SALT = b"saltysalt"
CHROME_ITERATIONS = 1003
CHROME_KEY_LENGTH = 16
CHROME_IV = b" " * 16
CHROME_VERSION_PREFIXES = (b"v10", b"v11")
KEYCHAIN_TIMEOUT = 10

_HEX_TOKEN = re.compile(r'[a-f0-9]{32,}')
_NON_PRINTABLE = re.compile(r'[^\x20-\x7e]')


def chrome_user_data_dirs(home: str, platform: str, env: Mapping[str, str]) -> List[str]:
    """Candidate Chrome user-data directories for the platform."""
    if platform == "darwin":
        return [os.path.join(home, "Library", "Application Support", "Google", "Chrome")]
    if platform.startswith("win"):
        local_app_data = env.get("LOCALAPPDATA") or os.path.join(home, "AppData", "Local")
        return [os.path.join(local_app_data, "Google", "Chrome", "User Data")]
    return [
        os.path.join(home, ".config", "google-chrome"),
        os.path.join(home, ".config", "chromium"),
    ]


def resolve_chrome_cookie_db(profile: Optional[str] = None, home: Optional[str] = None,
                             platform: Optional[str] = None,
                             env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return the first existing Cookies database for the profile, checking Network/Cookies too."""
    home = home or os.path.expanduser("~")
    platform = platform or sys.platform
    env = os.environ if env is None else env

    candidates = []
    if profile and looks_like_path(profile):
        expanded = expand_profile_path(profile, home)
        if os.path.isfile(expanded):
            return expanded
        candidates += [os.path.join(expanded, "Cookies"), os.path.join(expanded, "Network", "Cookies")]
    else:
        profile_dir = (profile or "").strip() or "Default"
        for base in chrome_user_data_dirs(home, platform, env):
            candidates += [
                os.path.join(base, profile_dir, "Cookies"),
                os.path.join(base, profile_dir, "Network", "Cookies"),
            ]

    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate
    return None


def get_chrome_passphrase(timeout: float = KEYCHAIN_TIMEOUT) -> Optional[str]:
    """Read the Chrome Safe Storage passphrase from the macOS keychain."""
    if sys.platform != "darwin":
        return None
    try:
        result = run_command(
            ["security", "find-generic-password", "-s", "Chrome Safe Storage", "-w"],
            timeout=timeout,
        )
    except (OSError, SubprocessTimeoutError) as e:
        logger.debug(f"Keychain lookup failed: {e}")
        return None
    if result.returncode != 0:
        return None
    passphrase = result.stdout.decode("utf-8", errors="replace").strip()
    return passphrase or None


def derive_chrome_key(passphrase: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=CHROME_KEY_LENGTH,
        salt=CHROME_SALT,
        iterations=CHROME_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def _clean_plaintext(raw: bytes) -> Optional[str]:
    text = raw.decode("utf-8", errors="ignore")
    # Newer Chrome versions prepend a binary domain hash to the value
    match = _HEX_TOKEN.search(text)
    if match:
        return match.group(0)
    cleaned = _NON_PRINTABLE.sub("", text).strip()
    return cleaned or None


def decrypt_chrome_value(hex_value: str, get_key: Callable[[], Optional[bytes]]) -> Optional[str]:
    """
    Decrypt one ``hex(encrypted_value)`` column.

    Values without a v10/v11 prefix are treated as plaintext. Returns None when
    the value is undecodable or no key is available.
    """
    try:
        data = bytes.fromhex(hex_value.strip())
    except ValueError:
        return None
    if len(data) < 4:
        return None

    if data[:3] not in CHROME_VERSION_PREFIXES:
        return _clean_plaintext(data)

    key = get_key()
    if key is None:
        return None

    ciphertext = data[3:]
    if not ciphertext or len(ciphertext) % 16 != 0:
        return None
    decryptor = Cipher(algorithms.AES(key), modes.CBC(CHROME_IV)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    try:
        unpadder = padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        return None
    return _clean_plaintext(plaintext)


def _memoized_key(passphrase_reader: Callable[[], Optional[str]]) -> Callable[[], Optional[bytes]]:
    cache: Dict[str, Optional[bytes]] = {}

    def get_key() -> Optional[bytes]:
        if "key" not in cache:
            passphrase = passphrase_reader()
            cache["key"] = derive_chrome_key(passphrase) if passphrase else None
        return cache["key"]

    return get_key


def read_chrome_cookies(profile: Optional[str] = None,
                        domains: Sequence[str] = TWITTER_COOKIE_DOMAINS,
                        sqlite3_path: str = "sqlite3",
                        db_path: Optional[str] = None,
                        passphrase_reader: Callable[[], Optional[str]] = get_chrome_passphrase) -> CookieExtractionResult:
    """
    Extract auth_token/ct0 from a Chrome profile. Never raises for missing stores.
    """
    warnings: List[str] = []
    db_path = db_path or resolve_chrome_cookie_db(profile)
    if not db_path or not os.path.isfile(db_path):
        where = db_path or f"Chrome profile {profile or 'Default'}"
        warnings.append(f"Chrome cookies database not found at: {where}")
        return CookieExtractionResult(TwitterCookies(), warnings)

    source = f'Chrome profile "{profile}"' if profile else "Chrome default profile"
    query = (
        "SELECT name, hex(encrypted_value) as encrypted_hex FROM cookies "
        f"WHERE host_key IN ({sql_host_list(domains)});"
    )

    try:
        with copy_database_to_temp(db_path) as copied:
            output = run_sqlite_query(copied, query, sqlite3_path=sqlite3_path)
    except (OSError, subprocess.CalledProcessError, SubprocessTimeoutError) as e:
        warnings.append(f"Failed to read Chrome cookies: {e}")
        evt("cookie_store_failed", cookie_source="chrome", detail=str(e)[:200])
        return CookieExtractionResult(TwitterCookies(), warnings)

    get_key = _memoized_key(passphrase_reader)
    jar: Dict[str, str] = {}
    for name, hex_value in parse_sqlite_rows(output):
        if name in jar or not hex_value:
            continue
        value = decrypt_chrome_value(hex_value, get_key)
        if value:
            jar[name] = value

    cookies = cookies_from_jar(jar, source)
    if not cookies.auth_token and not cookies.ct0:
        warnings.append("No Twitter cookies found in Chrome. Make sure you are logged into x.com in Chrome.")
    evt("cookie_store_read", cookie_source="chrome", outcome="success" if cookies.complete else "partial",
        rows=len(jar))
    return CookieExtractionResult(cookies, warnings)
