"""
Transcript cache adapter.

Keys are a pure function of the normalized URL, the transcript-affecting
options and, for local files only, the file modification time:

    transcript:v1:<sha256 of canonical JSON>

The storage engine is a collaborator implementing ``TranscriptStore``;
``SqliteTranscriptStore`` is the bundled implementation.
"""

import hashlib
import json
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol
from urllib.parse import urlparse, urlunparse

from logging_setup import get_logger
from log_events import evt, mask_url_for_logging
from transcript_types import CacheEntry, TranscriptResolution
from transcript_utils import is_file_url

logger = get_logger(__name__)

CACHE_KEY_VERSION = 1
CACHE_KEY_PREFIX = f"transcript:v{CACHE_KEY_VERSION}:"

CACHE_STATUS_HIT = "hit"
CACHE_STATUS_MISS = "miss"
CACHE_STATUS_EXPIRED = "expired"
CACHE_STATUS_BYPASS = "bypass"


class TranscriptStore(Protocol):
    def get(self, *, key: str, url: str, file_mtime: Optional[float]) -> Optional[CacheEntry]:
        ...

    def set(self, *, key: str, url: str, file_mtime: Optional[float], content: str, source: str,
            metadata: Optional[Dict[str, Any]], ttl_ms: int) -> None:
        ...


@dataclass
class CacheReadOutcome:
    status: str
    entry: Optional[CacheEntry] = None
    resolution: Optional[TranscriptResolution] = None


def normalize_cache_url(url: str) -> str:
    """Lowercase scheme and host and drop the fragment; file URLs and paths pass through."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url.strip()
    if parsed.scheme not in ("http", "https"):
        return url.strip()
    return urlunparse(parsed._replace(
        scheme=parsed.scheme.lower(),
        netloc=parsed.netloc.lower(),
        fragment="",
    ))


def build_transcript_cache_key(url: str, youtube_mode: str = "auto", timestamps: bool = False,
                               file_mtime: Optional[float] = None) -> str:
    if not is_file_url(url.strip()):
        # mtime only distinguishes local files
        file_mtime = None
    payload = {
        "v": CACHE_KEY_VERSION,
        "url": normalize_cache_url(url),
        "youtube_mode": youtube_mode,
        "timestamps": bool(timestamps),
        "file_mtime": file_mtime,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return CACHE_KEY_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def get_file_modification_time(path: str) -> Optional[float]:
    """Millisecond mtime with sub-second precision, or None for relative or missing paths."""
    if not path or not os.path.isabs(path):
        return None
    try:
        return os.stat(path).st_mtime_ns / 1e6
    except OSError:
        return None


def read_transcript_cache(store: Optional[TranscriptStore], url: str, youtube_mode: str = "auto",
                          timestamps: bool = False, file_mtime: Optional[float] = None,
                          cache_mode: str = "default") -> CacheReadOutcome:
    if store is None or cache_mode == "bypass":
        return CacheReadOutcome(CACHE_STATUS_BYPASS)

    key = build_transcript_cache_key(url, youtube_mode, timestamps, file_mtime)
    try:
        entry = store.get(key=key, url=url, file_mtime=file_mtime)
    except (sqlite3.Error, OSError, ValueError) as e:
        logger.warning(f"Transcript cache read failed: {e}")
        return CacheReadOutcome(CACHE_STATUS_MISS)

    if entry is None:
        evt("transcript_cache", outcome=CACHE_STATUS_MISS, cache_url=mask_url_for_logging(url))
        return CacheReadOutcome(CACHE_STATUS_MISS)
    if entry.expired:
        evt("transcript_cache", outcome=CACHE_STATUS_EXPIRED, cache_url=mask_url_for_logging(url))
        return CacheReadOutcome(CACHE_STATUS_EXPIRED, entry)

    evt("transcript_cache", outcome=CACHE_STATUS_HIT, cache_url=mask_url_for_logging(url), source=entry.source)
    resolution = TranscriptResolution(
        text=entry.content,
        source=entry.source,
        attempted_providers=(),
        metadata=entry.metadata,
        notes=None,
        cache_status=CACHE_STATUS_HIT,
    )
    return CacheReadOutcome(CACHE_STATUS_HIT, entry, resolution)


def write_transcript_cache(store: Optional[TranscriptStore], url: str, text: Optional[str],
                           source: Optional[str], metadata: Optional[Dict[str, Any]], ttl_ms: int,
                           youtube_mode: str = "auto", timestamps: bool = False,
                           file_mtime: Optional[float] = None, cache_mode: str = "default") -> bool:
    """Store a non-empty transcript. Store errors are logged, never raised."""
    if store is None or cache_mode == "bypass":
        return False
    if not text or not text.strip() or not source:
        return False

    key = build_transcript_cache_key(url, youtube_mode, timestamps, file_mtime)
    try:
        store.set(key=key, url=url, file_mtime=file_mtime, content=text, source=source,
                  metadata=metadata, ttl_ms=ttl_ms)
    except (sqlite3.Error, OSError, ValueError, TypeError) as e:
        logger.warning(f"Transcript cache write failed: {e}")
        return False
    return True


class SqliteTranscriptStore:
    """SQLite-backed TranscriptStore. Expired rows are returned flagged, not deleted."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, exist_ok=True)
        self._init_database()

    def _init_database(self):
        with self._get_db_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS transcript_cache (
                    cache_key TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    file_mtime REAL,
                    content TEXT NOT NULL,
                    source TEXT NOT NULL,
                    metadata TEXT,
                    created_at_ms INTEGER NOT NULL,
                    expires_at_ms INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_expires_at
                ON transcript_cache(expires_at_ms)
            """)

    @contextmanager
    def _get_db_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, *, key: str, url: str, file_mtime: Optional[float]) -> Optional[CacheEntry]:
        with self._get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM transcript_cache WHERE cache_key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        metadata = json.loads(row["metadata"]) if row["metadata"] else None
        return CacheEntry(
            content=row["content"],
            source=row["source"],
            expired=row["expires_at_ms"] <= int(time.time() * 1000),
            metadata=metadata,
        )

    def set(self, *, key: str, url: str, file_mtime: Optional[float], content: str, source: str,
            metadata: Optional[Dict[str, Any]], ttl_ms: int) -> None:
        now_ms = int(time.time() * 1000)
        with self._get_db_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO transcript_cache
                (cache_key, url, file_mtime, content, source, metadata, created_at_ms, expires_at_ms)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (key, url, file_mtime, content, source,
                  json.dumps(metadata) if metadata is not None else None, now_ms, now_ms + ttl_ms))
        logger.info(f"Cached transcript (length: {len(content)}, source: {source})")

    def cleanup_expired(self) -> int:
        """Remove expired rows and return how many were removed."""
        with self._get_db_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM transcript_cache WHERE expires_at_ms <= ?", (int(time.time() * 1000),)
            )
            removed = cursor.rowcount
        if removed:
            logger.info(f"Cleaned up {removed} expired cache entries")
        return removed
