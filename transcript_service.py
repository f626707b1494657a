"""
Transcript service: the entry point that ties cache, page fetch and
provider dispatch together for one URL or local file.
"""

import os
import time
import uuid
from typing import Callable, Optional

import requests

from browser_cookie_spec import BrowserCookieSpec, resolve_ytdlp_cookie_spec
from capabilities import CapabilityService
from logging_setup import clear_request_ctx, get_logger, set_request_ctx
from log_events import StageTimer, evt, mask_url_for_logging, transcript_resolved
from podcast_provider import extract_apple_podcast_ids, extract_spotify_episode_id
from progress_events import (
    FetchHtmlDone, FetchHtmlProgress, FetchHtmlStart, ProgressSink, emit_progress,
)
from transcript_cache import (
    TranscriptStore, get_file_modification_time, read_transcript_cache, write_transcript_cache,
)
from transcript_config import TranscriptConfig, get_transcript_config
from transcript_dispatcher import dispatch_transcript
from transcript_errors import PROPAGATING_ERRORS, classify_error
from transcript_types import ProviderContext, ProviderFetchOptions, TranscriptResolution
from transcript_utils import (
    file_url_to_path, is_direct_media_url, is_file_url, normalize_transcript_text, path_to_file_url,
)

logger = get_logger(__name__)

_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)
HTML_CHUNK_SIZE = 16 * 1024
HTML_PROGRESS_STEP = 64 * 1024


def make_http_session() -> requests.Session:
    """Session used for page, feed and media requests. No automatic retries."""
    session = requests.Session()
    session.headers.update({
        "User-Agent": _CHROME_UA,
        "Accept-Language": "en-US,en;q=0.9",
    })
    return session


def build_fetch_options(config: TranscriptConfig, session, capabilities: CapabilityService,
                        on_progress: Optional[ProgressSink] = None,
                        resolve_twitter_cookies: Optional[Callable[[str], BrowserCookieSpec]] = None,
                        scrape_with_firecrawl: Optional[Callable[[str], Optional[str]]] = None) -> ProviderFetchOptions:
    if resolve_twitter_cookies is None:
        def resolve_twitter_cookies(url: str) -> BrowserCookieSpec:
            return resolve_ytdlp_cookie_spec(
                cookie_source=config.twitter_cookie_source,
                chrome_profile=config.twitter_chrome_profile,
                firefox_profile=config.twitter_firefox_profile,
            )

    return ProviderFetchOptions(
        session=session,
        capabilities=capabilities,
        openai_api_key=config.openai_api_key,
        fal_api_key=config.fal_api_key,
        apify_api_token=config.apify_api_token,
        yt_dlp_path=config.yt_dlp_path,
        ffmpeg_path=config.ffmpeg_path,
        ffprobe_path=config.ffprobe_path,
        youtube_mode=config.youtube_mode,
        transcript_timestamps=config.transcript_timestamps,
        resolve_twitter_cookies=resolve_twitter_cookies,
        scrape_with_firecrawl=scrape_with_firecrawl,
        on_progress=on_progress,
        http_timeout=config.http_timeout,
        transcription_timeout=config.transcription_timeout,
        subprocess_timeout=config.subprocess_timeout,
        max_remote_media_bytes=config.max_remote_media_bytes,
        max_upload_bytes=config.max_upload_bytes,
        chunk_seconds=config.chunk_seconds,
    )


def normalize_input_url(url: str) -> str:
    """Turn local paths (absolute, relative or ~) into file:// URLs; leave URLs alone."""
    value = url.strip()
    if "://" in value:
        return value
    expanded = os.path.expanduser(value)
    if os.path.isabs(expanded) or os.path.exists(expanded):
        return path_to_file_url(expanded)
    return value


def should_fetch_html(url: str) -> bool:
    """Page HTML is useless for local files, direct media and the podcast API paths."""
    if is_file_url(url) or not url.lower().startswith(("http://", "https://")):
        return False
    if is_direct_media_url(url):
        return False
    if extract_spotify_episode_id(url) or extract_apple_podcast_ids(url):
        return False
    return True


class TranscriptService:
    def __init__(self, config: Optional[TranscriptConfig] = None, store: Optional[TranscriptStore] = None,
                 session=None, capabilities: Optional[CapabilityService] = None,
                 scrape_with_firecrawl: Optional[Callable[[str], Optional[str]]] = None,
                 resolve_twitter_cookies: Optional[Callable[[str], BrowserCookieSpec]] = None):
        self.config = config or get_transcript_config()
        self.store = store
        self.session = session or make_http_session()
        self.capabilities = capabilities or CapabilityService(self.config)
        self.scrape_with_firecrawl = scrape_with_firecrawl
        self.resolve_twitter_cookies = resolve_twitter_cookies

        evt("transcript_service_init",
            youtube_mode=self.config.youtube_mode,
            cache="enabled" if store is not None and self.config.cache_mode != "bypass" else "disabled")

    def fetch_html(self, url: str, on_progress: Optional[ProgressSink] = None) -> Optional[str]:
        """
        Fetch page HTML with a byte cap. Returns None on any failure.

        Emits fetch-html-start, fetch-html-progress and fetch-html-done.
        """
        limit = self.config.max_html_bytes
        emit_progress(on_progress, FetchHtmlStart(url))
        try:
            with StageTimer("fetch_html", page_url=mask_url_for_logging(url)) as timer:
                with self.session.get(url, stream=True, timeout=self.config.http_timeout,
                                      headers={"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"}) as response:
                    if not response.ok:
                        timer.mark_empty(f"status={response.status_code}")
                        emit_progress(on_progress, FetchHtmlDone(url, 0, None))
                        return None

                    total = response.headers.get("content-length")
                    total_bytes = int(total) if total and total.isdigit() else None
                    chunks = []
                    downloaded = 0
                    next_report = HTML_PROGRESS_STEP
                    for chunk in response.iter_content(chunk_size=HTML_CHUNK_SIZE):
                        if not chunk:
                            continue
                        remaining = limit - downloaded
                        chunks.append(chunk[:remaining])
                        downloaded += min(len(chunk), remaining)
                        if downloaded >= next_report:
                            emit_progress(on_progress, FetchHtmlProgress(url, downloaded, total_bytes))
                            next_report = downloaded + HTML_PROGRESS_STEP
                        if downloaded >= limit:
                            evt("fetch_html_truncated", limit=limit)
                            break
                    # requests assumes latin-1 for text/* without a charset
                    content_type = (response.headers.get("content-type") or "").lower()
                    encoding = response.encoding if "charset=" in content_type and response.encoding else "utf-8"
        except requests.RequestException as e:
            evt("fetch_html_failed", fail_class=classify_error(e), error=str(e)[:200])
            emit_progress(on_progress, FetchHtmlDone(url, 0, None))
            return None

        emit_progress(on_progress, FetchHtmlDone(url, downloaded, total_bytes))
        try:
            return b"".join(chunks).decode(encoding, errors="replace")
        except LookupError:
            return b"".join(chunks).decode("utf-8", errors="replace")

    def resolve(self, url: str, html: Optional[str] = None, resource_key: Optional[str] = None,
                on_progress: Optional[ProgressSink] = None,
                file_mtime: Optional[float] = None) -> TranscriptResolution:
        """
        Resolve a transcript for ``url`` (a web URL, file:// URL or local path).

        Raises:
            ConfigurationError: an explicit mode is missing a prerequisite
            MediaTooLargeError: the media exceeds the size ceiling
        """
        config = self.config
        target = normalize_input_url(url)
        set_request_ctx(request_id=uuid.uuid4().hex[:12], url=mask_url_for_logging(target))
        start = time.time()

        try:
            if not is_file_url(target):
                file_mtime = None
            elif file_mtime is None:
                file_mtime = get_file_modification_time(file_url_to_path(target))

            cached = read_transcript_cache(
                self.store, target, config.youtube_mode, config.transcript_timestamps,
                file_mtime, config.cache_mode,
            )
            if cached.resolution is not None:
                transcript_resolved(target, "cache_hit", int((time.time() - start) * 1000),
                                    cached.resolution.source)
                return cached.resolution

            if html is None and should_fetch_html(target):
                html = self.fetch_html(target, on_progress)

            options = build_fetch_options(
                config, self.session, self.capabilities, on_progress,
                self.resolve_twitter_cookies, self.scrape_with_firecrawl,
            )
            result = dispatch_transcript(ProviderContext(target, html, resource_key), options)

            text = normalize_transcript_text(result.text) if result.text else ""
            source = result.source if text or result.text is None else None
            if text:
                write_transcript_cache(
                    self.store, target, text, source, result.metadata, config.cache_ttl_ms,
                    config.youtube_mode, config.transcript_timestamps, file_mtime, config.cache_mode,
                )

            transcript_resolved(
                target, "success" if text else "unavailable", int((time.time() - start) * 1000),
                source if text else None,
                attempted=",".join(result.attempted_providers) or "none",
            )
            return TranscriptResolution(
                text=text or None,
                source=source,
                attempted_providers=result.attempted_providers,
                metadata=result.metadata,
                notes=result.notes,
                cache_status=cached.status,
            )
        except PROPAGATING_ERRORS as e:
            transcript_resolved(target, "error", int((time.time() - start) * 1000),
                                fail_class=classify_error(e))
            raise
        finally:
            clear_request_ctx()
