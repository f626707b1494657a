"""
Catch-all transcript provider.

Handles local files, direct media links, pages embedding a YouTube player
and X/Twitter status posts (via yt-dlp with browser cookies). Everything
else is reported as ``not_implemented``.
"""

import os
import tempfile
from typing import Any, Dict, List

import requests

import youtube_provider
from cookie_utils import write_netscape_cookie_file
from logging_setup import get_logger
from log_events import StageTimer, evt
from media_transcriber import transcribe_local_file, transcribe_media_url
from transcript_errors import PROPAGATING_ERRORS, TranscriptError, describe_error
from transcript_types import (
    ProviderContext, ProviderFetchOptions, ProviderResult, TranscriptProvider, TranscriptionResult,
    SOURCE_WHISPER, SOURCE_YT_DLP,
)
from transcript_utils import (
    extract_embedded_youtube_url, file_url_to_path, is_direct_media_url, is_file_url,
    is_twitter_status_url, normalize_transcript_text,
)
from ytdlp_service import transcribe_with_ytdlp

logger = get_logger(__name__)

MISSING_YT_DLP_NOTE = "yt-dlp is not configured (set YT_DLP_PATH or ensure yt-dlp is on PATH)"
MISSING_KEYS_NOTE = "Missing transcription provider (install whisper-cpp or set OPENAI_API_KEY/FAL_KEY)"


def can_handle(context: ProviderContext) -> bool:
    return True


def _local_path(url: str):
    if is_file_url(url):
        return file_url_to_path(url)
    if os.path.isabs(url):
        return url
    return None


def _whisper_result(result: TranscriptionResult, attempted: List[str], metadata: Dict[str, Any]) -> ProviderResult:
    notes = list(result.notes)
    metadata = {**metadata, "transcriptionProvider": result.provider}
    if result.text:
        return ProviderResult.success(
            normalize_transcript_text(result.text), SOURCE_WHISPER, attempted, metadata=metadata, notes=notes,
        )
    if result.error is not None:
        notes.append(describe_error(result.error))
    return ProviderResult.empty(attempted, metadata={**metadata, "reason": "transcription_failed"}, notes=notes)


def _fetch_local_file(context: ProviderContext, options: ProviderFetchOptions, path: str) -> ProviderResult:
    attempted = [SOURCE_WHISPER]
    metadata = {"provider": "generic", "kind": "local_file", "path": path}
    if not options.has_transcription_backend():
        return ProviderResult.empty(
            [], metadata={**metadata, "reason": "missing_transcription_keys"}, notes=[MISSING_KEYS_NOTE],
        )
    try:
        with StageTimer("local_file", provider="generic"):
            result = transcribe_local_file(options, path, progress_url=context.url, service="file")
    except PROPAGATING_ERRORS:
        raise
    except (TranscriptError, OSError) as e:
        return ProviderResult.empty(
            attempted, metadata={**metadata, "reason": "transcription_failed"},
            notes=[f"Local file transcription failed: {describe_error(e)}"],
        )
    return _whisper_result(result, attempted, metadata)


def _fetch_direct_media(context: ProviderContext, options: ProviderFetchOptions) -> ProviderResult:
    attempted = [SOURCE_WHISPER]
    metadata = {"provider": "generic", "kind": "direct_media", "mediaUrl": context.url}
    if not options.has_transcription_backend():
        return ProviderResult.empty(
            [], metadata={**metadata, "reason": "missing_transcription_keys"}, notes=[MISSING_KEYS_NOTE],
        )
    try:
        with StageTimer("direct_media", provider="generic"):
            result = transcribe_media_url(options, context.url, progress_url=context.url, service="generic")
    except PROPAGATING_ERRORS:
        raise
    except (TranscriptError, requests.RequestException, OSError) as e:
        return ProviderResult.empty(
            attempted, metadata={**metadata, "reason": "transcription_failed"},
            notes=[f"Media download failed: {describe_error(e)}"],
        )
    return _whisper_result(result, attempted, metadata)


def _fetch_embedded_youtube(context: ProviderContext, options: ProviderFetchOptions, embed_url: str) -> ProviderResult:
    evt("generic_embedded_youtube", embed_url=embed_url)
    result = youtube_provider.PROVIDER.fetch_transcript(ProviderContext(url=embed_url), options)
    metadata = {**(result.metadata or {}), "embeddedVideoUrl": embed_url}
    return ProviderResult(
        text=result.text,
        source=result.source,
        attempted_providers=result.attempted_providers,
        metadata=metadata,
        notes=result.notes,
    )


def _ytdlp_cookie_args(resolved, cookie_dir: str) -> List[str]:
    cookies = getattr(resolved, "cookies", None)
    if cookies is not None and cookies.complete:
        path = write_netscape_cookie_file(cookies, os.path.join(cookie_dir, "cookies.txt"))
        return ["--cookies", path]
    if resolved is not None and resolved.cookies_from_browser:
        return ["--cookies-from-browser", resolved.cookies_from_browser]
    return []


def _fetch_twitter(context: ProviderContext, options: ProviderFetchOptions) -> ProviderResult:
    attempted: List[str] = []
    notes: List[str] = []

    if not options.yt_dlp_path:
        return ProviderResult.empty(
            attempted, metadata={"provider": "generic", "kind": "twitter", "reason": "missing_yt_dlp"},
            notes=[MISSING_YT_DLP_NOTE],
        )
    if not options.has_transcription_backend():
        return ProviderResult.empty(
            attempted, metadata={"provider": "generic", "kind": "twitter", "reason": "missing_transcription_keys"},
            notes=[MISSING_KEYS_NOTE],
        )

    attempted.append(SOURCE_YT_DLP)

    resolved = options.resolve_twitter_cookies(context.url) if options.resolve_twitter_cookies else None
    cookie_source = getattr(resolved, "source", None)
    if resolved is not None:
        notes.extend(resolved.warnings or [])

    with tempfile.TemporaryDirectory(prefix="x-cookies-") as cookie_dir:
        extra_args = _ytdlp_cookie_args(resolved, cookie_dir)
        if extra_args and cookie_source:
            notes.append(f"Using X cookies from {cookie_source}")

        with StageTimer("yt-dlp", provider="generic", cookie_source=cookie_source):
            result = transcribe_with_ytdlp(options, context.url, extra_args=extra_args,
                                           progress_url=context.url, service="generic")
    notes.extend(result.notes)

    if result.text:
        return ProviderResult.success(
            normalize_transcript_text(result.text), SOURCE_YT_DLP, attempted,
            metadata={
                "provider": "generic",
                "kind": "twitter",
                "transcriptionProvider": result.provider,
                "cookieSource": cookie_source,
            },
            notes=notes,
        )

    if result.error is not None:
        notes.append(f"yt-dlp transcription failed: {describe_error(result.error)}")
    return ProviderResult.empty(
        attempted,
        metadata={
            "provider": "generic",
            "kind": "twitter",
            "reason": "yt_dlp_failed" if result.error is not None else "no_transcript",
            "transcriptionProvider": result.provider,
        },
        notes=notes,
    )


def fetch_transcript(context: ProviderContext, options: ProviderFetchOptions) -> ProviderResult:
    local_path = _local_path(context.url)
    if local_path:
        return _fetch_local_file(context, options, local_path)

    if is_twitter_status_url(context.url):
        return _fetch_twitter(context, options)

    if is_direct_media_url(context.url):
        return _fetch_direct_media(context, options)

    embed_url = extract_embedded_youtube_url(context.html) if context.html else None
    if embed_url:
        return _fetch_embedded_youtube(context, options, embed_url)

    return ProviderResult.empty([], metadata={"provider": "generic", "reason": "not_implemented"})


PROVIDER = TranscriptProvider("generic", can_handle, fetch_transcript)
