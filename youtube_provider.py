"""
YouTube transcript provider.

Steps by mode:
    auto     youtubei -> captionTracks -> apify -> yt-dlp (when runnable)
    web      youtubei -> captionTracks
    no-auto  youtubei -> captionTracks, no automatic fallback beyond the page
    apify    apify
    yt-dlp   yt-dlp; missing prerequisites raise ConfigurationError up front
             and a transcription failure is raised instead of noted

Every step actually run is appended to ``attempted_providers``.
"""

import re
from typing import List

from apify_service import fetch_transcript_with_apify
from logging_setup import get_logger
from log_events import StageTimer
from progress_events import TranscriptStart, emit_progress
from timedtext_service import fetch_caption_track_segments
from transcript_errors import ConfigurationError
from transcript_types import (
    ProviderContext, ProviderFetchOptions, ProviderResult, TranscriptProvider, format_segments,
    SOURCE_APIFY, SOURCE_CAPTION_TRACKS, SOURCE_UNAVAILABLE, SOURCE_YOUTUBEI, SOURCE_YT_DLP,
)
from transcript_utils import extract_youtube_video_id, normalize_transcript_text
from youtubei_service import extract_youtubei_transcript_config, fetch_youtubei_segments
from ytdlp_service import transcribe_with_ytdlp

logger = get_logger(__name__)

YOUTUBE_URL_PATTERN = re.compile(r'youtube\.com|youtu\.be', re.IGNORECASE)

WEB_MODES = ("auto", "web", "no-auto")
APIFY_MODES = ("auto", "apify")


def can_handle(context: ProviderContext) -> bool:
    return bool(YOUTUBE_URL_PATTERN.search(context.url))


def _render(segments, options: ProviderFetchOptions) -> str:
    return normalize_transcript_text(format_segments(segments, options.transcript_timestamps))


def fetch_transcript(context: ProviderContext, options: ProviderFetchOptions) -> ProviderResult:
    attempted: List[str] = []
    notes: List[str] = []
    url = context.url
    html = context.html
    mode = options.youtube_mode
    has_backend = options.has_transcription_backend()
    can_run_ytdlp = bool(options.yt_dlp_path and has_backend)

    def push_hint(hint: str) -> None:
        emit_progress(options.on_progress, TranscriptStart(url, "youtube", hint))

    if mode == "yt-dlp" and not options.yt_dlp_path:
        raise ConfigurationError("Missing YT_DLP_PATH for --youtube yt-dlp")
    if mode == "yt-dlp" and not has_backend:
        raise ConfigurationError(
            "Missing transcription provider for --youtube yt-dlp "
            "(install whisper-cpp or set OPENAI_API_KEY/FAL_KEY)"
        )

    video_id = (context.resource_key or "").strip() or extract_youtube_video_id(url)
    if not video_id:
        return ProviderResult.empty(attempted)

    if mode in WEB_MODES:
        if html:
            push_hint("YouTube: checking captions (youtubei)")
            config = extract_youtubei_transcript_config(html)
            if config:
                attempted.append(SOURCE_YOUTUBEI)
                with StageTimer("youtubei", provider="youtube") as timer:
                    segments = fetch_youtubei_segments(options.session, config, url, options.http_timeout)
                    if not segments:
                        timer.mark_empty()
                if segments:
                    return ProviderResult.success(
                        _render(segments, options), SOURCE_YOUTUBEI, attempted,
                        metadata={"provider": SOURCE_YOUTUBEI},
                    )
                push_hint("YouTube: youtubei empty; checking caption tracks")
            else:
                push_hint("YouTube: youtubei unavailable; checking caption tracks")
        else:
            notes.append("Page HTML unavailable; skipped youtubei")

        attempted.append(SOURCE_CAPTION_TRACKS)
        with StageTimer("captionTracks", provider="youtube") as timer:
            segments = fetch_caption_track_segments(options.session, html, video_id, options.http_timeout)
            if not segments:
                timer.mark_empty()
        if segments:
            return ProviderResult.success(
                _render(segments, options), SOURCE_CAPTION_TRACKS, attempted,
                metadata={"provider": SOURCE_CAPTION_TRACKS}, notes=notes,
            )

    if mode in APIFY_MODES:
        if mode == "auto":
            push_hint("YouTube: captions missing; trying Apify")
        else:
            push_hint("YouTube: fetching transcript (Apify)")
        if options.apify_api_token:
            attempted.append(SOURCE_APIFY)
            with StageTimer("apify", provider="youtube") as timer:
                transcript = fetch_transcript_with_apify(options.apify_api_token, url, options.transcription_timeout)
                if not transcript:
                    timer.mark_empty()
            if transcript:
                return ProviderResult.success(
                    normalize_transcript_text(transcript), SOURCE_APIFY, attempted,
                    metadata={"provider": SOURCE_APIFY}, notes=notes,
                )
        else:
            notes.append("Apify skipped (APIFY_API_TOKEN not set)")

    if mode == "yt-dlp" or (mode == "auto" and can_run_ytdlp):
        if mode == "auto":
            push_hint("YouTube: captions unavailable; falling back to yt-dlp audio")
        else:
            push_hint("YouTube: downloading audio (yt-dlp)")
        attempted.append(SOURCE_YT_DLP)
        with StageTimer("yt-dlp", provider="youtube"):
            result = transcribe_with_ytdlp(options, url, progress_url=url, service="youtube")
        notes.extend(result.notes)
        if result.text:
            return ProviderResult.success(
                normalize_transcript_text(result.text), SOURCE_YT_DLP, attempted,
                metadata={"provider": SOURCE_YT_DLP, "transcriptionProvider": result.provider},
                notes=notes,
            )
        if mode == "yt-dlp" and result.error is not None:
            raise result.error

    attempted.append(SOURCE_UNAVAILABLE)
    return ProviderResult.empty(
        attempted,
        metadata={"provider": "youtube", "reason": "no_transcript_available"},
        notes=notes,
        source=SOURCE_UNAVAILABLE,
    )


PROVIDER = TranscriptProvider("youtube", can_handle, fetch_transcript)
