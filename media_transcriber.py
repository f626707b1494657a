"""
Media transcription engine: probe, size-based strategy, download, transcribe.

Strategy for a remote media URL:
1. HEAD probe for content length, media type and filename (no body yet)
2. Content length above the hard ceiling -> MediaTooLargeError, nothing downloaded
3. ffmpeg unavailable -> download only the first upload-cap bytes and transcribe
   that clip, noting the result is partial
4. Fits under the upload cap -> download into memory, transcribe once; a body
   longer than its declared length is cut at the cap and noted
5. Otherwise stream to a temp file, probe the exact duration, transcribe in chunks

Every temp file lives in a TemporaryDirectory and is removed on success or failure.
"""

import mimetypes
import os
import tempfile
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import unquote, urlparse

import requests

from ffmpeg_service import FFmpegService
from logging_setup import get_logger
from log_events import evt, mask_url_for_logging
from progress_events import (
    MediaDownloadDone, MediaDownloadProgress, MediaDownloadStart,
    WhisperProgress, WhisperStart, emit_progress,
)
from transcript_errors import DownloadError, MediaTooLargeError, TranscriptError, TranscriptionError
from transcript_types import ProviderFetchOptions, TranscriptionResult
from transcript_utils import format_bytes
from whisper_service import WhisperTranscriber

logger = get_logger(__name__)

CAPPED_PROGRESS_STEP = 64 * 1024
FILE_PROGRESS_STEP = 128 * 1024
STREAM_CHUNK_SIZE = 16 * 1024

MEDIA_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

ProgressCallback = Callable[[int, Optional[int]], None]


def filename_from_url(url: str) -> Optional[str]:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    segment = unquote(path.rstrip("/").split("/")[-1]) if path else ""
    return segment or None


def parse_content_length(value) -> Optional[int]:
    try:
        length = int(float(value))
    except (TypeError, ValueError):
        return None
    return length if length > 0 else None


def normalize_header_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    media_type = value.split(";")[0].strip().lower()
    return media_type or None


@dataclass
class RemoteMediaProbe:
    content_length: Optional[int]
    media_type: Optional[str]
    filename: Optional[str]


def probe_remote_media(session, url: str, timeout: float = 30) -> RemoteMediaProbe:
    """HEAD request for size/type. Failures return an empty probe (filename from the URL)."""
    filename = filename_from_url(url)
    try:
        response = session.head(url, allow_redirects=True, timeout=timeout,
                                headers={"User-Agent": MEDIA_USER_AGENT})
    except requests.RequestException as e:
        logger.debug(f"HEAD probe failed for {mask_url_for_logging(url)}: {e}")
        return RemoteMediaProbe(None, None, filename)

    if response.status_code >= 400:
        return RemoteMediaProbe(None, None, filename)

    final_url = getattr(response, "url", None) or url
    if not isinstance(final_url, str):
        final_url = url
    return RemoteMediaProbe(
        content_length=parse_content_length(response.headers.get("content-length")),
        media_type=normalize_header_type(response.headers.get("content-type")),
        filename=filename_from_url(final_url) or filename,
    )


def _check_status(response, url: str) -> None:
    if response.status_code not in (200, 206):
        raise DownloadError(
            f"Download failed ({response.status_code}) for {mask_url_for_logging(url)}",
            response.status_code,
        )


def download_capped_bytes(session, url: str, max_bytes: int, timeout: float = 30,
                          on_progress: Optional[ProgressCallback] = None) -> bytes:
    """
    Download at most ``max_bytes`` into memory.

    Sends a Range header and also stops reading at the cap, since servers may
    ignore Range.
    """
    headers = {"Range": f"bytes=0-{max_bytes - 1}", "User-Agent": MEDIA_USER_AGENT}
    buffer = bytearray()
    last_reported = 0

    with session.get(url, headers=headers, stream=True, timeout=timeout) as response:
        _check_status(response, url)
        total = parse_content_length(response.headers.get("content-length"))
        if total is not None:
            total = min(total, max_bytes)

        for chunk in response.iter_content(chunk_size=STREAM_CHUNK_SIZE):
            if not chunk:
                continue
            remaining = max_bytes - len(buffer)
            buffer.extend(chunk[:remaining])
            if on_progress and len(buffer) - last_reported >= CAPPED_PROGRESS_STEP:
                last_reported = len(buffer)
                on_progress(len(buffer), total)
            if len(buffer) >= max_bytes:
                break

    if on_progress:
        on_progress(len(buffer), total)
    return bytes(buffer)


def download_to_file(session, url: str, path: str, max_bytes: int, timeout: float = 30,
                     on_progress: Optional[ProgressCallback] = None) -> int:
    """
    Stream a download to ``path``.

    Aborts with MediaTooLargeError once ``max_bytes`` is exceeded, whatever the
    server advertised. Returns the byte count written.
    """
    written = 0
    last_reported = 0

    with session.get(url, headers={"User-Agent": MEDIA_USER_AGENT}, stream=True, timeout=timeout) as response:
        _check_status(response, url)
        total = parse_content_length(response.headers.get("content-length"))

        with open(path, "wb") as f:
            for chunk in response.iter_content(chunk_size=STREAM_CHUNK_SIZE):
                if not chunk:
                    continue
                written += len(chunk)
                if written > max_bytes:
                    raise MediaTooLargeError(
                        f"Remote media too large (over {format_bytes(max_bytes)}). "
                        f"Limit is {format_bytes(max_bytes)}.",
                        written, max_bytes,
                    )
                f.write(chunk)
                if on_progress and written - last_reported >= FILE_PROGRESS_STEP:
                    last_reported = written
                    on_progress(written, total)

    if on_progress:
        on_progress(written, total)
    return written


def build_whisper_transcriber(options: ProviderFetchOptions) -> WhisperTranscriber:
    capabilities = options.capabilities
    ffmpeg = None
    if capabilities.ffmpeg_available():
        ffmpeg = FFmpegService(options.ffmpeg_path, options.ffprobe_path, options.transcription_timeout)
    return WhisperTranscriber(
        capabilities,
        openai_api_key=options.openai_api_key,
        fal_api_key=options.fal_api_key,
        ffmpeg=ffmpeg,
        timeout=options.transcription_timeout,
        max_upload_bytes=options.max_upload_bytes,
        chunk_seconds=options.chunk_seconds,
    )


def _probe_duration(options: ProviderFetchOptions, path: str, hint: Optional[float]) -> Optional[float]:
    if hint is not None and hint > 0:
        return float(hint)
    if not options.capabilities.ffprobe_available():
        return None
    ffmpeg = FFmpegService(options.ffmpeg_path, options.ffprobe_path, options.subprocess_timeout)
    try:
        return ffmpeg.probe_duration_seconds(path)
    except (TranscriptError, OSError) as e:
        logger.warning(f"Duration probe failed: {e}")
        return None


class _ProgressReporter:
    """Turns engine callbacks into progress events for one media item."""

    def __init__(self, options: ProviderFetchOptions, progress_url: str, service: str):
        self.options = options
        self.progress_url = progress_url
        self.service = service

    def download_start(self, media_url: str, total: Optional[int]) -> None:
        emit_progress(self.options.on_progress,
                      MediaDownloadStart(self.progress_url, self.service, media_url, total))

    def download_progress(self, downloaded: int, total: Optional[int]) -> None:
        emit_progress(self.options.on_progress,
                      MediaDownloadProgress(self.progress_url, self.service, downloaded, total))

    def download_done(self, downloaded: int, total: Optional[int]) -> None:
        emit_progress(self.options.on_progress,
                      MediaDownloadDone(self.progress_url, self.service, downloaded, total))

    def whisper_start(self, duration: Optional[float], parts: Optional[int]) -> None:
        capabilities = self.options.capabilities
        emit_progress(self.options.on_progress, WhisperStart(
            self.progress_url, self.service,
            capabilities.transcription_provider_hint(self.options.openai_api_key, self.options.fal_api_key),
            capabilities.transcription_model_id(self.options.openai_api_key, self.options.fal_api_key),
            duration, parts,
        ))

    def whisper_progress(self, processed: Optional[float], total: Optional[float],
                         part_index: Optional[int], parts: Optional[int]) -> None:
        emit_progress(self.options.on_progress, WhisperProgress(
            self.progress_url, self.service, processed, total, part_index, parts,
        ))


def _transcribe_clip(transcriber: WhisperTranscriber, reporter: _ProgressReporter, data: bytes,
                     filename: str, media_type: Optional[str], duration: Optional[float],
                     notes: List[str]) -> TranscriptionResult:
    reporter.whisper_start(duration, 1)
    result = transcriber.transcribe_bytes(data, filename, media_type)
    if result.text:
        reporter.whisper_progress(duration, duration, 1, 1)
    return TranscriptionResult(result.text, result.provider, result.error, notes + result.notes)


def _transcribe_path(options: ProviderFetchOptions, transcriber: WhisperTranscriber,
                     reporter: _ProgressReporter, path: str, media_type: Optional[str],
                     duration_hint: Optional[float], notes: List[str]) -> TranscriptionResult:
    duration = _probe_duration(options, path, duration_hint)
    result = transcriber.transcribe_file(
        path, media_type, duration,
        on_start=lambda parts: reporter.whisper_start(duration, parts),
        on_part=reporter.whisper_progress,
    )
    return TranscriptionResult(result.text, result.provider, result.error, notes + result.notes)


def _missing_backend_result() -> TranscriptionResult:
    return TranscriptionResult(
        None, None,
        TranscriptionError("Missing transcription provider (install whisper-cpp or set OPENAI_API_KEY/FAL_KEY)"),
    )


def transcribe_media_url(options: ProviderFetchOptions, url: str, filename_hint: Optional[str] = None,
                         duration_seconds_hint: Optional[float] = None, progress_url: Optional[str] = None,
                         service: str = "media") -> TranscriptionResult:
    """
    Download and transcribe a remote media file.

    Raises:
        MediaTooLargeError: advertised or streamed size exceeds the ceiling
        DownloadError / requests.RequestException: the media download failed
    """
    if not options.has_transcription_backend():
        return _missing_backend_result()

    progress_url = progress_url or url
    probe = probe_remote_media(options.session, url, options.http_timeout)
    limit = options.max_remote_media_bytes
    if probe.content_length is not None and probe.content_length > limit:
        evt("media_too_large", media_url=mask_url_for_logging(url), size_bytes=probe.content_length, limit=limit)
        raise MediaTooLargeError(
            f"Remote media too large ({format_bytes(probe.content_length)}). Limit is {format_bytes(limit)}.",
            probe.content_length, limit,
        )

    filename = filename_hint or probe.filename or "media"
    media_type = probe.media_type or mimetypes.guess_type(filename)[0]
    transcriber = build_whisper_transcriber(options)
    reporter = _ProgressReporter(options, progress_url, service)
    notes: List[str] = []
    max_upload = options.max_upload_bytes

    evt("media_transcribe_start", media_url=mask_url_for_logging(url), size_bytes=probe.content_length,
        media_type=media_type, ffmpeg=options.capabilities.ffmpeg_available())
    reporter.download_start(url, probe.content_length)

    if not options.capabilities.ffmpeg_available():
        data = download_capped_bytes(options.session, url, max_upload, options.http_timeout,
                                     reporter.download_progress)
        reporter.download_done(len(data), probe.content_length)
        if probe.content_length is not None:
            truncated = probe.content_length > len(data)
        else:
            truncated = len(data) >= max_upload
        if truncated:
            notes.append(f"Transcribed first {format_bytes(len(data))} only (ffmpeg not available)")
        return _transcribe_clip(transcriber, reporter, data, filename, media_type, duration_seconds_hint, notes)

    if probe.content_length is not None and probe.content_length <= max_upload:
        # One byte past the cap shows whether the body outgrew its declared length
        data = download_capped_bytes(options.session, url, max_upload + 1, options.http_timeout,
                                     reporter.download_progress)
        if len(data) > max_upload:
            data = data[:max_upload]
            evt("media_body_truncated", media_url=mask_url_for_logging(url),
                declared_bytes=probe.content_length, limit=max_upload)
            notes.append(f"Transcribed first {format_bytes(len(data))} only "
                         f"(body exceeded its declared {format_bytes(probe.content_length)})")
        reporter.download_done(len(data), probe.content_length)
        return _transcribe_clip(transcriber, reporter, data, filename, media_type, duration_seconds_hint, notes)

    with tempfile.TemporaryDirectory(prefix="media-transcribe-") as temp_dir:
        suffix = os.path.splitext(filename)[1] or ".bin"
        path = os.path.join(temp_dir, f"media{suffix}")
        written = download_to_file(options.session, url, path, limit, options.http_timeout,
                                   reporter.download_progress)
        reporter.download_done(written, probe.content_length)
        return _transcribe_path(options, transcriber, reporter, path, media_type, duration_seconds_hint, notes)


def transcribe_local_file(options: ProviderFetchOptions, path: str, progress_url: Optional[str] = None,
                          service: str = "file", duration_seconds_hint: Optional[float] = None) -> TranscriptionResult:
    """
    Transcribe a file already on disk with the same size strategy, minus the download.

    Raises:
        MediaTooLargeError: file exceeds the ceiling
        OSError: the file cannot be read
    """
    if not options.has_transcription_backend():
        return _missing_backend_result()

    size = os.stat(path).st_size
    limit = options.max_remote_media_bytes
    if size > limit:
        raise MediaTooLargeError(
            f"Media file too large ({format_bytes(size)}). Limit is {format_bytes(limit)}.", size, limit,
        )

    filename = os.path.basename(path)
    media_type = mimetypes.guess_type(filename)[0]
    transcriber = build_whisper_transcriber(options)
    reporter = _ProgressReporter(options, progress_url or path, service)
    notes: List[str] = []

    if not options.capabilities.ffmpeg_available() and size > options.max_upload_bytes:
        with open(path, "rb") as f:
            data = f.read(options.max_upload_bytes)
        notes.append(f"Transcribed first {format_bytes(len(data))} only (ffmpeg not available)")
        return _transcribe_clip(transcriber, reporter, data, filename, media_type, duration_seconds_hint, notes)

    return _transcribe_path(options, transcriber, reporter, path, media_type, duration_seconds_hint, notes)
