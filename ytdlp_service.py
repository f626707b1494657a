"""
yt-dlp audio download followed by transcription.

The configured yt-dlp binary downloads the best audio stream into a temp
directory; the file then goes through the local-file transcription path.
Extra arguments (e.g. ``--cookies-from-browser chrome``) are passed through.
"""

import glob
import os
import tempfile
from typing import Optional, Sequence

from logging_setup import get_logger
from log_events import StageTimer, evt, mask_url_for_logging
from media_transcriber import transcribe_local_file
from progress_events import MediaDownloadDone, MediaDownloadStart, emit_progress
from subprocess_utils import run_command
from transcript_errors import TranscriptError, describe_error
from transcript_types import ProviderFetchOptions, TranscriptionResult

logger = get_logger(__name__)


class YtDlpError(TranscriptError):
    """yt-dlp exited unsuccessfully or produced no audio file."""

    def __init__(self, message: str, fail_class: str = "unknown"):
        super().__init__(message)
        self.fail_class = fail_class


def _classify_ytdlp_error(error_text: str) -> str:
    """Classify yt-dlp stderr into fail_class categories."""
    error_str = (error_text or "").lower()

    if any(pattern in error_str for pattern in [
        "video unavailable",
        "this video is unavailable",
        "private video",
        "has been removed",
        "deleted",
    ]):
        return "video_unavailable"

    if any(pattern in error_str for pattern in [
        "not available in your country",
        "blocked in your country",
    ]):
        return "geo_blocked"

    if any(pattern in error_str for pattern in [
        "sign in to confirm your age",
        "age-restricted",
        "login required",
        "authentication",
    ]):
        return "auth_required"

    if any(pattern in error_str for pattern in [
        "unable to download",
        "connection",
        "timed out",
        "failed to establish",
    ]):
        return "network_error"

    if any(pattern in error_str for pattern in [
        "unsupported url",
        "unable to extract",
        "no video formats found",
        "requested format not available",
    ]):
        return "extraction_error"

    return "unknown"


def _stderr_tail(stderr: Optional[bytes], max_chars: int = 300) -> str:
    if not stderr:
        return ""
    lines = [line for line in stderr.decode("utf-8", errors="replace").strip().splitlines() if line.strip()]
    return "\n".join(lines[-2:])[-max_chars:]


def download_audio(yt_dlp_path: str, url: str, out_dir: str, timeout: float,
                   extra_args: Sequence[str] = ()) -> str:
    """
    Download the best audio stream into ``out_dir``; returns the file path.

    Raises:
        YtDlpError: non-zero exit or no output file
        SubprocessTimeoutError: download exceeded ``timeout``
    """
    cmd = [
        yt_dlp_path,
        "-f", "bestaudio/best",
        "--no-playlist",
        "--no-progress",
        "--no-warnings",
        "-o", os.path.join(out_dir, "audio.%(ext)s"),
        *extra_args,
        url,
    ]
    result = run_command(cmd, timeout=timeout)
    if result.returncode != 0:
        tail = _stderr_tail(result.stderr)
        fail_class = _classify_ytdlp_error(tail)
        evt("ytdlp_failed", returncode=result.returncode, fail_class=fail_class, detail=tail[:200])
        raise YtDlpError(f"yt-dlp exited with {result.returncode}: {tail or 'no output'}", fail_class)

    files = [p for p in glob.glob(os.path.join(out_dir, "audio.*")) if not p.endswith(".part")]
    if not files:
        raise YtDlpError("yt-dlp produced no audio file", "no_output")
    return max(files, key=os.path.getsize)


def transcribe_with_ytdlp(options: ProviderFetchOptions, url: str, extra_args: Sequence[str] = (),
                          progress_url: Optional[str] = None, service: str = "yt-dlp") -> TranscriptionResult:
    """
    Download audio with yt-dlp and transcribe it.

    Download failures come back as ``TranscriptionResult.error`` with a note;
    MediaTooLargeError from the transcription step propagates.
    """
    progress_url = progress_url or url
    if not options.yt_dlp_path:
        return TranscriptionResult(None, None, YtDlpError("yt-dlp is not configured", "config_error"))

    with tempfile.TemporaryDirectory(prefix="yt-dlp-") as temp_dir:
        emit_progress(options.on_progress, MediaDownloadStart(progress_url, service, url, None))
        try:
            with StageTimer("ytdlp_download", media_url=mask_url_for_logging(url)):
                path = download_audio(options.yt_dlp_path, url, temp_dir,
                                      options.transcription_timeout, extra_args)
        except (TranscriptError, OSError) as e:
            return TranscriptionResult(None, None, e, [f"yt-dlp download failed: {describe_error(e)}"])

        size = os.path.getsize(path)
        emit_progress(options.on_progress, MediaDownloadDone(progress_url, service, size, size))
        return transcribe_local_file(options, path, progress_url=progress_url, service=service)
