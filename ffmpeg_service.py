"""
FFmpeg/ffprobe helpers for the media transcription engine.

This module provides:
- Exact duration probing via ffprobe (JSON output)
- Splitting long audio into fixed-length mono 16kHz mp3 segments
- WAV conversion (mono 16kHz PCM) for whisper.cpp
- Stderr capture and masking for diagnostics

Every call runs with an explicit timeout; the child is killed when it expires.
"""

import glob
import json
import os
import re
import time
from typing import List, Optional

from logging_setup import get_logger
from log_events import evt
from subprocess_utils import run_command
from transcript_errors import TranscriptError

logger = get_logger(__name__)

FFPROBE_TIMEOUT = 30
SEGMENT_PATTERN = "part-%03d.mp3"


class FFmpegError(TranscriptError):
    """ffmpeg or ffprobe exited unsuccessfully."""

    def __init__(self, message: str, returncode: int, classification: str):
        super().__init__(message)
        self.returncode = returncode
        self.classification = classification


def _extract_stderr_lines(stderr_bytes: Optional[bytes], max_lines: int = 2) -> str:
    """First N stderr lines with URLs masked."""
    if not stderr_bytes:
        return ""
    stderr_text = stderr_bytes.decode('utf-8', errors='replace')
    lines = stderr_text.strip().split('\n')[:max_lines]
    return '\n'.join(re.sub(r'https?://[^\s]+', '***MASKED_URL***', line) for line in lines)


def _classify_ffmpeg_error(stderr_text: str, returncode: int) -> str:
    if not stderr_text:
        return f"exit_code_{returncode}"

    stderr_lower = stderr_text.lower()

    if any(pattern in stderr_lower for pattern in [
        'invalid data found', 'could not find codec', 'unknown format',
        'invalid argument', 'not supported', 'does not contain any stream'
    ]):
        return "format_error"

    if any(pattern in stderr_lower for pattern in [
        'premature eof', 'end of file', 'truncated', 'incomplete'
    ]):
        return "eof_error"

    if 'no such file' in stderr_lower:
        return "missing_input"

    return f"ffmpeg_error_{returncode}"


class FFmpegService:
    """
    Thin wrapper over the ffmpeg/ffprobe binaries.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe", timeout: float = 600):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def _run(self, cmd: List[str], label: str, timeout: float):
        start_time = time.time()
        result = run_command(cmd, timeout=timeout)
        duration_ms = int((time.time() - start_time) * 1000)

        if result.returncode != 0:
            stderr_head = _extract_stderr_lines(result.stderr)
            classification = _classify_ffmpeg_error(stderr_head, result.returncode)
            evt("ffmpeg_result", command=label, returncode=result.returncode, dur_ms=duration_ms,
                stderr_head=stderr_head, error_classification=classification)
            raise FFmpegError(
                f"{label} failed ({classification}): {stderr_head or 'no output'}",
                result.returncode, classification,
            )

        evt("ffmpeg_result", command=label, returncode=0, dur_ms=duration_ms)
        return result

    def probe_duration_seconds(self, path: str) -> Optional[float]:
        """
        Exact media duration from the container header.

        Returns None when ffprobe reports no usable duration.
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_entries", "format=duration",
            path,
        ]
        result = self._run(cmd, "ffprobe", timeout=min(self.timeout, FFPROBE_TIMEOUT))
        try:
            probe_data = json.loads(result.stdout.decode('utf-8'))
            duration = float(probe_data.get('format', {}).get('duration', 0))
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError, TypeError) as e:
            logger.warning(f"ffprobe output unparseable: {e}")
            return None
        return duration if duration > 0 else None

    def segment_audio(self, path: str, out_dir: str, segment_seconds: int) -> List[str]:
        """
        Split audio into consecutive segments of ``segment_seconds``.

        Segments are mono, 16kHz, 64kbit mp3 so each stays well under upload
        limits. Returns segment paths in playback order.
        """
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-loglevel", "error",
            "-i", path,
            "-vn",
            "-ac", "1",
            "-ar", "16000",
            "-b:a", "64k",
            "-f", "segment",
            "-segment_time", str(int(segment_seconds)),
            "-reset_timestamps", "1",
            os.path.join(out_dir, SEGMENT_PATTERN),
        ]
        self._run(cmd, "ffmpeg_segment", timeout=self.timeout)
        segments = sorted(glob.glob(os.path.join(out_dir, "part-*.mp3")))
        if not segments:
            raise FFmpegError("ffmpeg produced no audio segments", 0, "no_output")
        return segments

    def convert_to_wav(self, path: str, out_path: str) -> str:
        """Convert to mono 16kHz PCM WAV (the input format whisper.cpp expects)."""
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-loglevel", "error",
            "-i", path,
            "-vn",
            "-ac", "1",
            "-ar", "16000",
            "-acodec", "pcm_s16le",
            "-f", "wav",
            out_path,
        ]
        self._run(cmd, "ffmpeg_wav", timeout=self.timeout)
        if not os.path.exists(out_path) or os.path.getsize(out_path) == 0:
            raise FFmpegError("ffmpeg produced an empty WAV file", 0, "no_output")
        return out_path
