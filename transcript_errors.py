"""
Exception types and error classification for transcript resolution.

Only configuration gaps in explicit modes and hard resource limits are
raised to callers; everything else is converted into provider notes.
"""

from typing import Optional, Sequence

import requests
import httpx


class TranscriptError(Exception):
    """Base exception for transcript resolution failures."""
    pass


class ConfigurationError(TranscriptError):
    """An explicitly requested mode is missing a prerequisite."""
    pass


class MediaTooLargeError(TranscriptError):
    """Remote or local media exceeds the hard size ceiling."""

    def __init__(self, message: str, content_length: int, limit: int):
        super().__init__(message)
        self.content_length = content_length
        self.limit = limit


class DownloadError(TranscriptError):
    """A media or feed download returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TranscriptionError(TranscriptError):
    """A transcription backend failed to produce text."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class SubprocessTimeoutError(TranscriptError):
    """A child process was killed after exceeding its timeout."""

    def __init__(self, command: Sequence[str], timeout: float):
        name = command[0] if command else "subprocess"
        super().__init__(f"{name} timed out after {timeout:g}s")
        self.command = list(command)
        self.timeout = timeout


# Exceptions that must reach the caller instead of becoming notes
PROPAGATING_ERRORS = (ConfigurationError, MediaTooLargeError)


def classify_error(error: BaseException) -> str:
    """
    Classify an exception into a short fail class for structured logging.

    Returns one of: timeout, network_error, http_error, too_large,
    config_error, transcription_error, unknown.
    """
    if isinstance(error, MediaTooLargeError):
        return "too_large"
    if isinstance(error, ConfigurationError):
        return "config_error"
    if isinstance(error, (SubprocessTimeoutError, requests.exceptions.Timeout, httpx.TimeoutException)):
        return "timeout"
    if isinstance(error, (DownloadError, requests.exceptions.HTTPError, httpx.HTTPStatusError)):
        return "http_error"
    if isinstance(error, (requests.exceptions.ConnectionError, httpx.TransportError)):
        return "network_error"
    if isinstance(error, TranscriptionError):
        return "transcription_error"

    message = str(error).lower()
    if "timed out" in message or "timeout" in message:
        return "timeout"
    if any(term in message for term in ("connection", "network", "dns", "ssl")):
        return "network_error"
    return "unknown"


def describe_error(error: BaseException) -> str:
    """Render an exception as a short note fragment."""
    message = str(error).strip()
    return message or type(error).__name__
