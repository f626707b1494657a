"""
Event helper functions for structured JSON logging.

This module provides consistent event emission and stage timing utilities
for the transcript resolution pipeline.
"""

import logging
import time
from typing import Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qs

logger = logging.getLogger()

_SENSITIVE_QUERY_PARAMS = {'key', 'token', 'auth', 'session', 'sig', 'signature', 'api_key'}


def evt(event: str, **fields) -> None:
    """
    Emit a structured event with consistent field naming.

    Args:
        event: The event type/name
        **fields: Additional fields to include in the event

    Example:
        evt("provider_attempt", provider="youtube", attempt="youtubei")
        evt("stage_result", stage="captionTracks", outcome="success", dur_ms=1250)
    """
    event_data = {"event": event}
    event_data.update(fields)
    logger.info("", extra=event_data)


class StageTimer:
    """
    Context manager for automatic stage timing with structured logging.

    Emits stage_start event on entry and stage_result event on exit,
    with automatic duration calculation. Exceptions always propagate.

    Example:
        with StageTimer("youtubei", provider="youtube"):
            fetch_youtubei_transcript(...)
    """

    def __init__(self, stage: str, **context_fields):
        self.stage = stage
        self.context_fields = context_fields
        self.start_time: Optional[float] = None
        self.outcome_detail: Optional[str] = None

    def mark_empty(self, detail: str = "empty") -> None:
        """Record that the stage finished without error but produced nothing."""
        self.outcome_detail = detail

    def __enter__(self):
        self.start_time = time.time()
        evt("stage_start", stage=self.stage, **self.context_fields)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if self.start_time is None:
            duration_ms = 0
        else:
            duration_ms = int((time.time() - self.start_time) * 1000)

        if exc_type is not None:
            outcome = "error"
            detail = f"{exc_type.__name__}: {str(exc_value)}"
        elif self.outcome_detail is not None:
            outcome = "empty"
            detail = self.outcome_detail
        else:
            outcome = "success"
            detail = None

        event_fields = {
            "stage": self.stage,
            "outcome": outcome,
            "dur_ms": duration_ms,
            **self.context_fields
        }
        if detail is not None:
            event_fields["detail"] = detail

        evt("stage_result", **event_fields)
        return False


def mask_url_for_logging(url: str) -> str:
    """Mask sensitive query parameters in URLs for logging."""
    try:
        parsed = urlparse(url)
        if not parsed.query:
            return url
        params = parse_qs(parsed.query, keep_blank_values=True)
        masked_params = {
            key: ['***MASKED***'] * len(values) if key.lower() in _SENSITIVE_QUERY_PARAMS else values
            for key, values in params.items()
        }
        return urlunparse(parsed._replace(query=urlencode(masked_params, doseq=True)))
    except ValueError:
        return f"{url.split('?')[0]}?***MASKED_QUERY***" if '?' in url else url


def transcript_resolved(url: str, outcome: str, duration_ms: int, transcript_source: str = None,
                        **fields) -> None:
    """
    Emit the terminal event for one transcript resolution.

    Args:
        url: Resolved URL (masked before logging)
        outcome: success, unavailable, cache_hit
        duration_ms: Wall time of the resolution
        transcript_source: Winning source (youtubei, captionTracks, whisper, ...)
    """
    event_fields = {
        "resolved_url": mask_url_for_logging(url),
        "outcome": outcome,
        "dur_ms": duration_ms,
    }
    if transcript_source:
        event_fields["transcript_source"] = transcript_source
    event_fields.update(fields)
    evt("transcript_resolved", **event_fields)
