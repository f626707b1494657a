"""
Progress events emitted while a transcript is being resolved.

Each phase transition is reported as one immutable event object whose
``kind`` tag identifies the variant. Sinks are plain callables; emitting
never blocks and a failing sink never aborts the pipeline.
"""

from dataclasses import asdict, dataclass
from typing import Callable, ClassVar, Optional, Union

from logging_setup import get_logger
from transcript_utils import format_bytes

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchHtmlStart:
    kind: ClassVar[str] = "fetch-html-start"
    url: str


@dataclass(frozen=True)
class FetchHtmlProgress:
    kind: ClassVar[str] = "fetch-html-progress"
    url: str
    downloaded_bytes: int
    total_bytes: Optional[int]


@dataclass(frozen=True)
class FetchHtmlDone:
    kind: ClassVar[str] = "fetch-html-done"
    url: str
    downloaded_bytes: int
    total_bytes: Optional[int]


@dataclass(frozen=True)
class TranscriptStart:
    kind: ClassVar[str] = "transcript-start"
    url: str
    service: str
    hint: Optional[str] = None


@dataclass(frozen=True)
class TranscriptDone:
    kind: ClassVar[str] = "transcript-done"
    url: str
    ok: bool
    service: Optional[str]
    source: Optional[str]
    hint: Optional[str] = None


@dataclass(frozen=True)
class MediaDownloadStart:
    kind: ClassVar[str] = "transcript-media-download-start"
    url: str
    service: str
    media_url: str
    total_bytes: Optional[int]


@dataclass(frozen=True)
class MediaDownloadProgress:
    kind: ClassVar[str] = "transcript-media-download-progress"
    url: str
    service: str
    downloaded_bytes: int
    total_bytes: Optional[int]


@dataclass(frozen=True)
class MediaDownloadDone:
    kind: ClassVar[str] = "transcript-media-download-done"
    url: str
    service: str
    downloaded_bytes: int
    total_bytes: Optional[int]


@dataclass(frozen=True)
class WhisperStart:
    kind: ClassVar[str] = "transcript-whisper-start"
    url: str
    service: str
    provider_hint: str
    model_id: Optional[str]
    total_duration_seconds: Optional[float]
    parts: Optional[int]


@dataclass(frozen=True)
class WhisperProgress:
    kind: ClassVar[str] = "transcript-whisper-progress"
    url: str
    service: str
    processed_duration_seconds: Optional[float]
    total_duration_seconds: Optional[float]
    part_index: Optional[int]
    parts: Optional[int]


@dataclass(frozen=True)
class BirdStart:
    kind: ClassVar[str] = "bird-start"
    url: str


@dataclass(frozen=True)
class BirdDone:
    kind: ClassVar[str] = "bird-done"
    url: str
    ok: bool
    text_bytes: Optional[int] = None


@dataclass(frozen=True)
class NitterStart:
    kind: ClassVar[str] = "nitter-start"
    url: str


@dataclass(frozen=True)
class NitterDone:
    kind: ClassVar[str] = "nitter-done"
    url: str
    ok: bool
    text_bytes: Optional[int] = None


@dataclass(frozen=True)
class FirecrawlStart:
    kind: ClassVar[str] = "firecrawl-start"
    url: str
    reason: str


@dataclass(frozen=True)
class FirecrawlDone:
    kind: ClassVar[str] = "firecrawl-done"
    url: str
    ok: bool
    html_bytes: Optional[int] = None


ProgressEvent = Union[
    FetchHtmlStart, FetchHtmlProgress, FetchHtmlDone,
    TranscriptStart, TranscriptDone,
    MediaDownloadStart, MediaDownloadProgress, MediaDownloadDone,
    WhisperStart, WhisperProgress,
    BirdStart, BirdDone, NitterStart, NitterDone, FirecrawlStart, FirecrawlDone,
]

ProgressSink = Callable[[ProgressEvent], None]


def event_to_dict(event: ProgressEvent) -> dict:
    """Serialize an event with its kind tag, e.g. for an SSE transport."""
    data = {"kind": event.kind}
    data.update(asdict(event))
    return data


def emit_progress(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
    """Deliver one event to the sink, if any. Sink errors are logged and dropped."""
    if sink is None:
        return
    try:
        sink(event)
    except Exception as e:
        logger.warning(f"Progress sink raised on {event.kind}: {e}")


def _format_size(value: Optional[int]) -> str:
    return format_bytes(value) if value is not None else "?"


def _format_seconds(value: Optional[float]) -> str:
    if value is None:
        return "?"
    total = int(round(value))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def describe_progress_event(event: ProgressEvent) -> str:
    """Render a one-line human status for a progress event."""
    if isinstance(event, FetchHtmlStart):
        return f"Fetching {event.url}"
    if isinstance(event, FetchHtmlProgress):
        return f"Fetching page ({_format_size(event.downloaded_bytes)}/{_format_size(event.total_bytes)})"
    if isinstance(event, FetchHtmlDone):
        return f"Fetched page ({_format_size(event.downloaded_bytes)})"
    if isinstance(event, TranscriptStart):
        return event.hint or f"Resolving transcript ({event.service})"
    if isinstance(event, TranscriptDone):
        if event.ok:
            return f"Transcript ready ({event.source})"
        return event.hint or "Transcript unavailable"
    if isinstance(event, MediaDownloadStart):
        return f"Downloading media ({_format_size(event.total_bytes)})"
    if isinstance(event, MediaDownloadProgress):
        return f"Downloading media ({_format_size(event.downloaded_bytes)}/{_format_size(event.total_bytes)})"
    if isinstance(event, MediaDownloadDone):
        return f"Downloaded media ({_format_size(event.downloaded_bytes)})"
    if isinstance(event, WhisperStart):
        model = event.model_id or event.provider_hint
        return f"Transcribing {_format_seconds(event.total_duration_seconds)} of audio ({model})"
    if isinstance(event, WhisperProgress):
        part = f" part {event.part_index}/{event.parts}" if event.parts else ""
        return (
            f"Transcribing{part} "
            f"({_format_seconds(event.processed_duration_seconds)}/{_format_seconds(event.total_duration_seconds)})"
        )
    if isinstance(event, BirdStart):
        return "Reading post (bird)"
    if isinstance(event, BirdDone):
        return "Read post (bird)" if event.ok else "bird failed"
    if isinstance(event, NitterStart):
        return "Reading post (nitter)"
    if isinstance(event, NitterDone):
        return "Read post (nitter)" if event.ok else "nitter failed"
    if isinstance(event, FirecrawlStart):
        return f"Scraping with Firecrawl ({event.reason})"
    if isinstance(event, FirecrawlDone):
        return "Firecrawl done" if event.ok else "Firecrawl failed"
    raise TypeError(f"Unknown progress event: {event!r}")
