"""
Shared data types for the transcript provider pipeline.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from progress_events import ProgressSink

# Transcript sources, in the order providers usually try them
SOURCE_YOUTUBEI = "youtubei"
SOURCE_CAPTION_TRACKS = "captionTracks"
SOURCE_APIFY = "apify"
SOURCE_YT_DLP = "yt-dlp"
SOURCE_WHISPER = "whisper"
SOURCE_UNAVAILABLE = "unavailable"

TRANSCRIPT_SOURCES = (
    SOURCE_YOUTUBEI, SOURCE_CAPTION_TRACKS, SOURCE_APIFY,
    SOURCE_YT_DLP, SOURCE_WHISPER, SOURCE_UNAVAILABLE,
)


@dataclass(frozen=True)
class ProviderContext:
    """The URL being resolved plus optional pre-fetched page HTML and resource id."""
    url: str
    html: Optional[str] = None
    resource_key: Optional[str] = None


@dataclass
class ProviderFetchOptions:
    """Capabilities and credentials handed to every provider."""
    session: Any
    capabilities: Any
    openai_api_key: Optional[str] = None
    fal_api_key: Optional[str] = None
    apify_api_token: Optional[str] = None
    yt_dlp_path: Optional[str] = None
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    youtube_mode: str = "auto"
    transcript_timestamps: bool = False
    resolve_twitter_cookies: Optional[Callable[[str], Any]] = None
    scrape_with_firecrawl: Optional[Callable[[str], Optional[str]]] = None
    on_progress: Optional[ProgressSink] = None
    http_timeout: float = 30
    transcription_timeout: float = 600
    subprocess_timeout: float = 30
    max_remote_media_bytes: int = 512 * 1024 * 1024
    max_upload_bytes: int = 24 * 1024 * 1024
    chunk_seconds: int = 600

    def has_transcription_backend(self) -> bool:
        return self.capabilities.has_transcription_backend(self.openai_api_key, self.fal_api_key)


@dataclass(frozen=True)
class ProviderResult:
    """
    Outcome of one provider (or the whole dispatch).

    ``text`` set implies ``source`` set. ``attempted_providers`` lists every
    strategy actually tried, in call order. ``notes`` is a human-readable
    trail and is never used for control flow.
    """
    text: Optional[str]
    source: Optional[str]
    attempted_providers: Tuple[str, ...] = ()
    metadata: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if self.text is not None and self.source is None:
            raise ValueError("ProviderResult with text must name its source")
        if self.source is not None and self.source not in TRANSCRIPT_SOURCES:
            raise ValueError(f"Unknown transcript source: {self.source}")
        object.__setattr__(self, "attempted_providers", tuple(self.attempted_providers))

    @property
    def ok(self) -> bool:
        return self.text is not None

    @property
    def reason(self) -> Optional[str]:
        return (self.metadata or {}).get("reason")

    @classmethod
    def success(cls, text: str, source: str, attempted: Iterable[str],
                metadata: Optional[Dict[str, Any]] = None, notes: Optional[Sequence[str]] = None) -> 'ProviderResult':
        return cls(text=text, source=source, attempted_providers=tuple(attempted),
                   metadata=metadata, notes=join_notes(notes))

    @classmethod
    def empty(cls, attempted: Iterable[str], metadata: Optional[Dict[str, Any]] = None,
              notes: Optional[Sequence[str]] = None, source: Optional[str] = None) -> 'ProviderResult':
        return cls(text=None, source=source, attempted_providers=tuple(attempted),
                   metadata=metadata, notes=join_notes(notes))


class TranscriptProvider(NamedTuple):
    """One entry of the static provider table."""
    name: str
    can_handle: Callable[[ProviderContext], bool]
    fetch_transcript: Callable[[ProviderContext, ProviderFetchOptions], ProviderResult]


@dataclass(frozen=True)
class TranscriptSegment:
    start_ms: int
    duration_ms: Optional[int]
    text: str


@dataclass(frozen=True)
class CacheEntry:
    """A stored transcript as returned by a TranscriptStore."""
    content: str
    source: str
    expired: bool = False
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class TranscriptResolution:
    """Final answer handed back to callers of the transcript service."""
    text: Optional[str]
    source: Optional[str]
    attempted_providers: Tuple[str, ...] = ()
    metadata: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    cache_status: str = "miss"

    @property
    def ok(self) -> bool:
        return bool(self.text)


@dataclass
class TranscriptionResult:
    """Result of one transcription backend chain."""
    text: Optional[str]
    provider: Optional[str]
    error: Optional[BaseException] = None
    notes: List[str] = field(default_factory=list)


def join_notes(notes: Optional[Sequence[str]]) -> Optional[str]:
    """Join note fragments with '; ', returning None when there are none."""
    if not notes:
        return None
    cleaned = [n.strip() for n in notes if n and n.strip()]
    return "; ".join(cleaned) if cleaned else None


def format_timestamp(ms: int) -> str:
    total = max(0, int(ms)) // 1000
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def format_segments(segments: Sequence[TranscriptSegment], include_timestamps: bool) -> str:
    """Render segments as transcript text, optionally prefixing [m:ss] timestamps."""
    lines = []
    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        if include_timestamps:
            lines.append(f"[{format_timestamp(segment.start_ms)}] {text}")
        else:
            lines.append(text)
    return "\n".join(lines)
