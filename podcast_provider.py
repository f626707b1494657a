"""
Podcast transcript provider.

Podcasts almost never publish transcripts, so every strategy here finds the
episode audio and transcribes it. Strategies, first applicable wins:

1. Spotify episode: embed page ``__NEXT_DATA__`` audio, then the show's RSS
   feed found through the iTunes Search API
2. Apple Podcasts URL without page HTML: iTunes lookup API
3. ``"streamUrl"`` embedded in the page
4. ``"feedUrl"`` embedded in the page -> first enclosure of that feed
5. The page itself is an RSS/Atom feed -> first enclosure
6. ``og:audio`` meta tag (often only a preview clip)
7. yt-dlp on the page URL

Fields read from Spotify ``__NEXT_DATA__`` (props.pageProps.state.data):
    entity.subtitle (show), entity.title (episode), entity.duration (ms),
    defaultAudioFileObject.url[] and defaultAudioFileObject.format
Fields read from iTunes lookup results:
    wrapperType, kind, feedUrl, trackId, releaseDate, episodeUrl, previewUrl,
    episodeFileExtension, trackTimeMillis
"""

import json
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import requests

from logging_setup import get_logger
from log_events import StageTimer, evt
from media_transcriber import transcribe_media_url
from progress_events import FirecrawlDone, FirecrawlStart, emit_progress
from transcript_errors import PROPAGATING_ERRORS, TranscriptError, describe_error
from transcript_types import (
    ProviderContext, ProviderFetchOptions, ProviderResult, TranscriptProvider, TranscriptionResult,
    SOURCE_WHISPER, SOURCE_YT_DLP,
)
from transcript_utils import decode_xml_entities, normalize_loose_title, parse_duration_seconds
from ytdlp_service import transcribe_with_ytdlp

logger = get_logger(__name__)

FEED_HINT_URL_PATTERN = re.compile(r'rss|feed|podcast|\.xml($|[?#])', re.IGNORECASE)
PODCAST_PLATFORM_HOST_PATTERN = re.compile(
    r'open\.spotify\.com|spotify\.com|podcasts\.apple\.com|overcast\.fm|pca\.st|pod\.link|castbox\.fm|player\.fm',
    re.IGNORECASE,
)
BLOCKED_HTML_HINT_PATTERN = re.compile(
    r'access denied|attention required|captcha|recaptcha|cloudflare|forbidden|verify you are human',
    re.IGNORECASE,
)

ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"
SPOTIFY_EMBED_URL = "https://open.spotify.com/embed/episode/{episode_id}"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120 Safari/537.36"
)
MISSING_KEYS_NOTE = "Missing transcription provider (install whisper-cpp or set OPENAI_API_KEY/FAL_KEY)"
MAX_FEED_BYTES = 10 * 1024 * 1024
FEED_CHUNK_SIZE = 64 * 1024

_STEP_ERRORS = (TranscriptError, requests.RequestException, ValueError, OSError)

_ITEM_PATTERN = re.compile(r'<item\b[\s\S]*?</item>', re.IGNORECASE)
_ENCLOSURE_PATTERN = re.compile(r'<enclosure\b[^>]*\burl\s*=\s*([\'"])([^\'"]+)\1', re.IGNORECASE)
_ATOM_ENCLOSURE_PATTERN = re.compile(
    r'<link\b[^>]*\brel\s*=\s*([\'"])enclosure\1[^>]*\bhref\s*=\s*([\'"])([^\'"]+)\2', re.IGNORECASE,
)
_ITEM_TITLE_PATTERN = re.compile(r'<title>([\s\S]*?)</title>', re.IGNORECASE)
_ITEM_DURATION_PATTERN = re.compile(r'<itunes:duration>([\s\S]*?)</itunes:duration>', re.IGNORECASE)
_OG_AUDIO_PATTERN = re.compile(
    r'<meta\s+property=[\'"]og:audio[\'"]\s+content=[\'"]([^\'"]+)[\'"][^>]*>', re.IGNORECASE,
)
_NEXT_DATA_PATTERN = re.compile(
    r'<script[^>]*id=["\']__NEXT_DATA__["\'][^>]*>([\s\S]*?)</script>', re.IGNORECASE,
)


class PodcastStepError(TranscriptError):
    """A podcast strategy could not locate the episode audio."""
    pass


@dataclass
class FeedItem:
    title: Optional[str]
    enclosure_url: Optional[str]
    duration_seconds: Optional[int]


@dataclass
class SpotifyEmbedData:
    show_title: str
    episode_title: str
    duration_seconds: Optional[float]
    drm_format: Optional[str]
    audio_url: Optional[str]


@dataclass
class AppleEpisode:
    episode_url: str
    feed_url: Optional[str]
    file_extension: Optional[str]
    duration_seconds: Optional[float]


# --- Feed parsing ---

def looks_like_rss_or_atom_feed(xml: str) -> bool:
    head = xml[:4096].lstrip().lower()
    return "<rss" in head or "<feed" in head


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower() if isinstance(tag, str) else ""


def _strip_cdata(value: str) -> str:
    return re.sub(r'<!\[CDATA\[', '', value, flags=re.IGNORECASE).replace("]]>", "").strip()


def _item_from_element(element) -> FeedItem:
    title = None
    enclosure_url = None
    duration = None
    for child in element:
        name = _local_name(child.tag)
        if name == "title" and title is None:
            title = ("".join(child.itertext()) or "").strip() or None
        elif name == "enclosure" and enclosure_url is None:
            enclosure_url = (child.get("url") or "").strip() or None
        elif name == "link" and enclosure_url is None and (child.get("rel") or "").lower() == "enclosure":
            enclosure_url = (child.get("href") or "").strip() or None
        elif name == "duration" and child.tag.startswith("{http://www.itunes.com"):
            duration = parse_duration_seconds(child.text or "")
    return FeedItem(title, enclosure_url, duration)


def _item_from_text(item_xml: str) -> FeedItem:
    title_match = _ITEM_TITLE_PATTERN.search(item_xml)
    title = _strip_cdata(title_match.group(1)) if title_match else None
    enclosure_url = None
    match = _ENCLOSURE_PATTERN.search(item_xml)
    if match:
        enclosure_url = decode_xml_entities(match.group(2))
    else:
        atom = _ATOM_ENCLOSURE_PATTERN.search(item_xml)
        if atom:
            enclosure_url = decode_xml_entities(atom.group(3))
    duration_match = _ITEM_DURATION_PATTERN.search(item_xml)
    duration = parse_duration_seconds(duration_match.group(1)) if duration_match else None
    return FeedItem(title or None, enclosure_url, duration)


def parse_feed_items(xml: str) -> List[FeedItem]:
    """
    RSS ``<item>`` or Atom ``<entry>`` elements, in document order.

    Malformed documents fall back to a per-item pattern scan so one broken
    item does not hide the rest.
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        evt("podcast_feed_parse_fallback", error=str(e)[:100])
        return [_item_from_text(item) for item in _ITEM_PATTERN.findall(xml)]

    return [
        _item_from_element(element)
        for element in root.iter()
        if _local_name(element.tag) in ("item", "entry")
    ]


def extract_enclosure_from_feed(xml: str) -> Optional[FeedItem]:
    """First item carrying an enclosure, else any enclosure in the document."""
    for item in parse_feed_items(xml):
        if item.enclosure_url:
            return item

    match = _ENCLOSURE_PATTERN.search(xml)
    if match:
        return FeedItem(None, decode_xml_entities(match.group(2)), _document_duration(xml))
    atom = _ATOM_ENCLOSURE_PATTERN.search(xml)
    if atom:
        return FeedItem(None, decode_xml_entities(atom.group(3)), _document_duration(xml))
    return None


def _document_duration(xml: str) -> Optional[int]:
    match = _ITEM_DURATION_PATTERN.search(xml)
    return parse_duration_seconds(match.group(1)) if match else None


def extract_enclosure_for_episode(xml: str, episode_title: str) -> Optional[FeedItem]:
    """Item whose loosely-normalized title equals the episode title."""
    target = normalize_loose_title(episode_title)
    for item in parse_feed_items(xml):
        if not item.title or not item.enclosure_url:
            continue
        if normalize_loose_title(item.title) == target:
            return item
    return None


# --- Page extraction ---

def extract_embedded_json_url(html: str, field: str) -> Optional[str]:
    """Decode ``"<field>":"<json string>"`` from page HTML."""
    pattern = re.compile(r'"' + re.escape(field) + r'":"((?:\\.|[^"\\])*)"', re.IGNORECASE)
    match = pattern.search(html)
    if not match or not match.group(1):
        return None
    try:
        value = json.loads(f'"{match.group(1)}"')
    except ValueError:
        return None
    return value if isinstance(value, str) and value else None


def extract_og_audio_url(html: str) -> Optional[str]:
    match = _OG_AUDIO_PATTERN.search(html)
    if not match:
        return None
    candidate = match.group(1).strip()
    if not re.match(r'^https?://', candidate, re.IGNORECASE):
        return None
    return candidate


def extract_spotify_episode_id(url: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if not host.endswith("spotify.com"):
        return None
    parts = [p for p in parsed.path.split("/") if p]
    if "episode" not in parts:
        return None
    index = parts.index("episode")
    episode_id = parts[index + 1] if index + 1 < len(parts) else None
    return episode_id if episode_id and re.match(r'^[A-Za-z0-9]+$', episode_id) else None


def extract_apple_podcast_ids(url: str) -> Optional[Tuple[str, Optional[str]]]:
    """(show_id, episode_id) for podcasts.apple.com URLs."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if host != "podcasts.apple.com":
        return None
    show_match = re.search(r'/id(\d+)(?:/|$)', parsed.path)
    if not show_match:
        return None
    episode_raw = (parse_qs(parsed.query).get("i") or [None])[0]
    episode_id = episode_raw if episode_raw and episode_raw.isdigit() else None
    return show_match.group(1), episode_id


def _json_path(value: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _pick_spotify_audio_url(raw: Any) -> Optional[str]:
    urls = [u.strip() for u in raw if isinstance(u, str)] if isinstance(raw, list) else []
    urls = [u for u in urls if re.match(r'^https?://', u, re.IGNORECASE)]
    if not urls:
        return None
    return next((u for u in urls if "scdn.co" in u.lower()), urls[0])


def extract_spotify_embed_data(html: str) -> Optional[SpotifyEmbedData]:
    match = _NEXT_DATA_PATTERN.search(html)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        return None

    state = _json_path(data, "props", "pageProps", "state", "data")
    show_title = _json_path(state, "entity", "subtitle")
    episode_title = _json_path(state, "entity", "title")
    show_title = show_title.strip() if isinstance(show_title, str) else ""
    episode_title = episode_title.strip() if isinstance(episode_title, str) else ""
    if not show_title or not episode_title:
        return None

    duration_ms = _json_path(state, "entity", "duration")
    drm_format = _json_path(state, "defaultAudioFileObject", "format")
    return SpotifyEmbedData(
        show_title=show_title,
        episode_title=episode_title,
        duration_seconds=duration_ms / 1000 if isinstance(duration_ms, (int, float)) and duration_ms > 0 else None,
        drm_format=drm_format if isinstance(drm_format, str) else None,
        audio_url=_pick_spotify_audio_url(_json_path(state, "defaultAudioFileObject", "url")),
    )


def looks_like_blocked_html(html: str) -> bool:
    head = html[:20000].lower()
    if "__next_data__" in head:
        return False
    return bool(BLOCKED_HTML_HINT_PATTERN.search(head))


# --- Remote lookups ---

def _get(options: ProviderFetchOptions, url: str, **kwargs):
    return options.session.get(url, timeout=options.http_timeout, stream=True, **kwargs)


def _read_text(response, limit: int = MAX_FEED_BYTES) -> str:
    """Body of a streamed response, cut off at ``limit`` bytes. UTF-8 unless a charset is declared."""
    chunks = []
    downloaded = 0
    for chunk in response.iter_content(chunk_size=FEED_CHUNK_SIZE):
        if not chunk:
            continue
        chunk = chunk[:limit - downloaded]
        chunks.append(chunk)
        downloaded += len(chunk)
        if downloaded >= limit:
            evt("podcast_body_truncated", limit=limit)
            break
    content_type = (response.headers.get("content-type") or "").lower()
    encoding = response.encoding if "charset=" in content_type and response.encoding else "utf-8"
    try:
        return b"".join(chunks).decode(encoding, errors="replace")
    except LookupError:
        return b"".join(chunks).decode("utf-8", errors="replace")


def _read_json(response) -> Any:
    return json.loads(_read_text(response))


def fetch_spotify_embed_html(options: ProviderFetchOptions, episode_id: str,
                             progress_url: str) -> Tuple[str, str]:
    """
    Fetch the embed page; returns (html, via) where via is 'fetch' or 'firecrawl'.

    Falls back to the injected Firecrawl scraper when the direct fetch fails
    or returns a bot-check page.
    """
    embed_url = SPOTIFY_EMBED_URL.format(episode_id=episode_id)
    headers = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Referer": f"https://open.spotify.com/episode/{episode_id}",
        "User-Agent": BROWSER_USER_AGENT,
    }
    try:
        with _get(options, embed_url, headers=headers) as response:
            if not response.ok:
                raise PodcastStepError(f"Spotify embed fetch failed ({response.status_code})")
            html = _read_text(response)
        if not looks_like_blocked_html(html):
            return html, "fetch"
        raise PodcastStepError("Spotify embed HTML looked blocked (captcha)")
    except (PodcastStepError, requests.RequestException) as e:
        if options.scrape_with_firecrawl is None:
            raise
        direct_error = e

    emit_progress(options.on_progress, FirecrawlStart(progress_url, "spotify embed blocked"))
    html = (options.scrape_with_firecrawl(embed_url) or "").strip()
    emit_progress(options.on_progress, FirecrawlDone(progress_url, bool(html), len(html.encode("utf-8"))))
    if not html:
        raise PodcastStepError(
            f"Spotify embed fetch failed and Firecrawl returned empty content ({describe_error(direct_error)})"
        )
    if looks_like_blocked_html(html):
        raise PodcastStepError("Spotify embed blocked even via Firecrawl (captcha)")
    return html, "firecrawl"


def resolve_feed_url_from_itunes_search(options: ProviderFetchOptions, show_title: str) -> Optional[str]:
    params = {"term": show_title, "media": "podcast", "entity": "podcast", "limit": "10"}
    with _get(options, ITUNES_SEARCH_URL, params=params, headers={"Accept": "application/json"}) as response:
        if not response.ok:
            return None
        data = _read_json(response)
    results = [r for r in (data if isinstance(data, dict) else {}).get("results") or [] if isinstance(r, dict)]
    if not results:
        return None

    target = normalize_loose_title(show_title)
    best = next(
        (r for r in results if normalize_loose_title(str(r.get("collectionName") or "")) == target),
        results[0],
    )
    feed_url = (best.get("feedUrl") or "").strip() if isinstance(best.get("feedUrl"), str) else ""
    return feed_url if re.match(r'^https?://', feed_url, re.IGNORECASE) else None


def _release_timestamp(record: Dict[str, Any]) -> Optional[float]:
    raw = record.get("releaseDate")
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def resolve_apple_episode_from_itunes_lookup(options: ProviderFetchOptions, show_id: str,
                                             episode_id: Optional[str]) -> Optional[AppleEpisode]:
    """Requested episode by trackId, else the newest by releaseDate."""
    params = {"id": show_id, "entity": "podcastEpisode", "limit": "200"}
    with _get(options, ITUNES_LOOKUP_URL, params=params, headers={"Accept": "application/json"}) as response:
        if not response.ok:
            return None
        data = _read_json(response)
    results = [r for r in (data if isinstance(data, dict) else {}).get("results") or [] if isinstance(r, dict)]

    show = next((r for r in results if r.get("wrapperType") == "track" and r.get("kind") == "podcast"), None)
    feed_url = show.get("feedUrl").strip() if show and isinstance(show.get("feedUrl"), str) else None

    episodes = [r for r in results if r.get("wrapperType") == "podcastEpisode"]
    if not episodes:
        return None

    chosen = None
    if episode_id:
        chosen = next((r for r in episodes if str(r.get("trackId") or "") == episode_id), None)
    if chosen is None:
        # Undated episodes sort last
        chosen = sorted(
            episodes,
            key=lambda r: (_release_timestamp(r) is None, -(_release_timestamp(r) or 0)),
        )[0]

    raw_url = chosen.get("episodeUrl") if isinstance(chosen.get("episodeUrl"), str) else chosen.get("previewUrl")
    episode_url = raw_url.strip() if isinstance(raw_url, str) else ""
    if not re.match(r'^https?://', episode_url, re.IGNORECASE):
        return None

    extension = chosen.get("episodeFileExtension")
    extension = extension.strip().lstrip(".") if isinstance(extension, str) and extension.strip() else None
    millis = chosen.get("trackTimeMillis")
    duration = millis / 1000 if isinstance(millis, (int, float)) and millis > 0 else None
    return AppleEpisode(episode_url, feed_url or None, extension, duration)


def _fetch_feed(options: ProviderFetchOptions, feed_url: str) -> str:
    with _get(options, feed_url, headers={"User-Agent": BROWSER_USER_AGENT}) as response:
        if not response.ok:
            raise PodcastStepError(f"Feed fetch failed ({response.status_code})")
        return _read_text(response)


# --- Provider ---

def can_handle(context: ProviderContext) -> bool:
    if isinstance(context.html, str) and looks_like_rss_or_atom_feed(context.html):
        return True
    if PODCAST_PLATFORM_HOST_PATTERN.search(context.url):
        return True
    return bool(FEED_HINT_URL_PATTERN.search(context.url))


def _transcribe(options: ProviderFetchOptions, context: ProviderContext, media_url: str,
                filename_hint: str, duration_hint: Optional[float]) -> TranscriptionResult:
    with StageTimer("podcast_transcribe", provider="podcast"):
        return transcribe_media_url(
            options, media_url, filename_hint=filename_hint, duration_seconds_hint=duration_hint,
            progress_url=context.url, service="podcast",
        )


def _finish(result: TranscriptionResult, attempted: List[str], notes: List[str],
            metadata: Dict[str, Any], success_note: Optional[str] = None) -> ProviderResult:
    notes.extend(result.notes)
    if result.text:
        if success_note:
            notes.append(success_note)
        return ProviderResult.success(
            result.text, SOURCE_WHISPER, attempted,
            metadata={**metadata, "transcriptionProvider": result.provider}, notes=notes,
        )
    if result.error is not None:
        notes.append(describe_error(result.error))
    return ProviderResult.empty(attempted, metadata=metadata, notes=notes)


def _spotify(context: ProviderContext, options: ProviderFetchOptions, episode_id: str,
             attempted: List[str], notes: List[str]) -> ProviderResult:
    metadata: Dict[str, Any] = {"provider": "podcast", "kind": "spotify_itunes_rss_enclosure",
                                "episodeId": episode_id}
    try:
        embed_html, via = fetch_spotify_embed_html(options, episode_id, context.url)
        embed = extract_spotify_embed_data(embed_html)
        if embed is None:
            raise PodcastStepError("Spotify embed data not found (missing __NEXT_DATA__)")

        if embed.audio_url:
            result = _transcribe(options, context, embed.audio_url, "episode.mp4", embed.duration_seconds)
            if result.text:
                return _finish(result, attempted, notes, {
                    "provider": "podcast",
                    "kind": "spotify_embed_audio",
                    "episodeId": episode_id,
                    "showTitle": embed.show_title,
                    "episodeTitle": embed.episode_title,
                    "audioUrl": embed.audio_url,
                    "durationSeconds": embed.duration_seconds,
                    "drmFormat": embed.drm_format,
                }, "Resolved Spotify embed audio via Firecrawl" if via == "firecrawl" else "Resolved Spotify embed audio")
            notes.extend(result.notes)
            reason = describe_error(result.error) if result.error is not None else "unknown error"
            notes.append(f"Spotify embed audio transcription failed; falling back to iTunes RSS: {reason}")

        feed_url = resolve_feed_url_from_itunes_search(options, embed.show_title)
        if not feed_url:
            raise PodcastStepError(
                "Spotify episode audio appears DRM-protected; could not resolve RSS feed via "
                f'iTunes Search API for show "{embed.show_title}"'
            )

        item = extract_enclosure_for_episode(_fetch_feed(options, feed_url), embed.episode_title)
        if item is None:
            raise PodcastStepError(f'Episode enclosure not found in RSS feed for "{embed.episode_title}"')

        notes.append(
            "Resolved Spotify episode via Firecrawl embed + iTunes RSS" if via == "firecrawl"
            else "Resolved Spotify episode via iTunes RSS"
        )
        metadata.update({
            "showTitle": embed.show_title,
            "episodeTitle": embed.episode_title,
            "feedUrl": feed_url,
            "enclosureUrl": item.enclosure_url,
            "durationSeconds": item.duration_seconds,
        })
        result = _transcribe(options, context, item.enclosure_url, "episode.mp3", item.duration_seconds)
        return _finish(result, attempted, notes, metadata)
    except PROPAGATING_ERRORS:
        raise
    except _STEP_ERRORS as e:
        notes.append(f"Spotify episode fetch failed: {describe_error(e)}")
        return ProviderResult.empty(attempted, metadata=metadata, notes=notes)


def _apple_lookup(context: ProviderContext, options: ProviderFetchOptions, show_id: str,
                  episode_id: Optional[str], attempted: List[str], notes: List[str]) -> ProviderResult:
    try:
        episode = resolve_apple_episode_from_itunes_lookup(options, show_id, episode_id)
        if episode is None:
            raise PodcastStepError("iTunes lookup did not return an episodeUrl")
        filename = f"episode.{episode.file_extension}" if episode.file_extension else "episode.mp3"
        result = _transcribe(options, context, episode.episode_url, filename, episode.duration_seconds)
        return _finish(result, attempted, notes, {
            "provider": "podcast",
            "kind": "apple_itunes_episode",
            "showId": show_id,
            "episodeId": episode_id,
            "episodeUrl": episode.episode_url,
            "feedUrl": episode.feed_url,
            "durationSeconds": episode.duration_seconds,
        }, "Resolved Apple Podcasts episode via iTunes lookup")
    except PROPAGATING_ERRORS:
        raise
    except _STEP_ERRORS as e:
        notes.append(f"Apple Podcasts iTunes lookup failed: {describe_error(e)}")
        return ProviderResult.empty(
            attempted, metadata={"provider": "podcast", "kind": "apple_itunes_episode", "showId": show_id},
            notes=notes,
        )


def _media_step(context: ProviderContext, options: ProviderFetchOptions, media_url: str, filename: str,
                duration: Optional[float], metadata: Dict[str, Any], attempted: List[str], notes: List[str],
                failure_prefix: str, success_note: Optional[str] = None) -> ProviderResult:
    try:
        result = _transcribe(options, context, media_url, filename, duration)
    except PROPAGATING_ERRORS:
        raise
    except _STEP_ERRORS as e:
        notes.append(f"{failure_prefix}: {describe_error(e)}")
        return ProviderResult.empty(attempted, metadata=metadata, notes=notes)
    return _finish(result, attempted, notes, metadata, success_note)


def fetch_transcript(context: ProviderContext, options: ProviderFetchOptions) -> ProviderResult:
    attempted: List[str] = []
    notes: List[str] = []
    html = context.html if isinstance(context.html, str) else None

    if not options.has_transcription_backend():
        return ProviderResult.empty(
            attempted, metadata={"provider": "podcast", "reason": "missing_transcription_keys"},
            notes=[MISSING_KEYS_NOTE],
        )

    spotify_episode_id = extract_spotify_episode_id(context.url)
    if spotify_episode_id:
        attempted.append(SOURCE_WHISPER)
        return _spotify(context, options, spotify_episode_id, attempted, notes)

    apple_ids = extract_apple_podcast_ids(context.url) if html is None else None
    if apple_ids:
        attempted.append(SOURCE_WHISPER)
        return _apple_lookup(context, options, apple_ids[0], apple_ids[1], attempted, notes)

    stream_url = extract_embedded_json_url(html, "streamUrl") if html else None
    if stream_url:
        attempted.append(SOURCE_WHISPER)
        return _media_step(context, options, stream_url, "episode.mp3", None,
                           {"provider": "podcast", "kind": "apple_stream_url", "streamUrl": stream_url},
                           attempted, notes, "Podcast enclosure download failed")

    feed_url = extract_embedded_json_url(html, "feedUrl") if html else None
    if feed_url:
        attempted.append(SOURCE_WHISPER)
        metadata = {"provider": "podcast", "kind": "apple_feed_url", "feedUrl": feed_url}
        try:
            item = extract_enclosure_from_feed(_fetch_feed(options, feed_url))
        except _STEP_ERRORS as e:
            notes.append(f"Podcast feed fetch failed: {describe_error(e)}")
            return ProviderResult.empty(attempted, metadata=metadata, notes=notes)
        if item is not None:
            metadata.update({"enclosureUrl": item.enclosure_url, "durationSeconds": item.duration_seconds})
            return _media_step(context, options, item.enclosure_url, "episode.mp3", item.duration_seconds,
                               metadata, attempted, notes, "Podcast feed fetch failed")

    feed_item = None
    if html and looks_like_rss_or_atom_feed(html):
        try:
            feed_item = extract_enclosure_from_feed(html)
        except _STEP_ERRORS as e:
            notes.append(f"Podcast feed parse failed: {describe_error(e)}")
    if feed_item is not None:
        attempted.append(SOURCE_WHISPER)
        return _media_step(context, options, feed_item.enclosure_url, "episode.mp3", feed_item.duration_seconds,
                           {"provider": "podcast", "kind": "rss_enclosure",
                            "enclosureUrl": feed_item.enclosure_url, "durationSeconds": feed_item.duration_seconds},
                           attempted, notes, "Podcast enclosure download failed")

    og_audio_url = extract_og_audio_url(html) if html else None
    if og_audio_url:
        attempted.append(SOURCE_WHISPER)
        return _media_step(context, options, og_audio_url, "audio.mp3", None,
                           {"provider": "podcast", "kind": "og_audio", "ogAudioUrl": og_audio_url},
                           attempted, notes, "Podcast enclosure download failed",
                           "Used og:audio media (may be a preview clip, not the full episode)")

    if options.yt_dlp_path:
        attempted.append(SOURCE_YT_DLP)
        metadata = {"provider": "podcast", "kind": "yt_dlp"}
        try:
            with StageTimer("yt-dlp", provider="podcast"):
                result = transcribe_with_ytdlp(options, context.url, progress_url=context.url, service="podcast")
        except PROPAGATING_ERRORS:
            raise
        except _STEP_ERRORS as e:
            notes.append(f"yt-dlp transcription failed: {describe_error(e)}")
            return ProviderResult.empty(attempted, metadata=metadata, notes=notes)
        notes.extend(result.notes)
        metadata["transcriptionProvider"] = result.provider
        if result.text:
            return ProviderResult.success(result.text, SOURCE_YT_DLP, attempted, metadata=metadata, notes=notes)
        return ProviderResult.empty(attempted, metadata=metadata, notes=notes)

    return ProviderResult.empty(
        attempted, metadata={"provider": "podcast", "reason": "no_enclosure_and_no_yt_dlp"}, notes=notes,
    )


PROVIDER = TranscriptProvider("podcast", can_handle, fetch_transcript)
