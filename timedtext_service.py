"""
Caption-track transcripts (timedtext) with a discovery flow.

Tracks come from the watch page's ``ytInitialPlayerResponse``:
    captions.playerCaptionsTracklistRenderer.captionTracks[].{baseUrl, languageCode, kind}
When the page carries none, the public ``type=list`` endpoints are asked instead.

The best track prefers en, en-US, en-GB, an official track over ASR, and
otherwise the first listed. json3 is fetched first, then XML. Every response
is validated before parsing so block pages never reach the parser.
"""

import json
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

import requests

from logging_setup import get_logger
from log_events import evt, mask_url_for_logging
from transcript_types import TranscriptSegment
from transcript_utils import decode_xml_entities

TIMEDTEXT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)
PREFERRED_LANGS = ["en", "en-US", "en-GB"]

logger = get_logger(__name__)


# --- Discovery ---

def _decode_json_after(html: str, marker: str) -> Optional[Any]:
    decoder = json.JSONDecoder()
    index = html.find(marker)
    while index != -1:
        start = index + len(marker)
        while start < len(html) and html[start] in " \t\r\n=:":
            start += 1
        try:
            value, _ = decoder.raw_decode(html, start)
            if isinstance(value, (dict, list)):
                return value
        except ValueError:
            pass
        index = html.find(marker, index + 1)
    return None


def extract_caption_tracks(html: str) -> List[Dict[str, str]]:
    """Caption tracks from the embedded player response, as {base_url, lang, kind} dicts."""
    if not html:
        return []

    raw_tracks = None
    player = _decode_json_after(html, "ytInitialPlayerResponse")
    if isinstance(player, dict):
        try:
            raw_tracks = player["captions"]["playerCaptionsTracklistRenderer"]["captionTracks"]
        except (KeyError, TypeError):
            raw_tracks = None
    if raw_tracks is None:
        raw_tracks = _decode_json_after(html, '"captionTracks"')

    tracks = []
    for track in raw_tracks if isinstance(raw_tracks, list) else []:
        if not isinstance(track, dict):
            continue
        base_url = track.get("baseUrl")
        if not isinstance(base_url, str) or not base_url:
            continue
        if base_url.startswith("/"):
            base_url = "https://www.youtube.com" + base_url
        tracks.append({
            "base_url": base_url,
            "lang": track.get("languageCode") or "",
            "kind": track.get("kind") or "",
        })
    return tracks


def _parse_track_list_xml(xml_string: str, video_id: str) -> List[Dict[str, str]]:
    """Parse a ``type=list`` response into tracks with ready-made base URLs."""
    try:
        root = ET.fromstring(xml_string)
    except ET.ParseError as e:
        evt("timedtext_track_list_parse_failed", error=str(e)[:100])
        return []

    tracks = []
    for track in root.findall('track'):
        attrs = track.attrib
        if 'lang_code' not in attrs:
            continue
        query = {"v": video_id, "lang": attrs['lang_code']}
        if attrs.get('name'):
            query["name"] = attrs['name']
        if attrs.get('kind'):
            query["kind"] = attrs['kind']
        tracks.append({
            "base_url": "https://www.youtube.com/api/timedtext?" + urlencode(query),
            "lang": attrs['lang_code'],
            "kind": attrs.get('kind', ''),
        })
    return tracks


def _fetch_track_list(session, video_id: str, timeout: float) -> List[Dict[str, str]]:
    list_urls = [
        f"https://www.youtube.com/api/timedtext?type=list&v={video_id}&hl=en",
        f"https://video.google.com/timedtext?type=list&v={video_id}&hl=en",
    ]
    for url in list_urls:
        try:
            resp = _execute_request(session, url, video_id, timeout)
        except requests.RequestException as e:
            evt("timedtext_track_list_failed", video_id=video_id, error=str(e)[:200])
            continue
        is_valid, reason, preview = _validate_response(resp)
        if not is_valid:
            evt("timedtext_track_list_invalid", video_id=video_id, reason=reason, preview=preview)
            continue
        tracks = _parse_track_list_xml(resp.text, video_id)
        if tracks:
            evt("timedtext_track_list_success", video_id=video_id, count=len(tracks))
            return tracks
    return []


def _pick_best_track(tracks: List[Dict[str, str]], langs: List[str]) -> Optional[Dict[str, str]]:
    """Preferred languages first (official before ASR), else the first track."""
    if not tracks:
        return None
    for lang in langs:
        lang_tracks = [t for t in tracks if t.get("lang") == lang]
        official = next((t for t in lang_tracks if t.get("kind") != "asr"), None)
        if official:
            return official
        if lang_tracks:
            return lang_tracks[0]
    return tracks[0]


# --- Parsing and validation ---

def _to_int(value, default: Optional[int] = 0) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _parse_json3(response_text: str) -> List[TranscriptSegment]:
    try:
        data = json.loads(response_text)
    except json.JSONDecodeError:
        evt("timedtext_json_parse_failed", content_preview=response_text[:100])
        return []

    segments = []
    for event in data.get("events", []) if isinstance(data, dict) else []:
        segs = event.get("segs") if isinstance(event, dict) else None
        if not segs:
            continue
        text = "".join(seg.get("utf8", "") for seg in segs if isinstance(seg, dict)).strip()
        if not text:
            continue
        segments.append(TranscriptSegment(
            start_ms=_to_int(event.get("tStartMs")),
            duration_ms=_to_int(event.get("dDurationMs"), None),
            text=text,
        ))
    return segments


def _seconds_to_ms(value: Optional[str]) -> Optional[int]:
    try:
        return int(round(float(value) * 1000))
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_xml(response_text: str) -> List[TranscriptSegment]:
    try:
        root = ET.fromstring(response_text)
    except ET.ParseError as e:
        evt("timedtext_transcript_parse_failed", error=str(e)[:100])
        return []

    segments = []
    for elem in root.iter("text"):
        text = decode_xml_entities("".join(elem.itertext())).strip()
        if not text:
            continue
        segments.append(TranscriptSegment(
            start_ms=_seconds_to_ms(elem.get("start")) or 0,
            duration_ms=_seconds_to_ms(elem.get("dur")),
            text=text,
        ))
    return segments


def _parse_transcript(response_text: str, content_type: str) -> List[TranscriptSegment]:
    """Parse JSON3 or XML transcript."""
    if "json" in content_type or response_text.lstrip().startswith("{"):
        return _parse_json3(response_text)
    return _parse_xml(response_text)


def _validate_response(resp) -> Tuple[bool, str, str]:
    """
    Guard before parsing: status, empty body, HTML block or consent pages.
    Returns (is_valid, reason, preview).
    """
    ct = (resp.headers.get("content-type") or "").lower()
    body = resp.text or ""

    if not resp.ok:
        return False, f"status={resp.status_code}", body[:80]

    if len(body) == 0:
        evt("timedtext_empty_body", status_code=resp.status_code, content_type=ct)
        return False, "content_length=0", ""

    if "xml" not in ct and "json" not in ct:
        if "html" in ct or body.lstrip().lower().startswith(("<!doctype", "<html")):
            if "before you continue to youtube" in body.lower():
                evt("timedtext_consent_wall_detected", content_preview=body[:100])
                return False, "html_consent_page", body[:80]
            evt("timedtext_html_response", content_type=ct, content_preview=body[:100])
            return False, "html_response", body[:80]

    return True, "valid", ""


def _execute_request(session, url: str, video_id: str, timeout: float):
    headers = {
        "Referer": f"https://www.youtube.com/watch?v={video_id}",
        "User-Agent": TIMEDTEXT_USER_AGENT,
        "Accept-Language": "en-US,en;q=0.9",
    }
    return session.get(url, headers=headers, timeout=timeout)


def _with_format(base_url: str, fmt: Optional[str]) -> str:
    parsed = urlparse(base_url)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != "fmt"]
    if fmt:
        query.append(("fmt", fmt))
    return urlunparse(parsed._replace(query=urlencode(query)))


# --- Core logic ---

def fetch_caption_track_segments(session, html: Optional[str], video_id: str,
                                 timeout: float = 30) -> List[TranscriptSegment]:
    """
    Discover, pick and fetch the best caption track.

    Returns [] when no track exists or every fetch fails.
    """
    tracks = extract_caption_tracks(html or "")
    if not tracks:
        tracks = _fetch_track_list(session, video_id, timeout)
    if not tracks:
        evt("timedtext_exhausted", video_id=video_id, reason="no_tracks_found")
        return []

    best_track = _pick_best_track(tracks, PREFERRED_LANGS)
    evt("timedtext_track_picked", video_id=video_id, lang=best_track["lang"], kind=best_track["kind"])

    for fmt in ("json3", None):
        url = _with_format(best_track["base_url"], fmt)
        try:
            resp = _execute_request(session, url, video_id, timeout)
        except requests.RequestException as e:
            evt("timedtext_fetch_failed", video_id=video_id, track_url=mask_url_for_logging(url), error=str(e)[:200])
            continue

        is_valid, reason, preview = _validate_response(resp)
        if not is_valid:
            evt("timedtext_fetch_invalid", video_id=video_id, reason=reason, preview=preview)
            if reason == "html_consent_page":
                return []
            continue

        segments = _parse_transcript(resp.text, resp.headers.get("content-type", ""))
        if segments:
            evt("timedtext_success", video_id=video_id, format=fmt or "xml", segments_count=len(segments))
            return segments

    evt("timedtext_exhausted", video_id=video_id, reason="fetch_failed")
    return []
