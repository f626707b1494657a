"""
YouTube internal transcript endpoint (youtubei ``get_transcript``).

The watch page embeds everything the endpoint needs:
- ``ytcfg.set({...})`` blobs carrying INNERTUBE_API_KEY and INNERTUBE_CONTEXT
- a ``getTranscriptEndpoint`` with the opaque ``params`` token

Response shape read here:
    actions[0].updateEngagementPanelAction.content.transcriptRenderer
      .body.transcriptBodyRenderer.cueGroups[]
      .transcriptCueGroupRenderer.cues[0].transcriptCueRenderer
      .{cue.simpleText | cue.runs[].text, startOffsetMs, durationMs}
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from logging_setup import get_logger
from log_events import evt
from transcript_types import TranscriptSegment

logger = get_logger(__name__)

YOUTUBEI_TRANSCRIPT_URL = "https://www.youtube.com/youtubei/v1/get_transcript"
YOUTUBEI_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

_YTCFG_SET = re.compile(r'ytcfg\.set\s*\(\s*\{')
_TRANSCRIPT_PARAMS = re.compile(r'"getTranscriptEndpoint"\s*:\s*\{\s*"params"\s*:\s*"([^"]+)"')


@dataclass
class YoutubeiTranscriptConfig:
    api_key: str
    context: Dict[str, Any]
    params: str
    client_name: Optional[str] = None
    client_version: Optional[str] = None
    visitor_data: Optional[str] = None


def _iter_ytcfg_blobs(html: str):
    decoder = json.JSONDecoder()
    for match in _YTCFG_SET.finditer(html):
        start = match.end() - 1
        try:
            blob, _ = decoder.raw_decode(html, start)
        except ValueError:
            continue
        if isinstance(blob, dict):
            yield blob


def extract_youtubei_transcript_config(html: str) -> Optional[YoutubeiTranscriptConfig]:
    """Collect api key, client context and transcript params from the watch page."""
    if not html:
        return None

    merged: Dict[str, Any] = {}
    for blob in _iter_ytcfg_blobs(html):
        merged.update(blob)

    api_key = merged.get("INNERTUBE_API_KEY")
    context = merged.get("INNERTUBE_CONTEXT")
    params_match = _TRANSCRIPT_PARAMS.search(html)
    if not isinstance(api_key, str) or not isinstance(context, dict) or not params_match:
        return None

    client = context.get("client") if isinstance(context.get("client"), dict) else {}
    client_name = merged.get("INNERTUBE_CONTEXT_CLIENT_NAME")
    return YoutubeiTranscriptConfig(
        api_key=api_key,
        context=context,
        params=params_match.group(1),
        client_name=str(client_name) if client_name is not None else None,
        client_version=merged.get("INNERTUBE_CLIENT_VERSION") or client.get("clientVersion"),
        visitor_data=merged.get("VISITOR_DATA") or client.get("visitorData"),
    )


def _cue_text(cue_renderer: Dict[str, Any]) -> str:
    cue = cue_renderer.get("cue") or {}
    if isinstance(cue.get("simpleText"), str):
        return cue["simpleText"]
    runs = cue.get("runs")
    if isinstance(runs, list):
        return "".join((r or {}).get("text", "") for r in runs)
    return ""


def _to_int(value, default: Optional[int] = 0) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def extract_cues_from_youtubei(data: Dict[str, Any]) -> List[TranscriptSegment]:
    """Parse a get_transcript response into timed segments; unknown shapes yield []."""
    try:
        cue_groups = data["actions"][0]["updateEngagementPanelAction"]["content"][
            "transcriptRenderer"
        ]["body"]["transcriptBodyRenderer"]["cueGroups"]
    except (KeyError, IndexError, TypeError):
        return []

    segments = []
    for cue_group in cue_groups or []:
        try:
            group = cue_group["transcriptCueGroupRenderer"]
        except (KeyError, TypeError):
            continue
        try:
            cue_renderer = group["cues"][0]["transcriptCueRenderer"]
        except (KeyError, IndexError, TypeError):
            try:
                cue_renderer = group["cue"]["transcriptCueRenderer"]
            except (KeyError, TypeError):
                continue

        text = _cue_text(cue_renderer).strip()
        if not text:
            continue
        segments.append(TranscriptSegment(
            start_ms=_to_int(cue_renderer.get("startOffsetMs")),
            duration_ms=_to_int(cue_renderer.get("durationMs"), None),
            text=text,
        ))
    return segments


def fetch_youtubei_segments(session, config: YoutubeiTranscriptConfig, original_url: str,
                            timeout: float = 30) -> List[TranscriptSegment]:
    """
    POST the transcript request. Network and parse failures are logged and yield [].
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": YOUTUBEI_USER_AGENT,
        "Origin": "https://www.youtube.com",
        "Referer": original_url,
    }
    if config.client_name:
        headers["X-Youtube-Client-Name"] = config.client_name
    if config.client_version:
        headers["X-Youtube-Client-Version"] = config.client_version
    if config.visitor_data:
        headers["X-Goog-Visitor-Id"] = config.visitor_data

    try:
        response = session.post(
            YOUTUBEI_TRANSCRIPT_URL,
            params={"key": config.api_key, "prettyPrint": "false"},
            json={"context": config.context, "params": config.params},
            headers=headers,
            timeout=timeout,
        )
    except requests.RequestException as e:
        evt("youtubei_request_failed", error=str(e)[:200])
        return []

    if not response.ok:
        evt("youtubei_http_error", status_code=response.status_code)
        return []

    try:
        data = response.json()
    except ValueError:
        evt("youtubei_parse_error", content_preview=(response.text or "")[:100])
        return []

    segments = extract_cues_from_youtubei(data)
    evt("youtubei_result", segments_count=len(segments))
    return segments
