"""
Apify actor fallback for YouTube transcripts.

Runs the actor synchronously and reads the dataset items:
    POST https://api.apify.com/v2/acts/<actor>/run-sync-get-dataset-items?token=...
    body: {"videoUrl": "<watch url>"}
Each item carries either ``data: [{text, start, dur}, ...]`` or a plain
``transcript`` string.
"""

from typing import Any, List, Optional

import httpx

from logging_setup import get_logger
from log_events import evt

logger = get_logger(__name__)

APIFY_BASE_URL = "https://api.apify.com/v2/acts"
DEFAULT_APIFY_ACTOR = "pintostudio~youtube-transcript-scraper"


def extract_apify_transcript(items: Any) -> Optional[str]:
    """Join transcript text from actor dataset items."""
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        return None

    lines: List[str] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        data = item.get("data")
        if isinstance(data, list):
            for entry in data:
                text = entry.get("text") if isinstance(entry, dict) else None
                if isinstance(text, str) and text.strip():
                    lines.append(text.strip())
            continue
        transcript = item.get("transcript")
        if isinstance(transcript, str) and transcript.strip():
            lines.append(transcript.strip())

    return "\n".join(lines) if lines else None


def fetch_transcript_with_apify(api_token: Optional[str], url: str, timeout: float = 120,
                                actor: str = DEFAULT_APIFY_ACTOR,
                                client: Optional[httpx.Client] = None) -> Optional[str]:
    """Run the actor for one video URL. Returns None when unavailable or on any failure."""
    if not api_token:
        return None

    endpoint = f"{APIFY_BASE_URL}/{actor}/run-sync-get-dataset-items"
    try:
        if client is not None:
            response = client.post(endpoint, params={"token": api_token}, json={"videoUrl": url}, timeout=timeout)
        else:
            with httpx.Client(timeout=timeout) as http:
                response = http.post(endpoint, params={"token": api_token}, json={"videoUrl": url})
        response.raise_for_status()
        items = response.json()
    except httpx.HTTPStatusError as e:
        evt("apify_http_error", status_code=e.response.status_code)
        return None
    except (httpx.HTTPError, ValueError) as e:
        evt("apify_error", error=str(e)[:200])
        return None

    transcript = extract_apify_transcript(items)
    evt("apify_result", outcome="success" if transcript else "empty",
        items=len(items) if isinstance(items, list) else 1)
    return transcript
