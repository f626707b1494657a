"""
Provider dispatch.

Providers are tried in table order (platform providers before the generic
catch-all). The first result carrying text wins; otherwise the next provider
that can handle the context runs. Attempted strategies and notes accumulate
across every provider that ran.
"""

from typing import Any, Dict, List, Optional, Sequence

import generic_provider
import podcast_provider
import youtube_provider
from logging_setup import get_logger
from log_events import StageTimer, evt
from progress_events import TranscriptDone, TranscriptStart, emit_progress
from transcript_types import ProviderContext, ProviderFetchOptions, ProviderResult, TranscriptProvider

logger = get_logger(__name__)

PROVIDERS: Sequence[TranscriptProvider] = (
    youtube_provider.PROVIDER,
    podcast_provider.PROVIDER,
    generic_provider.PROVIDER,
)


def dispatch_transcript(context: ProviderContext, options: ProviderFetchOptions,
                        providers: Sequence[TranscriptProvider] = PROVIDERS) -> ProviderResult:
    """
    Run providers until one returns text.

    Only ConfigurationError and MediaTooLargeError escape; every other
    failure is already folded into the providers' notes.
    """
    attempted: List[str] = []
    notes: List[str] = []
    last_metadata: Optional[Dict[str, Any]] = None
    last_service: Optional[str] = None

    for provider in providers:
        if not provider.can_handle(context):
            continue

        last_service = provider.name
        emit_progress(options.on_progress, TranscriptStart(context.url, provider.name))
        with StageTimer("provider", provider=provider.name) as timer:
            result = provider.fetch_transcript(context, options)
            if result.text is None:
                timer.mark_empty(result.reason or "no_text")

        attempted.extend(result.attempted_providers)
        if result.notes:
            notes.append(result.notes)
        last_metadata = result.metadata

        if result.text is not None:
            emit_progress(options.on_progress,
                          TranscriptDone(context.url, True, provider.name, result.source))
            return ProviderResult.success(
                result.text, result.source, attempted, metadata=result.metadata, notes=notes,
            )

    evt("dispatch_exhausted", attempted=",".join(attempted) or "none")
    emit_progress(options.on_progress,
                  TranscriptDone(context.url, False, last_service, None, "Transcript unavailable"))
    return ProviderResult.empty(attempted, metadata=last_metadata, notes=notes)
