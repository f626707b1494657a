"""
Tests for provider dispatch: table order, accumulation and progress events.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import transcript_dispatcher
from transcript_errors import MediaTooLargeError
from transcript_types import (
    ProviderContext, ProviderFetchOptions, ProviderResult, TranscriptProvider, TranscriptSegment,
)


def _provider(name, handles=True, result=None, side_effect=None):
    fetch = MagicMock(return_value=result, side_effect=side_effect)
    return TranscriptProvider(name, lambda context: handles, fetch)


def _options(events=None):
    capabilities = MagicMock()
    capabilities.has_transcription_backend.return_value = False
    return ProviderFetchOptions(session=MagicMock(), capabilities=capabilities,
                                on_progress=events.append if events is not None else None)


class TestDispatchTranscript(unittest.TestCase):

    def test_no_provider_handles_url(self):
        events = []
        providers = (_provider("youtube", handles=False),)

        result = transcript_dispatcher.dispatch_transcript(
            ProviderContext("https://example.com"), _options(events), providers,
        )

        self.assertIsNone(result.text)
        self.assertEqual(result.attempted_providers, ())
        providers[0].fetch_transcript.assert_not_called()
        self.assertEqual([e.kind for e in events], ["transcript-done"])
        self.assertFalse(events[0].ok)

    def test_first_text_wins(self):
        first = _provider("podcast", result=ProviderResult.empty(["podcast"], notes=["no feed"]))
        second = _provider("generic", result=ProviderResult.success("words", "whisper", ["whisper"],
                                                                    metadata={"kind": "direct_media"}))
        third = _provider("never")
        events = []

        result = transcript_dispatcher.dispatch_transcript(
            ProviderContext("https://example.com/ep"), _options(events), (first, second, third),
        )

        self.assertEqual(result.text, "words")
        self.assertEqual(result.source, "whisper")
        self.assertEqual(result.attempted_providers, ("podcast", "whisper"))
        self.assertEqual(result.notes, "no feed")
        self.assertEqual(result.metadata, {"kind": "direct_media"})
        third.fetch_transcript.assert_not_called()
        kinds = [e.kind for e in events]
        self.assertEqual(kinds, ["transcript-start", "transcript-start", "transcript-done"])
        self.assertTrue(events[-1].ok)
        self.assertEqual(events[-1].service, "generic")

    def test_exhausted_keeps_last_metadata_and_notes(self):
        first = _provider("youtube", result=ProviderResult.empty(["captionTracks"], notes=["a"],
                                                                  metadata={"reason": "first"}))
        second = _provider("generic", result=ProviderResult.empty([], notes=["b"],
                                                                   metadata={"reason": "not_implemented"}))

        result = transcript_dispatcher.dispatch_transcript(
            ProviderContext("https://example.com"), _options(), (first, second),
        )

        self.assertIsNone(result.text)
        self.assertEqual(result.attempted_providers, ("captionTracks",))
        self.assertEqual(result.notes, "a; b")
        self.assertEqual(result.reason, "not_implemented")

    def test_propagating_errors_escape(self):
        provider = _provider("podcast", side_effect=MediaTooLargeError("too big", 10, 5))

        with self.assertRaises(MediaTooLargeError):
            transcript_dispatcher.dispatch_transcript(ProviderContext("https://example.com/ep.mp3"),
                                                      _options(), (provider,))

    @patch("youtube_provider.fetch_caption_track_segments")
    @patch("youtube_provider.fetch_youtubei_segments")
    @patch("youtube_provider.extract_youtubei_transcript_config")
    def test_youtube_caption_tracks_after_youtubei(self, mock_config, mock_youtubei, mock_tracks):
        mock_config.return_value = MagicMock()
        mock_youtubei.return_value = []
        mock_tracks.return_value = [TranscriptSegment(0, 1000, "caption text")]

        result = transcript_dispatcher.dispatch_transcript(
            ProviderContext("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "<html></html>"), _options(),
        )

        self.assertEqual(result.text, "caption text")
        self.assertEqual(result.source, "captionTracks")
        self.assertEqual(result.attempted_providers, ("youtubei", "captionTracks"))


if __name__ == "__main__":
    unittest.main()
