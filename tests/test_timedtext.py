#!/usr/bin/env python3
"""
Tests for caption-track discovery, track choice, response validation and parsing
"""
import json
import os
import sys
import unittest
from unittest.mock import MagicMock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import requests

from timedtext_service import (
    _parse_json3, _parse_xml, _pick_best_track, _validate_response, _with_format,
    extract_caption_tracks, fetch_caption_track_segments,
)

VIDEO_ID = "dQw4w9WgXcQ"


def _watch_html(tracks):
    player = {"captions": {"playerCaptionsTracklistRenderer": {"captionTracks": tracks}}}
    return f"<script>var ytInitialPlayerResponse = {json.dumps(player)};</script>"


def _resp(text, content_type="application/json", status_code=200):
    resp = MagicMock()
    resp.text = text
    resp.ok = status_code < 400
    resp.status_code = status_code
    resp.headers = {"content-type": content_type}
    return resp


JSON3_BODY = json.dumps({"events": [
    {"tStartMs": 0, "dDurationMs": 1200, "segs": [{"utf8": "Never gonna "}, {"utf8": "give you up"}]},
    {"tStartMs": 1200, "segs": [{"utf8": "\n"}]},
    {"tStartMs": 2500, "dDurationMs": 900, "segs": [{"utf8": "never gonna let you down"}]},
]})

XML_BODY = ('<?xml version="1.0" encoding="utf-8" ?><transcript>'
            '<text start="0.5" dur="1.25">Tom &amp;amp; Jerry</text>'
            '<text start="2">second</text></transcript>')


class TestTrackDiscovery(unittest.TestCase):

    def test_tracks_from_player_response(self):
        html = _watch_html([
            {"baseUrl": "/api/timedtext?v=x&lang=de", "languageCode": "de"},
            {"baseUrl": "https://www.youtube.com/api/timedtext?v=x&lang=en", "languageCode": "en", "kind": "asr"},
        ])

        tracks = extract_caption_tracks(html)

        self.assertEqual(len(tracks), 2)
        self.assertEqual(tracks[0]["base_url"], "https://www.youtube.com/api/timedtext?v=x&lang=de")
        self.assertEqual(tracks[1]["kind"], "asr")

    def test_no_tracks(self):
        self.assertEqual(extract_caption_tracks(""), [])
        self.assertEqual(extract_caption_tracks("<html>nothing</html>"), [])

    def test_pick_prefers_official_english(self):
        tracks = [
            {"base_url": "a", "lang": "de", "kind": ""},
            {"base_url": "b", "lang": "en", "kind": "asr"},
            {"base_url": "c", "lang": "en", "kind": ""},
        ]
        self.assertEqual(_pick_best_track(tracks, ["en", "en-US"])["base_url"], "c")

    def test_pick_falls_back_to_first(self):
        tracks = [{"base_url": "a", "lang": "de", "kind": ""}, {"base_url": "b", "lang": "fr", "kind": ""}]
        self.assertEqual(_pick_best_track(tracks, ["en"])["base_url"], "a")
        self.assertIsNone(_pick_best_track([], ["en"]))

    def test_with_format_replaces_fmt(self):
        url = _with_format("https://www.youtube.com/api/timedtext?v=x&fmt=srv3", "json3")
        self.assertEqual(url, "https://www.youtube.com/api/timedtext?v=x&fmt=json3")
        self.assertEqual(_with_format(url, None), "https://www.youtube.com/api/timedtext?v=x")


class TestParsing(unittest.TestCase):

    def test_json3(self):
        segments = _parse_json3(JSON3_BODY)
        self.assertEqual([s.text for s in segments], ["Never gonna give you up", "never gonna let you down"])
        self.assertEqual(segments[1].start_ms, 2500)
        self.assertEqual(segments[0].duration_ms, 1200)

    def test_json3_invalid(self):
        self.assertEqual(_parse_json3("not json"), [])

    def test_json3_unusable_offsets(self):
        body = json.dumps({"events": [
            {"tStartMs": "²", "dDurationMs": "soon", "segs": [{"utf8": "first"}]},
            {"tStartMs": None, "dDurationMs": float("inf"), "segs": [{"utf8": "second"}]},
            {"tStartMs": "4000", "dDurationMs": 900, "segs": [{"utf8": "third"}]},
        ]})

        segments = _parse_json3(body)

        self.assertEqual([(s.start_ms, s.duration_ms, s.text) for s in segments], [
            (0, None, "first"), (0, None, "second"), (4000, 900, "third"),
        ])

    def test_xml(self):
        segments = _parse_xml(XML_BODY)
        self.assertEqual(segments[0].text, "Tom & Jerry")
        self.assertEqual(segments[0].start_ms, 500)
        self.assertEqual(segments[0].duration_ms, 1250)
        self.assertIsNone(segments[1].duration_ms)


class TestValidation(unittest.TestCase):

    def test_valid(self):
        self.assertEqual(_validate_response(_resp(JSON3_BODY))[0], True)

    def test_status_error(self):
        is_valid, reason, _ = _validate_response(_resp("", status_code=429))
        self.assertFalse(is_valid)
        self.assertEqual(reason, "status=429")

    def test_empty_body(self):
        self.assertEqual(_validate_response(_resp(""))[1], "content_length=0")

    def test_consent_page(self):
        body = "<!DOCTYPE html><html>Before you continue to YouTube</html>"
        self.assertEqual(_validate_response(_resp(body, "text/html"))[1], "html_consent_page")

    def test_html_block_page(self):
        self.assertEqual(_validate_response(_resp("<html>blocked</html>", "text/html"))[1], "html_response")


class TestFetchCaptionTrackSegments(unittest.TestCase):

    def test_fetches_json3_from_page_track(self):
        session = MagicMock()
        session.get.return_value = _resp(JSON3_BODY)
        html = _watch_html([{"baseUrl": "https://www.youtube.com/api/timedtext?v=x&lang=en", "languageCode": "en"}])

        segments = fetch_caption_track_segments(session, html, VIDEO_ID, timeout=12)

        self.assertEqual(len(segments), 2)
        url = session.get.call_args[0][0]
        self.assertIn("fmt=json3", url)
        self.assertEqual(session.get.call_args.kwargs["timeout"], 12)
        self.assertEqual(session.get.call_args.kwargs["headers"]["Referer"],
                         f"https://www.youtube.com/watch?v={VIDEO_ID}")

    def test_falls_back_to_xml(self):
        session = MagicMock()
        session.get.side_effect = [_resp("", status_code=404), _resp(XML_BODY, "text/xml")]
        html = _watch_html([{"baseUrl": "https://www.youtube.com/api/timedtext?v=x&lang=en", "languageCode": "en"}])

        segments = fetch_caption_track_segments(session, html, VIDEO_ID)

        self.assertEqual([s.text for s in segments], ["Tom & Jerry", "second"])
        self.assertNotIn("fmt=", session.get.call_args[0][0])

    def test_track_list_discovery_without_html(self):
        track_list = '<transcript_list><track id="0" name="" lang_code="en" kind=""/></transcript_list>'
        session = MagicMock()
        session.get.side_effect = [_resp(track_list, "text/xml"), _resp(JSON3_BODY)]

        segments = fetch_caption_track_segments(session, None, VIDEO_ID)

        self.assertEqual(len(segments), 2)
        self.assertIn("type=list", session.get.call_args_list[0][0][0])
        self.assertIn("lang=en", session.get.call_args_list[1][0][0])

    def test_consent_wall_stops(self):
        session = MagicMock()
        session.get.return_value = _resp("<html>Before you continue to YouTube</html>", "text/html")
        html = _watch_html([{"baseUrl": "https://www.youtube.com/api/timedtext?v=x&lang=en", "languageCode": "en"}])

        self.assertEqual(fetch_caption_track_segments(session, html, VIDEO_ID), [])
        self.assertEqual(session.get.call_count, 1)

    def test_network_errors_return_empty(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("reset")

        self.assertEqual(fetch_caption_track_segments(session, None, VIDEO_ID), [])
        # Two list endpoints, no track fetches
        self.assertEqual(session.get.call_count, 2)


if __name__ == "__main__":
    unittest.main()
