"""
Tests for URL classification and text helpers.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from transcript_utils import (
    decode_xml_entities, extract_embedded_youtube_url, extract_youtube_video_id,
    file_url_to_path, format_bytes, is_direct_media_url, is_file_url, is_twitter_status_url,
    normalize_loose_title, normalize_transcript_text, parse_duration_seconds, path_to_file_url,
)


class TestParseDuration(unittest.TestCase):

    def test_clock_formats(self):
        self.assertEqual(parse_duration_seconds("1:02:03"), 3723)
        self.assertEqual(parse_duration_seconds("02:03"), 123)

    def test_plain_seconds(self):
        self.assertEqual(parse_duration_seconds("45"), 45)
        self.assertEqual(parse_duration_seconds(" <![CDATA[3723]]> "), 3723)

    def test_invalid_values(self):
        for raw in (None, "", "a:b", "0", "00:00", "1:2:3:4", "1::2", "-1:00"):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_duration_seconds(raw))

    def test_non_ascii_digits(self):
        for raw in ("\u00b2", "\u0661\u0662\u0663", "\u00b2:03", "1:\u00b3"):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_duration_seconds(raw))


class TestYouTubeIds(unittest.TestCase):

    def test_url_shapes(self):
        cases = [
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ",
            "https://m.youtube.com/watch?v=dQw4w9WgXcQ&t=42",
            "https://www.youtube.com/shorts/dQw4w9WgXcQ",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
            "https://music.youtube.com/watch?v=dQw4w9WgXcQ",
        ]
        for url in cases:
            with self.subTest(url=url):
                self.assertEqual(extract_youtube_video_id(url), "dQw4w9WgXcQ")

    def test_rejects_non_video_urls(self):
        self.assertIsNone(extract_youtube_video_id("https://www.youtube.com/channel/UC123"))
        self.assertIsNone(extract_youtube_video_id("https://www.youtube.com/watch?v=short"))
        self.assertIsNone(extract_youtube_video_id("https://example.com/watch?v=dQw4w9WgXcQ"))

    def test_embedded_iframe(self):
        page = '<p>x</p><iframe width="560" src="https://www.youtube-nocookie.com/embed/dQw4w9WgXcQ?rel=0"></iframe>'
        self.assertEqual(extract_embedded_youtube_url(page), "https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        self.assertIsNone(extract_embedded_youtube_url("<p>no video</p>"))


class TestUrlClassification(unittest.TestCase):

    def test_twitter_status(self):
        self.assertTrue(is_twitter_status_url("https://x.com/someone/status/1234567890"))
        self.assertTrue(is_twitter_status_url("https://twitter.com/someone/status/1234567890?s=20"))
        self.assertFalse(is_twitter_status_url("https://x.com/someone"))
        self.assertFalse(is_twitter_status_url("https://example.com/someone/status/1"))

    def test_direct_media(self):
        self.assertTrue(is_direct_media_url("https://cdn.example.com/ep1.MP3?token=abc"))
        self.assertFalse(is_direct_media_url("https://example.com/episode"))
        self.assertFalse(is_direct_media_url("file:///tmp/a.mp3"))

    def test_file_urls(self):
        url = path_to_file_url("/tmp/my episode.mp3")
        self.assertTrue(is_file_url(url))
        self.assertEqual(file_url_to_path(url), "/tmp/my episode.mp3")


class TestTextHelpers(unittest.TestCase):

    def test_normalize_transcript_text(self):
        raw = "Hello&nbsp;&amp;   welcome\r\n\r\n  to the   show \n"
        self.assertEqual(normalize_transcript_text(raw), "Hello & welcome\nto the show")
        self.assertEqual(normalize_transcript_text(""), "")

    def test_decode_xml_entities(self):
        self.assertEqual(decode_xml_entities("Tom &amp; Jerry &lt;3 &#38; &apos;hi&apos;"), "Tom & Jerry <3 & 'hi'")

    def test_normalize_loose_title(self):
        self.assertEqual(normalize_loose_title("Épisode #12: Café Talk!"), "episode 12 cafe talk")

    def test_format_bytes(self):
        self.assertEqual(format_bytes(512), "512 B")
        self.assertEqual(format_bytes(1536), "1.5 KB")
        self.assertEqual(format_bytes(600 * 1024 * 1024), "600 MB")
        self.assertEqual(format_bytes(-5), "0 B")


if __name__ == "__main__":
    unittest.main()
