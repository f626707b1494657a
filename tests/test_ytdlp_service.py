"""
Unit tests for ytdlp_service with a mocked yt-dlp binary.

All tests mock run_command so no process is spawned. Tests cover the
command line, fail_class classification, output discovery and the hand-off
to local-file transcription.
"""

import unittest
from unittest import mock
import os
import subprocess
import tempfile
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import ytdlp_service
from transcript_errors import MediaTooLargeError, SubprocessTimeoutError
from transcript_types import ProviderFetchOptions, TranscriptionResult


def _completed(returncode=0, stderr=b""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=b"", stderr=stderr)


def _writes_audio(ext="m4a", data=b"audio-bytes"):
    """run_command side effect that drops an audio file where yt-dlp would."""
    def run(cmd, timeout):
        template = cmd[cmd.index("-o") + 1]
        path = template.replace("%(ext)s", ext)
        with open(path, "wb") as f:
            f.write(data)
        return _completed()
    return run


class TestClassifyYtdlpError(unittest.TestCase):

    def test_fail_classes(self):
        cases = {
            "ERROR: [youtube] abc: Private video": "video_unavailable",
            "ERROR: Video is not available in your country": "geo_blocked",
            "ERROR: Sign in to confirm your age": "auth_required",
            "ERROR: Unable to download webpage: timed out": "network_error",
            "ERROR: Unsupported URL: https://example.com": "extraction_error",
            "": "unknown",
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(ytdlp_service._classify_ytdlp_error(text), expected)

    def test_stderr_tail_keeps_last_lines(self):
        stderr = b"line one\n\nline two\nline three\n"
        self.assertEqual(ytdlp_service._stderr_tail(stderr), "line two\nline three")
        self.assertEqual(ytdlp_service._stderr_tail(None), "")


class TestDownloadAudio(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.out_dir = self.temp_dir.name

    def tearDown(self):
        self.temp_dir.cleanup()

    @mock.patch('ytdlp_service.run_command')
    def test_command_line_and_output(self, mock_run):
        mock_run.side_effect = _writes_audio("webm")

        path = ytdlp_service.download_audio("/usr/bin/yt-dlp", "https://x.com/a/status/1", self.out_dir, 120,
                                            ["--cookies-from-browser", "chrome"])

        self.assertEqual(path, os.path.join(self.out_dir, "audio.webm"))
        cmd = mock_run.call_args[0][0]
        self.assertEqual(cmd[0], "/usr/bin/yt-dlp")
        self.assertIn("bestaudio/best", cmd)
        self.assertIn("--no-playlist", cmd)
        self.assertEqual(cmd[-3:], ["--cookies-from-browser", "chrome", "https://x.com/a/status/1"])
        self.assertEqual(mock_run.call_args.kwargs["timeout"], 120)

    @mock.patch('ytdlp_service.run_command')
    def test_nonzero_exit_raises_with_fail_class(self, mock_run):
        mock_run.return_value = _completed(1, b"WARNING: x\nERROR: Private video\n")

        with self.assertRaises(ytdlp_service.YtDlpError) as ctx:
            ytdlp_service.download_audio("yt-dlp", "https://youtu.be/dQw4w9WgXcQ", self.out_dir, 60)

        self.assertEqual(ctx.exception.fail_class, "video_unavailable")
        self.assertIn("Private video", str(ctx.exception))

    @mock.patch('ytdlp_service.run_command')
    def test_no_output_file(self, mock_run):
        mock_run.return_value = _completed()

        with self.assertRaises(ytdlp_service.YtDlpError) as ctx:
            ytdlp_service.download_audio("yt-dlp", "https://youtu.be/dQw4w9WgXcQ", self.out_dir, 60)

        self.assertEqual(ctx.exception.fail_class, "no_output")


class TestTranscribeWithYtdlp(unittest.TestCase):

    def _options(self, **overrides):
        capabilities = mock.MagicMock()
        capabilities.has_transcription_backend.return_value = True
        defaults = {"yt_dlp_path": "/usr/bin/yt-dlp"}
        defaults.update(overrides)
        return ProviderFetchOptions(session=mock.MagicMock(), capabilities=capabilities, **defaults)

    def test_not_configured(self):
        result = ytdlp_service.transcribe_with_ytdlp(self._options(yt_dlp_path=None), "https://youtu.be/x")
        self.assertIsNone(result.text)
        self.assertEqual(result.error.fail_class, "config_error")

    @mock.patch('ytdlp_service.transcribe_local_file')
    @mock.patch('ytdlp_service.run_command')
    def test_downloads_then_transcribes(self, mock_run, mock_local):
        mock_run.side_effect = _writes_audio("m4a", b"12345")
        mock_local.return_value = TranscriptionResult("spoken words", "openai")
        events = []

        result = ytdlp_service.transcribe_with_ytdlp(self._options(on_progress=events.append),
                                                     "https://youtu.be/dQw4w9WgXcQ", service="youtube")

        self.assertEqual(result.text, "spoken words")
        path = mock_local.call_args[0][1]
        self.assertTrue(path.endswith("audio.m4a"))
        self.assertEqual(mock_local.call_args.kwargs["service"], "youtube")
        self.assertEqual([e.kind for e in events],
                         ["transcript-media-download-start", "transcript-media-download-done"])
        self.assertEqual(events[1].downloaded_bytes, 5)
        # Temp directory is gone afterwards
        self.assertFalse(os.path.exists(path))

    @mock.patch('ytdlp_service.run_command')
    def test_download_failure_becomes_note(self, mock_run):
        mock_run.return_value = _completed(1, b"ERROR: Unsupported URL: https://example.com")

        result = ytdlp_service.transcribe_with_ytdlp(self._options(), "https://example.com")

        self.assertIsNone(result.text)
        self.assertEqual(result.error.fail_class, "extraction_error")
        self.assertTrue(result.notes[0].startswith("yt-dlp download failed: yt-dlp exited with 1"))

    @mock.patch('ytdlp_service.run_command')
    def test_timeout_becomes_note(self, mock_run):
        mock_run.side_effect = SubprocessTimeoutError(["yt-dlp"], 600)

        result = ytdlp_service.transcribe_with_ytdlp(self._options(), "https://youtu.be/dQw4w9WgXcQ")

        self.assertIsInstance(result.error, SubprocessTimeoutError)
        self.assertEqual(result.notes, ["yt-dlp download failed: yt-dlp timed out after 600s"])

    @mock.patch('ytdlp_service.transcribe_local_file')
    @mock.patch('ytdlp_service.run_command')
    def test_media_too_large_propagates(self, mock_run, mock_local):
        mock_run.side_effect = _writes_audio()
        mock_local.side_effect = MediaTooLargeError("too large", 600, 512)

        with self.assertRaises(MediaTooLargeError):
            ytdlp_service.transcribe_with_ytdlp(self._options(), "https://youtu.be/dQw4w9WgXcQ")


if __name__ == '__main__':
    unittest.main()
