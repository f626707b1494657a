"""
Tests for the ffmpeg/ffprobe wrapper.
"""

import os
import subprocess
import sys
import tempfile
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ffmpeg_service import FFmpegError, FFmpegService, _classify_ffmpeg_error, _extract_stderr_lines


def _completed(returncode=0, stdout=b"", stderr=b""):
    return subprocess.CompletedProcess(["ffmpeg"], returncode, stdout=stdout, stderr=stderr)


class TestStderrHelpers(unittest.TestCase):

    def test_masks_urls_and_limits_lines(self):
        stderr = b"https://cdn.example.com/a.mp3?sig=x: Invalid data found\nline two\nline three\n"
        self.assertEqual(_extract_stderr_lines(stderr), "***MASKED_URL*** Invalid data found\nline two")
        self.assertEqual(_extract_stderr_lines(None), "")

    def test_classification(self):
        self.assertEqual(_classify_ffmpeg_error("Invalid data found when processing input", 1), "format_error")
        self.assertEqual(_classify_ffmpeg_error("Premature EOF", 1), "eof_error")
        self.assertEqual(_classify_ffmpeg_error("a.mp3: No such file or directory", 1), "missing_input")
        self.assertEqual(_classify_ffmpeg_error("something odd", 3), "ffmpeg_error_3")
        self.assertEqual(_classify_ffmpeg_error("", 137), "exit_code_137")


@patch('ffmpeg_service.run_command')
class TestFFmpegService(unittest.TestCase):

    def setUp(self):
        self.service = FFmpegService("/usr/bin/ffmpeg", "/usr/bin/ffprobe", timeout=120)

    def test_probe_duration(self, mock_run):
        mock_run.return_value = _completed(stdout=b'{"format": {"duration": "3723.5"}}')

        self.assertEqual(self.service.probe_duration_seconds("/tmp/a.mp3"), 3723.5)
        cmd = mock_run.call_args[0][0]
        self.assertEqual(cmd[0], "/usr/bin/ffprobe")
        self.assertEqual(cmd[-1], "/tmp/a.mp3")
        self.assertEqual(mock_run.call_args.kwargs["timeout"], 30)

    def test_probe_duration_unusable(self, mock_run):
        mock_run.return_value = _completed(stdout=b"not json")
        self.assertIsNone(self.service.probe_duration_seconds("/tmp/a.mp3"))

        mock_run.return_value = _completed(stdout=b'{"format": {}}')
        self.assertIsNone(self.service.probe_duration_seconds("/tmp/a.mp3"))

    def test_probe_failure_raises(self, mock_run):
        mock_run.return_value = _completed(returncode=1, stderr=b"Invalid data found when processing input")

        with self.assertRaises(FFmpegError) as ctx:
            self.service.probe_duration_seconds("/tmp/a.mp3")

        self.assertEqual(ctx.exception.classification, "format_error")
        self.assertEqual(ctx.exception.returncode, 1)

    def test_segment_audio(self, mock_run):
        with tempfile.TemporaryDirectory() as out_dir:
            def write_segments(cmd, timeout):
                for index in (1, 0):
                    with open(os.path.join(out_dir, f"part-{index:03d}.mp3"), "wb") as f:
                        f.write(b"x")
                return _completed()

            mock_run.side_effect = write_segments
            segments = self.service.segment_audio("/tmp/long.mp3", out_dir, 600)

            self.assertEqual([os.path.basename(s) for s in segments], ["part-000.mp3", "part-001.mp3"])
            cmd = mock_run.call_args[0][0]
            self.assertEqual(cmd[cmd.index("-segment_time") + 1], "600")
            self.assertEqual(cmd[-1], os.path.join(out_dir, "part-%03d.mp3"))

    def test_segment_audio_without_output(self, mock_run):
        mock_run.return_value = _completed()
        with tempfile.TemporaryDirectory() as out_dir:
            with self.assertRaises(FFmpegError) as ctx:
                self.service.segment_audio("/tmp/long.mp3", out_dir, 600)
        self.assertEqual(ctx.exception.classification, "no_output")

    def test_convert_to_wav(self, mock_run):
        with tempfile.TemporaryDirectory() as out_dir:
            out_path = os.path.join(out_dir, "audio.wav")

            def write_wav(cmd, timeout):
                with open(cmd[-1], "wb") as f:
                    f.write(b"RIFF")
                return _completed()

            mock_run.side_effect = write_wav
            self.assertEqual(self.service.convert_to_wav("/tmp/a.mp3", out_path), out_path)
            self.assertIn("pcm_s16le", mock_run.call_args[0][0])


if __name__ == "__main__":
    unittest.main()
