"""
Tests for capability probes and the subprocess helper.
"""

import os
import subprocess
import sys
import tempfile
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from capabilities import CapabilityService
from subprocess_utils import resolve_executable, run_command
from transcript_config import TranscriptConfig
from transcript_errors import SubprocessTimeoutError


class TestCapabilityService(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.model_path = os.path.join(self.temp_dir.name, "ggml-base.bin")
        with open(self.model_path, "wb") as f:
            f.write(b"model")

    def tearDown(self):
        self.temp_dir.cleanup()

    @patch('capabilities.resolve_executable')
    def test_probes_are_memoized(self, mock_resolve):
        mock_resolve.return_value = "/usr/bin/ffmpeg"
        capabilities = CapabilityService(TranscriptConfig())

        self.assertTrue(capabilities.ffmpeg_available())
        self.assertTrue(capabilities.ffmpeg_available())
        mock_resolve.assert_called_once_with("ffmpeg")

    @patch('capabilities.resolve_executable')
    def test_whisper_cpp_needs_binary_and_model(self, mock_resolve):
        mock_resolve.return_value = "/usr/local/bin/whisper-cli"

        ready = CapabilityService(TranscriptConfig(whisper_cpp_binary="whisper-cli",
                                                   whisper_cpp_model_path=self.model_path))
        self.assertTrue(ready.whisper_cpp_ready())
        self.assertEqual(ready.whisper_cpp_executable(), "/usr/local/bin/whisper-cli")

        no_model = CapabilityService(TranscriptConfig(whisper_cpp_binary="whisper-cli",
                                                      whisper_cpp_model_path=self.model_path + ".missing"))
        self.assertFalse(no_model.whisper_cpp_ready())

        mock_resolve.return_value = None
        no_binary = CapabilityService(TranscriptConfig(whisper_cpp_binary="whisper-cli",
                                                       whisper_cpp_model_path=self.model_path))
        self.assertFalse(no_binary.whisper_cpp_ready())

    @patch('capabilities.resolve_executable')
    def test_backend_hints(self, mock_resolve):
        mock_resolve.return_value = None
        capabilities = CapabilityService(TranscriptConfig())

        self.assertFalse(capabilities.has_transcription_backend(None, None))
        self.assertTrue(capabilities.has_transcription_backend(None, "fal"))
        self.assertEqual(capabilities.transcription_provider_hint("sk", "fal"), "openai->fal")
        self.assertEqual(capabilities.transcription_provider_hint(None, "fal"), "fal")
        self.assertEqual(capabilities.transcription_provider_hint(None, None), "unknown")
        self.assertEqual(capabilities.transcription_model_id("sk", None), "whisper-1")
        self.assertEqual(capabilities.transcription_model_id("sk", "fal"), "whisper-1->fal-ai/wizper")
        self.assertIsNone(capabilities.transcription_model_id(None, None))

    @patch('capabilities.resolve_executable')
    def test_local_backend_preferred(self, mock_resolve):
        mock_resolve.return_value = "/usr/local/bin/whisper-cli"
        capabilities = CapabilityService(TranscriptConfig(whisper_cpp_binary="whisper-cli",
                                                          whisper_cpp_model_path=self.model_path))

        self.assertEqual(capabilities.transcription_provider_hint("sk", "fal"), "cpp")
        self.assertEqual(capabilities.transcription_model_id("sk", None), "whisper.cpp")


class TestSubprocessUtils(unittest.TestCase):

    @patch('subprocess_utils.subprocess.run')
    def test_run_command_passes_timeout(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(["yt-dlp"], 0, b"ok", b"")

        result = run_command(("yt-dlp", "--version"), timeout=15, input_bytes=b"in")

        self.assertEqual(result.stdout, b"ok")
        mock_run.assert_called_once_with(["yt-dlp", "--version"], input=b"in", capture_output=True,
                                         timeout=15, check=False)

    @patch('subprocess_utils.subprocess.run')
    def test_run_command_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["ffmpeg"], 5)

        with self.assertRaises(SubprocessTimeoutError) as ctx:
            run_command(["ffmpeg", "-i", "a.mp3"], timeout=5)

        self.assertEqual(str(ctx.exception), "ffmpeg timed out after 5s")
        self.assertEqual(ctx.exception.command, ["ffmpeg", "-i", "a.mp3"])

    @patch('subprocess_utils.shutil.which')
    def test_resolve_executable(self, mock_which):
        mock_which.return_value = "/usr/bin/ffprobe"

        self.assertEqual(resolve_executable("ffprobe"), "/usr/bin/ffprobe")
        self.assertIsNone(resolve_executable(None))
        self.assertIsNone(resolve_executable(""))
        mock_which.assert_called_once_with("ffprobe")


if __name__ == "__main__":
    unittest.main()
