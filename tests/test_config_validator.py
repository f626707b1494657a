#!/usr/bin/env python3
"""
Tests for startup configuration validation
"""
import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config_validator import ConfigValidator, ConfigValidationResult, validate_startup_config
from transcript_config import TranscriptConfig


def _which(available):
    def resolve(value):
        return f"/usr/bin/{value}" if value in available else None
    return resolve


class TestConfigValidator(unittest.TestCase):

    @patch('config_validator.resolve_executable')
    def test_valid_configuration(self, mock_resolve):
        mock_resolve.side_effect = _which({"ffmpeg", "ffprobe", "yt-dlp"})
        config = TranscriptConfig(openai_api_key="sk", yt_dlp_path="yt-dlp")

        result = ConfigValidator(config, env={}).validate_all_config()

        self.assertIsInstance(result, ConfigValidationResult)
        self.assertTrue(result.is_valid)
        self.assertEqual(result.warnings, [])
        self.assertTrue(result.config["yt_dlp_available"])
        self.assertTrue(result.config["transcription_backend_available"])
        self.assertFalse(result.config["whisper_cpp_ready"])

    @patch('config_validator.resolve_executable')
    def test_invalid_mode_from_env(self, mock_resolve):
        mock_resolve.side_effect = _which({"ffmpeg", "ffprobe"})
        config = TranscriptConfig(openai_api_key="sk")

        result = ConfigValidator(config, env={"YOUTUBE_TRANSCRIPT_MODE": "Turbo"}).validate_all_config()

        self.assertFalse(result.is_valid)
        self.assertIn("got 'turbo'", result.errors[0])

    @patch('config_validator.resolve_executable')
    def test_ytdlp_mode_prerequisites(self, mock_resolve):
        mock_resolve.side_effect = _which({"ffmpeg", "ffprobe"})
        config = TranscriptConfig(youtube_mode="yt-dlp")

        result = ConfigValidator(config, env={}).validate_all_config()

        self.assertFalse(result.is_valid)
        self.assertIn("YOUTUBE_TRANSCRIPT_MODE=yt-dlp requires YT_DLP_PATH", result.errors)
        self.assertIn("YOUTUBE_TRANSCRIPT_MODE=yt-dlp requires a transcription backend", result.errors)

    @patch('config_validator.resolve_executable')
    def test_apify_mode_without_token_warns(self, mock_resolve):
        mock_resolve.side_effect = _which({"ffmpeg", "ffprobe"})
        config = TranscriptConfig(youtube_mode="apify", fal_api_key="fal")

        result = ConfigValidator(config, env={}).validate_all_config()

        self.assertTrue(result.is_valid)
        self.assertTrue(any("without APIFY_API_TOKEN" in w for w in result.warnings))

    @patch('config_validator.resolve_executable')
    def test_missing_binaries_and_backend_warn(self, mock_resolve):
        mock_resolve.return_value = None
        config = TranscriptConfig(yt_dlp_path="/opt/yt-dlp", whisper_cpp_binary="whisper-cli",
                                  whisper_cpp_model_path="/nonexistent/ggml-base.bin")

        result = ConfigValidator(config, env={}).validate_all_config()

        self.assertTrue(result.is_valid)
        self.assertIn("YT_DLP_PATH=/opt/yt-dlp is not an executable file or not on PATH", result.warnings)
        self.assertIn("WHISPER_CPP_MODEL_PATH=/nonexistent/ggml-base.bin does not exist", result.warnings)
        self.assertTrue(any(w.startswith("ffmpeg not found") for w in result.warnings))
        self.assertTrue(any(w.startswith("No transcription backend configured") for w in result.warnings))
        self.assertFalse(result.config["transcription_backend_available"])

    @patch('config_validator.resolve_executable')
    def test_validate_startup_config(self, mock_resolve):
        mock_resolve.side_effect = _which({"ffmpeg", "ffprobe"})

        self.assertTrue(validate_startup_config(TranscriptConfig(openai_api_key="sk")))
        self.assertFalse(validate_startup_config(TranscriptConfig(youtube_mode="yt-dlp")))


if __name__ == '__main__':
    unittest.main()
