#!/usr/bin/env python3
"""
Configuration Management for Transcript Resolution

Centralizes binary paths, credentials, timeouts and size limits for the
provider pipeline. Settings are loaded from environment variables with
sensible defaults and clamped to safe ranges.
"""

import os
from dataclasses import dataclass
from typing import Optional

from logging_setup import get_logger

logger = get_logger(__name__)

YOUTUBE_TRANSCRIPT_MODES = ("auto", "web", "apify", "yt-dlp", "no-auto")
CACHE_MODES = ("default", "bypass")

MB = 1024 * 1024


@dataclass
class TranscriptConfig:
    """Configuration for the transcript pipeline."""

    # Credentials
    openai_api_key: Optional[str] = None
    fal_api_key: Optional[str] = None
    apify_api_token: Optional[str] = None

    # External binaries
    yt_dlp_path: Optional[str] = None
    whisper_cpp_binary: Optional[str] = None
    whisper_cpp_model_path: Optional[str] = None
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    sqlite3_path: str = "sqlite3"

    # Behaviour
    youtube_mode: str = "auto"
    transcript_timestamps: bool = False
    cache_mode: str = "default"
    cache_ttl_days: int = 30

    # Cookie sources
    twitter_cookie_source: Optional[str] = None
    twitter_chrome_profile: Optional[str] = None
    twitter_firefox_profile: Optional[str] = None

    # Timeouts (seconds)
    http_timeout: int = 30
    transcription_timeout: int = 600
    subprocess_timeout: int = 30

    # Size limits
    max_remote_media_mb: int = 512
    max_upload_mb: int = 24
    chunk_seconds: int = 600
    max_html_mb: int = 5

    @classmethod
    def from_env(cls) -> 'TranscriptConfig':
        """Load configuration from environment variables with validation."""
        config = cls(
            openai_api_key=cls._parse_str_env("OPENAI_API_KEY"),
            fal_api_key=cls._parse_str_env("FAL_KEY"),
            apify_api_token=cls._parse_str_env("APIFY_API_TOKEN"),

            yt_dlp_path=cls._parse_str_env("YT_DLP_PATH"),
            whisper_cpp_binary=cls._parse_str_env("WHISPER_CPP_BINARY"),
            whisper_cpp_model_path=cls._parse_str_env("WHISPER_CPP_MODEL_PATH"),
            ffmpeg_path=cls._parse_str_env("FFMPEG_PATH") or "ffmpeg",
            ffprobe_path=cls._parse_str_env("FFPROBE_PATH") or "ffprobe",
            sqlite3_path=cls._parse_str_env("SQLITE3_PATH") or "sqlite3",

            youtube_mode=cls._parse_choice_env("YOUTUBE_TRANSCRIPT_MODE", "auto", YOUTUBE_TRANSCRIPT_MODES),
            transcript_timestamps=cls._parse_bool_env("TRANSCRIPT_TIMESTAMPS", False),
            cache_mode=cls._parse_choice_env("TRANSCRIPT_CACHE_MODE", "default", CACHE_MODES),
            cache_ttl_days=cls._parse_int_env("TRANSCRIPT_CACHE_TTL_DAYS", 30, min_val=0, max_val=365),

            twitter_cookie_source=cls._parse_str_env("TWITTER_COOKIE_SOURCE"),
            twitter_chrome_profile=cls._parse_str_env("TWITTER_CHROME_PROFILE"),
            twitter_firefox_profile=cls._parse_str_env("TWITTER_FIREFOX_PROFILE"),

            http_timeout=cls._parse_int_env("HTTP_TIMEOUT", 30, min_val=5, max_val=300),
            transcription_timeout=cls._parse_int_env("TRANSCRIPTION_TIMEOUT", 600, min_val=30, max_val=3600),
            subprocess_timeout=cls._parse_int_env("SUBPROCESS_TIMEOUT", 30, min_val=5, max_val=600),

            max_remote_media_mb=cls._parse_int_env("MAX_REMOTE_MEDIA_MB", 512, min_val=1, max_val=512),
            max_upload_mb=cls._parse_int_env("MAX_UPLOAD_MB", 24, min_val=1, max_val=24),
            chunk_seconds=cls._parse_int_env("CHUNK_SECONDS", 600, min_val=60, max_val=1800),
            max_html_mb=cls._parse_int_env("MAX_HTML_MB", 5, min_val=1, max_val=50),
        )

        config._validate_config()
        config._log_config()
        return config

    @staticmethod
    def _parse_str_env(env_var: str) -> Optional[str]:
        value = os.getenv(env_var)
        if value is None:
            return None
        value = value.strip()
        return value or None

    @staticmethod
    def _parse_bool_env(env_var: str, default: bool) -> bool:
        """Parse boolean environment variable."""
        value = os.getenv(env_var, str(default).lower())
        return value.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_int_env(env_var: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
        """Parse integer environment variable with validation."""
        try:
            value = int(os.getenv(env_var, str(default)))
        except (ValueError, TypeError):
            logger.error(f"Invalid value for {env_var}: {os.getenv(env_var)}, using default {default}")
            return default

        if min_val is not None and value < min_val:
            logger.warning(f"{env_var}={value} is below minimum {min_val}, using {min_val}")
            return min_val

        if max_val is not None and value > max_val:
            logger.warning(f"{env_var}={value} is above maximum {max_val}, using {max_val}")
            return max_val

        return value

    @staticmethod
    def _parse_choice_env(env_var: str, default: str, choices) -> str:
        value = (os.getenv(env_var) or default).strip().lower()
        if value not in choices:
            logger.warning(f"{env_var}={value} is not one of {', '.join(choices)}, using {default}")
            return default
        return value

    @property
    def max_remote_media_bytes(self) -> int:
        return self.max_remote_media_mb * MB

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * MB

    @property
    def max_html_bytes(self) -> int:
        return self.max_html_mb * MB

    @property
    def cache_ttl_ms(self) -> int:
        return self.cache_ttl_days * 24 * 60 * 60 * 1000

    def _validate_config(self) -> None:
        """Log warnings for problematic combinations."""
        warnings = []

        if self.youtube_mode == "yt-dlp" and not self.yt_dlp_path:
            warnings.append("YOUTUBE_TRANSCRIPT_MODE=yt-dlp but YT_DLP_PATH is not set")

        if self.whisper_cpp_binary and not self.whisper_cpp_model_path:
            warnings.append("WHISPER_CPP_BINARY is set without WHISPER_CPP_MODEL_PATH; local transcription disabled")

        if self.subprocess_timeout >= self.transcription_timeout:
            warnings.append(
                f"SUBPROCESS_TIMEOUT ({self.subprocess_timeout}s) should be less than "
                f"TRANSCRIPTION_TIMEOUT ({self.transcription_timeout}s)"
            )

        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

    def _log_config(self) -> None:
        logger.info("Transcript configuration loaded:")
        logger.info(f"  Mode: youtube={self.youtube_mode}, timestamps={self.transcript_timestamps}, cache={self.cache_mode}")
        logger.info(f"  Backends: openai={bool(self.openai_api_key)}, fal={bool(self.fal_api_key)}, "
                    f"whisper_cpp={bool(self.whisper_cpp_binary)}, apify={bool(self.apify_api_token)}")
        logger.info(f"  Timeouts: http={self.http_timeout}s, transcription={self.transcription_timeout}s, "
                    f"subprocess={self.subprocess_timeout}s")


_transcript_config: Optional[TranscriptConfig] = None


def get_transcript_config() -> TranscriptConfig:
    """Get the global transcript configuration instance."""
    global _transcript_config
    if _transcript_config is None:
        _transcript_config = TranscriptConfig.from_env()
    return _transcript_config


def reset_transcript_config() -> None:
    """Drop the cached configuration so the next access re-reads the environment."""
    global _transcript_config
    _transcript_config = None
