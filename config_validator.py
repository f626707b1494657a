#!/usr/bin/env python3
"""
Configuration validation for the transcript pipeline
"""
import os
import logging
from typing import Dict, Any, Mapping, Optional
from dataclasses import dataclass

from subprocess_utils import resolve_executable
from transcript_config import TranscriptConfig, YOUTUBE_TRANSCRIPT_MODES


@dataclass
class ConfigValidationResult:
    """Result of configuration validation"""
    is_valid: bool
    errors: list[str]
    warnings: list[str]
    config: Dict[str, Any]


class ConfigValidator:
    """Checks credentials, binaries and mode prerequisites before the first resolution"""

    def __init__(self, config: Optional[TranscriptConfig] = None, env: Optional[Mapping[str, str]] = None):
        self.logger = logging.getLogger(__name__)
        self.env = os.environ if env is None else env
        self.transcript_config = config

    def validate_all_config(self) -> ConfigValidationResult:
        """Validate all configuration settings"""
        errors = []
        warnings = []
        config = {}

        transcript_config = self.transcript_config or TranscriptConfig.from_env()

        mode_config, mode_errors, mode_warnings = self._validate_youtube_mode(transcript_config)
        config.update(mode_config)
        errors.extend(mode_errors)
        warnings.extend(mode_warnings)

        binary_config, binary_errors, binary_warnings = self._validate_binaries(transcript_config)
        config.update(binary_config)
        errors.extend(binary_errors)
        warnings.extend(binary_warnings)

        backend_config, backend_errors, backend_warnings = self._validate_transcription_backends(
            transcript_config, binary_config.get("whisper_cpp_ready", False)
        )
        config.update(backend_config)
        errors.extend(backend_errors)
        warnings.extend(backend_warnings)

        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            config=config
        )

    def _validate_youtube_mode(self, transcript_config: TranscriptConfig) -> tuple[Dict[str, Any], list[str], list[str]]:
        config = {"youtube_mode": transcript_config.youtube_mode}
        errors = []
        warnings = []

        raw_mode = (self.env.get("YOUTUBE_TRANSCRIPT_MODE") or "").strip().lower()
        if raw_mode and raw_mode not in YOUTUBE_TRANSCRIPT_MODES:
            errors.append(
                f"YOUTUBE_TRANSCRIPT_MODE must be one of {', '.join(YOUTUBE_TRANSCRIPT_MODES)}, got '{raw_mode}'"
            )

        return config, errors, warnings

    def _validate_binaries(self, transcript_config: TranscriptConfig) -> tuple[Dict[str, Any], list[str], list[str]]:
        """Configured binaries must resolve to an executable"""
        config = {}
        errors = []
        warnings = []

        binaries = {
            "yt_dlp": (transcript_config.yt_dlp_path, "YT_DLP_PATH"),
            "whisper_cpp": (transcript_config.whisper_cpp_binary, "WHISPER_CPP_BINARY"),
            "ffmpeg": (transcript_config.ffmpeg_path, "FFMPEG_PATH"),
            "ffprobe": (transcript_config.ffprobe_path, "FFPROBE_PATH"),
        }

        for name, (value, env_var) in binaries.items():
            if not value:
                config[f"{name}_available"] = False
                continue
            available = resolve_executable(value) is not None
            config[f"{name}_available"] = available
            if not available:
                warnings.append(f"{env_var}={value} is not an executable file or not on PATH")

        if not config["ffmpeg_available"]:
            warnings.append("ffmpeg not found; long media will be transcribed from a truncated clip")

        model_path = transcript_config.whisper_cpp_model_path
        model_present = bool(model_path) and os.path.isfile(model_path)
        if model_path and not model_present:
            warnings.append(f"WHISPER_CPP_MODEL_PATH={model_path} does not exist")
        config["whisper_cpp_ready"] = config["whisper_cpp_available"] and model_present

        return config, errors, warnings

    def _validate_transcription_backends(self, transcript_config: TranscriptConfig,
                                         whisper_cpp_ready: bool) -> tuple[Dict[str, Any], list[str], list[str]]:
        config = {
            "openai_configured": bool(transcript_config.openai_api_key),
            "fal_configured": bool(transcript_config.fal_api_key),
            "apify_configured": bool(transcript_config.apify_api_token),
        }
        errors = []
        warnings = []

        has_backend = whisper_cpp_ready or config["openai_configured"] or config["fal_configured"]
        config["transcription_backend_available"] = has_backend

        if not has_backend:
            warnings.append(
                "No transcription backend configured (install whisper-cpp or set OPENAI_API_KEY/FAL_KEY); "
                "audio transcription is disabled"
            )

        if transcript_config.youtube_mode == "yt-dlp":
            if not transcript_config.yt_dlp_path:
                errors.append("YOUTUBE_TRANSCRIPT_MODE=yt-dlp requires YT_DLP_PATH")
            if not has_backend:
                errors.append("YOUTUBE_TRANSCRIPT_MODE=yt-dlp requires a transcription backend")

        if transcript_config.youtube_mode == "apify" and not config["apify_configured"]:
            warnings.append("YOUTUBE_TRANSCRIPT_MODE=apify without APIFY_API_TOKEN; YouTube transcripts will be skipped")

        return config, errors, warnings

    def validate_runtime_config(self) -> Dict[str, Any]:
        """Validate and log, returning the summarized config"""
        result = self.validate_all_config()

        if not result.is_valid:
            self.logger.error("Configuration validation failed:")
            for error in result.errors:
                self.logger.error(f"  - {error}")

        if result.warnings:
            self.logger.warning("Configuration warnings:")
            for warning in result.warnings:
                self.logger.warning(f"  - {warning}")

        return result.config


def validate_startup_config(config: Optional[TranscriptConfig] = None) -> bool:
    """Validate configuration once at startup; logs every finding"""
    result = ConfigValidator(config).validate_all_config()

    for error in result.errors:
        logging.error(f"Configuration error: {error}")
    for warning in result.warnings:
        logging.warning(f"Configuration warning: {warning}")

    if result.is_valid:
        logging.info("Configuration validation passed")
    else:
        logging.error("Configuration validation failed - explicit modes will raise")

    return result.is_valid
