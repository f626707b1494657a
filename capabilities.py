"""
Process-lifetime capability probes.

One ``CapabilityService`` is built per process (or per ``TranscriptService``)
and passed by reference to every component that needs to know which local
tools are installed. Probe results are memoized on the instance, so tests can
construct a fresh service or substitute a stub.
"""

import os
from typing import Dict, Optional

from logging_setup import get_logger
from log_events import evt
from subprocess_utils import resolve_executable

logger = get_logger(__name__)

WHISPER_CPP_MODEL_ID = "whisper.cpp"
OPENAI_MODEL_ID = "whisper-1"
FAL_MODEL_ID = "fal-ai/wizper"


class CapabilityService:
    """Memoized checks for local binaries and transcription backends."""

    def __init__(self, config):
        self.whisper_cpp_binary = config.whisper_cpp_binary
        self.whisper_cpp_model_path = config.whisper_cpp_model_path
        self.ffmpeg_path = config.ffmpeg_path
        self.ffprobe_path = config.ffprobe_path
        self._cache: Dict[str, Optional[str]] = {}

    def _resolve(self, name: str, path_or_name: Optional[str]) -> Optional[str]:
        if name not in self._cache:
            resolved = resolve_executable(path_or_name)
            self._cache[name] = resolved
            evt("capability_probe", capability=name, outcome="available" if resolved else "missing")
        return self._cache[name]

    def whisper_cpp_ready(self) -> bool:
        """whisper.cpp binary resolvable and its model file present."""
        if "whisper_cpp_model" not in self._cache:
            model = self.whisper_cpp_model_path
            self._cache["whisper_cpp_model"] = model if model and os.path.isfile(model) else None
        binary = self._resolve("whisper_cpp", self.whisper_cpp_binary)
        return bool(binary and self._cache["whisper_cpp_model"])

    def whisper_cpp_executable(self) -> Optional[str]:
        return self._resolve("whisper_cpp", self.whisper_cpp_binary)

    def ffmpeg_available(self) -> bool:
        return self._resolve("ffmpeg", self.ffmpeg_path) is not None

    def ffprobe_available(self) -> bool:
        return self._resolve("ffprobe", self.ffprobe_path) is not None

    def has_transcription_backend(self, openai_api_key: Optional[str], fal_api_key: Optional[str]) -> bool:
        return self.whisper_cpp_ready() or bool(openai_api_key) or bool(fal_api_key)

    def transcription_provider_hint(self, openai_api_key: Optional[str], fal_api_key: Optional[str]) -> str:
        """Short label of the backend chain that would run: cpp, openai->fal, openai, fal, unknown."""
        if self.whisper_cpp_ready():
            return "cpp"
        if openai_api_key and fal_api_key:
            return "openai->fal"
        if openai_api_key:
            return "openai"
        if fal_api_key:
            return "fal"
        return "unknown"

    def transcription_model_id(self, openai_api_key: Optional[str], fal_api_key: Optional[str]) -> Optional[str]:
        if self.whisper_cpp_ready():
            return WHISPER_CPP_MODEL_ID
        if openai_api_key and fal_api_key:
            return f"{OPENAI_MODEL_ID}->{FAL_MODEL_ID}"
        if openai_api_key:
            return OPENAI_MODEL_ID
        if fal_api_key:
            return FAL_MODEL_ID
        return None
