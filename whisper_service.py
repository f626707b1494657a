"""
Speech-to-text backends and the fallback chain that drives them.

Backends:
- LocalWhisperBackend: whisper.cpp CLI (no network, no key)
- OpenAIWhisperBackend: OpenAI ``whisper-1`` via the openai SDK
- FalWhisperBackend: FAL ``fal-ai/wizper`` via httpx

``WhisperTranscriber`` prefers the local binary when it is ready; otherwise it
tries OpenAI then FAL, falling back on failure when both keys are set.
Backends are tried strictly one after another, never raced.
"""

import base64
import os
import tempfile
from typing import Callable, List, Optional

import httpx
import openai
from openai import OpenAI

from ffmpeg_service import FFmpegService
from logging_setup import get_logger
from log_events import StageTimer, evt
from subprocess_utils import run_command
from transcript_errors import TranscriptError, TranscriptionError, describe_error
from transcript_types import TranscriptionResult

logger = get_logger(__name__)

FAL_WIZPER_URL = "https://fal.run/fal-ai/wizper"
OPENAI_WHISPER_MODEL = "whisper-1"

PartCallback = Callable[[Optional[float], Optional[float], int, int], None]


class LocalWhisperBackend:
    """whisper.cpp CLI. Input is converted to 16kHz WAV first when ffmpeg is available."""

    name = "whisper.cpp"

    def __init__(self, binary: str, model_path: str, ffmpeg: Optional[FFmpegService] = None,
                 timeout: float = 600):
        self.binary = binary
        self.model_path = model_path
        self.ffmpeg = ffmpeg
        self.timeout = timeout

    def transcribe_file(self, path: str, media_type: Optional[str] = None) -> str:
        with tempfile.TemporaryDirectory(prefix="whisper-cpp-") as temp_dir:
            audio_path = path
            if self.ffmpeg is not None:
                audio_path = self.ffmpeg.convert_to_wav(path, os.path.join(temp_dir, "input.wav"))

            out_base = os.path.join(temp_dir, "transcript")
            cmd = [
                self.binary,
                "-m", self.model_path,
                "-f", audio_path,
                "-otxt",
                "-of", out_base,
                "-np",
            ]
            result = run_command(cmd, timeout=self.timeout)
            if result.returncode != 0:
                stderr = result.stderr.decode("utf-8", errors="replace").strip()[:200]
                raise TranscriptionError(f"whisper.cpp exited with {result.returncode}: {stderr}", self.name)

            try:
                with open(out_base + ".txt", "r", encoding="utf-8", errors="replace") as f:
                    return f.read().strip()
            except FileNotFoundError:
                raise TranscriptionError("whisper.cpp produced no transcript file", self.name)

    def transcribe_bytes(self, data: bytes, filename: str, media_type: Optional[str] = None) -> str:
        suffix = os.path.splitext(filename)[1] or ".bin"
        with tempfile.TemporaryDirectory(prefix="whisper-cpp-input-") as temp_dir:
            path = os.path.join(temp_dir, f"input{suffix}")
            with open(path, "wb") as f:
                f.write(data)
            return self.transcribe_file(path, media_type)


class OpenAIWhisperBackend:
    """OpenAI audio transcription endpoint."""

    name = "openai"

    def __init__(self, api_key: str, timeout: float = 600, client: Optional[OpenAI] = None):
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def transcribe_bytes(self, data: bytes, filename: str, media_type: Optional[str] = None) -> str:
        file_arg = (filename, data, media_type) if media_type else (filename, data)
        try:
            response = self.client.audio.transcriptions.create(model=OPENAI_WHISPER_MODEL, file=file_arg)
        except openai.APIError as e:
            raise TranscriptionError(f"OpenAI transcription failed: {e}", self.name) from e
        return (getattr(response, "text", None) or "").strip()

    def transcribe_file(self, path: str, media_type: Optional[str] = None) -> str:
        with open(path, "rb") as f:
            data = f.read()
        return self.transcribe_bytes(data, os.path.basename(path), media_type)


class FalWhisperBackend:
    """FAL wizper endpoint; audio is sent inline as a data URI."""

    name = "fal"

    def __init__(self, api_key: str, timeout: float = 600, client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.client = client

    def transcribe_bytes(self, data: bytes, filename: str, media_type: Optional[str] = None) -> str:
        encoded = base64.b64encode(data).decode("ascii")
        payload = {
            "audio_url": f"data:{media_type or 'application/octet-stream'};base64,{encoded}",
            "task": "transcribe",
        }
        headers = {"Authorization": f"Key {self.api_key}", "Content-Type": "application/json"}

        try:
            if self.client is not None:
                response = self.client.post(FAL_WIZPER_URL, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(FAL_WIZPER_URL, json=payload, headers=headers)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            raise TranscriptionError(f"FAL transcription failed: HTTP {e.response.status_code}", self.name) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TranscriptionError(f"FAL transcription failed: {e}", self.name) from e

        text = result.get("text") if isinstance(result, dict) else None
        if isinstance(text, str) and text.strip():
            return text.strip()

        chunks = result.get("chunks") if isinstance(result, dict) else None
        if isinstance(chunks, list):
            parts = [c.get("text", "").strip() for c in chunks if isinstance(c, dict)]
            return " ".join(p for p in parts if p)
        return ""

    def transcribe_file(self, path: str, media_type: Optional[str] = None) -> str:
        with open(path, "rb") as f:
            data = f.read()
        return self.transcribe_bytes(data, os.path.basename(path), media_type)


class WhisperTranscriber:
    """
    Sequential fallback chain over the configured backends.

    Failures never raise out of ``transcribe_bytes``/``transcribe_file``;
    they are returned as ``TranscriptionResult.error`` plus notes.
    """

    def __init__(self, capabilities, openai_api_key: Optional[str] = None, fal_api_key: Optional[str] = None,
                 ffmpeg: Optional[FFmpegService] = None, timeout: float = 600,
                 max_upload_bytes: int = 24 * 1024 * 1024, chunk_seconds: int = 600,
                 backends: Optional[List] = None):
        self.capabilities = capabilities
        self.ffmpeg = ffmpeg
        self.max_upload_bytes = max_upload_bytes
        self.chunk_seconds = chunk_seconds
        self.backends = backends if backends is not None else self._build_backends(
            capabilities, openai_api_key, fal_api_key, ffmpeg, timeout
        )

    @staticmethod
    def _build_backends(capabilities, openai_api_key, fal_api_key, ffmpeg, timeout) -> List:
        if capabilities.whisper_cpp_ready():
            return [LocalWhisperBackend(
                capabilities.whisper_cpp_executable(),
                capabilities.whisper_cpp_model_path,
                ffmpeg if ffmpeg is not None and capabilities.ffmpeg_available() else None,
                timeout,
            )]
        backends = []
        if openai_api_key:
            backends.append(OpenAIWhisperBackend(openai_api_key, timeout))
        if fal_api_key:
            backends.append(FalWhisperBackend(fal_api_key, timeout))
        return backends

    def _run_chain(self, call: Callable, label: str) -> TranscriptionResult:
        notes: List[str] = []
        last_error: Optional[BaseException] = None

        if not self.backends:
            return TranscriptionResult(None, None, TranscriptionError("No transcription backend configured"), notes)

        for backend in self.backends:
            try:
                with StageTimer("transcribe", provider=backend.name, input=label) as timer:
                    text = call(backend)
                    if not text:
                        timer.mark_empty()
            except (TranscriptError, OSError) as e:
                last_error = e
                notes.append(f"{backend.name} transcription failed: {describe_error(e)}")
                continue
            if text:
                return TranscriptionResult(text, backend.name, None, notes)
            last_error = TranscriptionError(f"{backend.name} returned an empty transcript", backend.name)
            notes.append(f"{backend.name} returned an empty transcript")

        return TranscriptionResult(None, None, last_error, notes)

    def transcribe_bytes(self, data: bytes, filename: str, media_type: Optional[str] = None) -> TranscriptionResult:
        return self._run_chain(lambda backend: backend.transcribe_bytes(data, filename, media_type), filename)

    def transcribe_single_file(self, path: str, media_type: Optional[str] = None) -> TranscriptionResult:
        return self._run_chain(lambda backend: backend.transcribe_file(path, media_type), os.path.basename(path))

    def transcribe_file(self, path: str, media_type: Optional[str] = None,
                        total_duration_seconds: Optional[float] = None,
                        on_start: Optional[Callable[[int], None]] = None,
                        on_part: Optional[PartCallback] = None) -> TranscriptionResult:
        """
        Transcribe a file on disk, chunking through ffmpeg when it exceeds the upload cap.

        ``on_start(parts)`` fires once the number of parts is known;
        ``on_part(processed_seconds, total_seconds, part_index, parts)`` fires
        after each part completes.
        """
        size = os.path.getsize(path)
        if size <= self.max_upload_bytes or self.ffmpeg is None:
            if on_start:
                on_start(1)
            result = self.transcribe_single_file(path, media_type)
            if on_part and result.text:
                on_part(total_duration_seconds, total_duration_seconds, 1, 1)
            return result

        with tempfile.TemporaryDirectory(prefix="whisper-chunks-") as chunk_dir:
            try:
                segments = self.ffmpeg.segment_audio(path, chunk_dir, self.chunk_seconds)
            except (TranscriptError, OSError) as e:
                return TranscriptionResult(None, None, e, [f"Audio chunking failed: {describe_error(e)}"])

            parts = len(segments)
            evt("transcribe_chunked", parts=parts, size_bytes=size, chunk_seconds=self.chunk_seconds)
            if on_start:
                on_start(parts)

            texts: List[str] = []
            notes: List[str] = []
            provider = None
            for index, segment in enumerate(segments, start=1):
                result = self.transcribe_single_file(segment, "audio/mpeg")
                notes.extend(result.notes)
                if not result.text:
                    notes.append(f"Chunk {index}/{parts} failed")
                    return TranscriptionResult(None, provider, result.error, notes)
                texts.append(result.text)
                provider = result.provider

                processed = float(index * self.chunk_seconds)
                if total_duration_seconds is not None:
                    processed = min(processed, total_duration_seconds)
                if on_part:
                    on_part(processed, total_duration_seconds, index, parts)

            return TranscriptionResult("\n".join(texts), provider, None, notes)
