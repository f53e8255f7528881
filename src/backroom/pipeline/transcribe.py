from __future__ import annotations

import time
from typing import Optional, Protocol

import httpx
from openai import OpenAI, OpenAIError

from ..domain.normalize import truncate
from ..logging import get_logger


LOG = get_logger("transcribe")

_EXTENSIONS = {
    "audio/ogg": "ogg",
    "audio/opus": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/aac": "m4a",
    "audio/amr": "amr",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
}


class TranscriptionError(Exception):
    pass


class Transcriber(Protocol):
    def transcribe(self, audio: bytes, mime_type: str) -> str:
        ...


def _filename_for(mime_type: Optional[str]) -> str:
    base = (mime_type or "").split(";", 1)[0].strip().lower()
    return f"voice-note.{_EXTENSIONS.get(base, 'ogg')}"


class WhisperTranscriber:
    """Speech-to-text through an OpenAI-compatible audio endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "whisper-1",
        base_url: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not api_key:
            raise TranscriptionError("transcription API key is not configured")
        self.model = model
        self._http = httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=5.0))
        self._client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            http_client=self._http,
            max_retries=0,
            timeout=timeout_seconds,
        )

    def transcribe(self, audio: bytes, mime_type: str) -> str:
        if not audio:
            raise TranscriptionError("empty audio payload")
        t0 = time.perf_counter()
        try:
            result = self._client.audio.transcriptions.create(
                model=self.model,
                file=(_filename_for(mime_type), audio, mime_type or "audio/ogg"),
                language="en",
            )
        except OpenAIError as exc:
            LOG.error("Transcription failed: %s", exc)
            raise TranscriptionError(str(exc)) from exc

        text = (getattr(result, "text", "") or "").strip()
        if not text:
            raise TranscriptionError("transcription returned no text")
        LOG.info("Audio transcribed in %.2fs (%d chars): %r", time.perf_counter() - t0, len(text), truncate(text))
        return text

    def close(self) -> None:
        self._http.close()
