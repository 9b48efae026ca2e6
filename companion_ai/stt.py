"""Speech-to-Text through the OpenAI transcription endpoint.

`OpenAITranscriber.transcribe(audio_bytes, content_type)` -> str
- Rejects empty input with ValidationError (no file provided)
- Names the upload after its container so the provider can sniff the codec
- Runs the blocking SDK call in a worker thread via asyncio.to_thread
- Maps every provider failure to UpstreamError(service="transcription")
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional

from openai import OpenAI

from .config import ServerSettings
from .errors import UpstreamError, ValidationError

logger = logging.getLogger("companion_ai.stt")

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
}


def audio_extension(content_type: Optional[str]) -> str:
    base = (content_type or "").split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(base, "webm")


def upload_name(content_type: Optional[str]) -> str:
    return f"audio.{audio_extension(content_type)}"


class OpenAITranscriber:
    def __init__(self, settings: ServerSettings, client=None):
        self.model = settings.stt_model
        self._api_key = settings.openai_api_key
        self._timeout = settings.upstream_timeout_seconds
        self._client = client

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise UpstreamError("OPENAI_API_KEY is not configured", service="transcription")
        self._client = OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=1)
        return self._client

    def _do_transcribe(self, data: bytes, content_type: Optional[str]) -> str:
        client = self._get_client()
        with io.BytesIO(data) as buf:
            buf.name = upload_name(content_type)
            try:
                resp = client.audio.transcriptions.create(model=self.model, file=buf)
            except Exception as e:
                logger.exception("STT provider error: %s", e)
                raise UpstreamError("Transcription failed", service="transcription") from e
        text = getattr(resp, "text", None)
        text = text.strip() if isinstance(text, str) else ""
        logger.info("STT transcription (%d bytes): %s", len(data), text)
        return text

    async def transcribe(self, audio_bytes: bytes, content_type: Optional[str] = None) -> str:
        if not audio_bytes:
            raise ValidationError("No audio file provided")
        return await asyncio.to_thread(self._do_transcribe, audio_bytes, content_type)
