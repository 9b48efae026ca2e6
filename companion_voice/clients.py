"""HTTP client for the companion service.

One `CompanionApi` object serves as the TranscriptionClient and the
ConversationClient of the controller, and as the profile client of the setup
wizard. Non-2xx answers come back as the shared error taxonomy.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

import requests

from companion_ai.errors import NotFoundError, UpstreamError, ValidationError

from . import monitoring
from .models import Message

logger = monitoring.get_logger("clients")


def _detail(r: requests.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return (r.text or "").strip()
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or "")
    return str(data)


def raise_for_response(r: requests.Response, service: str) -> None:
    if r.ok:
        return
    detail = _detail(r) or f"HTTP {r.status_code}"
    if r.status_code == 400:
        raise ValidationError(detail)
    if r.status_code == 404:
        raise NotFoundError(detail)
    raise UpstreamError(detail, service=service, status_code=r.status_code)


class CompanionApi:
    def __init__(self, base_url: str, *, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, service: str, **kwargs) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.post(url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise UpstreamError(f"{service} timed out", service=service) from e
        except requests.RequestException as e:
            raise UpstreamError(f"{service} unavailable: {e}", service=service) from e
        raise_for_response(r, service)
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamError(f"{service} returned invalid JSON", service=service) from e

    def transcribe(self, audio: bytes, content_type: str = "audio/wav") -> str:
        if not audio:
            raise ValidationError("No audio file provided")
        data = self._post(
            "/transcribe",
            "transcription",
            files={"audio": ("audio.wav", audio, content_type)},
        )
        text = (data.get("transcription") or "").strip()
        logger.info("[STT] %d bytes -> %r", len(audio), text)
        return text

    def reply(self, therapist_id: str, message: str, history: Sequence[Message]) -> str:
        data = self._post(
            "/chat",
            "completion",
            json={
                "therapistId": therapist_id,
                "message": message,
                "conversationHistory": [m.to_dict() for m in history],
            },
        )
        text = (data.get("response") or "").strip()
        if not text:
            raise UpstreamError("Empty reply from companion", service="completion")
        return text

    def get_therapist(self, therapist_id: str) -> dict[str, Any]:
        url = f"{self.base_url}/therapists/{therapist_id}"
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"profile lookup unavailable: {e}", service="store") from e
        raise_for_response(r, "store")
        return r.json()

    def create_therapist(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._post("/therapists", "store", json=payload)

    def upload_audio(self, therapist_id: str, scenario: str, audio: bytes, content_type: str = "audio/wav") -> str:
        """Store one style sample next to the profile; returns its public URL."""
        data = self._post(
            f"/therapists/{therapist_id}/audio",
            "store",
            data={"scenario": scenario},
            files={"audio": ("audio.wav", audio, content_type)},
        )
        return data["url"]
