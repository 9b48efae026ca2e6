"""
Abstractions the ConversationController depends on. Concrete devices and HTTP
clients live in audio.py, playback.py and clients.py; tests pass fakes.

All methods are blocking; the controller runs them in worker threads.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from .models import Message


class AudioCapture(Protocol):
    def open(self) -> None:
        """Acquire the microphone and start buffering. Raises MicrophonePermissionError."""

    def close(self) -> bytes:
        """Stop, release the microphone and return the captured utterance."""

    def discard(self) -> None:
        """Stop, release the microphone and drop whatever was captured."""


class TranscriptionClient(Protocol):
    def transcribe(self, audio: bytes) -> str: ...


class ConversationClient(Protocol):
    def reply(self, therapist_id: str, message: str, history: Sequence[Message]) -> str: ...


class SpeechPlayback(Protocol):
    def speak(self, text: str) -> None:
        """Speak text and return when the utterance ends or is cancelled."""

    def cancel(self) -> None: ...


class ManualEntry(Protocol):
    def ask(self, prompt: str) -> Optional[str]:
        """Return typed text, or None/empty when the user declines."""
