"""Error taxonomy shared by the service and the voice client.

Services raise these; `companion_ai.server` turns them into HTTP responses and
`companion_voice.clients` turns HTTP responses back into them.
"""
from __future__ import annotations

from typing import Optional


class CompanionError(Exception):
    """Base class. `status_code` is the HTTP status the service answers with."""

    status_code = 500

    def __init__(self, message: str = "", *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message or self.__class__.__name__


class ValidationError(CompanionError):
    """Missing or malformed request fields."""

    status_code = 400


class NotFoundError(CompanionError):
    """Unknown therapist identifier."""

    status_code = 404


class UpstreamError(CompanionError):
    """The transcription or completion provider failed, timed out or is out of quota."""

    status_code = 500

    def __init__(self, message: str = "", *, service: str = "", status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)
        self.service = service


class MicrophonePermissionError(CompanionError, PermissionError):
    """Microphone access was denied or no input device is available."""


class DurationError(CompanionError):
    """The recording was shorter than the configured minimum."""

    def __init__(self, message: str = "", *, duration: float = 0.0, minimum: float = 0.0):
        super().__init__(message)
        self.duration = duration
        self.minimum = minimum
