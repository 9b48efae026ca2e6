"""
Conversation data shapes for the voice client.

- Message (role, content), immutable once created.
- RecordingSession, the transient state of one capture.
- VoiceState and ErrorCause, the controller's closed sets of states/causes.
- Failure, the last error shown to the user.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class VoiceState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    ERROR = "error"


class ErrorCause(str, Enum):
    PERMISSION = "permission"
    TOO_SHORT = "too_short"
    TRANSCRIPTION = "transcription"
    COMPLETION = "completion"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class RecordingSession:
    started_at: float
    in_progress: bool = True
    duration: float = 0.0


@dataclass(frozen=True)
class Failure:
    cause: ErrorCause
    message: str
    error: Optional[Exception] = None
