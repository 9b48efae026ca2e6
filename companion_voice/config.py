from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from companion_ai.config import env_float, env_int


@dataclass
class ClientSettings:
    """Voice client knobs. Values come from the environment or a .env file."""

    api_url: str = "http://127.0.0.1:8001"
    # Authoritative lower bound for a usable utterance
    min_recording_seconds: float = 0.5
    request_timeout_seconds: float = 30.0
    sample_rate: int = 16000
    channels: int = 1
    speech_rate_factor: float = 0.9

    @property
    def too_short_message(self) -> str:
        return (
            f"Recording too short! Hold to talk for at least {self.min_recording_seconds:g} "
            "seconds while speaking."
        )

    @classmethod
    def from_env(cls) -> "ClientSettings":
        load_dotenv()
        d = cls()
        return cls(
            api_url=os.environ.get("COMPANION_API_URL", d.api_url),
            min_recording_seconds=env_float("MIN_RECORDING_SECONDS", d.min_recording_seconds),
            request_timeout_seconds=env_float("REQUEST_TIMEOUT_SECONDS", d.request_timeout_seconds),
            sample_rate=env_int("SAMPLE_RATE", d.sample_rate),
            channels=env_int("CHANNELS", d.channels),
            speech_rate_factor=env_float("SPEECH_RATE_FACTOR", d.speech_rate_factor),
        )
