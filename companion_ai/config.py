from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

DEFAULT_CORS_ORIGINS = (
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
)


def env_int(name: str, default: int) -> int:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    val = os.environ.get(name)
    if not val:
        return default
    return tuple(part.strip() for part in val.split(",") if part.strip())


@dataclass
class ServerSettings:
    """Service configuration. Secrets come from the environment or a .env file."""

    chat_backend: str = "anthropic"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-haiku-4-5-20251001"
    openai_api_key: Optional[str] = None
    openai_chat_model: str = "gpt-4o-mini"
    stt_model: str = "whisper-1"
    chat_max_tokens: int = 300
    chat_temperature: float = 0.7
    upstream_timeout_seconds: float = 30.0

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_table: str = "therapists"
    supabase_bucket: str = "therapist-audio"

    cors_origins: tuple[str, ...] = field(default_factory=lambda: DEFAULT_CORS_ORIGINS)

    @property
    def chat_model(self) -> str:
        return self.openai_chat_model if self.chat_backend == "openai" else self.anthropic_model

    @property
    def store_backend(self) -> str:
        return "supabase" if self.supabase_url and self.supabase_key else "memory"

    @classmethod
    def from_env(cls) -> "ServerSettings":
        load_dotenv()
        d = cls()
        return cls(
            chat_backend=os.environ.get("CHAT_BACKEND", d.chat_backend).strip().lower(),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
            anthropic_model=os.environ.get("ANTHROPIC_MODEL", d.anthropic_model),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            openai_chat_model=os.environ.get("OPENAI_MODEL", d.openai_chat_model),
            stt_model=os.environ.get("STT_MODEL", d.stt_model),
            chat_max_tokens=env_int("CHAT_MAX_TOKENS", d.chat_max_tokens),
            chat_temperature=env_float("CHAT_TEMPERATURE", d.chat_temperature),
            upstream_timeout_seconds=env_float("UPSTREAM_TIMEOUT_SECONDS", d.upstream_timeout_seconds),
            supabase_url=os.environ.get("SUPABASE_URL") or None,
            supabase_key=os.environ.get("SUPABASE_KEY") or None,
            supabase_table=os.environ.get("SUPABASE_TABLE", d.supabase_table),
            supabase_bucket=os.environ.get("SUPABASE_BUCKET", d.supabase_bucket),
            cors_origins=env_list("CORS_ORIGINS", d.cors_origins),
        )
