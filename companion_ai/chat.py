"""Conversation service behind POST /chat.

Looks up the therapist profile, builds the system prompt from it and asks the
chat model for the next reply. Nothing is persisted here.
"""
from __future__ import annotations

import logging
from typing import Iterable, Mapping, Protocol, Sequence

from .errors import NotFoundError, ValidationError
from .prompting import build_system_prompt
from .store import TherapistStore

logger = logging.getLogger("companion_ai.chat")


class ChatModel(Protocol):
    def ready(self) -> bool: ...

    def complete(self, system: str, messages: Sequence[dict[str, str]]) -> str: ...


def normalize_history(history: Iterable[Mapping[str, str]] | None) -> list[dict[str, str]]:
    """Keep non-empty turns in order. Any role other than "user" is sent as the assistant."""
    out: list[dict[str, str]] = []
    for msg in history or ():
        content = (msg.get("content") or "").strip()
        if not content:
            continue
        role = "user" if msg.get("role") == "user" else "assistant"
        out.append({"role": role, "content": content})
    return out


class ConversationService:
    def __init__(self, store: TherapistStore, model: ChatModel):
        self.store = store
        self.model = model

    def reply(
        self,
        therapist_id: str,
        message: str,
        history: Iterable[Mapping[str, str]] | None = None,
    ) -> str:
        therapist_id = (therapist_id or "").strip()
        message = (message or "").strip()
        if not therapist_id or not message:
            raise ValidationError("Missing required fields")

        profile = self.store.get(therapist_id)
        if profile is None:
            raise NotFoundError("Therapist not found")

        system = build_system_prompt(profile)
        messages = normalize_history(history)
        messages.append({"role": "user", "content": message})
        logger.info("[chat] therapist=%s history=%d", therapist_id, len(messages) - 1)
        return self.model.complete(system, messages)
