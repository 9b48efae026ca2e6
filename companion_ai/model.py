from __future__ import annotations

import logging
from typing import Sequence

import anthropic
from openai import OpenAI

from .config import ServerSettings
from .errors import UpstreamError

logger = logging.getLogger("companion_ai.model")


class OpenAIChatModel:
    """Chat completions with a system prompt and the running conversation."""

    def __init__(self, settings: ServerSettings, client=None):
        self.model = settings.openai_chat_model
        self.max_tokens = settings.chat_max_tokens
        self.temperature = settings.chat_temperature
        self._api_key = settings.openai_api_key
        self._timeout = settings.upstream_timeout_seconds
        self._client = client

    def ready(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise UpstreamError("OPENAI_API_KEY is not configured", service="completion")
        self._client = OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=1)
        return self._client

    def complete(self, system: str, messages: Sequence[dict[str, str]]) -> str:
        """Generate the assistant reply. Raises UpstreamError on failure or an empty reply."""
        client = self._get_client()
        payload = [{"role": "system", "content": system}]
        payload.extend({"role": m["role"], "content": m["content"]} for m in messages)
        try:
            resp = client.chat.completions.create(
                model=self.model,
                messages=payload,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            status = getattr(e, "status_code", None) or getattr(e, "status", None)
            logger.error("[model] OpenAI error: message=%s status=%s", e, status)
            raise UpstreamError(str(e) or "Failed to generate response", service="completion") from e

        try:
            text = resp.choices[0].message.content or ""
        except (AttributeError, IndexError):
            text = ""
        text = text.strip()
        if not text:
            raise UpstreamError("Model returned an empty reply", service="completion")
        usage = getattr(resp, "usage", None)
        logger.info(
            "[model] reply len=%d tokens_in=%s tokens_out=%s",
            len(text),
            getattr(usage, "prompt_tokens", None),
            getattr(usage, "completion_tokens", None),
        )
        return text


class AnthropicChatModel:
    """Claude Messages API; the system prompt goes in `system`, not in the turns."""

    def __init__(self, settings: ServerSettings, client=None):
        self.model = settings.anthropic_model
        self.max_tokens = settings.chat_max_tokens
        self._api_key = settings.anthropic_api_key
        self._timeout = settings.upstream_timeout_seconds
        self._client = client

    def ready(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise UpstreamError("ANTHROPIC_API_KEY is not configured", service="completion")
        self._client = anthropic.Anthropic(api_key=self._api_key, timeout=self._timeout, max_retries=1)
        return self._client

    def complete(self, system: str, messages: Sequence[dict[str, str]]) -> str:
        client = self._get_client()
        try:
            resp = client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": m["role"], "content": m["content"]} for m in messages],
            )
        except Exception as e:
            status = getattr(e, "status_code", None)
            logger.error("[model] Anthropic error: message=%s status=%s", e, status)
            raise UpstreamError(str(e) or "Failed to generate response", service="completion") from e

        # only a leading text block counts as the reply
        blocks = getattr(resp, "content", None) or []
        first = blocks[0] if blocks else None
        text = first.text if getattr(first, "type", None) == "text" else ""
        text = (text or "").strip()
        if not text:
            raise UpstreamError("Model returned an empty reply", service="completion")
        usage = getattr(resp, "usage", None)
        logger.info(
            "[model] reply len=%d tokens_in=%s tokens_out=%s",
            len(text),
            getattr(usage, "input_tokens", None),
            getattr(usage, "output_tokens", None),
        )
        return text


def build_chat_model(settings: ServerSettings):
    if settings.chat_backend == "openai":
        logger.info("Using OpenAI chat model: %s", settings.openai_chat_model)
        return OpenAIChatModel(settings)
    logger.info("Using Anthropic chat model: %s", settings.anthropic_model)
    return AnthropicChatModel(settings)
