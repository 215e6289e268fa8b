"""
Language-model client used for classification, extraction, FAQ answers
and reply scoring.

The conversational core only depends on the ``LanguageModel`` protocol:
one request/response call taking a system instruction plus chat turns.
``OpenAIChatModel`` is the production implementation; tests substitute a
scripted fake.
"""

import json
import logging
import os
from typing import Any, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from studio_agent.config import settings

logger = logging.getLogger(__name__)


class LanguageModelError(Exception):
    """Raised when the model call fails or returns unusable output."""


class LanguageModel(Protocol):
    async def complete_json(
        self,
        system: str,
        messages: list[dict[str, str]],
        *,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        ...

    async def complete_text(
        self,
        system: str,
        messages: list[dict[str, str]],
        *,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> str:
        ...


def estimate_tokens(*texts: str) -> int:
    """Rough token estimate (4 characters per token) for usage budgeting."""
    return sum(len(t) for t in texts) // 4 + 1


class OpenAIChatModel:
    """Chat-completions client on top of ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
    ) -> None:
        if client is None:
            client = AsyncOpenAI(
                api_key=os.getenv(settings.model.api_key_env),
                timeout=settings.model.request_timeout_sec,
            )
        self._client = client
        self._model = model or settings.model.llm_model

    async def _create(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: Optional[float],
        model: Optional[str],
        json_mode: bool,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": model or self._model,
            "messages": [{"role": "system", "content": system}, *messages],
            "temperature": settings.model.llm_temperature if temperature is None else temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as exc:
            raise LanguageModelError(f"Model call failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LanguageModelError("Model returned an empty response")
        return content.strip()

    async def complete_json(
        self,
        system: str,
        messages: list[dict[str, str]],
        *,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        raw = await self._create(system, messages, temperature, model, json_mode=True)
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Model returned malformed JSON: %.200s", raw)
            raise LanguageModelError("Malformed JSON from model") from exc
        if not isinstance(parsed, dict):
            raise LanguageModelError(f"Expected a JSON object, got {type(parsed).__name__}")
        return parsed

    async def complete_text(
        self,
        system: str,
        messages: list[dict[str, str]],
        *,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> str:
        return await self._create(system, messages, temperature, model, json_mode=False)
