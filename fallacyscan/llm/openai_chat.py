"""
OpenAI Provider — chat completions via the official AsyncOpenAI client.
"""

from __future__ import annotations

import logging
import os
from typing import AsyncIterator, Optional

from openai import AsyncOpenAI

from fallacyscan.llm import LLMProvider

logger = logging.getLogger("fallacyscan.llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat-completions provider. JSON mode uses response_format."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self._api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        self._model = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise RuntimeError("OPENAI_API_KEY not set")
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    @staticmethod
    def _messages(prompt: str, system_instruction: Optional[str]) -> list[dict]:
        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        completion = await self._get_client().chat.completions.create(
            model=self._model,
            messages=self._messages(prompt, system_instruction),
            temperature=temperature,
            **kwargs,
        )
        logger.debug("Completion received", extra={"request_id": completion.id})
        return completion.choices[0].message.content or ""

    async def stream(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        stream = await self._get_client().chat.completions.create(
            model=self._model,
            messages=self._messages(prompt, system_instruction),
            temperature=temperature,
            stream=True,
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            # Closing releases the HTTP connection when the consumer stops early
            await stream.close()
