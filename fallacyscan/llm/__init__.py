"""
LLM Provider — Abstract Interface

All completion-service calls go through this interface. Swap providers
by changing FALLACYSCAN_LLM_PROVIDER in env.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional


def strip_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
    return cleaned


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    name = "abstract"

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        """Generate a complete text response from the LLM."""
        ...

    async def generate_json(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.3,
    ) -> dict:
        """Generate and parse a JSON response."""
        text = await self.generate(
            prompt=prompt,
            system_instruction=system_instruction,
            temperature=temperature,
            json_mode=True,
        )
        try:
            return json.loads(strip_fences(text))
        except json.JSONDecodeError as e:
            raise ValueError(
                f"LLM returned invalid JSON: {e}. Raw response: {text[:300]}"
            ) from e

    async def stream(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.3,
    ) -> AsyncIterator[str]:
        """
        Yield the response as incremental text deltas.

        Providers without native streaming inherit this: the whole
        response arrives as a single delta.
        """
        yield await self.generate(
            prompt=prompt,
            system_instruction=system_instruction,
            temperature=temperature,
        )
