"""Mock provider used when no vendor key is configured."""

from __future__ import annotations

from typing import Sequence

from .base import BaseProvider, ImagePart, ProviderResult


class MockProvider(BaseProvider):
    name = "mock"

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        images: Sequence[ImagePart] = (),
        model: str = "",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout_seconds: float = 20.0,
    ) -> ProviderResult:
        # An empty object carries no verdict, so every caller degrades or fails closed
        return ProviderResult(
            raw_text="{}",
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=1,
            latency_ms=0.0,
        )
