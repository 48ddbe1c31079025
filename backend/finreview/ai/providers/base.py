"""Abstract base for all model providers."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

# (mime_type, raw bytes)
ImagePart = Tuple[str, bytes]


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    # Set when the vendor reports an explicit refusal instead of content
    refusal: Optional[str] = None


class BaseProvider(abc.ABC):
    """Contract that every provider must implement."""

    name: str = "base"

    @abc.abstractmethod
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
        """Send *prompt* (plus optional images) and return a ``ProviderResult``."""
