from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, Sequence, TypeVar

from .json_tools import extract_json
from .providers import ImagePart
from .router import ResolvedConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CapabilityStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class CapabilityResult(Generic[T]):
    """Outcome of one model call.

    ``degraded`` still carries a usable value (possibly empty) plus flags
    explaining what went wrong. ``failed`` means there is no verdict to
    trust; its value, when set, is only an empty fallback shape.
    """

    status: CapabilityStatus
    value: Optional[T] = None
    error: Optional[str] = None
    flags: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, value: T) -> "CapabilityResult[T]":
        return cls(CapabilityStatus.OK, value)

    @classmethod
    def degraded(cls, value: T, *flags: str, error: Optional[str] = None) -> "CapabilityResult[T]":
        return cls(CapabilityStatus.DEGRADED, value, error, list(flags))

    @classmethod
    def failed(cls, error: str, *flags: str, fallback: Optional[T] = None) -> "CapabilityResult[T]":
        return cls(CapabilityStatus.FAILED, fallback, error, list(flags))

    @property
    def succeeded(self) -> bool:
        return self.status is CapabilityStatus.OK


async def call_json(
    config: ResolvedConfig,
    prompt: str,
    *,
    system_prompt: Optional[str] = None,
    images: Sequence[ImagePart] = (),
    temperature: Optional[float] = None,
    label: str = "capability",
) -> CapabilityResult[Any]:
    """Call the resolved provider and parse a JSON payload out of its reply.

    Provider exceptions become ``failed``; a refusal becomes ``failed`` with
    the refusal text; unparsable text becomes ``failed`` with ``unparsable``.
    """
    try:
        result = await config.provider.generate(
            prompt,
            system_prompt=system_prompt,
            images=images,
            model=config.model,
            temperature=config.temperature if temperature is None else temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
    except Exception as e:
        logger.exception("%s call failed (%s)", label, config.provider.name)
        return CapabilityResult.failed(f"provider_call_failed: {e}")

    if result.refusal:
        logger.warning("%s refused by %s: %s", label, result.provider, result.refusal)
        return CapabilityResult.failed(f"refusal: {result.refusal}", "refusal")

    parsed = extract_json(result.raw_text)
    if parsed is None:
        logger.warning("%s returned unparsable output: %s", label, (result.raw_text or "")[:200])
        return CapabilityResult.failed("unparsable", "unparsable")
    return CapabilityResult.ok(parsed)
