"""Resolve provider + model for a capability scope: override > AI_<SCOPE>_* > AI_* > mock."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from finreview.config import AI_SCOPES, get_ai_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    """Final provider + call parameters after the override chain."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    settings = get_ai_settings()
    if scope not in AI_SCOPES:
        logger.warning("Unknown AI scope %r, using global provider settings", scope)

    provider_name = (
        (override_provider or "").strip().lower()
        or settings.scope_providers.get(scope, "").lower()
        or settings.provider.lower()
        or "mock"
    )
    model = (override_model or "").strip() or settings.scope_models.get(scope, "") or settings.model

    return ResolvedConfig(
        provider=get_provider(provider_name),
        model=model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.timeout_seconds,
    )
