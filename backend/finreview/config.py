from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Dict, Optional, Tuple


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ConfidenceSettings:
    # Extraction confidence below this raises a confirmation interrupt
    confirm_threshold: float = float(os.getenv("CONFIRM_THRESHOLD", 0.7))
    # A failed rule check above this confidence skips the semantic call
    rule_short_circuit: float = float(os.getenv("RULE_SHORT_CIRCUIT_CONF", 0.8))
    mapping_min_conf: float = float(os.getenv("MAPPING_MIN_CONF", 0.5))
    inferred_conf: float = float(os.getenv("INFERRED_VALUE_CONF", 0.5))


DEFAULT_CONFIDENCE = ConfidenceSettings()


AI_SCOPES: Tuple[str, ...] = ("extract", "validate", "enforce", "mapping", "standardize")


def _scope_overrides(suffix: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for scope in AI_SCOPES:
        v = os.getenv(f"AI_{scope.upper()}_{suffix}")
        if v:
            out[scope] = v.strip()
    return out


@dataclass
class AISettings:
    provider: str = os.getenv("AI_PROVIDER", "mock")  # mock | openai | claude
    model: str = os.getenv("AI_MODEL", "")
    scope_providers: Dict[str, str] = field(default_factory=lambda: _scope_overrides("PROVIDER"))
    scope_models: Dict[str, str] = field(default_factory=lambda: _scope_overrides("MODEL"))
    openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY") or None
    anthropic_api_key: Optional[str] = os.getenv("ANTHROPIC_API_KEY") or None
    timeout_seconds: float = float(os.getenv("AI_TIMEOUT_SECONDS", 20.0))
    temperature: float = float(os.getenv("AI_TEMPERATURE", 0.1))
    max_tokens: int = int(os.getenv("AI_MAX_TOKENS", 2000))
    allowed_providers: Tuple[str, ...] = ("mock", "openai", "claude")


def get_ai_settings() -> AISettings:
    """Read AI settings fresh from the environment so tests can monkeypatch keys."""
    return AISettings(
        provider=os.getenv("AI_PROVIDER", "mock"),
        model=os.getenv("AI_MODEL", ""),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
        timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", 20.0)),
        temperature=float(os.getenv("AI_TEMPERATURE", 0.1)),
        max_tokens=int(os.getenv("AI_MAX_TOKENS", 2000)),
    )


@dataclass
class WorkflowSettings:
    smart_mapping_enabled: bool = _env_flag("SMART_MAPPING_ENABLED")
    enforce_strict: bool = _env_flag("ENFORCE_STRICT")
    audit_root: str = field(default_factory=lambda: os.getenv("AUDIT_ROOT", "backend/reports/sessions"))


DEFAULT_WORKFLOW = WorkflowSettings()


@dataclass
class UploadSettings:
    max_upload_mb: float = float(os.getenv("MAX_UPLOAD_MB", 10))
    sniff: bool = _env_flag("UPLOAD_SNIFF")
    allowed_mime_types: Tuple[str, ...] = ("image/jpeg", "image/png", "image/tiff", "image/webp")


DEFAULT_UPLOAD = UploadSettings()
