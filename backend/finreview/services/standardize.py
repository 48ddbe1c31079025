from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern

from finreview.ai.capability import CapabilityStatus, call_json
from finreview.ai.router import ResolvedConfig, resolve

logger = logging.getLogger(__name__)

MULTIPLY_BY_1000 = "multiply_by_1000"


@dataclass(frozen=True)
class StandardizationRule:
    pattern: Pattern[str]
    standard_value: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"pattern": self.pattern.pattern, "standardValue": self.standard_value, "confidence": self.confidence}


def _rule(rx: str, value: str, conf: float) -> StandardizationRule:
    return StandardizationRule(re.compile(rx, re.IGNORECASE), value, conf)


# First match wins, so uncertainty beats relationship/occupation words
STANDARDIZATION_RULES: List[StandardizationRule] = [
    _rule(r"\b(?:not sure|unsure|dunno|dont know|don't know)\b", "unknown", 0.9),
    _rule(r"\b(?:idk|dk|dont remember|don't remember|cant remember|can't remember)\b", "missing", 0.9),
    _rule(r"\b(?:maybe|might be|could be|probably|perhaps|think so)\b", "ambiguous", 0.8),
    _rule(r"\b(?:mum|mom|mommy)\b", "mother", 0.95),
    _rule(r"\b(?:dad|daddy|papa)\b", "father", 0.95),
    _rule(r"\b(?:sis|sister)\b", "sibling", 0.9),
    _rule(r"\b(?:bro|brother)\b", "sibling", 0.9),
    _rule(r"\b(?:hubby|husband)\b", "spouse", 0.95),
    _rule(r"\b(?:wife|wifey)\b", "spouse", 0.95),
    _rule(r"\b(?:bf|boyfriend)\b", "partner", 0.9),
    _rule(r"\b(?:gf|girlfriend)\b", "partner", 0.9),
    _rule(r"\b(?:cabbie|cab driver)\b", "taxi driver", 0.9),
    _rule(r"\b(?:maid|domestic helper|helper)\b", "domestic worker", 0.9),
    _rule(r"\b(?:hawker|food vendor)\b", "food service worker", 0.9),
    _rule(r"\b(?:part time|pt)\b", "part-time", 0.9),
    _rule(r"\b(?:full time|ft)\b", "full-time", 0.9),
    _rule(r"(?:\baround |\babout |~|\$)(\d+(?:\.\d+)?)\s*k\b", MULTIPLY_BY_1000, 0.85),
    _rule(r"\b(?:no income|unemployed|jobless)\b", "0", 0.95),
]


@dataclass
class StandardizationResult:
    standardized: Any
    confidence: float
    applied: bool
    method: str
    original: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "standardized": self.standardized,
            "confidence": self.confidence,
            "applied": self.applied,
            "method": self.method,
            "original": self.original,
        }


def apply_rules(text: str) -> StandardizationResult:
    for rule in STANDARDIZATION_RULES:
        m = rule.pattern.search(text)
        if not m:
            continue
        if rule.standard_value == MULTIPLY_BY_1000:
            amount = float(m.group(1)) * 1000
            value = str(int(amount)) if amount.is_integer() else str(amount)
            return StandardizationResult(value, rule.confidence, True, "rules", text)
        return StandardizationResult(rule.standard_value, rule.confidence, True, "rules", text)
    return StandardizationResult(text, 1.0, False, "rules", text)


SYSTEM_PROMPT = """You standardize informal answers on legal financial forms into plain professional wording.
- Relationships: "mum" -> "mother", "hubby" -> "spouse"
- Occupations: "cabbie" -> "taxi driver", "part time cashier" -> "part-time cashier"
- Amounts: "around 2k" -> "2000"
- Uncertainty: use "unknown", "missing" or "ambiguous"
- Already professional text is returned unchanged.
Return ONLY JSON: {"standardized": "..."}"""


async def standardize(
    text: Any,
    field_type: Optional[str] = None,
    *,
    rules_only: bool = False,
    config: Optional[ResolvedConfig] = None,
) -> StandardizationResult:
    """Rules first; the model is asked only when no rule matched and it is allowed."""
    if not isinstance(text, str) or not text.strip():
        return StandardizationResult(text, 1.0, False, "none", text)

    by_rule = apply_rules(text)
    if by_rule.applied or rules_only:
        return by_rule

    config = config or resolve("standardize")
    prompt = f'Standardize this text for a {field_type or "general"} field: "{text}"'
    raw = await call_json(config, prompt, system_prompt=SYSTEM_PROMPT, temperature=0.1, label="standardization")
    value = raw.value.get("standardized") if isinstance(raw.value, dict) else None
    if raw.status is CapabilityStatus.FAILED or not isinstance(value, str) or not value.strip():
        return StandardizationResult(text, 0.5, False, "llm", text)
    value = value.strip()
    unchanged = value.lower() == text.lower()
    return StandardizationResult(value, 1.0 if unchanged else 0.8, value != text, "llm", text)
