from __future__ import annotations

import re
from typing import Any, Dict, Optional, Pattern

from finreview.records.paths import FieldPath
from finreview.schemas.record import ValidationResult, is_empty

from .error_codes import ValidationFlag
from .patterns import FIELD_TYPES, VALIDATION_RULES

_COMPILED: Dict[str, Pattern[str]] = {
    name: re.compile(rule["regex"]) for name, rule in VALIDATION_RULES.items() if "regex" in rule
}


def field_type_for(path: FieldPath | str) -> Optional[str]:
    """Rule type implied by a field path or bare field name, if any."""
    name = path.leaf if isinstance(path, FieldPath) else str(path).rsplit(".", 1)[-1]
    return FIELD_TYPES.get(name)


def supported_field_types() -> list[str]:
    return list(VALIDATION_RULES.keys())


def validate_format(value: Any, field_type: Optional[str]) -> ValidationResult:
    """Deterministic format check for one value.

    Empty beats everything; unknown types pass with 0.8; pattern types score
    1.0 / 0.2; enum types score 0.9 / 0.3.
    """
    if is_empty(value):
        return ValidationResult(
            is_valid=False,
            standardized_value=value,
            confidence=1.0,
            flags=[ValidationFlag.EMPTY_FIELD.value],
            suggestions=["Field is required"],
            requires_review=True,
        )

    rule = VALIDATION_RULES.get(field_type or "")
    if rule is None:
        return ValidationResult(is_valid=True, standardized_value=value, confidence=0.8)

    if "regex" in rule:
        ok = _COMPILED[field_type].match(_as_text(value)) is not None  # type: ignore[index]
        return ValidationResult(
            is_valid=ok,
            standardized_value=value,
            confidence=1.0 if ok else 0.2,
            flags=[] if ok else [ValidationFlag.FORMAT_ERROR.value],
            suggestions=[] if ok else [rule["message"]],
            requires_review=not ok,
        )

    allowed = rule["allowed"]
    norm = _as_text(value).lower()
    ok = any(a in norm or norm in a for a in allowed)
    return ValidationResult(
        is_valid=ok,
        standardized_value=value,
        confidence=0.9 if ok else 0.3,
        flags=[] if ok else [ValidationFlag.INVALID_VALUE.value],
        suggestions=[] if ok else [rule["message"], f"Allowed values: {', '.join(allowed)}"],
        requires_review=not ok,
    )


def _as_text(value: Any) -> str:
    # 2800.0 -> "2800" so numeric incomes stored as floats still match the income rule
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
