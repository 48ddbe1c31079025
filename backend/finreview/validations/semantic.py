"""Model-backed plausibility check for a single field value.

The prompt is deliberately lenient: only impossible values, missing data and
formatting that would break downstream systems are flagged. Anything the
model returns outside the small flag vocabulary is logged and dropped.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, List, Optional

from finreview.ai.capability import CapabilityResult, CapabilityStatus, call_json
from finreview.ai.router import ResolvedConfig, resolve
from finreview.schemas.record import ValidationResult

from .error_codes import SEMANTIC_FLAGS, ValidationFlag

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You validate single field values taken from handwritten Singapore financial-aid forms.

Be LENIENT. Only mark a value invalid for:
- critical_error: the value is clearly wrong for the field or obviously fabricated
- missing_required: the value is blank or a placeholder where data is required
- impossible_value: the value cannot be true (negative income, a date range ending before it starts, an end date in the future)
- system_breaking_format: formatting that would break storage or export

Do NOT flag informal phrasing, abbreviations, minor date-format differences,
or regional naming conventions. Those are acceptable.

Return ONLY a JSON object:
{"isValid": true, "confidence": 0.9, "flags": [], "suggestions": [], "standardizedValue": "...", "requiresReview": false}
"flags" may only contain: critical_error, missing_required, impossible_value, system_breaking_format."""

USER_PROMPT = """Field Name: {field_name}
Value: {value}
{context_line}{date_line}
Is this value acceptable for the field?"""

DATE_SENSITIVE_FIELDS = ("periodOfEmployment",)


def _failure(value: Any) -> ValidationResult:
    return ValidationResult(
        is_valid=False,
        standardized_value=value,
        confidence=0.0,
        flags=[ValidationFlag.VALIDATION_ERROR.value],
        suggestions=["Could not validate field"],
        requires_review=True,
    )


def build_prompt(value: Any, field_name: str, context: Optional[str] = None, *, today: Optional[date] = None) -> str:
    date_line = ""
    if field_name.rsplit(".", 1)[-1] in DATE_SENSITIVE_FIELDS:
        d = today or date.today()
        date_line = f"Current date: {d.isoformat()} (judge 'present' and past dates relative to this)\n"
    return USER_PROMPT.format(
        field_name=field_name,
        value=json.dumps(value, ensure_ascii=False, default=str),
        context_line=f"Context: {context}\n" if context else "",
        date_line=date_line,
    )


def _str_list(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [str(x) for x in raw if x not in (None, "")]


def parse_verdict(payload: Any, value: Any) -> CapabilityResult[ValidationResult]:
    if not isinstance(payload, dict) or not isinstance(payload.get("isValid"), bool):
        logger.warning("Semantic verdict missing boolean isValid: %r", payload)
        return CapabilityResult.failed("missing_verdict")

    raw_flags = _str_list(payload.get("flags"))
    flags = [f for f in dict.fromkeys(raw_flags) if f in SEMANTIC_FLAGS]
    dropped = [f for f in raw_flags if f not in SEMANTIC_FLAGS]
    if dropped:
        logger.warning("Dropping out-of-vocabulary validation flags: %s", dropped)

    try:
        conf = max(0.0, min(1.0, float(payload.get("confidence") or 0.0)))
    except (TypeError, ValueError):
        conf = 0.0

    is_valid = payload["isValid"]
    requires_review = bool(payload.get("requiresReview", False))
    status_flags: List[str] = []
    if not is_valid and not flags:
        # Only noise flags were given: not a blocking verdict, but worth a look
        is_valid = True
        requires_review = True
        status_flags.append("noise_only_rejection")

    std = payload.get("standardizedValue")
    result = ValidationResult(
        is_valid=is_valid,
        standardized_value=value if std in (None, "") else std,
        confidence=conf,
        flags=flags,
        suggestions=_str_list(payload.get("suggestions")),
        requires_review=requires_review,
    )
    if status_flags:
        return CapabilityResult.degraded(result, *status_flags)
    return CapabilityResult.ok(result)


async def judge_field(
    value: Any,
    field_name: str,
    context: Optional[str] = None,
    *,
    config: Optional[ResolvedConfig] = None,
    today: Optional[date] = None,
) -> CapabilityResult[ValidationResult]:
    config = config or resolve("validate")
    raw = await call_json(
        config,
        build_prompt(value, field_name, context, today=today),
        system_prompt=SYSTEM_PROMPT,
        temperature=0.1,
        label="semantic validation",
    )
    if raw.status is CapabilityStatus.FAILED:
        return CapabilityResult.failed(raw.error or "failed", *raw.flags)
    return parse_verdict(raw.value, value)


async def validate_semantics(
    value: Any,
    field_name: str,
    context: Optional[str] = None,
    *,
    config: Optional[ResolvedConfig] = None,
    today: Optional[date] = None,
) -> ValidationResult:
    """Fail-closed wrapper: any capability failure is an invalid, review-required result."""
    outcome = await judge_field(value, field_name, context, config=config, today=today)
    if outcome.status is CapabilityStatus.FAILED or outcome.value is None:
        return _failure(value)
    return outcome.value
