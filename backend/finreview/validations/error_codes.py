from __future__ import annotations

from enum import Enum


class ValidationFlag(str, Enum):
    # Rule validator
    EMPTY_FIELD = "empty_field"
    FORMAT_ERROR = "format_error"
    INVALID_VALUE = "invalid_value"

    # Semantic validator could not produce a verdict
    VALIDATION_ERROR = "validation_error"

    # Semantic vocabulary
    CRITICAL_ERROR = "critical_error"
    MISSING_REQUIRED = "missing_required"
    IMPOSSIBLE_VALUE = "impossible_value"
    SYSTEM_BREAKING_FORMAT = "system_breaking_format"


SEMANTIC_FLAGS = frozenset(
    {
        ValidationFlag.CRITICAL_ERROR.value,
        ValidationFlag.MISSING_REQUIRED.value,
        ValidationFlag.IMPOSSIBLE_VALUE.value,
        ValidationFlag.SYSTEM_BREAKING_FORMAT.value,
    }
)


class ExtractionFlag(str, Enum):
    REFUSAL = "AI model refusal"
    FAILED = "AI extraction failed"
    MANUAL_REVIEW = "Manual review required"
    SCHEMA_WARNINGS = "Data validation warnings - manual review recommended"
    LOW_CONFIDENCE = "low confidence"
