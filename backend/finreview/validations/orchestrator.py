from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from finreview.ai.router import ResolvedConfig, resolve
from finreview.config import DEFAULT_CONFIDENCE
from finreview.records.paths import FieldPath, display_name
from finreview.schemas.record import FinancialRecord, ValidationResult

from .gates import field_type_for, validate_format
from .semantic import validate_semantics

logger = logging.getLogger(__name__)


def _dedupe(*lists: List[str]) -> List[str]:
    return list(dict.fromkeys(x for seq in lists for x in seq))


def combine(rule: Optional[ValidationResult], semantic: ValidationResult) -> ValidationResult:
    """AND the verdicts, OR the review requirement, min the confidence."""
    if rule is None:
        return semantic
    return ValidationResult(
        is_valid=semantic.is_valid and rule.is_valid,
        standardized_value=semantic.standardized_value,
        confidence=min(rule.confidence, semantic.confidence),
        flags=_dedupe(rule.flags, semantic.flags),
        suggestions=_dedupe(rule.suggestions, semantic.suggestions),
        requires_review=rule.requires_review or semantic.requires_review,
    )


def is_confident_rejection(rule: ValidationResult, *, threshold: Optional[float] = None) -> bool:
    thr = threshold if threshold is not None else DEFAULT_CONFIDENCE.rule_short_circuit
    return not rule.is_valid and rule.confidence > thr


async def validate_field(
    value: Any,
    field_name: str,
    field_type: Optional[str] = None,
    context: Optional[str] = None,
    *,
    config: Optional[ResolvedConfig] = None,
    today: Optional[date] = None,
    rules_only: bool = False,
) -> ValidationResult:
    """Two-tier validation: cheap rule check first, model call only when it can matter."""
    rule = validate_format(value, field_type) if field_type else None
    if rule is not None and (rules_only or is_confident_rejection(rule)):
        return rule
    semantic = await validate_semantics(value, field_name, context, config=config, today=today)
    return combine(rule, semantic)


@dataclass
class RecordValidation:
    all_valid: bool
    results: Dict[str, ValidationResult] = field(default_factory=dict)
    invalid_paths: List[str] = field(default_factory=list)

    def blocking_reasons(self) -> Dict[str, List[str]]:
        """Path -> human-readable reasons for every invalid field."""
        out: Dict[str, List[str]] = {}
        for p in self.invalid_paths:
            r = self.results[p]
            out[p] = list(r.suggestions) or list(r.flags)
        return out


def _context_for(path: FieldPath) -> str:
    return f"{display_name(path)} on a financial assistance form"


async def validate_all_fields(
    record: FinancialRecord,
    *,
    config: Optional[ResolvedConfig] = None,
    today: Optional[date] = None,
) -> RecordValidation:
    """Validate every populated field concurrently; no field depends on another's outcome."""
    targets = list(record.iter_paths(populated_only=True))
    if not targets:
        return RecordValidation(all_valid=True)

    config = config or resolve("validate")
    verdicts = await asyncio.gather(
        *(
            validate_field(
                value,
                str(path),
                field_type_for(path),
                _context_for(path),
                config=config,
                today=today,
            )
            for path, value in targets
        )
    )
    results: Dict[str, ValidationResult] = {}
    invalid: List[str] = []
    for (path, _), verdict in zip(targets, verdicts):
        key = str(path)
        results[key] = verdict
        if not verdict.is_valid:
            invalid.append(key)
    if invalid:
        logger.info("Record validation found %d invalid field(s): %s", len(invalid), invalid)
    return RecordValidation(all_valid=not invalid, results=results, invalid_paths=invalid)
