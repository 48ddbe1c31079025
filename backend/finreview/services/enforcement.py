"""Mandatory field enforcement.

Detects required fields that are empty, orders them by priority, then
decides whether the record may proceed: strict mode blocks on any gap,
otherwise a model judgment decides with a conservative rule fallback.
Every detected gap ends up either in ``blocker_fields`` or resolved in
``inferred_values``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from finreview.ai.capability import CapabilityStatus, call_json
from finreview.ai.router import ResolvedConfig, resolve
from finreview.parsers.amounts import coerce_amount
from finreview.records.paths import FieldPath, InvalidFieldPath, Section
from finreview.schemas.record import FinancialRecord, is_empty
from finreview.validations.patterns import MANDATORY_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_SECTION_RULES: Dict[str, List[str]] = {
    k: list(v) for k, v in MANDATORY_FIELDS.items() if k != Section.PERSONAL.value
}

# Lower is more urgent; identity fields come before relationship details
FIELD_PRIORITIES: Dict[str, int] = {
    "applicantName": 1,
    "nric": 2,
    "occupation": 3,
    "grossMonthlyIncomeSGD": 4,
    "name": 5,
    "relationshipToApplicant": 6,
}
DEFAULT_PRIORITY = 10

# Fallback: any of these missing blocks the record
CRITICAL_FIELDS = frozenset({"grossMonthlyIncomeSGD", "name", "applicantName", "occupation"})

_SECTION_REASONS = {
    Section.APPLICANT_INCOME: "Required field for applicant income",
    Section.HOUSEHOLD_INCOME: "Required field for household member",
    Section.OTHER_INCOME: "Required field for other income source",
    Section.PERSONAL: "Required personal detail",
}

_FIELD_SUGGESTIONS: Dict[str, List[str]] = {
    "occupation": [
        "Check if written elsewhere in the form",
        "Look for job title or profession",
        "Consider if applicant is unemployed or retired",
    ],
    "grossMonthlyIncomeSGD": [
        "Look for salary information",
        "Check for hourly wage that can be calculated",
        "Consider if income is zero for unemployed",
    ],
    "relationshipToApplicant": [
        "Common relationships: father, mother, spouse, child, sibling",
        "Check family section for clues",
        "Look at names for relationship hints",
    ],
    "name": [
        "Check if full name is written elsewhere",
        "Look for initials that can be expanded",
        "Verify spelling of existing name",
    ],
}

# Fields a model may safely fill (income = 0 when unemployed)
INFERABLE_FIELDS = frozenset({"grossMonthlyIncomeSGD", "amountSGD"})

MSG_COMPLETE = "All mandatory fields are complete"
MSG_STRICT = "All fields must be completed in strict mode"
MSG_FALLBACK = "Please complete all required fields before proceeding"


class EnforcementStatus(str, Enum):
    COMPLETE = "complete"
    BLOCKED = "blocked"
    CONDITIONAL_APPROVAL = "conditional_approval"
    REQUIRES_COMPLETION = "requires_completion"


@dataclass
class MissingField:
    path: FieldPath
    priority: int
    reason: str
    suggestions: List[str]
    can_infer: bool

    @property
    def field_name(self) -> str:
        return self.path.bracketed()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldName": self.field_name,
            "section": self.path.section.value,
            "priority": self.priority,
            "reason": self.reason,
            "suggestions": list(self.suggestions),
            "canInfer": self.can_infer,
        }


@dataclass
class EnforcementResult:
    can_proceed: bool
    blocker_fields: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    inferred_values: Dict[str, Any] = field(default_factory=dict)
    missing_fields: List[MissingField] = field(default_factory=list)
    status: EnforcementStatus = EnforcementStatus.COMPLETE
    method: str = "rules"

    def reasons(self) -> Dict[str, List[str]]:
        by_name = {m.field_name: m for m in self.missing_fields}
        return {b: [by_name[b].reason] if b in by_name else ["Required field is missing"] for b in self.blocker_fields}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canProceed": self.can_proceed,
            "blockerFields": list(self.blocker_fields),
            "suggestions": list(self.suggestions),
            "inferredValues": dict(self.inferred_values),
            "missingFields": [m.to_dict() for m in self.missing_fields],
            "status": self.status.value,
            "method": self.method,
        }


def _paths_for(record: FinancialRecord, section: Section, names: Sequence[str]) -> List[FieldPath]:
    if section is Section.PERSONAL:
        return [FieldPath(section, None, n) for n in names]
    if section is Section.NOTE:
        raise InvalidFieldPath("financialSituationNote cannot carry required fields")
    return [FieldPath(section, i, n) for i in range(len(record.rows(section))) for n in names]


def find_missing_fields(
    record: FinancialRecord,
    section_rules: Optional[Mapping[str, Sequence[str]]] = None,
) -> List[MissingField]:
    """Empty required fields, most urgent first (stable within equal priority)."""
    rules = DEFAULT_SECTION_RULES if section_rules is None else section_rules
    missing: List[MissingField] = []
    for section_name, names in rules.items():
        try:
            section = Section(section_name)
        except ValueError:
            raise InvalidFieldPath(f"Unknown section in rules: {section_name!r}") from None
        for path in _paths_for(record, section, names):
            if not is_empty(record.get_value(path)):
                continue
            leaf = path.leaf
            missing.append(
                MissingField(
                    path=path,
                    priority=FIELD_PRIORITIES.get(leaf, DEFAULT_PRIORITY),
                    reason=_SECTION_REASONS[section],
                    suggestions=list(_FIELD_SUGGESTIONS.get(leaf, ["Please fill in this required field"])),
                    can_infer=leaf in INFERABLE_FIELDS,
                )
            )
    missing.sort(key=lambda m: m.priority)
    return missing


def fallback_decision(missing: Sequence[MissingField]) -> EnforcementResult:
    critical = [m for m in missing if m.path.leaf in CRITICAL_FIELDS]
    can_proceed = not critical
    return EnforcementResult(
        can_proceed=can_proceed,
        blocker_fields=[m.field_name for m in missing],
        suggestions=[MSG_FALLBACK],
        missing_fields=list(missing),
        status=EnforcementStatus.CONDITIONAL_APPROVAL if can_proceed else EnforcementStatus.REQUIRES_COMPLETION,
        method="fallback",
    )


SYSTEM_PROMPT = """You analyze financial-aid forms with missing mandatory fields. Decide:
1. whether the form can proceed despite the gaps,
2. which missing fields are hard blockers,
3. which values can be safely inferred from context (e.g. income 0 when marked unemployed).

Critical fields (names, income amounts) are blocking unless a value can be safely inferred.
Use the exact field paths given. Return ONLY JSON:
{"canProceed": false, "blockerFields": ["householdIncome[0].name"], "suggestions": ["..."], "inferredValues": {"applicantIncome[0].grossMonthlyIncomeSGD": 0}}"""


def _prompt(record: FinancialRecord, missing: Sequence[MissingField]) -> str:
    lines = "\n".join(f"- {m.field_name}: {m.reason}" for m in missing)
    form = json.dumps(record.structured_payload(), ensure_ascii=False, indent=2, default=str)
    return f"FORM DATA:\n{form}\n\nMISSING FIELDS:\n{lines}"


def _normalize(raw: Any, known: Mapping[str, MissingField]) -> Optional[str]:
    try:
        key = FieldPath.parse(str(raw)).bracketed()
    except InvalidFieldPath:
        key = None
    if key not in known:
        logger.warning("Enforcement judgment named unknown field %r; ignored", raw)
        return None
    return key


def apply_judgment(payload: Any, missing: Sequence[MissingField]) -> Optional[EnforcementResult]:
    """Reconcile a model judgment with detected gaps; None when the payload is unusable."""
    if not isinstance(payload, dict) or not isinstance(payload.get("canProceed"), bool):
        return None
    known = {m.field_name: m for m in missing}

    inferred: Dict[str, Any] = {}
    raw_inferred = payload.get("inferredValues")
    if isinstance(raw_inferred, dict):
        for raw_path, value in raw_inferred.items():
            key = _normalize(raw_path, known)
            if key is None or is_empty(value):
                continue
            inferred[key] = coerce_amount(value) if known[key].path.numeric else value

    blockers: List[str] = []
    raw_blockers = payload.get("blockerFields")
    for raw_path in raw_blockers if isinstance(raw_blockers, list) else []:
        key = _normalize(raw_path, known)
        if key is not None and key not in blockers:
            blockers.append(key)
    for key in blockers:
        inferred.pop(key, None)
    # nothing detected may be silently dropped
    for m in missing:
        if m.field_name not in blockers and m.field_name not in inferred:
            blockers.append(m.field_name)
    order = {m.field_name: i for i, m in enumerate(missing)}
    blockers.sort(key=lambda k: order[k])

    raw_sugg = payload.get("suggestions")
    suggestions = [str(s) for s in raw_sugg] if isinstance(raw_sugg, list) else []
    can_proceed = payload["canProceed"]
    return EnforcementResult(
        can_proceed=can_proceed,
        blocker_fields=blockers,
        suggestions=suggestions,
        inferred_values=inferred,
        missing_fields=list(missing),
        status=EnforcementStatus.CONDITIONAL_APPROVAL if can_proceed else EnforcementStatus.REQUIRES_COMPLETION,
        method="model",
    )


async def enforce(
    record: FinancialRecord,
    section_rules: Optional[Mapping[str, Sequence[str]]] = None,
    strict: bool = False,
    *,
    config: Optional[ResolvedConfig] = None,
) -> EnforcementResult:
    missing = find_missing_fields(record, section_rules)
    if not missing:
        return EnforcementResult(can_proceed=True, suggestions=[MSG_COMPLETE])

    if strict:
        return EnforcementResult(
            can_proceed=False,
            blocker_fields=[m.field_name for m in missing],
            suggestions=[MSG_STRICT],
            missing_fields=missing,
            status=EnforcementStatus.BLOCKED,
        )

    config = config or resolve("enforce")
    raw = await call_json(config, _prompt(record, missing), system_prompt=SYSTEM_PROMPT, temperature=0.1, label="enforcement")
    if raw.status is not CapabilityStatus.FAILED:
        judged = apply_judgment(raw.value, missing)
        if judged is not None:
            return judged
        logger.warning("Enforcement judgment unusable, using rule fallback: %r", raw.value)
    return fallback_decision(missing)
