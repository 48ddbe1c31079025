"""Smart field mapping: best-effort reassignment of loose text fragments to form fields.

Merge policy: a mapped singular field lands in the first entry of its
section's array, creating that entry when the array is empty. Personal
fields land in ``personal``; note text is appended to the free-text note.
``totalHouseholdIncome`` and ``monthlyExpenses`` are reported but never
merged because the record has no slot for them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from finreview.ai.capability import CapabilityStatus, call_json
from finreview.ai.router import ResolvedConfig, resolve
from finreview.config import DEFAULT_CONFIDENCE
from finreview.parsers.amounts import coerce_amount
from finreview.records.paths import FieldPath, Section
from finreview.schemas.record import FieldConfidence, FieldSource, FinancialRecord, is_empty

logger = logging.getLogger(__name__)

EXPECTED_FIELDS: Dict[str, List[str]] = {
    "applicantIncome": ["occupation", "grossMonthlyIncomeSGD", "periodOfEmployment"],
    "householdIncome": ["name", "relationshipToApplicant", "occupation", "grossMonthlyIncomeSGD"],
    "otherIncomeSources": ["description", "amountSGD"],
    "personal": ["applicantName", "nric", "address", "phoneNumber", "email", "postalCode"],
    "financial": ["financialSituationNote", "totalHouseholdIncome", "monthlyExpenses"],
}

SYSTEM_PROMPT = """You map text fragments pulled from a financial-aid form to form fields.

Field categories:
- applicantIncome: occupation, grossMonthlyIncomeSGD, periodOfEmployment
- householdIncome: name, relationshipToApplicant, occupation, grossMonthlyIncomeSGD
- otherIncomeSources: description, amountSGD
- personal: applicantName, nric, address, phoneNumber, email, postalCode
- financial: financialSituationNote, totalHouseholdIncome, monthlyExpenses

Map each fragment to the most plausible category and field with a confidence 0-1.
Fragments that fit nothing go to unmappedText. Return ONLY JSON:
{"mappings": [{"category": "applicantIncome", "fieldName": "occupation", "extractedText": "part-time cashier", "confidence": 0.9}],
 "unmappedText": ["..."], "confidence": 0.85}"""


@dataclass
class FieldMapping:
    category: str
    field_name: str
    text: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "fieldName": self.field_name,
            "extractedText": self.text,
            "confidence": self.confidence,
        }


@dataclass
class MappingResult:
    mappings: List[FieldMapping] = field(default_factory=list)
    unmapped_text: List[str] = field(default_factory=list)
    confidence: float = 0.0
    status: CapabilityStatus = CapabilityStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mappings": [m.to_dict() for m in self.mappings],
            "unmappedText": list(self.unmapped_text),
            "confidence": self.confidence,
            "status": self.status.value,
        }


def collect_fragments(obj: Any, acc: Optional[List[str]] = None) -> List[str]:
    """Flatten every string/number leaf, depth-first, preserving order."""
    if acc is None:
        acc = []
    if obj is None or isinstance(obj, bool):
        return acc
    if isinstance(obj, str):
        if obj.strip():
            acc.append(obj)
    elif isinstance(obj, (int, float)):
        acc.append(str(int(obj)) if isinstance(obj, float) and obj.is_integer() else str(obj))
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            collect_fragments(item, acc)
    elif isinstance(obj, dict):
        for v in obj.values():
            collect_fragments(v, acc)
    return acc


def fragments_from_record(record: FinancialRecord) -> List[str]:
    return collect_fragments(record.structured_payload())


def category_for(field_name: str, hint: Optional[str] = None) -> Optional[str]:
    if hint and field_name in EXPECTED_FIELDS.get(hint, ()):
        return hint
    for category, names in EXPECTED_FIELDS.items():
        if field_name in names:
            return category
    return None


def _conf(v: Any) -> float:
    try:
        return max(0.0, min(1.0, float(v)))
    except (TypeError, ValueError):
        return 0.0


def _mentioned(fragment: str, texts: Sequence[str]) -> bool:
    # whole-fragment match only: "0" is not covered by "2800"
    f = fragment.strip().lower()
    return any(f == t.strip().lower() for t in texts)


def parse_mapping(payload: Any, fragments: Sequence[str], *, min_conf: Optional[float] = None) -> Optional[MappingResult]:
    if not isinstance(payload, dict) or not isinstance(payload.get("mappings"), list):
        return None
    threshold = DEFAULT_CONFIDENCE.mapping_min_conf if min_conf is None else min_conf
    mappings: List[FieldMapping] = []
    unmapped: List[str] = [str(t) for t in payload.get("unmappedText") or [] if isinstance(t, (str, int, float))]
    for item in payload["mappings"]:
        if not isinstance(item, dict):
            continue
        text = item.get("extractedText")
        if text is None or is_empty(str(text)):
            continue
        text = str(text)
        name = str(item.get("fieldName") or "")
        category = category_for(name, str(item.get("category") or "") or None)
        conf = _conf(item.get("confidence"))
        if category is None or conf < threshold:
            unmapped.append(text)
            continue
        mappings.append(FieldMapping(category, name, text, conf))

    seen = [m.text for m in mappings] + unmapped
    for frag in fragments:
        if not _mentioned(frag, seen):
            unmapped.append(frag)
    return MappingResult(
        mappings=mappings,
        unmapped_text=list(dict.fromkeys(unmapped)),
        confidence=_conf(payload.get("confidence")),
    )


async def map_fragments(
    fragments: Sequence[str],
    *,
    config: Optional[ResolvedConfig] = None,
) -> MappingResult:
    """Never raises; on any failure every fragment comes back unmapped with confidence 0."""
    fragments = [f for f in fragments if not is_empty(f)]
    if not fragments:
        return MappingResult()
    config = config or resolve("mapping")
    prompt = "Map these extracted text fragments to form fields:\n" + "\n".join(
        f'{i + 1}. "{t}"' for i, t in enumerate(fragments)
    )
    raw = await call_json(config, prompt, system_prompt=SYSTEM_PROMPT, temperature=0.1, label="smart mapping")
    if raw.status is not CapabilityStatus.FAILED:
        parsed = parse_mapping(raw.value, fragments)
        if parsed is not None:
            return parsed
        logger.warning("Smart mapping returned an unusable payload")
    return MappingResult(unmapped_text=list(fragments), confidence=0.0, status=CapabilityStatus.FAILED)


def _target_path(record: FinancialRecord, m: FieldMapping) -> Optional[FieldPath]:
    if m.category == "financial":
        return FieldPath(Section.NOTE) if m.field_name == "financialSituationNote" else None
    section = Section(m.category)
    if section is Section.PERSONAL:
        return FieldPath(section, None, m.field_name)
    if not record.rows(section):
        record.add_row(section)
    return FieldPath(section, 0, m.field_name)


def merge_mappings(record: FinancialRecord, mappings: Sequence[FieldMapping]) -> List[str]:
    """Apply mappings in place; returns the dotted paths that changed."""
    changed: List[str] = []
    for m in mappings:
        path = _target_path(record, m)
        if path is None:
            continue
        old = record.get_value(path)
        if path.section is Section.NOTE:
            if m.text in (old or ""):
                continue
            new: Any = f"{old}\n{m.text}" if old else m.text
        else:
            new = coerce_amount(m.text) if path.numeric else m.text
            if new == old:
                continue
        record.set_value(path, new)
        key = str(path)
        record.field_confidence[key] = FieldConfidence(
            value=new,
            confidence=m.confidence,
            source=FieldSource.INFERRED,
            original_text=m.text,
            alternatives=None if is_empty(old) or path.section is Section.NOTE else [old],
        )
        changed.append(key)
    return changed


async def enhance_record(
    record: FinancialRecord,
    *,
    config: Optional[ResolvedConfig] = None,
) -> Tuple[FinancialRecord, MappingResult]:
    """Return (possibly enhanced copy, mapping result); the input record is never modified."""
    result = await map_fragments(fragments_from_record(record), config=config)
    if result.status is CapabilityStatus.FAILED or not result.mappings:
        return record, result
    enhanced = record.model_copy(deep=True)
    changed = merge_mappings(enhanced, result.mappings)
    logger.info("Smart mapping merged %d field(s): %s", len(changed), changed)
    return enhanced, result
