"""Vision extraction: form image -> FinancialRecord with a per-field confidence map.

Never raises on capability problems. Failures come back as an empty record
with confidence 0 and flags explaining why, wrapped in a ``failed`` result.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from finreview.ai.capability import CapabilityResult, CapabilityStatus, call_json
from finreview.ai.router import ResolvedConfig, resolve
from finreview.config import DEFAULT_CONFIDENCE
from finreview.parsers.amounts import coerce_amount
from finreview.records.paths import NUMERIC_FIELDS, REPEATING_SECTIONS, SECTION_FIELDS, Section
from finreview.schemas.record import (
    ENTRY_MODELS,
    FieldConfidence,
    FieldSource,
    FinancialRecord,
    PersonalDetails,
)
from finreview.validations.confidence import needs_confirmation
from finreview.validations.error_codes import ExtractionFlag

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert financial form data extraction system. Respond with valid JSON that "
    "matches the requested structure exactly. Always return a complete JSON object even if data is missing."
)

EXTRACT_PROMPT = """Analyze this handwritten/scanned financial declaration form and extract its data.

Return a JSON object with this structure:
{
  "applicantIncome": [{"occupation": "string or null", "grossMonthlyIncomeSGD": number or null, "periodOfEmployment": "string or null"}],
  "householdIncome": [{"name": "string or null", "relationshipToApplicant": "string or null", "occupation": "string or null", "grossMonthlyIncomeSGD": number or null}],
  "otherIncomeSources": [{"description": "string or null", "amountSGD": number or null}],
  "personal": {"applicantName": null, "nric": null, "address": null, "phoneNumber": null, "email": null, "postalCode": null},
  "financialSituationNote": "string or empty string",
  "flags": ["issues such as unclear handwriting, missing data, illegible text"],
  "confidence": 0.85,
  "confidence_per_field": {"applicantIncome.0.occupation": 0.9},
  "source_per_field": {"applicantIncome.0.occupation": "ocr"}
}

Rules:
- One array object per table row. Use null for blank or unreadable cells.
- Convert money to numbers: "$2,500" -> 2500, "SGD 1,200" -> 1200.
- Keep names, occupations and descriptions as written.
- confidence_per_field keys are dotted paths like householdIncome.1.name.
- Include at least one flag if overall quality is below 0.9.
- confidence: 1.0 clear and complete, 0.8-0.9 minor issues, 0.5-0.7 hard to read, below 0.5 major loss."""

_EXPECTED_KEYS = ("applicantIncome", "householdIncome", "otherIncomeSources", "financialSituationNote", "flags", "confidence")


def empty_record(*flags: str, note: str = "") -> FinancialRecord:
    return FinancialRecord(financial_situation_note=note, flags=list(flags), confidence=0.0)


def _failed(error: str, *flags: str, note: str) -> CapabilityResult[FinancialRecord]:
    return CapabilityResult.failed(error, *flags, fallback=empty_record(*flags, note=note))


def _build_rows(section: Section, raw: Any, warnings: List[str]) -> List[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        warnings.append(f"{section.value}: expected a list")
        return []
    model = ENTRY_MODELS[section]
    rows = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            warnings.append(f"{section.value}[{i}]: expected an object")
            continue
        clean = {}
        for name in SECTION_FIELDS[section]:
            v = item.get(name)
            if name in NUMERIC_FIELDS:
                v = coerce_amount(v)
            elif v is not None and not isinstance(v, str):
                v = str(v)
            clean[name] = v
        try:
            rows.append(model.model_validate(clean))
        except ValidationError as e:
            warnings.append(f"{section.value}[{i}]: {e.error_count()} invalid value(s)")
            rows.append(model())
    return rows


def _clamp(v: Any, default: float) -> float:
    try:
        return max(0.0, min(1.0, float(v)))
    except (TypeError, ValueError):
        return default


def _source(raw: Any) -> FieldSource:
    try:
        return FieldSource(str(raw))
    except ValueError:
        return FieldSource.OCR


def build_record(payload: Dict[str, Any]) -> Tuple[FinancialRecord, List[str]]:
    """Turn a parsed extraction payload into a record; returns (record, schema warnings)."""
    warnings: List[str] = []
    record = FinancialRecord()
    for section in REPEATING_SECTIONS:
        record.rows(section).extend(_build_rows(section, payload.get(section.value), warnings))

    personal = payload.get("personal")
    if isinstance(personal, dict):
        try:
            record.personal = PersonalDetails.model_validate(
                {k: (None if personal.get(k) is None else str(personal.get(k))) for k in SECTION_FIELDS[Section.PERSONAL]}
            )
        except ValidationError:
            warnings.append("personal: invalid values")

    note = payload.get("financialSituationNote")
    record.financial_situation_note = note if isinstance(note, str) else ""

    flags = payload.get("flags")
    if not isinstance(flags, list):
        warnings.append("flags: missing")
        flags = []
    if "confidence" not in payload:
        warnings.append("confidence: missing")
    record.flags = [str(f) for f in flags]
    record.confidence = _clamp(payload.get("confidence"), 0.5)

    per_field = payload.get("confidence_per_field") if isinstance(payload.get("confidence_per_field"), dict) else {}
    sources = payload.get("source_per_field") if isinstance(payload.get("source_per_field"), dict) else {}
    for path, value in record.iter_paths(populated_only=True):
        key = str(path)
        conf = _clamp(per_field.get(key), record.confidence) if key in per_field else record.confidence
        fc_flags = [ExtractionFlag.LOW_CONFIDENCE.value] if needs_confirmation(conf) else []
        record.field_confidence[key] = FieldConfidence(
            value=value,
            confidence=conf,
            source=_source(sources.get(key, "ocr")),
            flags=fc_flags,
            original_text=None if isinstance(value, str) else str(value),
        )
    return record, warnings


async def extract_record(
    image: bytes,
    mime_type: str,
    *,
    config: Optional[ResolvedConfig] = None,
) -> CapabilityResult[FinancialRecord]:
    config = config or resolve("extract")
    raw = await call_json(
        config,
        EXTRACT_PROMPT,
        system_prompt=SYSTEM_PROMPT,
        images=[(mime_type or "image/jpeg", image)],
        temperature=0.1,
        label="extraction",
    )
    if raw.status is CapabilityStatus.FAILED:
        if "refusal" in raw.flags:
            return _failed(
                raw.error or "refusal",
                ExtractionFlag.REFUSAL.value,
                ExtractionFlag.MANUAL_REVIEW.value,
                note="Model refused to process - manual review required",
            )
        return _failed(
            raw.error or "failed",
            ExtractionFlag.FAILED.value,
            ExtractionFlag.MANUAL_REVIEW.value,
            note="Error processing form - manual review required",
        )

    payload = raw.value
    if not isinstance(payload, dict) or not any(k in payload for k in _EXPECTED_KEYS):
        logger.warning("Extraction payload has none of the expected keys")
        return _failed(
            "empty_extraction",
            ExtractionFlag.FAILED.value,
            ExtractionFlag.MANUAL_REVIEW.value,
            note="Error processing form - manual review required",
        )

    record, warnings = build_record(payload)
    if warnings:
        logger.warning("Extraction schema warnings: %s", warnings)
        record.flags.append(ExtractionFlag.SCHEMA_WARNINGS.value)
        return CapabilityResult.degraded(record, ExtractionFlag.SCHEMA_WARNINGS.value, error="; ".join(warnings))
    logger.info(
        "Extracted record: %d field(s), confidence %.2f, %d below %.2f",
        len(record.field_confidence),
        record.confidence,
        sum(1 for fc in record.field_confidence.values() if needs_confirmation(fc.confidence)),
        DEFAULT_CONFIDENCE.confirm_threshold,
    )
    return CapabilityResult.ok(record)
