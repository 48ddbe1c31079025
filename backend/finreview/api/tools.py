from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from finreview.api.review import get_capabilities
from finreview.records.paths import InvalidFieldPath
from finreview.schemas.record import FinancialRecord
from finreview.schemas.review import (
    EnforceFieldsRequest,
    SmartMappingRequest,
    StandardizeRequest,
    ValidateFieldRequest,
)
from finreview.services import enforcement
from finreview.services.smart_mapping import EXPECTED_FIELDS, collect_fragments, map_fragments, merge_mappings
from finreview.services.standardize import STANDARDIZATION_RULES, standardize
from finreview.services.workflow import Capabilities
from finreview.validations.gates import field_type_for, supported_field_types, validate_format
from finreview.validations.orchestrator import is_confident_rejection, validate_field
from finreview.validations.patterns import MANDATORY_FIELDS, VALIDATION_RULES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tools"])


def _record_from(data: Any) -> FinancialRecord:
    try:
        return FinancialRecord.model_validate(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid form data: {e.error_count()} error(s)") from e


def _missing_in_section(form_data: Optional[Dict[str, Any]], section: Optional[str]) -> list[str]:
    if not (section and form_data):
        return []
    names = MANDATORY_FIELDS.get(section)
    if names is None:
        raise HTTPException(status_code=400, detail=f"Unknown section: {section}")
    record = _record_from(form_data)
    return [m.field_name for m in enforcement.find_missing_fields(record, {section: names})]


@router.post("/validate-field")
async def validate_one_field(
    req: ValidateFieldRequest,
    caps: Capabilities = Depends(get_capabilities),
) -> Dict[str, Any]:
    field_type = req.field_type or field_type_for(req.field_name)
    missing = _missing_in_section(req.form_data, req.section)

    rule = validate_format(req.value, field_type) if field_type else None
    if req.use_rules_only or (rule is not None and is_confident_rejection(rule)):
        result = rule or validate_format(req.value, None)
        method = "rules"
    else:
        result = await validate_field(
            req.value, req.field_name, field_type, req.context, config=caps.get("validate")
        )
        method = "combined"
    return {**result.model_dump(by_alias=True), "method": method, "missingMandatoryFields": missing}


@router.get("/validate-field/rules")
async def validation_rules() -> Dict[str, Any]:
    return {
        "validationRules": VALIDATION_RULES,
        "mandatoryFields": MANDATORY_FIELDS,
        "supportedFieldTypes": supported_field_types(),
    }


@router.post("/enforce-fields")
async def enforce_fields(
    req: EnforceFieldsRequest,
    caps: Capabilities = Depends(get_capabilities),
) -> Dict[str, Any]:
    record = _record_from(req.form_data)
    try:
        result = await enforcement.enforce(record, req.section_rules, req.strict, config=caps.get("enforce"))
    except InvalidFieldPath as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return result.to_dict()


@router.get("/enforce-fields")
async def enforcement_rules() -> Dict[str, Any]:
    return {
        "mandatoryFields": enforcement.DEFAULT_SECTION_RULES,
        "fieldPriorities": enforcement.FIELD_PRIORITIES,
        "criticalFields": sorted(enforcement.CRITICAL_FIELDS),
    }


@router.post("/smart-mapping")
async def smart_mapping(
    req: SmartMappingRequest,
    caps: Capabilities = Depends(get_capabilities),
) -> Dict[str, Any]:
    if req.extracted_data is None or isinstance(req.extracted_data, (str, int, float, bool)):
        raise HTTPException(status_code=400, detail="`extractedData` object is required")
    fragments = collect_fragments(req.extracted_data)
    result = await map_fragments(fragments, config=caps.get("mapping"))

    base = req.existing_data
    if base is None and isinstance(req.extracted_data, dict):
        try:
            base = FinancialRecord.model_validate(req.extracted_data)
        except ValidationError:
            logger.info("extractedData is not record-shaped; merging into an empty record")
    enhanced = (base or FinancialRecord()).model_copy(deep=True)
    changed = merge_mappings(enhanced, result.mappings) if result.mappings else []
    return {
        **result.to_dict(),
        "enhancedData": enhanced.model_dump(by_alias=True, mode="json"),
        "changedFields": changed,
        "fieldCategories": EXPECTED_FIELDS,
    }


@router.post("/standardize")
async def standardize_text(
    req: StandardizeRequest,
    caps: Capabilities = Depends(get_capabilities),
) -> Dict[str, Any]:
    result = await standardize(
        req.text, req.field_type, rules_only=req.use_rules_only, config=None if req.use_rules_only else caps.get("standardize")
    )
    return result.to_dict()


@router.get("/standardize")
async def standardization_rules(limit: int = Query(100, ge=1, le=500)) -> Dict[str, Any]:
    rules = [r.to_dict() for r in STANDARDIZATION_RULES[:limit]]
    return {"rules": rules, "totalRules": len(STANDARDIZATION_RULES)}
