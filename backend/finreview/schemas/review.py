from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from finreview.schemas.record import FinancialRecord


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FieldEdit(_Payload):
    path: str = Field(..., description="Dotted or bracketed field path, e.g. applicantIncome.0.occupation")
    value: Any = None
    reviewer_id: Optional[str] = Field(None, alias="reviewerId")


class FieldRef(_Payload):
    path: str
    reason: Optional[str] = None
    reviewer_id: Optional[str] = Field(None, alias="reviewerId")


class RowAdd(_Payload):
    section: str = Field(..., description="applicantIncome | householdIncome | otherIncomeSources")


class ContinuePayload(_Payload):
    reason: Optional[str] = None
    reviewer_id: Optional[str] = Field(None, alias="reviewerId")


class DecisionPayload(_Payload):
    decision: str = Field(..., description="approve | reject | reviewed")
    reviewer_id: Optional[str] = Field(None, alias="reviewerId")
    notes: Optional[str] = None


class ValidateFieldRequest(_Payload):
    value: Any = Field(None, alias="fieldValue")
    field_name: str = Field(..., alias="fieldName")
    field_type: Optional[str] = Field(None, alias="fieldType")
    context: Optional[str] = None
    use_rules_only: bool = Field(False, alias="useRulesOnly")
    section: Optional[str] = None
    form_data: Optional[Dict[str, Any]] = Field(None, alias="formData")


class EnforceFieldsRequest(_Payload):
    form_data: Dict[str, Any] = Field(..., alias="formData")
    section_rules: Optional[Dict[str, List[str]]] = Field(None, alias="sectionRules")
    strict: bool = False


class SmartMappingRequest(_Payload):
    extracted_data: Any = Field(..., alias="extractedData")
    existing_data: Optional[FinancialRecord] = Field(None, alias="existingData")


class StandardizeRequest(_Payload):
    text: Any = None
    field_type: Optional[str] = Field(None, alias="fieldType")
    use_rules_only: bool = Field(False, alias="useRulesOnly")
