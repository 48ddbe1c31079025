from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from finreview.records.paths import (
    FieldPath,
    InvalidFieldPath,
    REPEATING_SECTIONS,
    SECTION_FIELDS,
    Section,
)


class _WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(populate_by_name=True)


class FieldSource(str, Enum):
    OCR = "ocr"
    INFERRED = "inferred"
    USER_PROVIDED = "user-provided"
    STANDARDIZED = "standardized"


class RecordStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


def _clamp01(x: Any) -> float:
    try:
        return max(0.0, min(1.0, float(x)))
    except (TypeError, ValueError):
        return 0.0


class FieldConfidence(_WireModel):
    value: Any = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    source: FieldSource = FieldSource.OCR
    flags: List[str] = Field(default_factory=list, description="Extraction issues, e.g. 'unclear handwriting'")
    alternatives: Optional[List[Any]] = None
    original_text: Optional[str] = Field(None, alias="originalText")

    @field_validator("flags", mode="before")
    @classmethod
    def _flags_never_null(cls, v: Any) -> List[str]:
        return list(v or [])


class ValidationResult(_WireModel):
    is_valid: bool = Field(..., alias="isValid")
    standardized_value: Any = Field(None, alias="standardizedValue")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Validator certainty, independent of extraction")
    flags: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    requires_review: bool = Field(False, alias="requiresReview")

    @field_validator("flags", "suggestions", mode="before")
    @classmethod
    def _lists_never_null(cls, v: Any) -> List[str]:
        return list(v or [])

    @model_validator(mode="after")
    def _invalid_needs_flags(self) -> "ValidationResult":
        if not self.is_valid and not self.flags:
            raise ValueError("an invalid ValidationResult must carry at least one flag")
        return self


Amount = Optional[Union[float, str]]


class ApplicantIncome(_WireModel):
    occupation: Optional[str] = None
    gross_monthly_income_sgd: Amount = Field(None, alias="grossMonthlyIncomeSGD")
    period_of_employment: Optional[str] = Field(None, alias="periodOfEmployment")


class HouseholdIncome(_WireModel):
    name: Optional[str] = None
    relationship_to_applicant: Optional[str] = Field(None, alias="relationshipToApplicant")
    occupation: Optional[str] = None
    gross_monthly_income_sgd: Amount = Field(None, alias="grossMonthlyIncomeSGD")


class OtherIncomeSource(_WireModel):
    description: Optional[str] = None
    amount_sgd: Amount = Field(None, alias="amountSGD")


class PersonalDetails(_WireModel):
    applicant_name: Optional[str] = Field(None, alias="applicantName")
    nric: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    email: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")


ENTRY_MODELS = {
    Section.APPLICANT_INCOME: ApplicantIncome,
    Section.HOUSEHOLD_INCOME: HouseholdIncome,
    Section.OTHER_INCOME: OtherIncomeSource,
}

_SECTION_ATTR = {
    Section.APPLICANT_INCOME: "applicant_income",
    Section.HOUSEHOLD_INCOME: "household_income",
    Section.OTHER_INCOME: "other_income_sources",
    Section.PERSONAL: "personal",
    Section.NOTE: "financial_situation_note",
}


def is_empty(value: Any) -> bool:
    """None, '' and whitespace are empty. Zero is a real value (e.g. no income)."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _attr_for(model: BaseModel, wire_name: str) -> str:
    for attr, info in type(model).model_fields.items():
        if (info.alias or attr) == wire_name:
            return attr
    raise InvalidFieldPath(f"{type(model).__name__} has no field {wire_name!r}")


class FinancialRecord(_WireModel):
    applicant_income: List[ApplicantIncome] = Field(default_factory=list, alias="applicantIncome")
    household_income: List[HouseholdIncome] = Field(default_factory=list, alias="householdIncome")
    other_income_sources: List[OtherIncomeSource] = Field(default_factory=list, alias="otherIncomeSources")
    personal: PersonalDetails = Field(default_factory=PersonalDetails)
    financial_situation_note: str = Field("", alias="financialSituationNote")

    field_confidence: Dict[str, FieldConfidence] = Field(default_factory=dict, alias="fieldConfidence")
    field_validations: Dict[str, ValidationResult] = Field(default_factory=dict, alias="fieldValidations")
    flags: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    status: RecordStatus = RecordStatus.PENDING_REVIEW
    reviewer_id: Optional[str] = Field(None, alias="reviewerId")
    review_notes: Optional[str] = Field(None, alias="reviewNotes")
    required_fields: List[str] = Field(default_factory=list, alias="requiredFields")
    missing_mandatory_fields: List[str] = Field(default_factory=list, alias="missingMandatoryFields")

    @field_validator("applicant_income", "household_income", "other_income_sources", "flags", mode="before")
    @classmethod
    def _null_lists(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("financial_situation_note", mode="before")
    @classmethod
    def _null_note(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        return _clamp01(v)

    # --- path access ---

    def rows(self, section: Section) -> List[BaseModel]:
        if section not in REPEATING_SECTIONS:
            raise InvalidFieldPath(f"{section.value} is not a repeating section")
        return getattr(self, _SECTION_ATTR[section])

    def _target(self, path: FieldPath) -> BaseModel:
        if path.section is Section.PERSONAL:
            return self.personal
        rows = self.rows(path.section)
        if path.index is None or path.index >= len(rows):
            raise InvalidFieldPath(f"No row {path.index} in {path.section.value}")
        return rows[path.index]

    def get_value(self, path: FieldPath) -> Any:
        if path.section is Section.NOTE:
            return self.financial_situation_note
        target = self._target(path)
        return getattr(target, _attr_for(target, path.field or ""))

    def set_value(self, path: FieldPath, value: Any) -> None:
        if path.section is Section.NOTE:
            self.financial_situation_note = "" if value is None else str(value)
            return
        target = self._target(path)
        setattr(target, _attr_for(target, path.field or ""), value)

    def add_row(self, section: Section) -> int:
        rows = self.rows(section)
        rows.append(ENTRY_MODELS[section]())
        return len(rows) - 1

    def iter_paths(self, populated_only: bool = True) -> Iterator[Tuple[FieldPath, Any]]:
        """Yield (path, value) in form order: note, applicant, household, other, personal."""
        if not populated_only or not is_empty(self.financial_situation_note):
            yield FieldPath(Section.NOTE), self.financial_situation_note
        for section in REPEATING_SECTIONS:
            for idx, _ in enumerate(self.rows(section)):
                for name in SECTION_FIELDS[section]:
                    path = FieldPath(section, idx, name)
                    value = self.get_value(path)
                    if populated_only and is_empty(value):
                        continue
                    yield path, value
        for name in SECTION_FIELDS[Section.PERSONAL]:
            path = FieldPath(Section.PERSONAL, None, name)
            value = self.get_value(path)
            if populated_only and is_empty(value):
                continue
            yield path, value

    def structured_payload(self) -> Dict[str, Any]:
        """Form content only, without confidence/validation metadata."""
        return self.model_dump(
            by_alias=True,
            include={
                "applicant_income",
                "household_income",
                "other_income_sources",
                "personal",
                "financial_situation_note",
            },
        )
