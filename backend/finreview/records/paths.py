from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class Section(str, Enum):
    APPLICANT_INCOME = "applicantIncome"
    HOUSEHOLD_INCOME = "householdIncome"
    OTHER_INCOME = "otherIncomeSources"
    PERSONAL = "personal"
    NOTE = "financialSituationNote"

    @property
    def repeating(self) -> bool:
        return self in REPEATING_SECTIONS


REPEATING_SECTIONS = (Section.APPLICANT_INCOME, Section.HOUSEHOLD_INCOME, Section.OTHER_INCOME)

# Wire field names per section, in form order
SECTION_FIELDS: Dict[Section, Tuple[str, ...]] = {
    Section.APPLICANT_INCOME: ("occupation", "grossMonthlyIncomeSGD", "periodOfEmployment"),
    Section.HOUSEHOLD_INCOME: ("name", "relationshipToApplicant", "occupation", "grossMonthlyIncomeSGD"),
    Section.OTHER_INCOME: ("description", "amountSGD"),
    Section.PERSONAL: ("applicantName", "nric", "address", "phoneNumber", "email", "postalCode"),
    Section.NOTE: (),
}

NUMERIC_FIELDS = frozenset({"grossMonthlyIncomeSGD", "amountSGD"})

_DOTTED_RX = re.compile(r"^([A-Za-z]+)\.(\d+)\.([A-Za-z]+)$")
_BRACKET_RX = re.compile(r"^([A-Za-z]+)\[(\d+)\]\.([A-Za-z]+)$")
_PLAIN_RX = re.compile(r"^([A-Za-z]+)\.([A-Za-z]+)$")


class InvalidFieldPath(ValueError):
    pass


@dataclass(frozen=True)
class FieldPath:
    """Typed address of one record field.

    The wire form is the dotted string (``applicantIncome.0.occupation``);
    the enforcer reports gaps in bracket form (``applicantIncome[0].occupation``).
    Both parse back to the same path.
    """

    section: Section
    index: Optional[int] = None
    field: Optional[str] = None

    def __post_init__(self) -> None:
        if self.section is Section.NOTE:
            if self.index is not None or self.field is not None:
                raise InvalidFieldPath("financialSituationNote takes no index or field")
            return
        if self.field not in SECTION_FIELDS[self.section]:
            raise InvalidFieldPath(f"{self.section.value} has no field {self.field!r}")
        if self.section.repeating:
            if self.index is None or self.index < 0:
                raise InvalidFieldPath(f"{self.section.value} requires a row index")
        elif self.index is not None:
            raise InvalidFieldPath(f"{self.section.value} is not a repeating section")

    @classmethod
    def parse(cls, raw: str) -> "FieldPath":
        s = (raw or "").strip()
        if s == Section.NOTE.value:
            return cls(Section.NOTE)
        m = _DOTTED_RX.match(s) or _BRACKET_RX.match(s)
        if m:
            section, idx, name = m.group(1), int(m.group(2)), m.group(3)
            return cls(_section(section, raw), idx, name)
        m = _PLAIN_RX.match(s)
        if m:
            return cls(_section(m.group(1), raw), None, m.group(2))
        raise InvalidFieldPath(f"Unrecognised field path: {raw!r}")

    def __str__(self) -> str:
        if self.section is Section.NOTE:
            return self.section.value
        if self.index is None:
            return f"{self.section.value}.{self.field}"
        return f"{self.section.value}.{self.index}.{self.field}"

    def bracketed(self) -> str:
        if self.section is Section.NOTE or self.index is None:
            return str(self)
        return f"{self.section.value}[{self.index}].{self.field}"

    @property
    def leaf(self) -> str:
        return self.field or self.section.value

    @property
    def numeric(self) -> bool:
        return self.field in NUMERIC_FIELDS


def _section(name: str, raw: str) -> Section:
    try:
        return Section(name)
    except ValueError:
        raise InvalidFieldPath(f"Unknown section in field path: {raw!r}") from None


def display_name(path: FieldPath) -> str:
    """Human label for prompts and blocking messages, e.g. 'Household Income 2 - Relationship'."""
    labels = {
        "occupation": "Occupation",
        "grossMonthlyIncomeSGD": "Monthly Income",
        "periodOfEmployment": "Employment Period",
        "name": "Name",
        "relationshipToApplicant": "Relationship",
        "description": "Description",
        "amountSGD": "Amount",
        "applicantName": "Applicant Name",
        "nric": "NRIC",
        "address": "Address",
        "phoneNumber": "Phone Number",
        "email": "Email",
        "postalCode": "Postal Code",
    }
    if path.section is Section.NOTE:
        return "Financial Situation Note"
    label = labels.get(path.field or "", path.field or "")
    titles = {
        Section.APPLICANT_INCOME: "Applicant Income",
        Section.HOUSEHOLD_INCOME: "Household Income",
        Section.OTHER_INCOME: "Other Income",
        Section.PERSONAL: "Personal",
    }
    if path.index is None:
        return f"{titles[path.section]} - {label}"
    return f"{titles[path.section]} {path.index + 1} - {label}"
