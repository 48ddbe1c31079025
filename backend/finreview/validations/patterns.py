from __future__ import annotations

from typing import Any, Dict, List

# Rule types for Singapore financial-aid forms.
# Pattern rules use fullmatch semantics; enum rules match by substring either way.
VALIDATION_RULES: Dict[str, Dict[str, Any]] = {
    "nric": {
        "regex": r"^[STFG]\d{7}[A-Z]$",
        "message": "NRIC must be in format S1234567A",
    },
    "email": {
        "regex": r"^[^\s@]+@[^\s@]+\.[^\s@]+$",
        "message": "Invalid email format",
    },
    "phone": {
        "regex": r"^[689]\d{7}$",
        "message": "Phone number must be 8 digits starting with 6, 8, or 9",
    },
    "postalCode": {
        "regex": r"^\d{6}$",
        "message": "Postal code must be 6 digits",
    },
    "income": {
        "regex": r"^\d+(\.\d{1,2})?$",
        "message": "Income must be a valid number",
    },
    "relationship": {
        "allowed": ["father", "mother", "spouse", "sibling", "child", "partner", "other"],
        "message": "Must be a valid family relationship",
    },
}

# Required field names per record section
MANDATORY_FIELDS: Dict[str, List[str]] = {
    "applicantIncome": ["occupation", "grossMonthlyIncomeSGD"],
    "householdIncome": ["name", "relationshipToApplicant", "grossMonthlyIncomeSGD"],
    "otherIncomeSources": ["description", "amountSGD"],
    "personal": ["applicantName", "nric"],
}

# Field name -> rule type
FIELD_TYPES: Dict[str, str] = {
    "grossMonthlyIncomeSGD": "income",
    "amountSGD": "income",
    "relationshipToApplicant": "relationship",
    "nric": "nric",
    "email": "email",
    "phoneNumber": "phone",
    "postalCode": "postalCode",
}
