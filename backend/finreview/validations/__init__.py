from .error_codes import ExtractionFlag, ValidationFlag
from .gates import field_type_for, validate_format
from .orchestrator import RecordValidation, validate_all_fields, validate_field
from .semantic import validate_semantics

__all__ = [
    "ExtractionFlag",
    "ValidationFlag",
    "field_type_for",
    "validate_format",
    "validate_semantics",
    "validate_field",
    "validate_all_fields",
    "RecordValidation",
]
