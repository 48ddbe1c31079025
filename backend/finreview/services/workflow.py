"""Per-session review workflow: upload -> processing -> review -> export.

A ``ReviewSession`` owns exactly one record plus its confidence and
validation maps. Transitions only move forward; ``reset()`` is the single
way back to ``upload`` and bumps a generation counter so that model results
still in flight for the old record are dropped on arrival. Each field path
also carries a revision number so a validation started against an older
value never overwrites the verdict for a newer one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from finreview.ai.capability import CapabilityStatus
from finreview.ai.router import ResolvedConfig, resolve
from finreview.config import DEFAULT_CONFIDENCE, DEFAULT_WORKFLOW, ConfidenceSettings, WorkflowSettings
from finreview.parsers.amounts import coerce_amount
from finreview.records.paths import FieldPath, InvalidFieldPath, Section, display_name
from finreview.schemas.record import (
    FieldConfidence,
    FieldSource,
    FinancialRecord,
    RecordStatus,
    ValidationResult,
)
from finreview.services import enforcement, exporter
from finreview.services.extraction import extract_record
from finreview.services.smart_mapping import MappingResult, enhance_record
from finreview.validations.confidence import needs_confirmation
from finreview.validations.error_codes import ExtractionFlag
from finreview.validations.gates import field_type_for
from finreview.validations.orchestrator import validate_all_fields, validate_field

logger = logging.getLogger(__name__)


class Step(str, Enum):
    UPLOAD = "upload"
    PROCESSING = "processing"
    REVIEW = "review"
    EXPORT = "export"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVIEWED = "reviewed"


_DECISION_STATUS = {
    Decision.APPROVE: RecordStatus.APPROVED,
    Decision.REJECT: RecordStatus.REJECTED,
    Decision.REVIEWED: RecordStatus.REVIEWED,
}


# --- errors ---


class WorkflowError(Exception):
    pass


class InvalidTransition(WorkflowError):
    pass


class UnknownFieldPath(WorkflowError, InvalidFieldPath):
    pass


class EmptyUpload(WorkflowError):
    pass


class ExtractionFailed(WorkflowError):
    def __init__(self, message: str, flags: Sequence[str]):
        super().__init__(message)
        self.flags = list(flags)


class GateBlocked(WorkflowError):
    """Progression refused; ``fields`` maps each blocking path to its reasons."""

    def __init__(self, gate: str, fields: Mapping[str, List[str]], suggestions: Sequence[str] = ()):
        self.gate = gate
        self.fields = dict(fields)
        self.suggestions = list(suggestions)
        super().__init__(f"{gate} gate blocked by {len(self.fields)} field(s): {', '.join(self.fields)}")


class PersistenceError(WorkflowError):
    pass


# --- interrupts and audit ---


class InterruptKind(str, Enum):
    CONFIRMATION = "confirmation"
    VALIDATION = "validation"


@dataclass
class Interrupt:
    kind: InterruptKind
    path: str
    value: Any
    reasons: List[str] = field(default_factory=list)

    @property
    def blocking(self) -> bool:
        return self.kind is InterruptKind.VALIDATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "path": self.path,
            "label": display_name(FieldPath.parse(self.path)),
            "value": self.value,
            "reasons": list(self.reasons),
            "blocking": self.blocking,
        }


class AuditKind(str, Enum):
    FILE_SUBMITTED = "file_submitted"
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"
    SMART_MAPPING_APPLIED = "smart_mapping_applied"
    FIELD_EDITED = "field_edited"
    FIELD_CONFIRMED = "field_confirmed"
    ROW_ADDED = "row_added"
    VALIDATION_PASSED = "validation_passed"
    VALIDATION_FAILED = "validation_failed"
    STALE_RESULT_DISCARDED = "stale_result_discarded"
    OVERRIDE_ACCEPTED = "override_accepted"
    CONTINUE_ANYWAY = "continue_anyway"
    ENFORCEMENT_BLOCKED = "enforcement_blocked"
    VALUES_INFERRED = "values_inferred"
    ADVANCED_TO_EXPORT = "advanced_to_export"
    DECISION_SET = "decision_set"
    EXPORTED = "exported"
    SAVED = "saved"
    SAVE_FAILED = "save_failed"
    RESET = "reset"


@dataclass
class AuditEvent:
    kind: AuditKind
    path: Optional[str] = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "path": self.path, "at": self.at.isoformat(), "detail": dict(self.detail)}


@dataclass
class Capabilities:
    """Resolved model configs per scope; ``None`` resolves from the environment on use."""

    extract: Optional[ResolvedConfig] = None
    validate: Optional[ResolvedConfig] = None
    enforce: Optional[ResolvedConfig] = None
    mapping: Optional[ResolvedConfig] = None
    standardize: Optional[ResolvedConfig] = None

    def get(self, scope: str) -> ResolvedConfig:
        cfg = getattr(self, scope)
        return cfg if cfg is not None else resolve(scope)


RecordStore = Callable[[FinancialRecord, List[AuditEvent]], str]


def _path(raw: FieldPath | str) -> FieldPath:
    if isinstance(raw, FieldPath):
        return raw
    try:
        return FieldPath.parse(raw)
    except InvalidFieldPath as e:
        raise UnknownFieldPath(str(e)) from None


class ReviewSession:
    def __init__(
        self,
        *,
        session_id: Optional[str] = None,
        capabilities: Optional[Capabilities] = None,
        confidence: ConfidenceSettings = DEFAULT_CONFIDENCE,
        settings: WorkflowSettings = DEFAULT_WORKFLOW,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.capabilities = capabilities or Capabilities()
        self.confidence = confidence
        self.settings = settings
        self.created_at = datetime.now(timezone.utc)
        self.generation = 0
        self._clear()

    def _clear(self) -> None:
        self.step = Step.UPLOAD
        self.record: Optional[FinancialRecord] = None
        self.pending: Dict[str, Interrupt] = {}
        self.revisions: Dict[str, int] = {}
        self.accepted_overrides: Dict[str, List[str]] = {}
        self.validation_log: List[Dict[str, Any]] = []
        self.events: List[AuditEvent] = []
        self.extraction_flags: List[str] = []
        self.last_mapping: Optional[MappingResult] = None
        self.last_enforcement: Optional[enforcement.EnforcementResult] = None
        self.decision: Optional[Decision] = None
        self.saved_id: Optional[str] = None
        self.filename: Optional[str] = None

    # --- helpers ---

    def _log(self, kind: AuditKind, path: Optional[str] = None, **detail: Any) -> None:
        self.events.append(AuditEvent(kind, path, detail=detail))

    def _require(self, *steps: Step) -> FinancialRecord:
        if self.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise InvalidTransition(f"Action needs step {allowed}; session is at {self.step.value}")
        if self.record is None:
            raise InvalidTransition("Session has no record")
        return self.record

    def _field_value(self, record: FinancialRecord, path: FieldPath) -> Any:
        try:
            return record.get_value(path)
        except InvalidFieldPath as e:
            raise UnknownFieldPath(str(e)) from None

    def _is_current(self, key: str, revision: int, generation: int) -> bool:
        return generation == self.generation and self.revisions.get(key, 0) == revision and self.record is not None

    def _store_validation(self, key: str, result: ValidationResult) -> None:
        assert self.record is not None
        self.record.field_validations[key] = result
        self.validation_log.append(
            {"path": key, "revision": self.revisions.get(key, 0), "result": result.model_dump(by_alias=True)}
        )

    def _raise_confirmations(self, record: FinancialRecord, keys: Optional[Sequence[str]] = None) -> None:
        for key, fc in record.field_confidence.items():
            if keys is not None and key not in keys:
                continue
            if needs_confirmation(fc.confidence, threshold=self.confidence.confirm_threshold):
                self.pending[key] = Interrupt(
                    InterruptKind.CONFIRMATION,
                    key,
                    fc.value,
                    [f"Extraction confidence {fc.confidence:.2f} is below {self.confidence.confirm_threshold:.2f}"]
                    + list(fc.flags),
                )

    # --- upload -> processing -> review ---

    async def submit_file(self, data: bytes, mime_type: str, filename: Optional[str] = None) -> Optional[FinancialRecord]:
        if self.step is not Step.UPLOAD:
            raise InvalidTransition(f"Cannot upload at step {self.step.value}")
        if not data:
            raise EmptyUpload("Uploaded file is empty")

        self.step = Step.PROCESSING
        self.filename = filename
        generation = self.generation
        self._log(AuditKind.FILE_SUBMITTED, filename=filename, bytes=len(data), mime_type=mime_type)

        outcome = await extract_record(data, mime_type, config=self.capabilities.get("extract"))
        if generation != self.generation:
            logger.warning("Session %s reset during extraction; result dropped", self.id)
            return None

        if outcome.status is CapabilityStatus.FAILED or outcome.value is None:
            flags = list(outcome.value.flags) if outcome.value is not None else [
                ExtractionFlag.FAILED.value,
                ExtractionFlag.MANUAL_REVIEW.value,
            ]
            self.step = Step.UPLOAD
            self.extraction_flags = flags
            self._log(AuditKind.EXTRACTION_FAILED, error=outcome.error, flags=flags)
            raise ExtractionFailed(f"Extraction failed: {outcome.error}", flags)

        record = outcome.value
        self.extraction_flags = list(outcome.flags)
        self._log(
            AuditKind.EXTRACTION_COMPLETED,
            status=outcome.status.value,
            confidence=record.confidence,
            fields=len(record.field_confidence),
        )

        if self.settings.smart_mapping_enabled:
            record = await self._apply_smart_mapping(record, generation)
            if record is None:
                return None

        self.record = record
        self._raise_confirmations(record)
        self.step = Step.REVIEW
        return record

    async def _apply_smart_mapping(self, record: FinancialRecord, generation: int) -> Optional[FinancialRecord]:
        enhanced, result = await enhance_record(record, config=self.capabilities.get("mapping"))
        if generation != self.generation:
            logger.warning("Session %s reset during smart mapping; result dropped", self.id)
            return None
        self.last_mapping = result
        if enhanced is not record:
            self._log(
                AuditKind.SMART_MAPPING_APPLIED,
                mappings=[m.to_dict() for m in result.mappings],
                unmapped=list(result.unmapped_text),
            )
        return enhanced

    # --- review actions ---

    def edit_field(self, raw_path: FieldPath | str, value: Any, *, reviewer_id: Optional[str] = None) -> FieldConfidence:
        """Set a value, supersede its confidence entry and drop that path's verdict (only that one)."""
        record = self._require(Step.REVIEW)
        path = _path(raw_path)
        key = str(path)
        before = self._field_value(record, path)
        new_value = coerce_amount(value) if path.numeric else value
        try:
            record.set_value(path, new_value)
        except InvalidFieldPath as e:
            raise UnknownFieldPath(str(e)) from None

        self.revisions[key] = self.revisions.get(key, 0) + 1
        record.field_validations.pop(key, None)
        prior = record.field_confidence.get(key)
        fc = FieldConfidence(
            value=new_value,
            confidence=1.0,
            source=FieldSource.USER_PROVIDED,
            original_text=(prior.original_text if prior and prior.original_text else (None if before is None else str(before))),
        )
        record.field_confidence[key] = fc
        self.pending.pop(key, None)
        self.accepted_overrides.pop(key, None)
        self._log(AuditKind.FIELD_EDITED, key, before=before, after=new_value, reviewer_id=reviewer_id)
        return fc

    def confirm_field(self, raw_path: FieldPath | str, *, reviewer_id: Optional[str] = None) -> None:
        self._require(Step.REVIEW, Step.EXPORT)
        key = str(_path(raw_path))
        intr = self.pending.get(key)
        if intr is None or intr.kind is not InterruptKind.CONFIRMATION:
            raise InvalidTransition(f"No pending confirmation for {key}")
        del self.pending[key]
        self._log(AuditKind.FIELD_CONFIRMED, key, value=intr.value, reviewer_id=reviewer_id)

    def add_row(self, section: Section | str) -> int:
        record = self._require(Step.REVIEW)
        try:
            sec = Section(section)
            idx = record.add_row(sec)
        except (ValueError, InvalidFieldPath) as e:
            raise UnknownFieldPath(str(e)) from None
        self._log(AuditKind.ROW_ADDED, f"{sec.value}.{idx}")
        return idx

    async def validate_path(self, raw_path: FieldPath | str, *, today: Optional[date] = None) -> Optional[ValidationResult]:
        """Validate one field; returns None when the result went stale before it arrived."""
        record = self._require(Step.REVIEW)
        path = _path(raw_path)
        key = str(path)
        value = self._field_value(record, path)
        revision, generation = self.revisions.get(key, 0), self.generation
        result = await validate_field(
            value,
            key,
            field_type_for(path),
            f"{display_name(path)} on a financial assistance form",
            config=self.capabilities.get("validate"),
            today=today,
        )
        if not self._is_current(key, revision, generation):
            logger.warning("Discarding stale validation for %s (session %s)", key, self.id)
            if generation == self.generation:
                self._log(AuditKind.STALE_RESULT_DISCARDED, key)
            return None
        self._store_validation(key, result)
        if result.is_valid:
            if key in self.pending and self.pending[key].kind is InterruptKind.VALIDATION:
                del self.pending[key]
        else:
            self.pending[key] = Interrupt(InterruptKind.VALIDATION, key, value, list(result.suggestions) or list(result.flags))
        return result

    def accept_flagged(self, raw_path: FieldPath | str, *, reason: Optional[str] = None, reviewer_id: Optional[str] = None) -> None:
        """Reviewer override: the value stands, its verdict stays invalid in history."""
        record = self._require(Step.REVIEW)
        key = str(_path(raw_path))
        verdict = record.field_validations.get(key)
        if verdict is None or verdict.is_valid:
            raise InvalidTransition(f"{key} has no failed validation to accept")
        self.accepted_overrides[key] = list(verdict.flags)
        if key in self.pending and self.pending[key].kind is InterruptKind.VALIDATION:
            del self.pending[key]
        self._log(AuditKind.OVERRIDE_ACCEPTED, key, flags=list(verdict.flags), reason=reason, reviewer_id=reviewer_id)

    async def advance_to_export(self, *, today: Optional[date] = None) -> FinancialRecord:
        """review -> export, gated by full validation and mandatory-field enforcement."""
        record = self._require(Step.REVIEW)
        generation = self.generation
        revisions = dict(self.revisions)

        outcome = await validate_all_fields(record, config=self.capabilities.get("validate"), today=today)
        if generation != self.generation:
            raise InvalidTransition("Session was reset while validating")

        blocking: Dict[str, List[str]] = {}
        reasons = outcome.blocking_reasons()
        for key, result in outcome.results.items():
            if not self._is_current(key, revisions.get(key, 0), generation):
                self._log(AuditKind.STALE_RESULT_DISCARDED, key)
                blocking[key] = ["Value changed during validation; validate again"]
                continue
            self._store_validation(key, result)
            if result.is_valid:
                if key in self.pending and self.pending[key].kind is InterruptKind.VALIDATION:
                    del self.pending[key]
                self._log(AuditKind.VALIDATION_PASSED, key)
                continue
            self._log(AuditKind.VALIDATION_FAILED, key, flags=list(result.flags))
            if key in self.accepted_overrides:
                continue
            value = record.get_value(FieldPath.parse(key))
            self.pending[key] = Interrupt(InterruptKind.VALIDATION, key, value, reasons[key])
            blocking[key] = reasons[key]
        if blocking:
            raise GateBlocked("validation", blocking)

        result = await enforcement.enforce(
            record, strict=self.settings.enforce_strict, config=self.capabilities.get("enforce")
        )
        if generation != self.generation:
            raise InvalidTransition("Session was reset while checking mandatory fields")
        self.last_enforcement = result
        record.required_fields = self._required_paths(record)
        record.missing_mandatory_fields = list(result.blocker_fields)
        if not result.can_proceed:
            self._log(AuditKind.ENFORCEMENT_BLOCKED, blockers=list(result.blocker_fields), method=result.method)
            raise GateBlocked("mandatory", result.reasons(), result.suggestions)

        if result.inferred_values:
            self._apply_inferred(record, result.inferred_values)

        self.step = Step.EXPORT
        self._log(AuditKind.ADVANCED_TO_EXPORT, enforcement=result.status.value)
        return record

    def _required_paths(self, record: FinancialRecord) -> List[str]:
        out: List[str] = []
        for section_name, names in enforcement.DEFAULT_SECTION_RULES.items():
            section = Section(section_name)
            for i in range(len(record.rows(section))):
                out.extend(FieldPath(section, i, n).bracketed() for n in names)
        return out

    def _apply_inferred(self, record: FinancialRecord, inferred: Mapping[str, Any]) -> None:
        keys: List[str] = []
        for bracketed, value in inferred.items():
            path = FieldPath.parse(bracketed)
            key = str(path)
            record.set_value(path, value)
            self.revisions[key] = self.revisions.get(key, 0) + 1
            record.field_validations.pop(key, None)
            record.field_confidence[key] = FieldConfidence(
                value=value,
                confidence=self.confidence.inferred_conf,
                source=FieldSource.INFERRED,
                flags=["inferred from context"],
            )
            keys.append(key)
        self._raise_confirmations(record, keys)
        self._log(AuditKind.VALUES_INFERRED, values={k: record.field_confidence[k].value for k in keys})

    def continue_anyway(self, *, reason: Optional[str] = None, reviewer_id: Optional[str] = None) -> FinancialRecord:
        """Escape hatch past both gates; logged distinctly from a clean pass."""
        record = self._require(Step.REVIEW)
        overridden = sorted(k for k, i in self.pending.items() if i.kind is InterruptKind.VALIDATION)
        for key in overridden:
            verdict = record.field_validations.get(key)
            self.accepted_overrides[key] = list(verdict.flags) if verdict else []
            del self.pending[key]
        missing = enforcement.find_missing_fields(record)
        record.required_fields = self._required_paths(record)
        record.missing_mandatory_fields = [m.field_name for m in missing]
        self.step = Step.EXPORT
        self._log(
            AuditKind.CONTINUE_ANYWAY,
            overridden=overridden,
            missing=record.missing_mandatory_fields,
            reason=reason,
            reviewer_id=reviewer_id,
        )
        return record

    def set_decision(
        self,
        decision: Decision | str,
        *,
        reviewer_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RecordStatus:
        record = self._require(Step.REVIEW, Step.EXPORT)
        d = Decision(decision)
        self.decision = d
        record.status = _DECISION_STATUS[d]
        if reviewer_id is not None:
            record.reviewer_id = reviewer_id
        if notes is not None:
            record.review_notes = notes
        self._log(AuditKind.DECISION_SET, decision=d.value, status=record.status.value, reviewer_id=reviewer_id)
        return record.status

    # --- export ---

    def export_csv(self) -> str:
        record = self._require(Step.EXPORT)
        self._log(AuditKind.EXPORTED, format="csv")
        return exporter.to_csv(record)

    def export_xlsx(self, dest_path: str) -> str:
        record = self._require(Step.EXPORT)
        self._log(AuditKind.EXPORTED, format="xlsx")
        return exporter.export_xlsx(dest_path, record)

    def save(self, store: RecordStore) -> str:
        """Persist through *store*; on failure the session stays in export so the user can retry."""
        record = self._require(Step.EXPORT)
        try:
            record_id = store(record, list(self.events))
        except Exception as e:
            logger.exception("Saving session %s failed", self.id)
            self._log(AuditKind.SAVE_FAILED, error=str(e))
            raise PersistenceError(f"Could not save record: {e}") from e
        self.saved_id = record_id
        self._log(AuditKind.SAVED, record_id=record_id)
        return record_id

    def reset(self) -> None:
        self.generation += 1
        self._clear()
        self._log(AuditKind.RESET)

    # --- views ---

    @property
    def interrupts(self) -> List[Interrupt]:
        return list(self.pending.values())

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "step": self.step.value,
            "record": self.record.model_dump(by_alias=True, mode="json") if self.record else None,
            "interrupts": [i.to_dict() for i in self.pending.values()],
            "acceptedOverrides": dict(self.accepted_overrides),
            "extractionFlags": list(self.extraction_flags),
            "decision": self.decision.value if self.decision else None,
            "savedId": self.saved_id,
            "enforcement": self.last_enforcement.to_dict() if self.last_enforcement else None,
            "smartMapping": self.last_mapping.to_dict() if self.last_mapping else None,
            "events": [e.to_dict() for e in self.events],
        }
