from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile

from finreview.config import WorkflowSettings
from finreview.db import crud as dbcrud
from finreview.db.session import db_enabled, session_scope
from finreview.persistence.audit import write_session_audit
from finreview.records.paths import FieldPath, display_name
from finreview.schemas.record import FinancialRecord
from finreview.schemas.review import ContinuePayload, DecisionPayload, FieldEdit, FieldRef, RowAdd
from finreview.services.upload import UploadRejected, check_upload
from finreview.services.workflow import (
    AuditEvent,
    Capabilities,
    EmptyUpload,
    ExtractionFailed,
    GateBlocked,
    InvalidTransition,
    PersistenceError,
    ReviewSession,
    UnknownFieldPath,
    WorkflowError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/review", tags=["review"])

# One reviewer per session; sessions live for the lifetime of the process.
_SESSIONS: Dict[str, ReviewSession] = {}

RecordStore = Callable[[FinancialRecord, List[AuditEvent]], str]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def get_audit_root() -> Path:
    """Fresh settings per call so AUDIT_ROOT changes after import are honoured."""
    return Path(WorkflowSettings().audit_root)


def get_capabilities() -> Capabilities:
    return Capabilities()


def _db_store(record: FinancialRecord, events: List[AuditEvent]) -> str:
    with session_scope() as db:
        return dbcrud.save_record(db, record, events)


def get_record_store() -> RecordStore:
    if not db_enabled():
        raise HTTPException(status_code=503, detail="DB not enabled")
    return _db_store


def _session(session_id: str) -> ReviewSession:
    s = _SESSIONS.get(session_id)
    if s is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return s


def _gate_detail(e: GateBlocked) -> Dict[str, Any]:
    fields = []
    for path, reasons in e.fields.items():
        fields.append({"path": path, "label": display_name(FieldPath.parse(path)), "reasons": reasons})
    return {"gate": e.gate, "message": str(e), "fields": fields, "suggestions": e.suggestions}


def _http_error(e: WorkflowError) -> HTTPException:
    if isinstance(e, GateBlocked):
        return HTTPException(status_code=409, detail=_gate_detail(e))
    if isinstance(e, ExtractionFailed):
        return HTTPException(status_code=502, detail={"message": str(e), "flags": e.flags})
    if isinstance(e, (UnknownFieldPath, EmptyUpload)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.post("/sessions", status_code=201)
async def create_session(caps: Capabilities = Depends(get_capabilities)) -> Dict[str, Any]:
    s = ReviewSession(capabilities=caps)
    _SESSIONS[s.id] = s
    return s.snapshot()


@router.get("/sessions/{session_id}")
async def get_session(session_id: str) -> Dict[str, Any]:
    return _session(session_id).snapshot()


@router.post("/sessions/{session_id}/upload")
async def upload_form(session_id: str, file: UploadFile = File(...)) -> Dict[str, Any]:
    s = _session(session_id)
    data = await file.read()
    try:
        mime = check_upload(data, file.filename, file.content_type)
    except UploadRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    try:
        await s.submit_file(data, mime, file.filename)
    except WorkflowError as e:
        raise _http_error(e) from e
    return s.snapshot()


@router.patch("/sessions/{session_id}/fields")
async def edit_field(session_id: str, req: FieldEdit) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        s.edit_field(req.path, req.value, reviewer_id=req.reviewer_id)
    except WorkflowError as e:
        raise _http_error(e) from e
    return s.snapshot()


@router.post("/sessions/{session_id}/fields/validate")
async def validate_field(session_id: str, req: FieldRef) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        result = await s.validate_path(req.path)
    except WorkflowError as e:
        raise _http_error(e) from e
    return {
        "path": str(FieldPath.parse(req.path)),
        "stale": result is None,
        "result": result.model_dump(by_alias=True) if result is not None else None,
        "session": s.snapshot(),
    }


@router.post("/sessions/{session_id}/fields/confirm")
async def confirm_field(session_id: str, req: FieldRef) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        s.confirm_field(req.path, reviewer_id=req.reviewer_id)
    except WorkflowError as e:
        raise _http_error(e) from e
    return s.snapshot()


@router.post("/sessions/{session_id}/fields/accept")
async def accept_flagged(session_id: str, req: FieldRef) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        s.accept_flagged(req.path, reason=req.reason, reviewer_id=req.reviewer_id)
    except WorkflowError as e:
        raise _http_error(e) from e
    return s.snapshot()


@router.post("/sessions/{session_id}/rows")
async def add_row(session_id: str, req: RowAdd) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        index = s.add_row(req.section)
    except WorkflowError as e:
        raise _http_error(e) from e
    return {"index": index, "session": s.snapshot()}


@router.post("/sessions/{session_id}/advance")
async def advance(session_id: str) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        await s.advance_to_export()
    except WorkflowError as e:
        raise _http_error(e) from e
    return s.snapshot()


@router.post("/sessions/{session_id}/continue")
async def continue_anyway(session_id: str, req: ContinuePayload) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        s.continue_anyway(reason=req.reason, reviewer_id=req.reviewer_id)
    except WorkflowError as e:
        raise _http_error(e) from e
    return s.snapshot()


@router.post("/sessions/{session_id}/decision")
async def set_decision(session_id: str, req: DecisionPayload) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        s.set_decision(req.decision, reviewer_id=req.reviewer_id, notes=req.notes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Unknown decision: {req.decision}") from e
    except WorkflowError as e:
        raise _http_error(e) from e
    return s.snapshot()


@router.get("/sessions/{session_id}/export.csv")
async def export_csv(session_id: str) -> Response:
    s = _session(session_id)
    try:
        content = s.export_csv()
    except WorkflowError as e:
        raise _http_error(e) from e
    resp = Response(content=content, media_type="text/csv; charset=utf-8")
    resp.headers["Content-Disposition"] = f"attachment; filename=financial_form_{s.id}.csv"
    return resp


@router.get("/sessions/{session_id}/export.xlsx")
async def export_xlsx(session_id: str) -> Response:
    s = _session(session_id)
    with tempfile.TemporaryDirectory() as td:
        try:
            path = s.export_xlsx(os.path.join(td, "form.xlsx"))
        except WorkflowError as e:
            raise _http_error(e) from e
        except RuntimeError as e:
            raise HTTPException(status_code=501, detail=str(e)) from e
        with open(path, "rb") as f:
            content = f.read()
    resp = Response(content=content, media_type=XLSX_MEDIA_TYPE)
    resp.headers["Content-Disposition"] = f"attachment; filename=financial_form_{s.id}.xlsx"
    return resp


@router.post("/sessions/{session_id}/save")
async def save(
    session_id: str,
    request: Request,
    store: RecordStore = Depends(get_record_store),
) -> Dict[str, Any]:
    s = _session(session_id)
    try:
        record_id = s.save(store)
    except WorkflowError as e:
        raise _http_error(e) from e
    audit_path = write_session_audit(
        s,
        out_dir=str(get_audit_root()),
        correlation_id=request.headers.get("X-Correlation-ID"),
    )
    return {"ok": True, "id": record_id, "auditPath": audit_path, "session": s.snapshot()}


@router.post("/sessions/{session_id}/reset")
async def reset(session_id: str) -> Dict[str, Any]:
    s = _session(session_id)
    s.reset()
    return s.snapshot()
