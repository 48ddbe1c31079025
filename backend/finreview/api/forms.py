from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Query

from finreview.db import crud as dbcrud
from finreview.db.session import db_enabled, session_scope

router = APIRouter(prefix="/forms", tags=["forms"])


@router.get("")
async def list_forms(limit: int = Query(50, ge=1, le=500)) -> List[Dict[str, Any]]:
    if not db_enabled():
        raise HTTPException(status_code=503, detail="DB not enabled")
    with session_scope() as db:
        items = dbcrud.list_recent(db, limit=limit)
        return [{**it, "record": it["record"].model_dump(by_alias=True, mode="json")} for it in items]


@router.get("/{form_id}/history")
async def form_history(form_id: str) -> List[Dict[str, Any]]:
    if not db_enabled():
        raise HTTPException(status_code=503, detail="DB not enabled")
    with session_scope() as db:
        rows = dbcrud.history_for(db, form_id)
        if not rows:
            raise HTTPException(status_code=404, detail="No history for form")
        return [
            {"kind": r.kind, "path": r.field_path, "detail": r.detail, "at": r.at.isoformat() if r.at else None}
            for r in rows
        ]
