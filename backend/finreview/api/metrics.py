from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from finreview.db import crud as dbcrud
from finreview.db.session import db_enabled, session_scope

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/analytics")
async def analytics() -> Dict[str, Any]:
    """Aggregates over saved forms: status counts, confidence bands, flag frequency, income stats."""
    if not db_enabled():
        raise HTTPException(status_code=503, detail="DB not enabled")
    with session_scope() as db:
        return dbcrud.analytics_summary(db)
