from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from finreview.services.workflow import AuditKind, ReviewSession


def write_session_audit(
    session: ReviewSession,
    *,
    out_dir: str,
    correlation_id: Optional[str] = None,
    extra_meta: Optional[Mapping[str, Any]] = None,
) -> str:
    """Write one review session as an audit JSON file and return its path.

    Schema (v1):
      - schema_version: 1
      - generated_at: ISO8601 UTC timestamp
      - correlation_id: optional
      - session, step, filename, saved_id
      - record: the record on the wire (camelCase), or null before extraction
      - validation_log: every stored ValidationResult with the field revision it was computed for
      - overrides: path -> flags accepted by the reviewer
      - continued_anyway: true when the gates were bypassed
      - events: the ordered audit trail
      - meta: optional
    """
    os.makedirs(out_dir, exist_ok=True)
    events = [e.to_dict() for e in session.events]
    payload: Dict[str, Any] = {
        "schema_version": 1,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "correlation_id": correlation_id,
        "session": session.id,
        "step": session.step.value,
        "filename": session.filename,
        "saved_id": session.saved_id,
        "record": session.record.model_dump(by_alias=True, mode="json") if session.record else None,
        "validation_log": list(session.validation_log),
        "overrides": dict(session.accepted_overrides),
        "continued_anyway": any(e.kind is AuditKind.CONTINUE_ANYWAY for e in session.events),
        "events": events,
        "meta": dict(extra_meta) if extra_meta else {},
    }
    out_path = os.path.join(out_dir, f"{session.id}.json")
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, default=str)
    return out_path


def read_session_audit(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
