import asyncio
import json

from finreview.config import ConfidenceSettings, WorkflowSettings
from finreview.persistence.audit import read_session_audit, write_session_audit
from finreview.services.workflow import Capabilities, ReviewSession

PAYLOAD = {
    "applicantIncome": [{"occupation": "清洁工", "grossMonthlyIncomeSGD": 1500}],
    "householdIncome": [],
    "otherIncomeSources": [],
    "financialSituationNote": "",
    "flags": [],
    "confidence": 0.9,
}


def test_write_session_audit_writes_schema_and_trail(tmp_path, scripted):
    extract, _ = scripted(PAYLOAD)
    validate, _ = scripted({"isValid": True, "confidence": 0.9})
    s = ReviewSession(
        session_id="sess-1",
        capabilities=Capabilities(extract=extract, validate=validate),
        confidence=ConfidenceSettings(),
        settings=WorkflowSettings(smart_mapping_enabled=False, enforce_strict=False),
    )
    asyncio.run(s.submit_file(b"img", "image/png", "form.png"))
    s.continue_anyway(reason="checked by phone")

    path = write_session_audit(
        s,
        out_dir=str(tmp_path / "audit"),
        correlation_id="test-corr-123",
        extra_meta={"env": "test"},
    )

    assert path.endswith("sess-1.json")
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    # non-ascii values are written as-is
    assert "清洁工" in raw
    data = json.loads(raw)
    assert data == read_session_audit(path)
    assert data["schema_version"] == 1
    assert data["session"] == "sess-1"
    assert data["step"] == "export"
    assert data["filename"] == "form.png"
    assert data["record"]["applicantIncome"][0]["grossMonthlyIncomeSGD"] == 1500.0
    assert data["continued_anyway"] is True
    assert [e["kind"] for e in data["events"]][:2] == ["file_submitted", "extraction_completed"]
    assert data["events"][-1]["detail"]["reason"] == "checked by phone"
    assert data["correlation_id"] == "test-corr-123"
    assert data["meta"]["env"] == "test"
