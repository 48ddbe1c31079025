from pathlib import Path

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from finreview.api.review import get_audit_root, get_capabilities
from finreview.main import app
from finreview.services.workflow import Capabilities
from finreview.validations.error_codes import ExtractionFlag

OCC = "applicantIncome.0.occupation"


def _png() -> bytes:
    ok, buf = cv2.imencode(".png", np.full((16, 16, 3), 255, dtype=np.uint8))
    assert ok
    return buf.tobytes()


def _payload(occupation="cashier"):
    return {
        "applicantIncome": [{"occupation": occupation, "grossMonthlyIncomeSGD": 2800}],
        "householdIncome": [],
        "otherIncomeSources": [],
        "financialSituationNote": "",
        "flags": [],
        "confidence": 0.9,
        "confidence_per_field": {OCC: 0.95},
    }


def _judge(prompt):
    if "asdf###" in prompt:
        return {"isValid": False, "confidence": 0.9, "flags": ["critical_error"], "suggestions": ["Not an occupation"]}
    return {"isValid": True, "confidence": 0.9}


@pytest.fixture
def client(scripted):
    def _make(extract=None):
        caps = Capabilities(
            extract=scripted(extract or _payload())[0],
            validate=scripted(_judge)[0],
            enforce=scripted(RuntimeError("no model"))[0],
            mapping=scripted({"mappings": []})[0],
        )
        app.dependency_overrides[get_capabilities] = lambda: caps
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


def _new_session(c: TestClient) -> str:
    r = c.post("/review/sessions")
    assert r.status_code == 201
    assert r.json()["step"] == "upload"
    return r.json()["id"]


def _upload(c: TestClient, sid: str):
    return c.post(f"/review/sessions/{sid}/upload", files={"file": ("form.png", _png(), "image/png")})


def test_upload_edit_advance_and_export(client):
    c = client()
    sid = _new_session(c)
    r = _upload(c, sid)
    assert r.status_code == 200
    js = r.json()
    assert js["step"] == "review"
    assert js["record"]["applicantIncome"][0]["occupation"] == "cashier"

    r = c.patch(f"/review/sessions/{sid}/fields", json={"path": OCC, "value": "Cashier", "reviewerId": "rev-1"})
    assert r.status_code == 200
    assert r.json()["record"]["fieldConfidence"][OCC]["source"] == "user-provided"

    r = c.post(f"/review/sessions/{sid}/advance")
    assert r.status_code == 200
    assert r.json()["step"] == "export"

    r = c.post(f"/review/sessions/{sid}/decision", json={"decision": "approve", "reviewerId": "rev-1"})
    assert r.status_code == 200
    assert r.json()["record"]["status"] == "approved"

    r = c.get(f"/review/sessions/{sid}/export.csv")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert f"financial_form_{sid}.csv" in r.headers["content-disposition"]
    assert r.content.startswith("\ufeff".encode("utf-8"))

    r = c.get(f"/review/sessions/{sid}/export.xlsx")
    assert r.status_code == 200
    assert r.content[:2] == b"PK"
    assert f"financial_form_{sid}.xlsx" in r.headers["content-disposition"]


def test_validation_gate_returns_field_reasons(client):
    c = client(_payload("asdf###"))
    sid = _new_session(c)
    assert _upload(c, sid).status_code == 200
    r = c.post(f"/review/sessions/{sid}/advance")
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["gate"] == "validation"
    assert detail["fields"] == [{"path": OCC, "label": detail["fields"][0]["label"], "reasons": ["Not an occupation"]}]
    assert "Occupation" in detail["fields"][0]["label"]

    # export is not reachable while blocked
    assert c.get(f"/review/sessions/{sid}/export.csv").status_code == 409

    r = c.post(f"/review/sessions/{sid}/fields/accept", json={"path": OCC, "reason": "as written"})
    assert r.status_code == 200
    assert r.json()["acceptedOverrides"] == {OCC: ["critical_error"]}
    assert c.post(f"/review/sessions/{sid}/advance").status_code == 200


def test_validate_field_route_and_continue_anyway(client):
    c = client(_payload("asdf###"))
    sid = _new_session(c)
    _upload(c, sid)
    r = c.post(f"/review/sessions/{sid}/fields/validate", json={"path": OCC})
    assert r.status_code == 200
    js = r.json()
    assert js["stale"] is False
    assert js["result"]["isValid"] is False
    assert [i["kind"] for i in js["session"]["interrupts"]] == ["validation"]

    r = c.post(f"/review/sessions/{sid}/continue", json={"reason": "supervisor"})
    assert r.status_code == 200
    assert r.json()["step"] == "export"
    assert "continue_anyway" in [e["kind"] for e in r.json()["events"]]


def test_errors_map_to_status_codes(client):
    c = client()
    assert c.get("/review/sessions/nope").status_code == 404
    sid = _new_session(c)

    r = c.post(f"/review/sessions/{sid}/upload", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert r.status_code == 415
    r = c.post(f"/review/sessions/{sid}/upload", files={"file": ("form.png", b"", "image/png")})
    assert r.status_code == 400

    # editing before an upload is a step violation
    assert c.patch(f"/review/sessions/{sid}/fields", json={"path": OCC, "value": "x"}).status_code == 409

    _upload(c, sid)
    r = c.patch(f"/review/sessions/{sid}/fields", json={"path": "salary", "value": "x"})
    assert r.status_code == 400
    r = c.post(f"/review/sessions/{sid}/rows", json={"section": "pets"})
    assert r.status_code == 400
    r = c.post(f"/review/sessions/{sid}/rows", json={"section": "householdIncome"})
    assert r.status_code == 200 and r.json()["index"] == 0
    r = c.post(f"/review/sessions/{sid}/decision", json={"decision": "maybe"})
    assert r.status_code == 400


def test_failed_extraction_returns_502_with_flags(client):
    c = client("not json at all")
    sid = _new_session(c)
    r = _upload(c, sid)
    assert r.status_code == 502
    assert ExtractionFlag.FAILED.value in r.json()["detail"]["flags"]
    assert c.get(f"/review/sessions/{sid}").json()["step"] == "upload"


def test_save_without_db_is_503(client, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    c = client()
    sid = _new_session(c)
    _upload(c, sid)
    c.post(f"/review/sessions/{sid}/advance")
    assert c.post(f"/review/sessions/{sid}/save").status_code == 503


def test_save_persists_record_and_audit(client, sqlite_db):
    c = client()
    sid = _new_session(c)
    _upload(c, sid)
    c.post(f"/review/sessions/{sid}/advance")
    r = c.post(f"/review/sessions/{sid}/save", headers={"X-Correlation-ID": "corr-1"})
    assert r.status_code == 200
    js = r.json()
    assert js["ok"] is True and js["session"]["savedId"] == js["id"]
    assert js["auditPath"].startswith(str(sqlite_db / "audit"))

    forms = c.get("/forms").json()
    assert [f["id"] for f in forms] == [js["id"]]
    assert forms[0]["record"]["applicantIncome"][0]["occupation"] == "cashier"
    history = c.get(f"/forms/{js['id']}/history").json()
    assert "saved" not in [h["kind"] for h in history]
    assert "advanced_to_export" in [h["kind"] for h in history]

    analytics = c.get("/metrics/analytics").json()
    assert analytics["totalForms"] == 1


def test_reset_returns_to_upload(client):
    c = client()
    sid = _new_session(c)
    _upload(c, sid)
    r = c.post(f"/review/sessions/{sid}/reset")
    assert r.status_code == 200
    assert r.json()["step"] == "upload" and r.json()["record"] is None


def test_audit_root_follows_workflow_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("AUDIT_ROOT", str(tmp_path / "sessions"))
    assert get_audit_root() == tmp_path / "sessions"
    monkeypatch.delenv("AUDIT_ROOT")
    assert get_audit_root() == Path("backend/reports/sessions")
