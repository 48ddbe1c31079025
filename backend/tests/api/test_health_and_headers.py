from fastapi.testclient import TestClient


def test_health_and_db_disabled(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    from finreview.main import app

    client = TestClient(app)
    r = client.get("/health")
    assert r.status_code == 200
    js = r.json()
    assert js.get("status") == "ok"
    assert "version" in js
    r2 = client.get("/health/db")
    assert r2.status_code == 200
    assert r2.json().get("enabled") is False
    assert client.get("/forms").status_code == 503
    assert client.get("/metrics/analytics").status_code == 503


def test_health_db_enabled_and_request_headers(sqlite_db):
    from finreview.main import app

    client = TestClient(app)
    r = client.get("/health/db")
    assert r.status_code == 200
    js = r.json()
    assert js.get("enabled") is True
    assert js.get("connection") == "ok"
    assert isinstance(js.get("ping_ms"), int)
    assert "version" in js
    # request and correlation ids are echoed back
    headers = {
        "X-Request-ID": "req-123",
        "X-Correlation-ID": "corr-xyz",
    }
    r2 = client.get("/health", headers=headers)
    assert r2.status_code == 200
    assert r2.headers.get("x-request-id") == "req-123"
    assert r2.headers.get("x-correlation-id") == "corr-xyz"
    assert client.get("/forms").json() == []
    assert client.get("/forms/00000000-0000-0000-0000-000000000000/history").status_code == 404
