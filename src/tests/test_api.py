import time

import pytest
from fakes import entries
from fastapi.testclient import TestClient

from mobsf_proxy.config import Settings
from mobsf_proxy.errors import ConfigurationError
from mobsf_proxy.main import create_app

PDF_BYTES = b"%PDF-1.4\n% fake report\n%%EOF\n"


@pytest.fixture
def app(settings, engine):
    settings.poll_base_interval_ms = 10
    return create_app(settings, gateway=engine)


@pytest.fixture
def client(app):
    return TestClient(app)


def test_health_check(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Trace-Id"]


def test_upload_forwards_file(client, engine):
    resp = client.post("/api/upload", files={"file": ("demo.apk", b"PK\x03\x04", "application/octet-stream")})
    assert resp.status_code == 200
    assert resp.json() == {"hash": "abc123", "file_name": "demo.apk"}
    assert engine.calls["upload"] == 1


def test_upload_without_file_is_rejected(client, engine):
    resp = client.post("/api/upload")
    assert resp.status_code == 422
    assert resp.json()["error"]["kind"] == "ValidationError"
    assert engine.calls["upload"] == 0


def test_save_json_report_caches(client, engine):
    engine.reports[("abc123", "json")] = {"app_name": "Demo", "security_score": 55}

    first = client.get("/api/report_json/save", params={"hash": "abc123"})
    second = client.get("/api/report_json/save", params={"hash": "abc123"})

    assert first.status_code == second.status_code == 200
    assert first.json()["cached"] is False
    assert second.json()["cached"] is True
    assert second.json()["data"] == {"app_name": "Demo", "security_score": 55}
    assert second.json()["path"].endswith("abc123.json")
    assert engine.calls["fetch_report"] == 1


def test_save_pdf_report_returns_bytes(client, engine):
    engine.reports[("abc123", "pdf")] = PDF_BYTES

    first = client.get("/api/download_pdf/save", params={"hash": "abc123"})
    second = client.get("/api/download_pdf/save", params={"hash": "abc123"})

    assert first.content == second.content == PDF_BYTES
    assert first.headers["content-type"] == "application/pdf"
    assert first.headers["X-Report-Cached"] == "false"
    assert second.headers["X-Report-Cached"] == "true"
    assert 'filename="abc123.pdf"' in first.headers["content-disposition"]
    assert engine.calls["fetch_report"] == 1


def test_missing_hash_is_a_validation_error(client, engine):
    resp = client.get("/api/report_json/save")
    assert resp.status_code == 422
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == {"kind": "ValidationError", "message": "hash required"}
    assert body["trace_id"]
    assert engine.calls["fetch_report"] == 0


def test_upstream_error_is_forwarded(client):
    resp = client.get("/api/report_json/save", params={"hash": "unknown1"})
    assert resp.status_code == 404
    error = resp.json()["error"]
    assert error["kind"] == "UpstreamUnavailable"
    assert error["detail"] == {"error": "Report not Found"}


def test_live_report_is_not_cached(client, engine, settings):
    engine.reports[("abc123", "json")] = {"app_name": "Demo"}

    resp = client.get("/api/report_json", params={"hash": "abc123"})

    assert resp.json() == {"app_name": "Demo"}
    assert client.get("/api/reports").json() == {"count": 0, "reports": []}


def test_list_saved_reports(client, engine):
    engine.reports[("abc123", "json")] = {"app_name": "Demo"}
    engine.reports[("abc123", "pdf")] = PDF_BYTES
    client.get("/api/report_json/save", params={"hash": "abc123"})
    client.get("/api/download_pdf/save", params={"hash": "abc123"})

    data = client.get("/api/reports").json()

    assert data["count"] == 1
    assert data["reports"][0]["hash"] == "abc123"
    assert data["reports"][0]["pdf_path"].endswith("abc123.pdf")


def test_recent_scans(client):
    resp = client.get("/api/scans", params={"page": 1, "page_size": 5})
    assert resp.status_code == 200
    assert resp.json()["content"][0]["hash"] == "abc123"


def test_scan_logs_passthrough(client, engine):
    engine.logs = entries("Extracting APK", "Parsing AndroidManifest.xml")

    resp = client.post("/api/scan_logs", json={"hash": "abc123"})

    assert [log["status"] for log in resp.json()["logs"]] == ["Extracting APK", "Parsing AndroidManifest.xml"]


def test_scan_without_watch(client, engine):
    resp = client.post("/api/scan", json={"hash": "abc123", "re_scan": True, "watch": False})

    assert resp.status_code == 200
    assert resp.json()["watching"] is False
    assert resp.json()["result"] == {"status": "ok", "re_scan": True}
    assert client.get("/api/scan/abc123/status").status_code == 404


def test_scan_without_hash_is_rejected(client, engine):
    resp = client.post("/api/scan", json={})
    assert resp.status_code == 422
    assert engine.calls["trigger_scan"] == 0


def test_watched_scan_saves_report_when_ready(app, engine):
    engine.log_script = [entries("Extracting APK"), entries("Extracting APK", "Converting DEX to Smali")]
    engine.logs = entries("Extracting APK", "Converting DEX to Smali", "Generating Report")
    engine.reports[("abc123", "json")] = {"app_name": "Demo"}

    with TestClient(app) as client:
        resp = client.post("/api/scan", json={"hash": "abc123"})
        assert resp.status_code == 200
        assert resp.json()["watching"] is True

        status = {}
        for _ in range(500):
            status = client.get("/api/scan/abc123/status").json()
            if status["status"] == "ready":
                break
            time.sleep(0.01)

        assert status["status"] == "ready"
        assert status["progress"] == 100
        assert status["poller_state"] == "ready"
        assert [w["job_id"] for w in client.get("/api/watches").json()] == ["abc123"]

        # served from the save made on completion, or joined with it if still in flight
        saved = client.get("/api/report_json/save", params={"hash": "abc123"}).json()
        assert saved["data"] == {"app_name": "Demo"}
        assert engine.calls["fetch_report"] == 1


def test_stop_watch(app, engine):
    engine.logs = entries("Extracting APK")

    with TestClient(app) as client:
        client.post("/api/scan", json={"hash": "abc123"})
        assert client.delete("/api/scan/abc123/watch").json()["success"] is True
        assert client.get("/api/scan/abc123/status").json()["poller_state"] == "stopped"
        assert client.delete("/api/scan/other1/watch").json()["success"] is False


def test_status_of_unknown_scan(client):
    resp = client.get("/api/scan/doesnotexist/status")
    assert resp.status_code == 404
    assert resp.json()["status"] == "not_found"


def test_missing_api_key_refuses_to_start(monkeypatch, tmp_path):
    monkeypatch.setenv("MOBSF_API_KEY", "   ")
    with pytest.raises(ConfigurationError):
        create_app()
    with pytest.raises(ConfigurationError):
        Settings.from_env(dotenv_path=str(tmp_path / "absent.env"))
