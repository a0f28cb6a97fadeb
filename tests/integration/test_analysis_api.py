import time

from fastapi.testclient import TestClient

from beneficiary_orchestrator.analysis.orchestrator import AnalysisOrchestrator
from beneficiary_orchestrator.api.deps import get_orchestrator
from beneficiary_orchestrator.api.main import app
from beneficiary_orchestrator.core.config import Settings
from beneficiary_orchestrator.services.job_client import MockJobClient


def _settings() -> Settings:
    return Settings(analysis_max_attempts=5, analysis_poll_interval_ms=20, demo_delay_ms=0)


def _wait_for_terminal(client: TestClient, case_id: str) -> dict:
    body = {}
    for _ in range(200):
        body = client.get(f"/analysis/{case_id}").json()
        if body["state"] in {"complete", "failed"}:
            return body
        time.sleep(0.01)
    raise AssertionError(f"analysis for {case_id} never finished: {body}")


def test_analysis_routes_trigger_poll_and_reset():
    job_client = MockJobClient(complete_after=1)
    orchestrator = AnalysisOrchestrator(job_client, settings=_settings())
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    try:
        with TestClient(app) as client:
            assert client.get("/healthz").json()["status"] == "ok"
            assert client.get("/analysis/FNOL-1").status_code == 404
            assert client.post("/analysis/FNOL-1/reset").status_code == 404

            triggered = client.post("/analysis/FNOL-1/trigger")
            assert triggered.status_code == 202
            assert triggered.json()["caseId"] == "FNOL-1"
            assert triggered.json()["state"] in {"triggering", "polling"}

            body = _wait_for_terminal(client, "FNOL-1")
            assert body["state"] == "complete"
            assert body["isFallback"] is False
            assert body["lastError"] is None
            result = body["result"]
            assert result["matchStatus"] == "MATCH"
            assert result["overallConfidence"] == 0.94
            assert result["extracted"][0]["fullName"] == "Sarah Johnson"
            assert result["extracted"][0]["confidence"]["dateOfBirth"] == 1.0
            assert result["shareTotals"]["primary"]["extractedTotal"] == 100

            approved = client.post("/analysis/FNOL-1/approve", json={"beneficiaryIds": ["bene-1"], "approvedBy": "examiner-7"})
            assert approved.status_code == 200
            assert approved.json()["approvedCount"] == 1
            assert approved.json()["caseId"] == "FNOL-1"

            assert client.post("/analysis/FNOL-1/retry").status_code == 202
            assert _wait_for_terminal(client, "FNOL-1")["state"] == "complete"

            reset = client.post("/analysis/FNOL-1/reset")
            assert reset.status_code == 200
            assert reset.json()["state"] == "idle"
            assert reset.json()["caseId"] == "FNOL-1"
            assert reset.json()["result"] is None
            assert client.get("/analysis/FNOL-1").status_code == 404
    finally:
        app.dependency_overrides.clear()

    assert job_client.submit_calls == ["FNOL-1", "FNOL-1"]
    assert [item.id for item in job_client.approve_calls[0][1]] == ["bene-1"]


def test_demo_trigger_uses_claim_context():
    orchestrator = AnalysisOrchestrator(MockJobClient(), settings=_settings())
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    claim = {
        "claimContext": {
            "claimNumber": "CLM-77",
            "beneficiaries": [
                {"name": "Dana Lee", "relationship": "Spouse", "beneficiaryType": "Primary", "percentage": "100%"},
            ],
        }
    }

    try:
        with TestClient(app) as client:
            assert client.post("/analysis/DEMO-77/trigger", json=claim).status_code == 202
            body = _wait_for_terminal(client, "DEMO-77")
    finally:
        app.dependency_overrides.clear()

    assert body["state"] == "complete"
    assert body["result"]["source"] == "demo"
    assert body["result"]["matchStatus"] == "MATCH"
    assert body["result"]["administrative"][0]["fullName"] == "Dana Lee"
    assert "CLM-77" in body["result"]["summary"]


def test_fallback_result_cannot_be_approved_and_fetch_only_skips_submit():
    job_client = MockJobClient(complete_after=0, payload={"result": {"status": "complete", "data": "not-json"}})
    orchestrator = AnalysisOrchestrator(job_client, settings=_settings())
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    try:
        with TestClient(app) as client:
            assert client.post("/analysis/FNOL-5/approve").status_code == 404
            assert client.post("/analysis/FNOL-5/trigger", json={"submit": False}).status_code == 202
            body = _wait_for_terminal(client, "FNOL-5")
            refused = client.post("/analysis/FNOL-5/approve")
    finally:
        app.dependency_overrides.clear()

    assert body["state"] == "failed"
    assert body["isFallback"] is True
    assert body["lastError"]["reason"] == "json-decode-failed"
    assert refused.status_code == 409
    assert "fallback" in refused.json()["detail"]
    assert job_client.submit_calls == []
    assert job_client.approve_calls == []
