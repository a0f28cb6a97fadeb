import asyncio
import json

import httpx
import pytest

from beneficiary_orchestrator.analysis.models import CanonicalBeneficiary, ConfidenceScores
from beneficiary_orchestrator.core.config import Settings
from beneficiary_orchestrator.core.errors import TransportError
from beneficiary_orchestrator.services.job_client import (
    SAMPLE_ANALYSIS_DATA,
    HttpJobClient,
    MockJobClient,
    build_job_client,
)


def _http_client(handler, **overrides) -> HttpJobClient:
    values = {
        "base_url": "https://cases.example.test/api/",
        "token": "secret-token",
        "submit_path": "/beneficiary-analyzer/analyze",
        "status_path": "/beneficiary-analyzer/status/{case_id}",
        "approve_path": "/beneficiary-analyzer/approve",
        "timeout_seconds": 5.0,
        "client": httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    }
    values.update(overrides)
    return HttpJobClient(**values)


def test_build_job_client_defaults_to_mock():
    client = build_job_client(Settings())

    assert isinstance(client, MockJobClient)
    assert client.complete_after == 2


def test_build_job_client_http_requires_base_url():
    with pytest.raises(ValueError):
        build_job_client(Settings(job_client_provider="http", case_api_base_url=""))

    client = build_job_client(
        Settings(job_client_provider="HTTP", case_api_base_url="https://cases.example.test", analysis_confidence_threshold=0.8)
    )
    assert isinstance(client, HttpJobClient)
    assert client.confidence_threshold == 0.8


def test_build_job_client_rejects_unknown_provider():
    with pytest.raises(ValueError, match="Unsupported JOB_CLIENT_PROVIDER"):
        build_job_client(Settings(job_client_provider="grpc"))


def test_http_submit_posts_analysis_options():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": {"status": "submitted"}})

    response = asyncio.run(_http_client(handler).submit("FNOL-1"))

    assert response == {"result": {"status": "submitted"}}
    assert seen["method"] == "POST"
    assert seen["url"] == "https://cases.example.test/api/beneficiary-analyzer/analyze"
    assert seen["auth"] == "Bearer secret-token"
    assert seen["body"] == {
        "caseId": "FNOL-1",
        "options": {"extractFromDocuments": True, "compareWithAdmin": True, "confidenceThreshold": 0.7},
    }


def test_http_fetch_status_quotes_case_id_and_returns_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.raw_path.decode()
        return httpx.Response(200, json={"result": {"status": "running"}})

    response = asyncio.run(_http_client(handler, token="").fetch_status("FNOL 1/2"))

    assert response == {"result": {"status": "running"}}
    assert seen["path"] == "/api/beneficiary-analyzer/status/FNOL%201%2F2"


def test_http_error_status_becomes_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream exploded")

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(_http_client(handler).fetch_status("FNOL-1"))

    assert excinfo.value.status_code == 500
    assert "upstream exploded" in excinfo.value.message


def test_http_connection_failure_becomes_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(_http_client(handler).fetch_status("FNOL-1"))

    assert excinfo.value.status_code is None


def test_http_non_json_and_empty_bodies_are_passed_through():
    def text_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="still working")

    def empty_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    assert asyncio.run(_http_client(text_handler).fetch_status("FNOL-1")) == "still working"
    assert asyncio.run(_http_client(empty_handler).submit("FNOL-1")) is None


def test_mock_client_reports_running_then_complete_per_case():
    async def scenario():
        client = MockJobClient(complete_after=2)
        await client.submit("FNOL-1")
        statuses = [await client.fetch_status("FNOL-1") for _ in range(3)]
        other = await client.fetch_status("FNOL-2")
        return client, statuses, other

    client, statuses, other = asyncio.run(scenario())

    assert [item["result"]["status"] for item in statuses] == ["running", "running", "complete"]
    assert statuses[-1]["result"]["data"] == SAMPLE_ANALYSIS_DATA
    assert other["result"]["status"] == "running"
    assert client.submit_calls == ["FNOL-1"]
    assert client.fetch_calls == ["FNOL-1", "FNOL-1", "FNOL-1", "FNOL-2"]


def _beneficiary() -> CanonicalBeneficiary:
    scores = dict.fromkeys(["overall", "name", "relationship", "percentage", "date_of_birth"], 0.95)
    return CanonicalBeneficiary(
        id="bene-1",
        full_name="Sarah Johnson",
        relationship="Spouse",
        beneficiary_type="Primary",
        percentage=100,
        confidence=ConfidenceScores(**scores, address=0.85, ssn=0.85),
    )


def test_http_approve_posts_canonical_beneficiaries():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": {"status": "approved"}})

    response = asyncio.run(_http_client(handler).approve("FNOL-1", [_beneficiary()], approved_by="examiner-7"))

    assert response == {"result": {"status": "approved"}}
    assert seen["url"] == "https://cases.example.test/api/beneficiary-analyzer/approve"
    body = seen["body"]
    assert body["caseId"] == "FNOL-1"
    assert body["approvedBy"] == "examiner-7"
    assert body["approvedAt"]
    assert body["beneficiaries"][0]["fullName"] == "Sarah Johnson"
    assert body["beneficiaries"][0]["confidence"]["dateOfBirth"] == 0.95


def test_mock_client_records_approvals():
    client = MockJobClient()

    response = asyncio.run(client.approve("FNOL-1", [_beneficiary()]))

    assert response["result"]["approvedCount"] == 1
    assert client.approve_calls[0][0] == "FNOL-1"
    assert client.approve_calls[0][1][0].id == "bene-1"
