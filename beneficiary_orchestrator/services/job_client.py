from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from beneficiary_orchestrator.analysis.models import CanonicalBeneficiary, ComparisonResult
from beneficiary_orchestrator.analysis.payloads import encode_payload, pending_payload
from beneficiary_orchestrator.core.config import Settings
from beneficiary_orchestrator.core.errors import TransportError
from beneficiary_orchestrator.core.logging import get_logger, log_context

logger = get_logger(__name__)


class JobClient(ABC):
    """Submit/query contract for the external beneficiary analysis job."""

    @abstractmethod
    async def submit(self, case_id: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def fetch_status(self, case_id: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def approve(
        self,
        case_id: str,
        beneficiaries: list[CanonicalBeneficiary],
        *,
        approved_by: str | None = None,
    ) -> Any:
        raise NotImplementedError


SAMPLE_ANALYSIS_DATA: dict[str, Any] = {
    "Output": [
        {
            "DMS": [
                {
                    "FirstBeneficiaryName": "Sarah Johnson",
                    "beneficiaryType": "Primary",
                    "beneficiaryPercentage": "50%",
                    "beneficiaryDOB": "1985-03-15",
                    "beneficiaryPhone": "(555) 123-4567",
                    "beneficiaryEmail": "sarah.johnson@email.com",
                    "documentID": "doc-123",
                },
                {
                    "SecondBeneficiaryName": "Michael Johnson",
                    "beneficiaryType": "Primary",
                    "beneficiaryPercentage": "50%",
                    "beneficiaryDOB": "2010-07-22",
                    "documentID": "doc-123",
                },
                {
                    "ThirdBeneficiaryName": "Emily Johnson",
                    "beneficiaryType": "Contingent",
                    "beneficiaryPercentage": "100%",
                    "beneficiaryDOB": "2012-11-08",
                    "documentID": "doc-123",
                },
            ]
        },
        {
            "PAS": [
                {
                    "FirstBeneficiaryName": "Sarah M. Johnson",
                    "beneficiaryType": "Primary",
                    "beneficiaryPercentage": "50%",
                    "beneficiaryDOB": "1985-03-15",
                },
                {
                    "SecondBeneficiaryName": "Michael A. Johnson",
                    "beneficiaryType": "Primary",
                    "beneficiaryPercentage": "50%",
                    "beneficiaryDOB": "2010-07-22",
                },
                {
                    "ThirdBeneficiaryName": "Emily R. Johnson",
                    "beneficiaryType": "Contingent",
                    "beneficiaryPercentage": "100%",
                    "beneficiaryDOB": "2012-11-08",
                },
            ]
        },
        {
            "Summary": (
                "Extracted beneficiaries match the policy administration record. "
                "Minor middle-initial differences in names."
            )
        },
        {
            "BeneScoring": [
                {"FirstBeneficiaryName": "92", "beneficiaryType": "100", "beneficiaryPercentage": "100", "beneficiaryDOB": "100"},
                {"SecondBeneficiaryName": "90", "beneficiaryType": "100", "beneficiaryPercentage": "100", "beneficiaryDOB": "100"},
                {"ThirdBeneficiaryName": "91", "beneficiaryType": "100", "beneficiaryPercentage": "100", "beneficiaryDOB": "100"},
                {
                    "totalBeneficiaryShares": [
                        {"PrimaryShares": {"DMS": "100", "PAS": "100", "Match": "MATCH"}},
                        {"ContingentShares": {"DMS": "100", "PAS": "100", "Match": "MATCH"}},
                    ]
                },
            ]
        },
    ]
}


class MockJobClient(JobClient):
    """Reports ``running`` for ``complete_after`` polls per case, then a complete payload."""

    def __init__(
        self,
        *,
        complete_after: int = 2,
        payload: Any = None,
        result: ComparisonResult | None = None,
    ) -> None:
        self.complete_after = complete_after
        if payload is None:
            payload = encode_payload(result) if result is not None else {
                "result": {"status": "complete", "data": SAMPLE_ANALYSIS_DATA}
            }
        self.payload = payload
        self.submit_calls: list[str] = []
        self.fetch_calls: list[str] = []
        self._polls: Counter[str] = Counter()
        self.approve_calls: list[tuple[str, list[CanonicalBeneficiary]]] = []

    async def submit(self, case_id: str) -> dict[str, Any]:
        self.submit_calls.append(case_id)
        return {"result": {"caseId": case_id, "status": "submitted"}}

    async def fetch_status(self, case_id: str) -> Any:
        self.fetch_calls.append(case_id)
        self._polls[case_id] += 1
        if self._polls[case_id] <= self.complete_after:
            return pending_payload()
        return self.payload

    async def approve(
        self,
        case_id: str,
        beneficiaries: list[CanonicalBeneficiary],
        *,
        approved_by: str | None = None,
    ) -> dict[str, Any]:
        self.approve_calls.append((case_id, list(beneficiaries)))
        return {"result": {"caseId": case_id, "status": "approved", "approvedCount": len(beneficiaries)}}


class HttpJobClient(JobClient):
    def __init__(
        self,
        *,
        base_url: str,
        token: str = "",
        submit_path: str,
        status_path: str,
        approve_path: str = "/beneficiary-analyzer/approve",
        timeout_seconds: float,
        confidence_threshold: float = 0.7,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("CASE_API_BASE_URL is required when JOB_CLIENT_PROVIDER=http")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.submit_path = submit_path
        self.status_path = status_path
        self.approve_path = approve_path
        self.timeout_seconds = timeout_seconds
        self.confidence_threshold = confidence_threshold
        self._client = client

    def _url(self, path: str, case_id: str) -> str:
        return f"{self.base_url}{path.format(case_id=quote(case_id, safe=''))}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, headers=self._headers(), **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"Case management request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TransportError(
                f"Case management request failed ({response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning(
                "Case management returned a non-JSON body",
                extra=log_context(url=str(response.request.url), status_code=response.status_code),
            )
            return response.text

    async def submit(self, case_id: str) -> Any:
        payload = {
            "caseId": case_id,
            "options": {
                "extractFromDocuments": True,
                "compareWithAdmin": True,
                "confidenceThreshold": self.confidence_threshold,
            },
        }
        response = await self._request("POST", self._url(self.submit_path, case_id), json=payload)
        return self._decode(response)

    async def fetch_status(self, case_id: str) -> Any:
        response = await self._request("GET", self._url(self.status_path, case_id))
        return self._decode(response)

    async def approve(
        self,
        case_id: str,
        beneficiaries: list[CanonicalBeneficiary],
        *,
        approved_by: str | None = None,
    ) -> Any:
        payload = {
            "caseId": case_id,
            "beneficiaries": [item.model_dump(mode="json", by_alias=True) for item in beneficiaries],
            "approvedAt": datetime.now(timezone.utc).isoformat(),
        }
        if approved_by:
            payload["approvedBy"] = approved_by
        response = await self._request("POST", self._url(self.approve_path, case_id), json=payload)
        return self._decode(response)


def build_job_client(settings: Settings) -> JobClient:
    provider = (settings.job_client_provider or "mock").strip().lower()

    if provider == "mock":
        return MockJobClient(complete_after=settings.mock_complete_after)
    if provider == "http":
        return HttpJobClient(
            base_url=settings.case_api_base_url,
            token=settings.case_api_token,
            submit_path=settings.case_api_submit_path,
            status_path=settings.case_api_status_path,
            approve_path=settings.case_api_approve_path,
            timeout_seconds=settings.case_api_timeout_seconds,
            confidence_threshold=settings.analysis_confidence_threshold,
        )
    raise ValueError("Unsupported JOB_CLIENT_PROVIDER. Supported values: mock, http.")
