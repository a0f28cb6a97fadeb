import time
from typing import Any, Callable

from beneficiary_orchestrator.analysis.job import BeneficiaryAnalysisJob, Listener
from beneficiary_orchestrator.analysis.models import ClaimContext
from beneficiary_orchestrator.analysis.state import AnalysisSnapshot
from beneficiary_orchestrator.core.config import Settings, get_settings
from beneficiary_orchestrator.core.enums import JobState
from beneficiary_orchestrator.core.errors import ApprovalError
from beneficiary_orchestrator.core.logging import get_logger, log_context
from beneficiary_orchestrator.services.job_client import JobClient

logger = get_logger(__name__)


class AnalysisOrchestrator:
    """One independent ``BeneficiaryAnalysisJob`` per case id, sharing only the job client.

    A machine lives from its first ``trigger``/``subscribe`` until ``reset``,
    which drops it from the registry.
    """

    def __init__(
        self,
        job_client: JobClient,
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = job_client
        self._settings = settings or get_settings()
        self._clock = clock
        self._jobs: dict[str, BeneficiaryAnalysisJob] = {}

    @property
    def case_ids(self) -> list[str]:
        return list(self._jobs)

    def job_for(self, case_id: str) -> BeneficiaryAnalysisJob:
        job = self._jobs.get(case_id)
        if job is None:
            job = BeneficiaryAnalysisJob(self._client, settings=self._settings, clock=self._clock)
            self._jobs[case_id] = job
        return job

    def trigger(self, case_id: str, claim_context: ClaimContext | None = None, *, submit: bool = True) -> None:
        self.job_for(case_id).trigger(case_id, claim_context, submit=submit)

    def retry(self, case_id: str) -> bool:
        job = self._jobs.get(case_id)
        return job.retry() if job is not None else False

    def reset(self, case_id: str) -> AnalysisSnapshot | None:
        job = self._jobs.pop(case_id, None)
        if job is None:
            return None
        job.reset(case_id)
        return job.snapshot().model_copy(update={"case_id": case_id})

    def snapshot(self, case_id: str) -> AnalysisSnapshot | None:
        job = self._jobs.get(case_id)
        if job is None:
            return None
        snapshot = job.snapshot()
        if snapshot.case_id is None:
            snapshot = snapshot.model_copy(update={"case_id": case_id})
        return snapshot

    def subscribe(self, case_id: str, listener: Listener) -> Callable[[], None]:
        return self.job_for(case_id).subscribe(listener)

    async def join(self, case_id: str) -> AnalysisSnapshot | None:
        job = self._jobs.get(case_id)
        if job is None:
            return None
        return await job.join()

    async def approve(
        self,
        case_id: str,
        *,
        beneficiary_ids: list[str] | None = None,
        approved_by: str | None = None,
    ) -> Any:
        """Send extracted beneficiaries of an authoritative result to the case system."""
        snapshot = self.snapshot(case_id)
        if snapshot is not None and snapshot.is_fallback:
            raise ApprovalError(f"Analysis for case {case_id} is a fallback result and cannot be approved")
        if snapshot is None or snapshot.state != JobState.COMPLETE or snapshot.result is None:
            raise ApprovalError(f"Analysis for case {case_id} is not complete")

        beneficiaries = snapshot.result.extracted
        if beneficiary_ids is not None:
            known = {item.id for item in beneficiaries}
            unknown = [item for item in beneficiary_ids if item not in known]
            if unknown:
                raise ApprovalError(f"Unknown beneficiary ids for case {case_id}: {', '.join(unknown)}")
            wanted = set(beneficiary_ids)
            beneficiaries = [item for item in beneficiaries if item.id in wanted]
        if not beneficiaries:
            raise ApprovalError(f"No extracted beneficiaries to approve for case {case_id}")

        logger.info(
            "Approving beneficiaries",
            extra=log_context(case_id=case_id, count=len(beneficiaries), approved_by=approved_by),
        )
        return await self._client.approve(case_id, beneficiaries, approved_by=approved_by)
