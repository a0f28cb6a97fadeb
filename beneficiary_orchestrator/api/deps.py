from functools import lru_cache

from beneficiary_orchestrator.analysis.orchestrator import AnalysisOrchestrator
from beneficiary_orchestrator.core.config import get_settings
from beneficiary_orchestrator.services.job_client import build_job_client


@lru_cache(maxsize=1)
def get_orchestrator() -> AnalysisOrchestrator:
    settings = get_settings()
    return AnalysisOrchestrator(build_job_client(settings), settings=settings)
