from dataclasses import dataclass

from beneficiary_orchestrator.analysis.models import ClaimContext, ComparisonResult, ErrorInfo, WireModel
from beneficiary_orchestrator.core.enums import TERMINAL_STATES, JobState


@dataclass
class AnalysisJob:
    case_id: str
    generation: int
    started_at: float
    state: JobState = JobState.TRIGGERING
    attempt: int = 0
    last_error: ErrorInfo | None = None
    result: ComparisonResult | None = None
    is_fallback: bool = False
    advisory: str | None = None
    finished_at: float | None = None
    claim_context: ClaimContext | None = None
    submit: bool = True


class AnalysisSnapshot(WireModel):
    case_id: str | None = None
    state: JobState = JobState.IDLE
    attempt: int = 0
    elapsed_ms: int = 0
    result: ComparisonResult | None = None
    is_fallback: bool = False
    last_error: ErrorInfo | None = None
    advisory: str | None = None
    generation: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
