from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from beneficiary_orchestrator.core.enums import ConfidenceMode


class Settings(BaseSettings):
    app_name: str = "Beneficiary Analysis Orchestrator"
    environment: str = "dev"
    debug: bool = True

    job_client_provider: str = "mock"
    case_api_base_url: str = ""
    case_api_token: str = ""
    case_api_submit_path: str = "/beneficiary-analyzer/analyze"
    case_api_status_path: str = "/beneficiary-analyzer/status/{case_id}"
    case_api_approve_path: str = "/beneficiary-analyzer/approve"
    case_api_timeout_seconds: float = 30.0
    analysis_confidence_threshold: float = 0.7
    mock_complete_after: int = 2

    # Polling budget: max_attempts * poll_interval_ms bounds the total wait per job.
    analysis_max_attempts: int = Field(default=24, ge=1)
    analysis_poll_interval_ms: int = Field(default=2500, ge=0)
    analysis_fetch_timeout_ms: int = Field(default=10000, ge=1)
    demo_case_prefix: str = "DEMO-"
    demo_delay_ms: int = Field(default=1500, ge=0)

    confidence_default: float = Field(default=0.95, ge=0.0, le=1.0)
    confidence_ssn_default: float = Field(default=0.85, ge=0.0, le=1.0)
    match_confidence: float = Field(default=0.94, ge=0.0, le=1.0)
    mismatch_confidence: float = Field(default=0.75, ge=0.0, le=1.0)
    confidence_mode: ConfidenceMode = ConfidenceMode.FIXED

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def polling_budget_ms(self) -> int:
        return self.analysis_max_attempts * self.analysis_poll_interval_ms


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
