from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from beneficiary_orchestrator.analysis.models import ClaimContext


class TriggerRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    claim_context: ClaimContext | None = None
    submit: bool = True


class ApproveRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    beneficiary_ids: list[str] | None = None
    approved_by: str | None = None


class ApproveResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    case_id: str
    approved_count: int
    response: Any = None


class HealthResponse(BaseModel):
    status: str
    service: str
