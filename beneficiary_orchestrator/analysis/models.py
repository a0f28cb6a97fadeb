from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from beneficiary_orchestrator.core.enums import ErrorKind, MatchStatus, ResultSource


class WireModel(BaseModel):
    """Frozen value type serialized with camelCase keys on the wire."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ConfidenceScores(WireModel):
    overall: float = Field(ge=0.0, le=1.0)
    name: float = Field(ge=0.0, le=1.0)
    relationship: float = Field(ge=0.0, le=1.0)
    percentage: float = Field(ge=0.0, le=1.0)
    date_of_birth: float = Field(ge=0.0, le=1.0)
    address: float = Field(ge=0.0, le=1.0)
    ssn: float = Field(ge=0.0, le=1.0)


class CanonicalBeneficiary(WireModel):
    id: str
    full_name: str
    relationship: str = ""
    beneficiary_type: str = ""
    date_of_birth: str = ""
    percentage: int = Field(default=0, ge=0, le=100)
    phone: str | None = None
    email: str | None = None
    confidence: ConfidenceScores
    source_document_id: str | None = None


class ShareComparison(WireModel):
    extracted_total: int
    administrative_total: int
    is_match: bool


class ShareTotals(WireModel):
    primary: ShareComparison | None = None
    contingent: ShareComparison | None = None

    def present(self) -> list[ShareComparison]:
        return [item for item in (self.primary, self.contingent) if item is not None]


class ComparisonResult(WireModel):
    extracted: list[CanonicalBeneficiary] = Field(default_factory=list)
    administrative: list[CanonicalBeneficiary] = Field(default_factory=list)
    match_status: MatchStatus
    overall_confidence: float = Field(ge=0.0, le=1.0)
    summary: str = ""
    share_totals: ShareTotals = Field(default_factory=ShareTotals)
    source: ResultSource = ResultSource.ANALYSIS


class ErrorInfo(WireModel):
    kind: ErrorKind
    message: str
    reason: str | None = None
    status_code: int | None = None
    cause: ErrorInfo | None = None


class ClaimBeneficiary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = ""
    relationship: str = ""
    beneficiary_type: str = "Primary"
    percentage: int | str | None = None
    date_of_birth: str = ""
    phone: str | None = None
    email: str | None = None


class ClaimContext(BaseModel):
    """Partial claim data the caller hands over for local synthesis."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    claim_number: str | None = None
    insured_name: str | None = None
    policy_number: str | None = None
    beneficiaries: list[ClaimBeneficiary] = Field(default_factory=list)

    @field_validator("beneficiaries", mode="before")
    @classmethod
    def _drop_null_beneficiaries(cls, value):
        if value is None:
            return []
        return [item for item in value if item is not None]
