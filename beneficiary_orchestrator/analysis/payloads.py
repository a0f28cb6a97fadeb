import json
from typing import Any

from beneficiary_orchestrator.analysis.canonicalize import (
    CONTINGENT_SHARES_KEY,
    DMS_KEY,
    MATCH_LITERAL,
    ORDINAL_NAME_KEYS,
    PAS_KEY,
    PRIMARY_SHARES_KEY,
    SCORING_KEY,
    SHARE_TOTALS_KEY,
    SUMMARY_KEY,
)
from beneficiary_orchestrator.analysis.models import (
    CanonicalBeneficiary,
    ComparisonResult,
    ConfidenceScores,
    ShareComparison,
)


def _ordinal_key(position: int) -> str:
    return ORDINAL_NAME_KEYS[min(position, len(ORDINAL_NAME_KEYS) - 1)]


def _percent_text(value: float) -> str:
    return f"{round(value * 100, 4):g}"


def encode_record(beneficiary: CanonicalBeneficiary, position: int) -> dict[str, Any]:
    record: dict[str, Any] = {
        _ordinal_key(position): beneficiary.full_name,
        "beneficiaryType": beneficiary.beneficiary_type,
        "beneficiaryPercentage": f"{beneficiary.percentage}%",
        "beneficiaryDOB": beneficiary.date_of_birth,
    }
    if beneficiary.relationship and beneficiary.relationship != beneficiary.beneficiary_type:
        record["beneficiaryRelationship"] = beneficiary.relationship
    if beneficiary.phone:
        record["beneficiaryPhone"] = beneficiary.phone
    if beneficiary.email:
        record["beneficiaryEmail"] = beneficiary.email
    if beneficiary.source_document_id:
        record["documentID"] = beneficiary.source_document_id
    return record


def encode_score_entry(confidence: ConfidenceScores, position: int) -> dict[str, str]:
    return {
        _ordinal_key(position): _percent_text(confidence.name),
        "beneficiaryType": _percent_text(confidence.relationship),
        "beneficiaryPercentage": _percent_text(confidence.percentage),
        "beneficiaryDOB": _percent_text(confidence.date_of_birth),
    }


def _encode_share(comparison: ShareComparison) -> dict[str, Any]:
    return {
        DMS_KEY: str(comparison.extracted_total),
        PAS_KEY: str(comparison.administrative_total),
        "Match": MATCH_LITERAL if comparison.is_match else "MISMATCH",
    }


def build_output(result: ComparisonResult) -> list[dict[str, Any]]:
    scoring: list[dict[str, Any]] = []
    for idx in range(max(len(result.extracted), len(result.administrative))):
        source = result.extracted[idx] if idx < len(result.extracted) else result.administrative[idx]
        scoring.append(encode_score_entry(source.confidence, idx))

    shares: list[dict[str, Any]] = []
    if result.share_totals.primary is not None:
        shares.append({PRIMARY_SHARES_KEY: _encode_share(result.share_totals.primary)})
    if result.share_totals.contingent is not None:
        shares.append({CONTINGENT_SHARES_KEY: _encode_share(result.share_totals.contingent)})
    if shares:
        scoring.append({SHARE_TOTALS_KEY: shares})

    return [
        {DMS_KEY: [encode_record(item, idx) for idx, item in enumerate(result.extracted)]},
        {PAS_KEY: [encode_record(item, idx) for idx, item in enumerate(result.administrative)]},
        {SUMMARY_KEY: result.summary},
        {SCORING_KEY: scoring},
    ]


def encode_payload(result: ComparisonResult, *, status: str = "complete", as_text: bool = True) -> dict[str, Any]:
    """Wire envelope that canonicalizes back to ``result``."""
    data = {"Output": build_output(result)}
    return {"result": {"status": status, "data": json.dumps(data) if as_text else data}}


def pending_payload(status: str = "running") -> dict[str, Any]:
    return {"result": {"status": status}}
