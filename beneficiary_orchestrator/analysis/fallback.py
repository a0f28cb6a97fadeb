from beneficiary_orchestrator.analysis.canonicalize import (
    ADMINISTRATIVE_ID_PREFIX,
    EXTRACTED_ID_PREFIX,
    build_confidence,
    compute_overall_confidence,
    decide_match_status,
    parse_percentage,
)
from beneficiary_orchestrator.analysis.models import (
    CanonicalBeneficiary,
    ClaimBeneficiary,
    ClaimContext,
    ComparisonResult,
    ShareComparison,
    ShareTotals,
)
from beneficiary_orchestrator.core.config import Settings, get_settings
from beneficiary_orchestrator.core.enums import ResultSource


def is_demo_case(case_id: str, settings: Settings | None = None) -> bool:
    prefix = (settings or get_settings()).demo_case_prefix
    return bool(prefix) and case_id.startswith(prefix)


def is_contingent(beneficiary: CanonicalBeneficiary) -> bool:
    return beneficiary.beneficiary_type.strip().lower().startswith("contingent")


def _from_claim(
    item: ClaimBeneficiary,
    *,
    position: int,
    id_prefix: str,
    settings: Settings,
) -> CanonicalBeneficiary:
    name = item.name.strip() or f"Beneficiary {position + 1}"
    return CanonicalBeneficiary(
        id=f"{id_prefix}-{position + 1}",
        full_name=name,
        relationship=item.relationship.strip() or item.beneficiary_type.strip(),
        beneficiary_type=item.beneficiary_type.strip(),
        date_of_birth=item.date_of_birth.strip(),
        percentage=parse_percentage(item.percentage),
        phone=item.phone or None,
        email=item.email or None,
        confidence=build_confidence(None, settings),
    )


def _tier_comparison(
    extracted: list[CanonicalBeneficiary],
    administrative: list[CanonicalBeneficiary],
    *,
    contingent: bool,
) -> ShareComparison | None:
    extracted_tier = [item for item in extracted if is_contingent(item) == contingent]
    admin_tier = [item for item in administrative if is_contingent(item) == contingent]
    if not extracted_tier and not admin_tier:
        return None
    extracted_total = sum(item.percentage for item in extracted_tier)
    admin_total = sum(item.percentage for item in admin_tier)
    return ShareComparison(
        extracted_total=extracted_total,
        administrative_total=admin_total,
        is_match=bool(extracted_tier) and bool(admin_tier) and extracted_total == admin_total,
    )


def compute_share_totals(
    extracted: list[CanonicalBeneficiary],
    administrative: list[CanonicalBeneficiary],
) -> ShareTotals:
    return ShareTotals(
        primary=_tier_comparison(extracted, administrative, contingent=False),
        contingent=_tier_comparison(extracted, administrative, contingent=True),
    )


def synthesize_result(
    case_id: str,
    claim_context: ClaimContext | None,
    *,
    source: ResultSource,
    settings: Settings | None = None,
) -> ComparisonResult:
    """Build a result from claim data the caller already holds.

    ``demo`` mirrors the claim beneficiaries on both sides, standing in for a
    clean extraction. ``fallback`` only fills the administrative side, so its
    verdict is never MATCH.
    """
    settings = settings or get_settings()
    context = claim_context or ClaimContext()

    administrative = [
        _from_claim(item, position=idx, id_prefix=ADMINISTRATIVE_ID_PREFIX, settings=settings)
        for idx, item in enumerate(context.beneficiaries)
    ]
    extracted: list[CanonicalBeneficiary] = []
    if source == ResultSource.DEMO:
        extracted = [
            _from_claim(item, position=idx, id_prefix=EXTRACTED_ID_PREFIX, settings=settings)
            for idx, item in enumerate(context.beneficiaries)
        ]

    share_totals = compute_share_totals(extracted, administrative)
    match_status = decide_match_status(extracted, administrative, share_totals)
    label = context.claim_number or case_id

    if source == ResultSource.DEMO:
        summary = f"Sandbox analysis for {label}: {len(administrative)} beneficiaries taken from claim data."
    else:
        summary = (
            f"Beneficiary analysis unavailable for {label}. Showing {len(administrative)} beneficiaries "
            "from claim data for manual review."
        )

    return ComparisonResult(
        extracted=extracted,
        administrative=administrative,
        match_status=match_status,
        overall_confidence=compute_overall_confidence(match_status, [*extracted, *administrative], settings),
        summary=summary,
        share_totals=share_totals,
        source=source,
    )
