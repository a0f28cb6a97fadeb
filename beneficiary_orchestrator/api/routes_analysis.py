from fastapi import APIRouter, Depends, HTTPException, status

from beneficiary_orchestrator.analysis.orchestrator import AnalysisOrchestrator
from beneficiary_orchestrator.analysis.state import AnalysisSnapshot
from beneficiary_orchestrator.api.deps import get_orchestrator
from beneficiary_orchestrator.api.schemas import ApproveRequest, ApproveResponse, TriggerRequest
from beneficiary_orchestrator.core.errors import ApprovalError, TransportError

router = APIRouter(prefix="/analysis", tags=["analysis"])


def _require_snapshot(orchestrator: AnalysisOrchestrator, case_id: str) -> AnalysisSnapshot:
    snapshot = orchestrator.snapshot(case_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No analysis for case {case_id}")
    return snapshot


@router.post("/{case_id}/trigger", response_model=AnalysisSnapshot, status_code=status.HTTP_202_ACCEPTED)
async def trigger_analysis(
    case_id: str,
    payload: TriggerRequest | None = None,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    payload = payload or TriggerRequest()
    orchestrator.trigger(case_id, payload.claim_context, submit=payload.submit)
    return _require_snapshot(orchestrator, case_id)


@router.get("/{case_id}", response_model=AnalysisSnapshot)
async def get_analysis(case_id: str, orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    return _require_snapshot(orchestrator, case_id)


@router.post("/{case_id}/retry", response_model=AnalysisSnapshot, status_code=status.HTTP_202_ACCEPTED)
async def retry_analysis(case_id: str, orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    _require_snapshot(orchestrator, case_id)
    if not orchestrator.retry(case_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Analysis for case {case_id} is not finished")
    return _require_snapshot(orchestrator, case_id)


@router.post("/{case_id}/reset", response_model=AnalysisSnapshot)
async def reset_analysis(case_id: str, orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    snapshot = orchestrator.reset(case_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No analysis for case {case_id}")
    return snapshot


@router.post("/{case_id}/approve", response_model=ApproveResponse)
async def approve_analysis(
    case_id: str,
    payload: ApproveRequest | None = None,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    _require_snapshot(orchestrator, case_id)
    payload = payload or ApproveRequest()
    try:
        response = await orchestrator.approve(
            case_id,
            beneficiary_ids=payload.beneficiary_ids,
            approved_by=payload.approved_by,
        )
    except ApprovalError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    except TransportError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc

    approved = payload.beneficiary_ids
    snapshot = _require_snapshot(orchestrator, case_id)
    count = len(set(approved)) if approved is not None else len(snapshot.result.extracted)
    return ApproveResponse(case_id=case_id, approved_count=count, response=response)
