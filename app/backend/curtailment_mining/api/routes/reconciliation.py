"""
Reconciliation routes: trigger runs, resume, and inspect progress.
"""

from datetime import date
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from curtailment_mining.api.dependencies import get_orchestrator
from curtailment_mining.api.schemas.common import SuccessResponse, create_success_response
from curtailment_mining.api.schemas.reconciliation import ReconciliationResumeRequest, ReconciliationRunRequest
from curtailment_mining.core.exceptions import ValidationError
from curtailment_mining.models import UnitStatus
from curtailment_mining.services.reconciliation import ReconciliationOrchestrator


logger = structlog.get_logger(__name__)

router = APIRouter()


def _checkpoint_to_dict(checkpoint) -> dict:
    return {
        "unit": checkpoint.unit_key,
        "start_date": checkpoint.start_date.isoformat(),
        "end_date": checkpoint.end_date.isoformat(),
        "status": checkpoint.status,
        "attempts": checkpoint.attempts,
        "expected_records": checkpoint.expected_records,
        "missing_records": checkpoint.missing_records,
        "repaired_records": checkpoint.repaired_records,
        "failed_records": checkpoint.failed_records,
        "still_missing": checkpoint.still_missing,
        "last_error": checkpoint.last_error,
        "started_at": checkpoint.started_at.isoformat() if checkpoint.started_at else None,
        "completed_at": checkpoint.completed_at.isoformat() if checkpoint.completed_at else None,
    }


@router.post(
    "/run",
    response_model=SuccessResponse,
    summary="Run Reconciliation",
    description="Audit and repair mining-potential records for a date range",
)
async def run_reconciliation(
    request: ReconciliationRunRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    logger.info("Reconciliation requested", start_date=str(request.start_date), end_date=str(request.end_date))
    result = await orchestrator.run(
        request.start_date,
        request.end_date,
        retry_failed=request.retry_failed,
        check_difficulty=request.check_difficulty,
    )
    return create_success_response(data=result.to_dict(), message="Reconciliation finished")


@router.post(
    "/resume",
    response_model=SuccessResponse,
    summary="Resume Reconciliation",
    description="Continue every unit left pending, in progress or partially fixed",
)
async def resume_reconciliation(
    request: Optional[ReconciliationResumeRequest] = None,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    check_difficulty = request.check_difficulty if request else False
    result = await orchestrator.resume(check_difficulty=check_difficulty)
    return create_success_response(data=result.to_dict(), message="Reconciliation resumed")


@router.get(
    "/checkpoints",
    response_model=SuccessResponse,
    summary="List Checkpoints",
)
async def list_checkpoints(
    status: Optional[List[UnitStatus]] = Query(default=None, description="Filter by unit status"),
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    checkpoints = await orchestrator.checkpoint_store.list(status)
    return create_success_response(data=[_checkpoint_to_dict(c) for c in checkpoints])


@router.get(
    "/status",
    response_model=SuccessResponse,
    summary="Completion Status",
    description="Per-date completion percentage of derived records",
)
async def reconciliation_status(
    start_date: date = Query(..., description="First date"),
    end_date: date = Query(..., description="Last date (inclusive)"),
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    if start_date > end_date:
        raise ValidationError("start_date must not be after end_date")

    report = await orchestrator.status_report(start_date, end_date)
    dates = [entry.to_dict() for entry in report]
    overall = round(sum(d["completion_percent"] for d in dates) / len(dates), 2) if dates else 100.0
    return create_success_response(data={"overall_completion_percent": overall, "dates": dates})
