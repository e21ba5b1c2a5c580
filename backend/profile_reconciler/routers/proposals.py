"""Submission intake and proposal review routes."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from profile_reconciler.db.dependencies import get_reconciliation_service
from profile_reconciler.errors import ApplyFailure, ConfigurationError, ProposalNotFoundError
from profile_reconciler.schemas.common import ApiResponse
from profile_reconciler.schemas.proposals import (
    ApprovalResultRead,
    ApproveRequest,
    BulkApproveRequest,
    ExpireResultRead,
    ModifyRequest,
    PendingBatchRead,
    ProposalRead,
    ProposalStatsRead,
    RejectRequest,
    ReviewOutcomeRead,
    SubmissionCreate,
    SubmissionResultRead,
)
from profile_reconciler.services.reconciliation import ReconciliationService
from profile_reconciler.transformation.types import RawSubmission

router = APIRouter()


@router.post("/submissions", response_model=ApiResponse[SubmissionResultRead])
def submit_for_review(
    payload: SubmissionCreate,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[SubmissionResultRead]:
    """Turn one submission's answers into profile update proposals."""

    result = service.submit(
        RawSubmission(
            subject_id=payload.subject_id.strip(),
            source_id=payload.source_id.strip(),
            source_type=payload.source_type.strip(),
            answers=payload.answers,
            update_type=payload.update_type,
        )
    )
    return ApiResponse(data=SubmissionResultRead.model_validate(result))


@router.get("/proposals/pending", response_model=ApiResponse[list[PendingBatchRead]])
def list_pending(
    subject_id: str | None = Query(default=None, min_length=1),
    sort_by: Literal["date", "confidence", "subject"] = Query(default="date"),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[list[PendingBatchRead]]:
    """List PENDING proposals grouped by subject and submission."""

    batches = service.list_pending(subject_id=subject_id, sort_by=sort_by)
    return ApiResponse(data=[PendingBatchRead.model_validate(batch) for batch in batches])


@router.get("/proposals/stats", response_model=ApiResponse[ProposalStatsRead])
def get_stats(
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[ProposalStatsRead]:
    return ApiResponse(data=ProposalStatsRead.model_validate(service.get_stats()))


@router.get("/proposals/{proposal_id}", response_model=ApiResponse[ProposalRead])
def get_proposal(
    proposal_id: int = Path(..., ge=1),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[ProposalRead]:
    proposal = service.store.get(proposal_id)
    if proposal is None:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return ApiResponse(data=ProposalRead.model_validate(proposal))


@router.post("/proposals/approve", response_model=ApiResponse[ApprovalResultRead])
def approve_proposals(
    payload: ApproveRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[ApprovalResultRead]:
    """Apply and approve the given proposals; already-reviewed ids are skipped."""

    result = service.approve(
        payload.ids,
        payload.reviewed_by,
        payload.notes,
        feedback_rating=payload.feedback_rating,
        feedback_notes=payload.feedback_notes,
    )
    return ApiResponse(data=ApprovalResultRead.model_validate(result))


@router.post("/proposals/bulk-approve", response_model=ApiResponse[ApprovalResultRead])
def bulk_approve_proposals(
    payload: BulkApproveRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[ApprovalResultRead]:
    result = service.bulk_approve(
        payload.subject_id,
        payload.reviewed_by,
        source_id=payload.source_id,
        exclude_ids=payload.exclude_ids,
        notes=payload.notes,
    )
    return ApiResponse(data=ApprovalResultRead.model_validate(result))


@router.post("/proposals/{proposal_id}/reject", response_model=ApiResponse[ReviewOutcomeRead])
def reject_proposal(
    payload: RejectRequest,
    proposal_id: int = Path(..., ge=1),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[ReviewOutcomeRead]:
    try:
        outcome = service.reject(
            proposal_id,
            payload.reviewed_by,
            payload.reason,
            feedback_rating=payload.feedback_rating,
            feedback_notes=payload.feedback_notes,
        )
    except ProposalNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ApiResponse(data=ReviewOutcomeRead.model_validate(outcome))


@router.post("/proposals/{proposal_id}/modify", response_model=ApiResponse[ReviewOutcomeRead])
def modify_proposal(
    payload: ModifyRequest,
    proposal_id: int = Path(..., ge=1),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[ReviewOutcomeRead]:
    """Apply the reviewer's value in place of the proposed one."""

    try:
        outcome = service.modify(
            proposal_id,
            payload.reviewed_by,
            payload.value,
            payload.notes,
            feedback_rating=payload.feedback_rating,
            feedback_notes=payload.feedback_notes,
        )
    except ProposalNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ApplyFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=ReviewOutcomeRead.model_validate(outcome))


@router.post("/proposals/expire", response_model=ApiResponse[ExpireResultRead])
def expire_stale_proposals(
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ApiResponse[ExpireResultRead]:
    return ApiResponse(data=ExpireResultRead(expired=service.expire_stale()))
