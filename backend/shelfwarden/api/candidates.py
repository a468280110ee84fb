"""Candidate review API endpoints."""

from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.api.auth import require_admin
from shelfwarden.api.dependencies import get_deletion_executor
from shelfwarden.core import review
from shelfwarden.core.adapters import DeletionExecutor
from shelfwarden.core.review import CandidateFilters
from shelfwarden.models.database import get_db
from shelfwarden.models.entities import User
from shelfwarden.models.schemas import (
    BulkReviewRequest,
    BulkReviewResponse,
    CandidateListResponse,
    CandidateResponse,
    DeletionLogListResponse,
    MediaType,
    ReviewRequest,
    ReviewStatus,
)
from shelfwarden.services.exporter import Exporter

router = APIRouter()


def get_candidate_filters(
    review_status: Optional[ReviewStatus] = None,
    media_type: Optional[MediaType] = None,
    rule_id: Optional[int] = None,
    scan_id: Optional[int] = None,
    search: Optional[str] = Query(None, max_length=200),
) -> CandidateFilters:
    return CandidateFilters(
        review_status=review_status,
        media_type=media_type,
        rule_id=rule_id,
        scan_id=scan_id,
        search=search,
    )


@router.get("", response_model=CandidateListResponse)
async def list_candidates(
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    filters: Annotated[CandidateFilters, Depends(get_candidate_filters)],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """List candidates with filters and pagination."""
    return await review.list_candidates(db, filters, page=page, page_size=page_size)


@router.get("/export")
async def export_candidates(
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    filters: Annotated[CandidateFilters, Depends(get_candidate_filters)],
    format: Literal["csv", "json"] = "csv",
):
    """Download the filtered candidates as CSV or JSON."""
    candidates = await review.export_candidates(db, filters)
    if format == "json":
        content = Exporter.export_candidates_json(candidates)
        media_type = "application/json"
    else:
        content = Exporter.export_candidates_csv(candidates)
        media_type = "text/csv"

    return StreamingResponse(
        iter([content]),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="candidates.{format}"'},
    )


@router.get("/deletions", response_model=DeletionLogListResponse)
async def list_deletions(
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """Deletion audit log, newest first."""
    return await review.list_deletions(db, page=page, page_size=page_size)


@router.post("/bulk-approve", response_model=BulkReviewResponse)
async def bulk_approve(
    data: BulkReviewRequest,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    deleter: Annotated[DeletionExecutor, Depends(get_deletion_executor)],
):
    """Approve and delete each candidate, reporting per-item results."""
    return await review.bulk_approve(
        db, data.candidate_ids, deleter, current_user.username, data.note
    )


@router.post("/bulk-reject", response_model=BulkReviewResponse)
async def bulk_reject(
    data: BulkReviewRequest,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Reject each candidate, reporting per-item results."""
    return await review.bulk_reject(db, data.candidate_ids, current_user.username, data.note)


@router.post("/process-approved", response_model=BulkReviewResponse)
async def process_approved(
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    deleter: Annotated[DeletionExecutor, Depends(get_deletion_executor)],
):
    """Retry deletion of every APPROVED candidate."""
    return await review.process_approved_deletions(db, deleter, current_user.username)


@router.get("/{candidate_id}", response_model=CandidateResponse)
async def get_candidate(
    candidate_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await review.get_candidate_response(db, candidate_id)


@router.post("/{candidate_id}/approve", response_model=CandidateResponse)
async def approve_candidate(
    candidate_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    deleter: Annotated[DeletionExecutor, Depends(get_deletion_executor)],
    data: Optional[ReviewRequest] = None,
):
    """Approve a candidate and delete the item from the media server."""
    note = data.note if data else None
    await review.approve_candidate(db, candidate_id, deleter, current_user.username, note)
    return await review.get_candidate_response(db, candidate_id)


@router.post("/{candidate_id}/reject", response_model=CandidateResponse)
async def reject_candidate(
    candidate_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    data: Optional[ReviewRequest] = None,
):
    """Reject a candidate; the item is kept."""
    note = data.note if data else None
    await review.reject_candidate(db, candidate_id, current_user.username, note)
    return await review.get_candidate_response(db, candidate_id)
