"""Candidate review workflow: approve, reject, delete and audit."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.core.adapters import DeletionExecutor
from shelfwarden.core.errors import (
    ConflictError,
    ExternalAdapterError,
    MaintenanceError,
    NotFoundError,
)
from shelfwarden.models.entities import (
    MaintenanceCandidate,
    MaintenanceDeletionLog,
    MaintenanceRule,
    MaintenanceScan,
)
from shelfwarden.models.schemas import (
    BulkReviewResponse,
    CandidateActionResult,
    CandidateListResponse,
    CandidateResponse,
    DeletionLogListResponse,
    DeletionLogResponse,
    MediaType,
    ReviewStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class CandidateFilters:
    review_status: Optional[ReviewStatus] = None
    media_type: Optional[MediaType] = None
    rule_id: Optional[int] = None
    scan_id: Optional[int] = None
    search: Optional[str] = None


def _page_count(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size if total else 0


def _candidate_query(filters: CandidateFilters) -> Select:
    query = (
        select(MaintenanceCandidate, MaintenanceScan.rule_id, MaintenanceRule.name)
        .join(MaintenanceScan, MaintenanceCandidate.scan_id == MaintenanceScan.id)
        .outerjoin(MaintenanceRule, MaintenanceScan.rule_id == MaintenanceRule.id)
    )
    if filters.review_status is not None:
        query = query.where(MaintenanceCandidate.review_status == filters.review_status.value)
    if filters.media_type is not None:
        query = query.where(MaintenanceCandidate.media_type == filters.media_type.value)
    if filters.rule_id is not None:
        query = query.where(MaintenanceScan.rule_id == filters.rule_id)
    if filters.scan_id is not None:
        query = query.where(MaintenanceCandidate.scan_id == filters.scan_id)
    if filters.search:
        query = query.where(MaintenanceCandidate.title.ilike(f"%{filters.search}%"))
    return query


def _to_response(
    candidate: MaintenanceCandidate, rule_id: Optional[int], rule_name: Optional[str]
) -> CandidateResponse:
    response = CandidateResponse.model_validate(candidate)
    response.rule_id = rule_id
    response.rule_name = rule_name or candidate.matched_rule
    return response


async def list_candidates(
    db: AsyncSession,
    filters: CandidateFilters,
    page: int = 1,
    page_size: int = 50,
) -> CandidateListResponse:
    query = _candidate_query(filters)
    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(MaintenanceCandidate.flagged_at.desc(), MaintenanceCandidate.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [_to_response(c, rule_id, name) for c, rule_id, name in result.all()]
    return CandidateListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=_page_count(total, page_size),
    )


async def export_candidates(db: AsyncSession, filters: CandidateFilters) -> list[CandidateResponse]:
    """All candidates matching ``filters``, unpaginated, for export."""
    result = await db.execute(
        _candidate_query(filters).order_by(
            MaintenanceCandidate.flagged_at.desc(), MaintenanceCandidate.id.desc()
        )
    )
    return [_to_response(c, rule_id, name) for c, rule_id, name in result.all()]


async def get_candidate(db: AsyncSession, candidate_id: int) -> MaintenanceCandidate:
    candidate = await db.get(MaintenanceCandidate, candidate_id)
    if candidate is None:
        raise NotFoundError(f"Candidate {candidate_id} not found")
    return candidate


async def get_candidate_response(db: AsyncSession, candidate_id: int) -> CandidateResponse:
    result = await db.execute(
        _candidate_query(CandidateFilters()).where(MaintenanceCandidate.id == candidate_id)
    )
    row = result.first()
    if row is None:
        raise NotFoundError(f"Candidate {candidate_id} not found")
    candidate, rule_id, name = row
    return _to_response(candidate, rule_id, name)


async def _execute_deletion(
    db: AsyncSession,
    candidate: MaintenanceCandidate,
    deleter: DeletionExecutor,
    deleted_by: str,
) -> None:
    """APPROVED -> DELETED once the deletion executor confirms.

    The caller holds the candidate's deletion claim; it is released here on
    both outcomes. On failure the candidate stays APPROVED with the error
    recorded, and the error is raised to the caller after the record is
    committed.
    """
    try:
        await deleter.delete(candidate.media_item_key)
    except Exception as exc:
        if isinstance(exc, ExternalAdapterError):
            message = exc.message
        else:
            message = f"Deletion of {candidate.media_item_key} failed: {exc}"
        candidate.deletion_error = message
        candidate.deletion_started_at = None
        await db.commit()
        logger.error("Deletion of candidate %s failed: %s", candidate.id, message)
        if isinstance(exc, ExternalAdapterError):
            raise
        raise ExternalAdapterError(message) from exc

    now = datetime.now(timezone.utc)
    candidate.review_status = ReviewStatus.DELETED.value
    candidate.deleted_at = now
    candidate.deletion_error = None
    candidate.deletion_started_at = None
    db.add(
        MaintenanceDeletionLog(
            candidate_id=candidate.id,
            media_type=candidate.media_type,
            media_item_key=candidate.media_item_key,
            title=candidate.title,
            file_size=candidate.file_size,
            deleted_by=deleted_by,
            rule_name=candidate.matched_rule,
            deleted_at=now,
        )
    )
    await db.commit()
    logger.info("Candidate %s deleted (%s)", candidate.id, candidate.title)


async def approve_candidate(
    db: AsyncSession,
    candidate_id: int,
    deleter: DeletionExecutor,
    reviewer: str,
    note: Optional[str] = None,
) -> MaintenanceCandidate:
    """
    Approve a candidate and delete it through ``deleter``.

    PENDING candidates are approved first; APPROVED candidates retry their
    deletion. REJECTED and DELETED candidates raise ConflictError, as does a
    candidate whose deletion another request is already running.
    """
    candidate = await get_candidate(db, candidate_id)
    status = ReviewStatus(candidate.review_status)

    if status in (ReviewStatus.REJECTED, ReviewStatus.DELETED):
        raise ConflictError(f"Candidate {candidate_id} is {status.value} and cannot be approved")

    now = datetime.now(timezone.utc)
    values = {"review_status": ReviewStatus.APPROVED.value, "deletion_started_at": now}
    if status == ReviewStatus.PENDING:
        values.update(reviewed_at=now, reviewed_by=reviewer)
        if note is not None:
            values["review_note"] = note

    # Only one request may move the candidate into deletion at a time.
    result = await db.execute(
        update(MaintenanceCandidate)
        .where(
            MaintenanceCandidate.id == candidate_id,
            MaintenanceCandidate.review_status == status.value,
            MaintenanceCandidate.deletion_started_at.is_(None),
        )
        .values(**values)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError(f"Candidate {candidate_id} is already being reviewed or deleted")
    await db.commit()
    await db.refresh(candidate)
    if status == ReviewStatus.PENDING:
        logger.info("Candidate %s approved by %s", candidate_id, reviewer)

    await _execute_deletion(db, candidate, deleter, deleted_by=reviewer)
    return candidate


async def reject_candidate(
    db: AsyncSession,
    candidate_id: int,
    reviewer: str,
    note: Optional[str] = None,
) -> MaintenanceCandidate:
    candidate = await get_candidate(db, candidate_id)
    if candidate.review_status != ReviewStatus.PENDING.value:
        raise ConflictError(
            f"Candidate {candidate_id} is {candidate.review_status} and cannot be rejected"
        )
    values = {
        "review_status": ReviewStatus.REJECTED.value,
        "reviewed_at": datetime.now(timezone.utc),
        "reviewed_by": reviewer,
    }
    if note is not None:
        values["review_note"] = note
    result = await db.execute(
        update(MaintenanceCandidate)
        .where(
            MaintenanceCandidate.id == candidate_id,
            MaintenanceCandidate.review_status == ReviewStatus.PENDING.value,
        )
        .values(**values)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError(f"Candidate {candidate_id} was reviewed by another request")
    await db.commit()
    await db.refresh(candidate)
    logger.info("Candidate %s rejected by %s", candidate_id, reviewer)
    return candidate


def _bulk_response(results: list[CandidateActionResult]) -> BulkReviewResponse:
    succeeded = sum(1 for r in results if r.success)
    return BulkReviewResponse(
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=results,
    )


async def _status_of(db: AsyncSession, candidate_id: int) -> Optional[ReviewStatus]:
    status = await db.scalar(
        select(MaintenanceCandidate.review_status).where(MaintenanceCandidate.id == candidate_id)
    )
    return ReviewStatus(status) if status else None


async def bulk_approve(
    db: AsyncSession,
    candidate_ids: list[int],
    deleter: DeletionExecutor,
    reviewer: str,
    note: Optional[str] = None,
) -> BulkReviewResponse:
    """Approve each candidate independently; one failure never stops the rest."""
    results = []
    for candidate_id in dict.fromkeys(candidate_ids):
        try:
            candidate = await approve_candidate(db, candidate_id, deleter, reviewer, note)
        except MaintenanceError as exc:
            results.append(
                CandidateActionResult(
                    candidate_id=candidate_id,
                    success=False,
                    review_status=await _status_of(db, candidate_id),
                    error=exc.message,
                )
            )
            continue
        results.append(
            CandidateActionResult(
                candidate_id=candidate_id,
                success=True,
                review_status=candidate.review_status,
            )
        )
    return _bulk_response(results)


async def bulk_reject(
    db: AsyncSession,
    candidate_ids: list[int],
    reviewer: str,
    note: Optional[str] = None,
) -> BulkReviewResponse:
    results = []
    for candidate_id in dict.fromkeys(candidate_ids):
        try:
            candidate = await reject_candidate(db, candidate_id, reviewer, note)
        except MaintenanceError as exc:
            results.append(
                CandidateActionResult(
                    candidate_id=candidate_id,
                    success=False,
                    review_status=await _status_of(db, candidate_id),
                    error=exc.message,
                )
            )
            continue
        results.append(
            CandidateActionResult(
                candidate_id=candidate_id,
                success=True,
                review_status=candidate.review_status,
            )
        )
    return _bulk_response(results)


async def process_approved_deletions(
    db: AsyncSession,
    deleter: DeletionExecutor,
    deleted_by: str = "system:auto",
) -> BulkReviewResponse:
    """Retry deletion of every APPROVED candidate, including auto-approved ones."""
    approved_ids = (
        await db.scalars(
            select(MaintenanceCandidate.id)
            .where(MaintenanceCandidate.review_status == ReviewStatus.APPROVED.value)
            .order_by(MaintenanceCandidate.id)
        )
    ).all()
    logger.info("Processing %s approved deletion(s)", len(approved_ids))
    return await bulk_approve(db, list(approved_ids), deleter, deleted_by)


async def list_deletions(
    db: AsyncSession, page: int = 1, page_size: int = 50
) -> DeletionLogListResponse:
    total = await db.scalar(select(func.count(MaintenanceDeletionLog.id))) or 0
    result = await db.execute(
        select(MaintenanceDeletionLog)
        .order_by(MaintenanceDeletionLog.deleted_at.desc(), MaintenanceDeletionLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return DeletionLogListResponse(
        items=[DeletionLogResponse.model_validate(log) for log in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        pages=_page_count(total, page_size),
    )
