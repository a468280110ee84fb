"""Dashboard statistics for the maintenance engine."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.models.entities import (
    MaintenanceCandidate,
    MaintenanceDeletionLog,
    MaintenanceRule,
    MaintenanceScan,
)
from shelfwarden.models.schemas import (
    TERMINAL_SCAN_STATUSES,
    MaintenanceStats,
    ReviewStatus,
    RuleStats,
    ScanResponse,
)

RECENT_SCAN_LIMIT = 5


async def get_maintenance_stats(db: AsyncSession) -> MaintenanceStats:
    total_rules = await db.scalar(select(func.count(MaintenanceRule.id))) or 0
    enabled_rules = (
        await db.scalar(
            select(func.count(MaintenanceRule.id)).where(MaintenanceRule.enabled.is_(True))
        )
        or 0
    )

    by_status = {status: 0 for status in ReviewStatus}
    result = await db.execute(
        select(MaintenanceCandidate.review_status, func.count(MaintenanceCandidate.id))
        .group_by(MaintenanceCandidate.review_status)
    )
    for review_status, count in result.all():
        by_status[ReviewStatus(review_status)] = count

    recent = await db.scalars(
        select(MaintenanceScan)
        .where(MaintenanceScan.status.in_([s.value for s in TERMINAL_SCAN_STATUSES]))
        .order_by(MaintenanceScan.completed_at.desc(), MaintenanceScan.id.desc())
        .limit(RECENT_SCAN_LIMIT)
    )

    total_deletions = await db.scalar(select(func.count(MaintenanceDeletionLog.id))) or 0
    savings = await db.scalar(
        select(func.coalesce(func.sum(MaintenanceCandidate.file_size), 0)).where(
            MaintenanceCandidate.review_status.in_(
                [ReviewStatus.PENDING.value, ReviewStatus.APPROVED.value]
            )
        )
    )

    return MaintenanceStats(
        rules=RuleStats(
            total=total_rules,
            enabled=enabled_rules,
            disabled=total_rules - enabled_rules,
        ),
        candidates_by_status=by_status,
        total_candidates=sum(by_status.values()),
        recent_scans=[ScanResponse.model_validate(scan) for scan in recent.all()],
        total_deletions=total_deletions,
        potential_space_savings=int(savings or 0),
    )
