"""Startup schema additions and recovery of scans left active by a previous process."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

logger = logging.getLogger(__name__)

INTERRUPTED_SCAN_MESSAGE = "Scan interrupted by application restart"


async def apply_index_migrations(conn: AsyncConnection) -> None:
    """Create the secondary indexes used by the review and scan queries."""
    await conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_maintenance_rules_enabled ON maintenance_rules (enabled)")
    )
    await conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_maintenance_scans_rule_id ON maintenance_scans (rule_id)")
    )
    await conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_maintenance_candidates_review_status "
            "ON maintenance_candidates (review_status)"
        )
    )
    await conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_maintenance_candidates_media_item_key "
            "ON maintenance_candidates (media_item_key)"
        )
    )
    await conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_user_watch_intents_media_item_key "
            "ON user_watch_intents (media_item_key)"
        )
    )


async def fail_interrupted_scans(conn: AsyncConnection) -> int:
    """Mark scans left active by a previous process as FAILED."""
    result = await conn.execute(
        text(
            """
            UPDATE maintenance_scans
            SET status = 'FAILED', error_message = :message, completed_at = :now
            WHERE status IN ('PENDING', 'RUNNING')
            """
        ),
        {"message": INTERRUPTED_SCAN_MESSAGE, "now": datetime.now(timezone.utc)},
    )
    if result.rowcount:
        logger.warning("Marked %s interrupted scan(s) as FAILED", result.rowcount)
    return result.rowcount or 0


async def release_interrupted_deletions(conn: AsyncConnection) -> int:
    """Drop deletion claims held by a previous process; the candidates stay APPROVED."""
    result = await conn.execute(
        text(
            """
            UPDATE maintenance_candidates
            SET deletion_started_at = NULL
            WHERE deletion_started_at IS NOT NULL AND review_status = 'APPROVED'
            """
        )
    )
    if result.rowcount:
        logger.warning("Released %s interrupted deletion claim(s)", result.rowcount)
    return result.rowcount or 0
