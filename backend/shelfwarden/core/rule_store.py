"""Persistence of maintenance rule definitions."""

import logging
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.core.criteria import criteria_complexity, ensure_valid, parse_criteria
from shelfwarden.core.errors import ConflictError, NotFoundError
from shelfwarden.models.entities import MaintenanceCandidate, MaintenanceRule, MaintenanceScan
from shelfwarden.models.schemas import (
    ACTIVE_SCAN_STATUSES,
    MediaType,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
    ScanSummary,
)

logger = logging.getLogger(__name__)


async def get_rule(db: AsyncSession, rule_id: int) -> MaintenanceRule:
    rule = await db.get(MaintenanceRule, rule_id)
    if rule is None:
        raise NotFoundError(f"Rule {rule_id} not found")
    return rule


async def list_rules(
    db: AsyncSession,
    media_type: Optional[MediaType] = None,
    enabled: Optional[bool] = None,
) -> list[MaintenanceRule]:
    query = select(MaintenanceRule).order_by(MaintenanceRule.created_at.desc(), MaintenanceRule.id.desc())
    if media_type is not None:
        query = query.where(MaintenanceRule.media_type == media_type.value)
    if enabled is not None:
        query = query.where(MaintenanceRule.enabled == enabled)
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_rule(db: AsyncSession, data: RuleCreate) -> MaintenanceRule:
    """Validate and persist a new rule; nothing is written when validation fails."""
    criteria = ensure_valid(data.criteria, data.media_type)
    rule = MaintenanceRule(
        name=data.name,
        description=data.description,
        enabled=data.enabled,
        media_type=data.media_type.value,
        criteria=criteria.model_dump(mode="json"),
        action_type=data.action_type.value,
        schedule=data.schedule,
    )
    db.add(rule)
    await db.flush()
    await db.refresh(rule)
    logger.info("Created rule %s (%s)", rule.id, rule.name)
    return rule


async def update_rule(db: AsyncSession, rule_id: int, data: RuleUpdate) -> MaintenanceRule:
    """
    Apply a partial patch.

    Criteria are re-validated whenever either the criteria or the media type
    changes, since field applicability depends on the media type.
    """
    rule = await get_rule(db, rule_id)
    changes = data.model_dump(exclude_unset=True)

    media_type = changes.get("media_type") or MediaType(rule.media_type)
    if "criteria" in changes or "media_type" in changes:
        raw = changes["criteria"] if changes.get("criteria") is not None else rule.criteria
        rule.criteria = ensure_valid(raw, media_type).model_dump(mode="json")
    changes.pop("criteria", None)

    for field_name, value in changes.items():
        if value is None and field_name in ("name", "enabled", "media_type", "action_type"):
            continue
        if hasattr(value, "value"):
            value = value.value
        setattr(rule, field_name, value)

    await db.flush()
    await db.refresh(rule)
    logger.info("Updated rule %s", rule.id)
    return rule


async def toggle_rule(db: AsyncSession, rule_id: int) -> MaintenanceRule:
    rule = await get_rule(db, rule_id)
    rule.enabled = not rule.enabled
    await db.flush()
    await db.refresh(rule)
    logger.info("Rule %s %s", rule.id, "enabled" if rule.enabled else "disabled")
    return rule


async def delete_rule(db: AsyncSession, rule_id: int) -> None:
    """Delete a rule with its scans and candidates. Rejected while a scan is active."""
    rule = await get_rule(db, rule_id)
    active_id = await db.scalar(
        select(MaintenanceScan.id).where(
            MaintenanceScan.rule_id == rule_id,
            MaintenanceScan.status.in_([s.value for s in ACTIVE_SCAN_STATUSES]),
        )
    )
    if active_id is not None:
        raise ConflictError(f"Rule {rule_id} has an active scan ({active_id})")

    scan_ids = select(MaintenanceScan.id).where(MaintenanceScan.rule_id == rule_id)
    await db.execute(
        delete(MaintenanceCandidate).where(MaintenanceCandidate.scan_id.in_(scan_ids))
    )
    await db.execute(delete(MaintenanceScan).where(MaintenanceScan.rule_id == rule_id))
    await db.execute(delete(MaintenanceRule).where(MaintenanceRule.id == rule.id))
    logger.info("Deleted rule %s", rule_id)


async def build_rule_response(db: AsyncSession, rule: MaintenanceRule) -> RuleResponse:
    """Rule with its complexity metrics, scan count and latest scan."""
    criteria = parse_criteria(rule.criteria)
    scan_count = await db.scalar(
        select(func.count(MaintenanceScan.id)).where(MaintenanceScan.rule_id == rule.id)
    )
    last_scan = await db.scalar(
        select(MaintenanceScan)
        .where(MaintenanceScan.rule_id == rule.id)
        .order_by(MaintenanceScan.created_at.desc(), MaintenanceScan.id.desc())
        .limit(1)
    )
    return RuleResponse(
        id=rule.id,
        name=rule.name,
        description=rule.description,
        enabled=rule.enabled,
        media_type=rule.media_type,
        criteria=criteria,
        action_type=rule.action_type,
        schedule=rule.schedule,
        last_run_at=rule.last_run_at,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
        complexity=criteria_complexity(criteria),
        scan_count=scan_count or 0,
        last_scan=ScanSummary.model_validate(last_scan) if last_scan else None,
    )
