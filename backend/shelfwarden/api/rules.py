"""Maintenance rule API endpoints."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.api.auth import require_admin
from shelfwarden.api.dependencies import get_scan_executor
from shelfwarden.core import rule_store
from shelfwarden.core.criteria import criteria_complexity, parse_criteria, validate_criteria
from shelfwarden.core.errors import RuleValidationError
from shelfwarden.core.field_registry import FieldDescriptor, ValueType, list_fields
from shelfwarden.core.scanner import ScanExecutor, list_scans
from shelfwarden.models.database import get_db
from shelfwarden.models.entities import User
from shelfwarden.models.schemas import (
    CriteriaValidationRequest,
    CriteriaValidationResponse,
    FieldDescriptorResponse,
    MediaType,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
    ScanResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _field_response(descriptor: FieldDescriptor) -> FieldDescriptorResponse:
    return FieldDescriptorResponse(
        name=descriptor.name,
        label=descriptor.label,
        description=descriptor.description,
        value_type=descriptor.value_type.value,
        category=descriptor.category,
        media_types=list(descriptor.media_types),
        operators=sorted(descriptor.operators),
        units=list(descriptor.units),
        unit_required=descriptor.unit_required,
        enum_values=(
            list(descriptor.ranks)
            if descriptor.value_type == ValueType.ENUM
            else list(descriptor.suggestions)
        ),
        min_value=descriptor.min_value,
        max_value=descriptor.max_value,
    )


@router.get("/fields", response_model=list[FieldDescriptorResponse])
async def get_fields(
    current_user: Annotated[User, Depends(require_admin)],
    media_type: MediaType = Query(MediaType.MOVIE),
):
    """List the fields a rule for ``media_type`` may test."""
    return [_field_response(d) for d in list_fields(media_type)]


@router.get("", response_model=list[RuleResponse])
async def get_rules(
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    media_type: Optional[MediaType] = None,
    enabled: Optional[bool] = None,
):
    """List maintenance rules, newest first."""
    rules = await rule_store.list_rules(db, media_type=media_type, enabled=enabled)
    return [await rule_store.build_rule_response(db, rule) for rule in rules]


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: RuleCreate,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a maintenance rule."""
    rule = await rule_store.create_rule(db, data)
    return await rule_store.build_rule_response(db, rule)


@router.post("/validate", response_model=CriteriaValidationResponse)
async def validate_rule_criteria(
    data: CriteriaValidationRequest,
    current_user: Annotated[User, Depends(require_admin)],
):
    """Check criteria without saving them."""
    try:
        criteria = parse_criteria(data.criteria, reject_empty_legacy=True)
    except RuleValidationError as exc:
        return CriteriaValidationResponse(valid=False, errors=exc.errors)

    errors = validate_criteria(criteria, data.media_type)
    return CriteriaValidationResponse(
        valid=not errors,
        errors=errors,
        criteria=criteria,
        complexity=criteria_complexity(criteria),
    )


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get a maintenance rule."""
    rule = await rule_store.get_rule(db, rule_id)
    return await rule_store.build_rule_response(db, rule)


@router.patch("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: int,
    data: RuleUpdate,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Partially update a maintenance rule."""
    rule = await rule_store.update_rule(db, rule_id, data)
    return await rule_store.build_rule_response(db, rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete a rule together with its scans and candidates."""
    await rule_store.delete_rule(db, rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{rule_id}/toggle", response_model=RuleResponse)
async def toggle_rule(
    rule_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Flip a rule between enabled and disabled."""
    rule = await rule_store.toggle_rule(db, rule_id)
    return await rule_store.build_rule_response(db, rule)


@router.post(
    "/{rule_id}/scan",
    response_model=ScanResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_manual_scan(
    rule_id: int,
    background_tasks: BackgroundTasks,
    current_user: Annotated[User, Depends(require_admin)],
    executor: Annotated[ScanExecutor, Depends(get_scan_executor)],
):
    """Start a scan of the rule; returns once the scan is recorded as PENDING."""
    scan = await executor.start_scan(rule_id)
    background_tasks.add_task(executor.execute_scan, scan.id)
    logger.info("User %s triggered scan %s for rule %s", current_user.id, scan.id, rule_id)
    return scan


@router.get("/{rule_id}/scans", response_model=list[ScanResponse])
async def get_rule_scans(
    rule_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(50, ge=1, le=500),
):
    """Scans of a rule, newest first."""
    return await list_scans(db, rule_id, limit=limit)
