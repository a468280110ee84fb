"""Scan API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.api.auth import require_admin
from shelfwarden.api.dependencies import get_scan_executor
from shelfwarden.core.scanner import ScanExecutor, get_scan
from shelfwarden.models.database import get_db
from shelfwarden.models.entities import User
from shelfwarden.models.schemas import ScanDetailResponse, ScanResponse

router = APIRouter()


@router.get("/{scan_id}", response_model=ScanDetailResponse)
async def get_scan_detail(
    scan_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    executor: Annotated[ScanExecutor, Depends(get_scan_executor)],
):
    """Get a scan, with live progress while it runs."""
    return await get_scan(db, scan_id, state=executor.state)


@router.post("/{scan_id}/cancel", response_model=ScanResponse)
async def cancel_scan(
    scan_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    executor: Annotated[ScanExecutor, Depends(get_scan_executor)],
):
    """Cancel a pending or running scan."""
    return await executor.cancel_scan(scan_id)
