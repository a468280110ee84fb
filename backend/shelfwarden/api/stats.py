"""Maintenance dashboard statistics endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.api.auth import require_admin
from shelfwarden.core.stats import get_maintenance_stats
from shelfwarden.models.database import get_db
from shelfwarden.models.entities import User
from shelfwarden.models.schemas import MaintenanceStats

router = APIRouter()


@router.get("", response_model=MaintenanceStats)
async def get_stats(
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get maintenance dashboard statistics."""
    return await get_maintenance_stats(db)
