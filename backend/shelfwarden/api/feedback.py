"""User feedback API endpoints: marks, watch intents and summaries."""

from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.api.auth import get_current_user, require_admin
from shelfwarden.core import feedback
from shelfwarden.core.feedback import FeedbackFilters
from shelfwarden.models.database import get_db
from shelfwarden.models.entities import User
from shelfwarden.models.schemas import (
    MarkCreate,
    MarkResponse,
    MarkType,
    MediaFeedbackSummary,
    MediaMarkDetails,
    MediaType,
    WatchIntentResponse,
    WatchIntentUpsert,
)

router = APIRouter()


@router.get("/summary", response_model=list[MediaFeedbackSummary])
async def get_user_feedback_summary(
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    mark_type: Optional[MarkType] = None,
    media_type: Optional[MediaType] = None,
    min_user_count: int = Query(0, ge=0),
    sort_by: Literal["deletionScore", "userCount", "title"] = "deletionScore",
    sort_order: Literal["asc", "desc"] = "desc",
):
    """Per-item feedback summaries, highest deletion score first by default."""
    filters = FeedbackFilters(
        mark_type=mark_type,
        media_type=media_type,
        min_user_count=min_user_count,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return await feedback.list_summaries(db, filters)


@router.get("/media/{media_item_key}", response_model=MediaMarkDetails)
async def get_media_mark_details(
    media_item_key: str,
    current_user: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Marks, watch intents and summary for one media item."""
    return await feedback.get_media_mark_details(db, media_item_key)


@router.post("/marks", response_model=MarkResponse, status_code=status.HTTP_201_CREATED)
async def create_mark(
    data: MarkCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Record a mark by the current user."""
    return await feedback.create_mark(db, current_user, data)


@router.delete("/marks/{mark_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_mark(
    mark_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await feedback.delete_mark(db, current_user, mark_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/intents", response_model=WatchIntentResponse)
async def upsert_watch_intent(
    data: WatchIntentUpsert,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create or update the current user's watch intent for an item."""
    return await feedback.upsert_intent(db, current_user, data)
