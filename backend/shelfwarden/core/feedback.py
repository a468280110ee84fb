"""User feedback aggregation: marks and watch intents to deletion scores."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwarden.core.errors import NotFoundError
from shelfwarden.models.entities import User, UserMediaMark, UserWatchIntent
from shelfwarden.models.schemas import (
    FeedbackTier,
    IntentType,
    MarkCreate,
    MarkDetail,
    MarkType,
    MediaFeedbackSummary,
    MediaMarkDetails,
    MediaType,
    WatchIntentResponse,
    WatchIntentUpsert,
)

logger = logging.getLogger(__name__)

MARK_WEIGHTS: dict[MarkType, int] = {
    MarkType.NOT_INTERESTED: 5,
    MarkType.POOR_QUALITY: 4,
    MarkType.WRONG_VERSION: 3,
    MarkType.REWATCH_CANDIDATE: -3,
    MarkType.FINISHED_WATCHING: 0,
    MarkType.KEEP_FOREVER: 0,
}

HIGH_PRIORITY_SCORE = 15
REVIEW_NEEDED_SCORE = 8


def score_tier(deletion_score: Optional[int]) -> FeedbackTier:
    """Tier for a deletion score; None is the never-delete sentinel."""
    if deletion_score is None:
        return FeedbackTier.KEEP
    if deletion_score >= HIGH_PRIORITY_SCORE:
        return FeedbackTier.HIGH_PRIORITY
    if deletion_score >= REVIEW_NEEDED_SCORE:
        return FeedbackTier.REVIEW_NEEDED
    return FeedbackTier.KEEP


def _recency(mark: UserMediaMark) -> tuple[float, int]:
    created = mark.created_at.timestamp() if mark.created_at else 0.0
    return created, mark.id or 0


def summarize_marks(media_item_key: str, marks: Iterable[UserMediaMark]) -> MediaFeedbackSummary:
    """
    Derive the feedback summary for one item from its marks.

    Pure: the same marks always give the same summary, whatever their order.
    A KEEP_FOREVER mark from anyone overrides the score to None.
    """
    counts = {mark_type: 0 for mark_type in MarkType}
    users: set[int] = set()
    latest: Optional[UserMediaMark] = None

    for mark in marks:
        counts[MarkType(mark.mark_type)] += 1
        users.add(mark.user_id)
        if latest is None or _recency(mark) >= _recency(latest):
            latest = mark

    raw_score = sum(MARK_WEIGHTS[mark_type] * count for mark_type, count in counts.items())
    never_delete = counts[MarkType.KEEP_FOREVER] > 0
    deletion_score = None if never_delete else raw_score

    return MediaFeedbackSummary(
        media_item_key=media_item_key,
        media_type=latest.media_type if latest else None,
        title=latest.title if latest else None,
        mark_counts=counts,
        unique_user_count=len(users),
        raw_score=raw_score,
        deletion_score=deletion_score,
        never_delete=never_delete,
        tier=score_tier(deletion_score),
    )


async def summarize(db: AsyncSession, media_item_key: str) -> MediaFeedbackSummary:
    result = await db.execute(
        select(UserMediaMark).where(UserMediaMark.media_item_key == media_item_key)
    )
    return summarize_marks(media_item_key, result.scalars().all())


@dataclass
class FeedbackFilters:
    mark_type: Optional[MarkType] = None
    media_type: Optional[MediaType] = None
    min_user_count: int = 0
    sort_by: Literal["deletionScore", "userCount", "title"] = "deletionScore"
    sort_order: Literal["asc", "desc"] = "desc"


def _sort_key(sort_by: str):
    if sort_by == "userCount":
        return lambda s: (s.unique_user_count, s.media_item_key)
    if sort_by == "title":
        return lambda s: ((s.title or "").lower(), s.media_item_key)
    # Never-delete items sort below every numeric score.
    return lambda s: (
        s.deletion_score is not None,
        s.deletion_score if s.deletion_score is not None else 0,
        s.media_item_key,
    )


async def list_summaries(
    db: AsyncSession, filters: Optional[FeedbackFilters] = None
) -> list[MediaFeedbackSummary]:
    """Summaries of every marked item, filtered and sorted."""
    filters = filters or FeedbackFilters()
    query = select(UserMediaMark)
    if filters.media_type is not None:
        query = query.where(UserMediaMark.media_type == filters.media_type.value)
    result = await db.execute(query)

    marks_by_item: dict[str, list[UserMediaMark]] = {}
    for mark in result.scalars().all():
        marks_by_item.setdefault(mark.media_item_key, []).append(mark)

    summaries = [summarize_marks(key, marks) for key, marks in marks_by_item.items()]
    if filters.mark_type is not None:
        summaries = [s for s in summaries if s.mark_counts[filters.mark_type] > 0]
    if filters.min_user_count:
        summaries = [s for s in summaries if s.unique_user_count >= filters.min_user_count]

    summaries.sort(key=_sort_key(filters.sort_by), reverse=filters.sort_order == "desc")
    return summaries


async def get_media_mark_details(db: AsyncSession, media_item_key: str) -> MediaMarkDetails:
    result = await db.execute(
        select(UserMediaMark, User.username)
        .join(User, UserMediaMark.user_id == User.id)
        .where(UserMediaMark.media_item_key == media_item_key)
        .order_by(UserMediaMark.created_at.desc(), UserMediaMark.id.desc())
    )
    rows = result.all()
    intents = (
        await db.scalars(
            select(UserWatchIntent)
            .where(UserWatchIntent.media_item_key == media_item_key)
            .order_by(UserWatchIntent.priority.desc(), UserWatchIntent.id)
        )
    ).all()
    if not rows and not intents:
        raise NotFoundError(f"No feedback recorded for media item {media_item_key}")

    marks = []
    for mark, username in rows:
        detail = MarkDetail.model_validate(mark)
        detail.username = username
        marks.append(detail)

    return MediaMarkDetails(
        summary=summarize_marks(media_item_key, [mark for mark, _ in rows]),
        marks=marks,
        intents=[WatchIntentResponse.model_validate(intent) for intent in intents],
    )


async def create_mark(db: AsyncSession, user: User, data: MarkCreate) -> UserMediaMark:
    """Append a mark; earlier marks by the same user are kept."""
    mark = UserMediaMark(
        user_id=user.id,
        media_item_key=data.media_item_key,
        media_type=data.media_type.value,
        title=data.title,
        year=data.year,
        mark_type=data.mark_type.value,
        note=data.note,
        marked_via=data.marked_via,
    )
    db.add(mark)
    await db.flush()
    await db.refresh(mark)
    logger.info(
        "User %s marked %s as %s", user.id, data.media_item_key, data.mark_type.value
    )
    return mark


async def delete_mark(db: AsyncSession, user: User, mark_id: int) -> None:
    """Users remove their own marks; admins may remove any mark."""
    mark = await db.get(UserMediaMark, mark_id)
    if mark is None or (mark.user_id != user.id and not user.is_admin):
        raise NotFoundError(f"Mark {mark_id} not found")
    await db.delete(mark)
    await db.flush()


async def upsert_intent(
    db: AsyncSession, user: User, data: WatchIntentUpsert
) -> UserWatchIntent:
    """Create or update the single intent a user holds for an item."""
    intent = await db.scalar(
        select(UserWatchIntent).where(
            UserWatchIntent.user_id == user.id,
            UserWatchIntent.media_item_key == data.media_item_key,
        )
    )
    if intent is None:
        intent = UserWatchIntent(user_id=user.id, media_item_key=data.media_item_key)
        db.add(intent)

    intent.media_type = data.media_type.value
    intent.title = data.title
    intent.priority = data.priority
    intent.current_season = data.current_season
    intent.current_episode = data.current_episode

    if data.intent_type == IntentType.COMPLETED:
        if intent.intent_type != IntentType.COMPLETED.value or intent.completed_at is None:
            intent.completed_at = datetime.now(timezone.utc)
    else:
        intent.completed_at = None
    intent.intent_type = data.intent_type.value

    await db.flush()
    await db.refresh(intent)
    return intent
