"""Pydantic schemas for API request/response models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def generate_node_id() -> str:
    """Short random id for criteria nodes."""
    return uuid.uuid4().hex[:9]


# ============== Enums ==============


class MediaType(str, Enum):
    """Catalog item kinds a rule can target."""

    MOVIE = "MOVIE"
    TV_SERIES = "TV_SERIES"
    EPISODE = "EPISODE"


class ActionType(str, Enum):
    FLAG_FOR_REVIEW = "FLAG_FOR_REVIEW"
    AUTO_DELETE = "AUTO_DELETE"


class ScanStatusType(str, Enum):
    """Persisted scan lifecycle states."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_SCAN_STATUSES = (ScanStatusType.PENDING, ScanStatusType.RUNNING)
TERMINAL_SCAN_STATUSES = (
    ScanStatusType.COMPLETED,
    ScanStatusType.FAILED,
    ScanStatusType.CANCELLED,
)


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DELETED = "DELETED"


class MarkType(str, Enum):
    FINISHED_WATCHING = "FINISHED_WATCHING"
    NOT_INTERESTED = "NOT_INTERESTED"
    KEEP_FOREVER = "KEEP_FOREVER"
    REWATCH_CANDIDATE = "REWATCH_CANDIDATE"
    POOR_QUALITY = "POOR_QUALITY"
    WRONG_VERSION = "WRONG_VERSION"


class IntentType(str, Enum):
    PLAN_TO_WATCH = "PLAN_TO_WATCH"
    WATCHING = "WATCHING"
    COMPLETED = "COMPLETED"
    DROPPED = "DROPPED"
    ON_HOLD = "ON_HOLD"


class FeedbackTier(str, Enum):
    """Review tier derived from the deletion score."""

    HIGH_PRIORITY = "high_priority"
    REVIEW_NEEDED = "review_needed"
    KEEP = "keep"


# ============== Auth Schemas ==============


class UserResponse(BaseModel):
    """User information response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    is_admin: bool
    created_at: datetime
    last_login: datetime


# ============== Criteria Schemas ==============

ConditionValue = Union[bool, int, float, str, list[Union[str, int, float]], None]


class Condition(BaseModel):
    """Leaf predicate: ``field operator value [value_unit]``."""

    type: Literal["condition"] = "condition"
    id: str = Field(default_factory=generate_node_id)
    field: str
    operator: str
    value: ConditionValue = None
    value_unit: Optional[str] = None


class ConditionGroup(BaseModel):
    """AND/OR node over an ordered list of conditions and nested groups."""

    type: Literal["group"] = "group"
    id: str = Field(default_factory=generate_node_id)
    operator: Literal["AND", "OR"] = "AND"
    conditions: list[CriteriaNode] = Field(default_factory=list)


CriteriaNode = Annotated[Union[Condition, ConditionGroup], Field(discriminator="type")]

ConditionGroup.model_rebuild()


class CriteriaComplexity(BaseModel):
    condition_count: int
    group_count: int
    max_depth: int
    complexity: Literal["simple", "moderate", "complex"]


# ============== Field Registry Schemas ==============


class FieldDescriptorResponse(BaseModel):
    """Registry entry exposed to rule builders."""

    name: str
    label: str
    description: Optional[str] = None
    value_type: str
    category: str
    media_types: list[MediaType]
    operators: list[str]
    units: list[str] = []
    unit_required: bool = False
    enum_values: list[str] = []
    min_value: Optional[float] = None
    max_value: Optional[float] = None


# ============== Rule Schemas ==============


class RuleCreate(BaseModel):
    """Create a maintenance rule."""

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    enabled: bool = True
    media_type: MediaType
    criteria: dict
    action_type: ActionType = ActionType.FLAG_FOR_REVIEW
    schedule: Optional[str] = Field(default=None, max_length=100)


class RuleUpdate(BaseModel):
    """Partial update of a maintenance rule."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    enabled: Optional[bool] = None
    media_type: Optional[MediaType] = None
    criteria: Optional[dict] = None
    action_type: Optional[ActionType] = None
    schedule: Optional[str] = Field(default=None, max_length=100)


class CriteriaValidationRequest(BaseModel):
    media_type: MediaType
    criteria: dict


class CriteriaValidationResponse(BaseModel):
    valid: bool
    errors: list[str] = []
    criteria: Optional[ConditionGroup] = None
    complexity: Optional[CriteriaComplexity] = None


class ScanSummary(BaseModel):
    """Compact scan entry embedded in rule responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: ScanStatusType
    items_scanned: int
    items_flagged: int
    completed_at: Optional[datetime] = None


class RuleResponse(BaseModel):
    """Maintenance rule response."""

    id: int
    name: str
    description: Optional[str] = None
    enabled: bool
    media_type: MediaType
    criteria: ConditionGroup
    action_type: ActionType
    schedule: Optional[str] = None
    last_run_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    complexity: CriteriaComplexity
    scan_count: int = 0
    last_scan: Optional[ScanSummary] = None


# ============== Scan Schemas ==============


class ScanResponse(BaseModel):
    """Persisted scan record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    rule_id: int
    status: ScanStatusType
    items_scanned: int
    items_flagged: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    cancel_requested: bool = False
    created_at: datetime


class ScanProgress(BaseModel):
    """Live progress of a scan running in this process."""

    is_running: bool
    scan_id: Optional[int] = None
    pages_fetched: int = 0
    items_scanned: int = 0
    items_flagged: int = 0
    started_at: Optional[datetime] = None
    cancel_requested: bool = False


class ScanDetailResponse(ScanResponse):
    progress: Optional[ScanProgress] = None


# ============== Candidate Schemas ==============


class CandidateResponse(BaseModel):
    """Maintenance candidate."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    scan_id: int
    rule_id: Optional[int] = None
    rule_name: Optional[str] = None
    media_type: MediaType
    media_item_key: str
    title: str
    year: Optional[int] = None
    file_size: Optional[int] = None
    play_count: int = 0
    last_watched_at: Optional[datetime] = None
    added_at: Optional[datetime] = None
    review_status: ReviewStatus
    flagged_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_note: Optional[str] = None
    deleted_at: Optional[datetime] = None
    deletion_error: Optional[str] = None


class CandidateListResponse(BaseModel):
    """Paginated candidate list."""

    items: list[CandidateResponse]
    total: int
    page: int
    page_size: int
    pages: int


class ReviewRequest(BaseModel):
    note: Optional[str] = Field(default=None, max_length=1000)


class BulkReviewRequest(BaseModel):
    candidate_ids: list[int] = Field(min_length=1, max_length=500)
    note: Optional[str] = Field(default=None, max_length=1000)


class CandidateActionResult(BaseModel):
    """Outcome of one candidate in a bulk operation."""

    candidate_id: int
    success: bool
    review_status: Optional[ReviewStatus] = None
    error: Optional[str] = None


class BulkReviewResponse(BaseModel):
    succeeded: int
    failed: int
    results: list[CandidateActionResult]


class DeletionLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    candidate_id: Optional[int] = None
    media_type: MediaType
    media_item_key: str
    title: str
    file_size: Optional[int] = None
    deleted_by: str
    rule_name: Optional[str] = None
    deleted_at: datetime


class DeletionLogListResponse(BaseModel):
    items: list[DeletionLogResponse]
    total: int
    page: int
    page_size: int
    pages: int


# ============== Feedback Schemas ==============


class MarkCreate(BaseModel):
    """Record a user's mark on a media item."""

    media_item_key: str = Field(min_length=1, max_length=255)
    media_type: MediaType
    title: str = Field(min_length=1, max_length=512)
    year: Optional[int] = None
    mark_type: MarkType
    note: Optional[str] = Field(default=None, max_length=1000)
    marked_via: str = Field(default="web", max_length=50)


class MarkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    media_item_key: str
    media_type: MediaType
    title: str
    year: Optional[int] = None
    mark_type: MarkType
    note: Optional[str] = None
    marked_via: str
    created_at: datetime


class MarkDetail(MarkResponse):
    username: Optional[str] = None


class WatchIntentUpsert(BaseModel):
    media_item_key: str = Field(min_length=1, max_length=255)
    media_type: MediaType
    title: str = Field(min_length=1, max_length=512)
    intent_type: IntentType
    priority: int = 0
    current_season: Optional[int] = Field(default=None, ge=0)
    current_episode: Optional[int] = Field(default=None, ge=0)


class WatchIntentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    media_item_key: str
    media_type: MediaType
    title: str
    intent_type: IntentType
    priority: int
    current_season: Optional[int] = None
    current_episode: Optional[int] = None
    added_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class MediaFeedbackSummary(BaseModel):
    """Feedback aggregate for one media item, derived from the mark log."""

    media_item_key: str
    media_type: Optional[MediaType] = None
    title: Optional[str] = None
    mark_counts: dict[MarkType, int]
    unique_user_count: int
    raw_score: int
    deletion_score: Optional[int]
    never_delete: bool
    tier: FeedbackTier


class MediaMarkDetails(BaseModel):
    summary: MediaFeedbackSummary
    marks: list[MarkDetail]
    intents: list[WatchIntentResponse]


# ============== Stats Schemas ==============


class RuleStats(BaseModel):
    total: int
    enabled: int
    disabled: int


class MaintenanceStats(BaseModel):
    """Dashboard statistics."""

    rules: RuleStats
    candidates_by_status: dict[ReviewStatus, int]
    total_candidates: int
    recent_scans: list[ScanResponse]
    total_deletions: int
    potential_space_savings: int
