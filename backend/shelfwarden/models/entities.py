"""SQLAlchemy ORM entity models."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


# Scans in these states block another scan of the same rule.
_ACTIVE_SCAN_CLAUSE = text("status IN ('PENDING', 'RUNNING')")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class User(Base):
    """Media server user known to the maintenance engine."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plex_user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    last_login: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    marks: Mapped[list["UserMediaMark"]] = relationship(
        "UserMediaMark", back_populates="user", cascade="all, delete-orphan"
    )
    intents: Mapped[list["UserWatchIntent"]] = relationship(
        "UserWatchIntent", back_populates="user", cascade="all, delete-orphan"
    )


class MaintenanceRule(Base):
    """Declarative cleanup rule evaluated against the catalog."""

    __tablename__ = "maintenance_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)  # MOVIE, TV_SERIES, EPISODE
    criteria: Mapped[dict] = mapped_column(JSON, nullable=False)
    action_type: Mapped[str] = mapped_column(
        String(30), default="FLAG_FOR_REVIEW", nullable=False
    )
    schedule: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # cron expression
    last_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    scans: Mapped[list["MaintenanceScan"]] = relationship(
        "MaintenanceScan", back_populates="rule", cascade="all, delete-orphan"
    )


class MaintenanceScan(Base):
    """One execution of a rule against the catalog."""

    __tablename__ = "maintenance_scans"
    __table_args__ = (
        Index(
            "uq_maintenance_scans_active_rule",
            "rule_id",
            unique=True,
            sqlite_where=_ACTIVE_SCAN_CLAUSE,
            postgresql_where=_ACTIVE_SCAN_CLAUSE,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("maintenance_rules.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False)
    items_scanned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_flagged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Set by any process; the process running the scan stops at its next page.
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Relationships
    rule: Mapped["MaintenanceRule"] = relationship(
        "MaintenanceRule", back_populates="scans"
    )
    candidates: Mapped[list["MaintenanceCandidate"]] = relationship(
        "MaintenanceCandidate", back_populates="scan", cascade="all, delete-orphan"
    )


class MaintenanceCandidate(Base):
    """Catalog item flagged by a scan."""

    __tablename__ = "maintenance_candidates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("maintenance_scans.id", ondelete="CASCADE"), nullable=False
    )
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    media_item_key: Mapped[str] = mapped_column(String(255), nullable=False)  # Plex rating key
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    play_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_watched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    added_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    matched_rule: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    review_status: Mapped[str] = mapped_column(
        String(20), default="PENDING", nullable=False
    )
    flagged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    review_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deletion_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Claim held while the deletion executor runs for this candidate.
    deletion_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    scan: Mapped["MaintenanceScan"] = relationship(
        "MaintenanceScan", back_populates="candidates"
    )


class MaintenanceDeletionLog(Base):
    """Audit entry written after a confirmed deletion."""

    __tablename__ = "maintenance_deletion_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("maintenance_candidates.id", ondelete="SET NULL"), nullable=True
    )
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    media_item_key: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    deleted_by: Mapped[str] = mapped_column(String(255), nullable=False)
    rule_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    deleted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class UserMediaMark(Base):
    """Append-only user feedback mark; several per (user, item) are allowed."""

    __tablename__ = "user_media_marks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    media_item_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mark_type: Mapped[str] = mapped_column(String(30), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    marked_via: Mapped[str] = mapped_column(String(50), default="web", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="marks")


class UserWatchIntent(Base):
    """Evolving watch intent, one row per (user, item)."""

    __tablename__ = "user_watch_intents"
    __table_args__ = (
        UniqueConstraint("user_id", "media_item_key", name="uq_user_watch_intents_user_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    media_item_key: Mapped[str] = mapped_column(String(255), nullable=False)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    intent_type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_season: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_episode: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="intents")
