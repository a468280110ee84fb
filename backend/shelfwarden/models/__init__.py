"""Database models package."""

from shelfwarden.models.database import get_db, init_db
from shelfwarden.models.entities import (
    Base,
    User,
    MaintenanceRule,
    MaintenanceScan,
    MaintenanceCandidate,
    MaintenanceDeletionLog,
    UserMediaMark,
    UserWatchIntent,
)

__all__ = [
    "get_db",
    "init_db",
    "Base",
    "User",
    "MaintenanceRule",
    "MaintenanceScan",
    "MaintenanceCandidate",
    "MaintenanceDeletionLog",
    "UserMediaMark",
    "UserWatchIntent",
]
