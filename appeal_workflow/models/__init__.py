"""SQLAlchemy ORM Models for the appeal workflow."""

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow
from .models import (
    # Enums
    AdminAction,
    AppealStatus,
    NotificationStatus,
    NotificationType,
    PresidentDecision,
    ReportStatus,
    StageKey,
    UserRole,
    # Constants
    DECISION_STAGE,
    TERMINAL_STAGE,
    TOTAL_STAGES,
    empty_stage_timestamps,
    # Models
    Appeal,
    NotificationLog,
    Report,
    User,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    # Enums
    "AppealStatus",
    "StageKey",
    "AdminAction",
    "PresidentDecision",
    "ReportStatus",
    "UserRole",
    "NotificationType",
    "NotificationStatus",
    # Constants
    "TOTAL_STAGES",
    "TERMINAL_STAGE",
    "DECISION_STAGE",
    "empty_stage_timestamps",
    # Models
    "Appeal",
    "Report",
    "User",
    "NotificationLog",
]
