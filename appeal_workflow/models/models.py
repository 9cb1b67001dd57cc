"""SQLAlchemy ORM Models for the appeal workflow.

The appeal row is the single source of truth for an appeal's progress.
Reports and users are owned by other parts of the campus platform; the
tables here back the default SQL implementations of the Report Gateway
and Role Directory.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class AppealStatus(str, PyEnum):
    SUBMITTED = "submitted"                    # Step 1: letter of appeal submitted
    UNDER_ADMIN_REVIEW = "under_admin_review"  # Step 2: planning & quality officer
    DOCUMENTED = "documented"                  # Step 3: document control officer
    WITH_DEPARTMENT = "with_department"        # Steps 4-5: concerned head of office
    WITH_PRESIDENT = "with_president"          # Step 6: school president
    APPROVED = "approved"                      # Step 6: approved
    DISAPPROVED = "disapproved"                # Step 6: disapproved
    COMPLETED = "completed"                    # Step 10: presented to appellant


class StageKey(str, PyEnum):
    """Keys of the stage timestamp map, in stage order."""
    SUBMITTED = "step1_submitted"
    ADMIN_REVIEW = "step2_adminReview"
    DOCUMENTED = "step3_documented"
    FORWARDED_TO_DEPT = "step4_forwardedToDept"
    DEPT_REVIEW = "step5_deptReview"
    PRESIDENT_DECISION = "step6_presidentDecision"
    PROCESSED = "step7_processed"
    COMPLETED = "step10_completed"


class AdminAction(str, PyEnum):
    FORWARD = "forward"
    HOLD = "hold"  # Review recorded, documentation done separately


class PresidentDecision(str, PyEnum):
    APPROVE = "approve"
    DISAPPROVE = "disapprove"


class ReportStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class UserRole(str, PyEnum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    DEPARTMENT_HEAD = "department_head"
    PRESIDENT = "president"


class NotificationType(str, PyEnum):
    APPEAL_SUBMITTED = "appeal_submitted"
    NEW_APPEAL = "new_appeal"
    APPEAL_DEPARTMENT = "appeal_department"
    APPEAL_APPROVED = "appeal_approved"
    APPEAL_DISAPPROVED = "appeal_disapproved"
    APPEAL_STAGE_OVERDUE = "appeal_stage_overdue"
    APPEAL_OVERDUE = "appeal_overdue"
    APPEAL_DEADLINE_APPROACHING = "appeal_deadline_approaching"


class NotificationStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


TOTAL_STAGES = 10
TERMINAL_STAGE = 10
DECISION_STAGE = 6


def empty_stage_timestamps() -> dict[str, str | None]:
    return {key.value: None for key in StageKey}


def _values(enum_cls):
    return [e.value for e in enum_cls]


# =============================================================================
# APPEAL
# =============================================================================


class Appeal(Base, UUIDMixin, TimestampMixin):
    """A user's dispute of a rejected report, tracked through ten stages."""

    __tablename__ = "appeals"

    report_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), default="Unknown")
    user_email: Mapped[str] = mapped_column(String(255), default="")
    report_title: Mapped[str] = mapped_column(String(500), default="Untitled Report")

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list] = mapped_column(JSON, default=list)

    status: Mapped[AppealStatus] = mapped_column(
        Enum(AppealStatus, name="appeal_status", values_callable=_values),
        default=AppealStatus.SUBMITTED,
        nullable=False,
    )
    current_stage: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_stages: Mapped[int] = mapped_column(Integer, default=TOTAL_STAGES, nullable=False)

    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    deadline: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    stage_timestamps: Mapped[dict] = mapped_column(JSON, default=empty_stage_timestamps)

    # Reviewers, each set once by the acting stage
    assigned_admin: Mapped[str | None] = mapped_column(String(128))
    documented_by: Mapped[str | None] = mapped_column(String(128))
    assigned_dept_head: Mapped[str | None] = mapped_column(String(128))
    assigned_president: Mapped[str | None] = mapped_column(String(128))

    admin_action: Mapped[AdminAction | None] = mapped_column(
        Enum(AdminAction, name="admin_action", values_callable=_values)
    )
    admin_notes: Mapped[str] = mapped_column(Text, default="")
    dept_proposal: Mapped[str] = mapped_column(Text, default="")
    president_decision: Mapped[str] = mapped_column(String(20), default="")
    final_decision: Mapped[str] = mapped_column(Text, default="")

    report_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    # Equals report_id until the appeal completes; unique per report
    active_report_id: Mapped[str | None] = mapped_column(String(128), unique=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    notifications: Mapped[list["NotificationLog"]] = relationship(
        back_populates="appeal"
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint(
            "current_stage >= 1 AND current_stage <= 10", name="stage_range"
        ),
        CheckConstraint(
            "status NOT IN ('approved', 'disapproved') OR current_stage = 6",
            name="decision_at_stage_6",
        ),
        CheckConstraint(
            "status <> 'completed' OR current_stage = 10",
            name="completed_at_stage_10",
        ),
        Index("idx_appeals_user_submitted", "user_id", "submitted_at"),
        Index("idx_appeals_status_submitted", "status", "submitted_at"),
        Index("idx_appeals_report", "report_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status == AppealStatus.COMPLETED

    def stage_timestamp(self, key: StageKey) -> datetime | None:
        raw = (self.stage_timestamps or {}).get(key.value)
        return datetime.fromisoformat(raw) if raw else None

    def stamp_stage(self, key: StageKey, when: datetime) -> bool:
        """Record when a stage was entered. Existing entries are never overwritten."""
        current = dict(self.stage_timestamps or empty_stage_timestamps())
        if current.get(key.value):
            return False
        current[key.value] = when.isoformat()
        # Reassign so the JSON column is flagged dirty
        self.stage_timestamps = current
        return True

    def __repr__(self) -> str:
        return (
            f"<Appeal {self.id} report={self.report_id} "
            f"status={self.status.value if self.status else None} stage={self.current_stage}>"
        )


# =============================================================================
# REPORTS & USERS (default collaborator storage)
# =============================================================================


class Report(Base, TimestampMixin):
    """Campus incident report, as far as the appeal workflow needs to see it."""

    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), default="Untitled Report")
    status: Mapped[str] = mapped_column(
        String(30), default=ReportStatus.PENDING.value, nullable=False
    )
    appeal_status: Mapped[str | None] = mapped_column(String(30))
    appeal_id: Mapped[str | None] = mapped_column(String(64))
    can_appeal: Mapped[bool] = mapped_column(Boolean, default=True)
    appealed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    restored_by_appeal: Mapped[bool] = mapped_column(Boolean, default=False)
    restored_at: Mapped[datetime | None] = mapped_column(UTCDateTime())


class User(Base):
    """Campus user with a single role."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[str] = mapped_column(
        String(50), default=UserRole.USER.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )

    __table_args__ = (Index("idx_users_role", "role"),)


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationLog(Base, UUIDMixin):
    """Queued one-way message for a user; delivered by NotificationService."""

    __tablename__ = "notification_log"

    recipient_id: Mapped[str] = mapped_column(String(128), nullable=False)
    appeal_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("appeals.id"), nullable=True
    )
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notification_status", values_callable=_values),
        default=NotificationStatus.PENDING,
    )
    channel: Mapped[str] = mapped_column(
        String(50), default="in_app",
        comment="Delivery channel: in_app, webhook"
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, default="")
    content: Mapped[dict] = mapped_column(JSON, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )

    appeal: Mapped["Appeal | None"] = relationship(back_populates="notifications")

    __table_args__ = (
        Index("idx_notification_log_recipient", "recipient_id", "created_at"),
        Index("idx_notification_log_appeal", "appeal_id", "created_at"),
        Index("idx_notification_log_status", "status"),
    )
