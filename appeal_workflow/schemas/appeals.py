"""Pydantic schemas for appeal requests and responses."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator

from ..models import AdminAction, AppealStatus, PresidentDecision
from .base import AppealBaseModel


# =============================================================================
# REQUESTS
# =============================================================================


class AppealCreate(AppealBaseModel):
    """Body of a new appeal."""

    report_id: str = Field(..., min_length=1, max_length=128)
    reason: str = Field(
        ...,
        min_length=50,
        description="Why the rejection should be reconsidered (at least 50 characters)",
    )
    evidence: list[str] = Field(
        default_factory=list,
        max_length=20,
        description="Links to supporting evidence, in order",
    )

    @field_validator("reason")
    @classmethod
    def reason_not_padded(cls, v: str) -> str:
        if len(v.strip()) < 50:
            raise ValueError("Please provide a detailed reason (at least 50 characters)")
        return v.strip()


class AdminReviewRequest(AppealBaseModel):
    action: AdminAction = AdminAction.FORWARD
    notes: str = Field(default="", max_length=5000)


class DepartmentReviewRequest(AppealBaseModel):
    proposal: str = Field(..., min_length=1, description="Proposed course of action")


class PresidentDecisionRequest(AppealBaseModel):
    decision: PresidentDecision
    reasoning: str = Field(..., min_length=1)


# =============================================================================
# RESPONSES
# =============================================================================


class AppealResponse(AppealBaseModel):
    """Full appeal record."""

    id: UUID
    report_id: str
    user_id: str
    user_name: str
    report_title: str
    reason: str
    evidence: list[str]
    status: AppealStatus
    current_stage: int
    total_stages: int
    submitted_at: datetime
    deadline: datetime
    stage_timestamps: dict[str, str | None]
    assigned_admin: str | None = None
    documented_by: str | None = None
    assigned_dept_head: str | None = None
    assigned_president: str | None = None
    admin_notes: str = ""
    dept_proposal: str = ""
    president_decision: str = ""
    final_decision: str = ""
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class AppealSummary(AppealBaseModel):
    """Row in reviewer lists and the live feed."""

    id: UUID
    report_id: str
    user_name: str
    report_title: str
    status: AppealStatus
    current_stage: int
    submitted_at: datetime
    deadline: datetime


class AppealListResponse(AppealBaseModel):
    items: list[AppealSummary]
    total: int


class AppealTimelineResponse(AppealBaseModel):
    """Deadline view of an appeal."""

    appeal_id: UUID
    status: AppealStatus
    current_stage: int
    deadline: datetime
    hours_remaining: float
    is_overdue: bool
    is_deadline_approaching: bool
    stage_deadline: datetime | None = None
    stage_hours_remaining: float | None = None
    is_stage_overdue: bool = False
    stage_timestamps: dict[str, str | None]
