"""Pydantic schemas for API request/response validation."""

from .appeals import (
    AdminReviewRequest,
    AppealCreate,
    AppealListResponse,
    AppealResponse,
    AppealSummary,
    AppealTimelineResponse,
    DepartmentReviewRequest,
    PresidentDecisionRequest,
)
from .base import AppealBaseModel, ErrorDetail, ErrorResponse

__all__ = [
    # Base
    "AppealBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Appeals
    "AppealCreate",
    "AdminReviewRequest",
    "DepartmentReviewRequest",
    "PresidentDecisionRequest",
    "AppealResponse",
    "AppealSummary",
    "AppealListResponse",
    "AppealTimelineResponse",
]
