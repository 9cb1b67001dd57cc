"""Notification inbox routes for the mobile app."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query

from ..core.dependencies import CurrentActorDep, SessionDep
from ..schemas.base import AppealBaseModel
from ..services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(AppealBaseModel):
    id: UUID
    appeal_id: UUID | None = None
    notification_type: str
    title: str
    body: str
    content: dict
    read: bool
    created_at: datetime


@router.get(
    "/mine",
    response_model=list[NotificationResponse],
    summary="List my notifications",
)
async def list_my_notifications(
    actor: CurrentActorDep,
    session: SessionDep,
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
):
    service = NotificationService(session)
    return await service.list_for_user(actor.id, unread_only=unread_only, limit=limit)
