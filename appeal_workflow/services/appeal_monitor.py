"""
Appeal Monitor: SLA scanning and reminder generation.

Overdue appeals are never moved automatically. The monitor only reports
them and queues reminders for whoever is expected to act next:
1. Scan open appeals against the outer deadline and the stage SLA
2. Group results into dashboard stats
3. Queue reminder notifications, at most one per appeal per cooldown window
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Appeal,
    AppealStatus,
    NotificationLog,
    NotificationStatus,
    NotificationType,
    UserRole,
    utcnow,
)
from . import deadlines
from .gateways import RoleDirectory


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class MonitorConfig:
    """Configuration for overdue monitoring."""

    # Minimum hours between reminders for the same appeal
    reminder_cooldown_hours: int = 24

    # Channel used for queued reminders
    channel: str = "in_app"


REMINDER_TYPES = (
    NotificationType.APPEAL_OVERDUE.value,
    NotificationType.APPEAL_STAGE_OVERDUE.value,
    NotificationType.APPEAL_DEADLINE_APPROACHING.value,
)

_ADMINS = (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)

# Who is expected to act at each stage
RESPONSIBLE_ROLES: dict[int, tuple[str, ...]] = {
    1: _ADMINS,
    2: _ADMINS,
    3: _ADMINS,
    4: (UserRole.DEPARTMENT_HEAD.value,),
    5: (UserRole.DEPARTMENT_HEAD.value,),
    6: (UserRole.PRESIDENT.value,),
    10: _ADMINS,
}


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class FlaggedAppeal:
    """An open appeal that is late or close to its outer deadline."""
    appeal_id: UUID
    report_title: str
    status: AppealStatus
    current_stage: int
    deadline: datetime
    hours_remaining: float
    stage_deadline: datetime | None
    is_overdue: bool
    is_stage_overdue: bool
    is_deadline_approaching: bool


@dataclass
class MonitorStats:
    """Counts for the reviewer dashboard."""
    open_appeals: int
    overdue: int
    stage_overdue: int
    approaching: int
    by_stage: dict[int, int] = field(default_factory=dict)


@dataclass
class NotificationBatch:
    """Result of reminder generation."""
    notifications: list[NotificationLog]
    appeals_processed: int
    errors: list[str]


# =============================================================================
# MONITOR
# =============================================================================


class AppealMonitor:
    def __init__(
        self,
        session: AsyncSession,
        role_directory: RoleDirectory,
        config: MonitorConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._roles = role_directory
        self._config = config or MonitorConfig()
        self._clock = clock

    async def scan_open_appeals(self) -> list[FlaggedAppeal]:
        """Open appeals that are overdue, past their stage SLA, or within a day of the deadline."""
        now = self._clock()
        flagged = []

        for appeal in await self._open_appeals():
            overdue = deadlines.is_overdue(appeal, now)
            stage_overdue = deadlines.is_stage_overdue(appeal, now=now)
            approaching = deadlines.is_deadline_approaching(appeal, now)

            if not (overdue or stage_overdue or approaching):
                continue

            flagged.append(FlaggedAppeal(
                appeal_id=appeal.id,
                report_title=appeal.report_title,
                status=appeal.status,
                current_stage=appeal.current_stage,
                deadline=appeal.deadline,
                hours_remaining=deadlines.hours_remaining(appeal, now),
                stage_deadline=deadlines.stage_deadline(appeal),
                is_overdue=overdue,
                is_stage_overdue=stage_overdue,
                is_deadline_approaching=approaching,
            ))

        return flagged

    async def get_monitor_stats(self) -> MonitorStats:
        now = self._clock()
        appeals = await self._open_appeals()

        by_stage: dict[int, int] = {}
        for appeal in appeals:
            by_stage[appeal.current_stage] = by_stage.get(appeal.current_stage, 0) + 1

        return MonitorStats(
            open_appeals=len(appeals),
            overdue=sum(1 for a in appeals if deadlines.is_overdue(a, now)),
            stage_overdue=sum(1 for a in appeals if deadlines.is_stage_overdue(a, now=now)),
            approaching=sum(1 for a in appeals if deadlines.is_deadline_approaching(a, now)),
            by_stage=by_stage,
        )

    async def generate_reminder_notifications(self) -> NotificationBatch:
        """
        Queue reminders for flagged appeals.

        Creates pending NotificationLog rows for the notification delivery
        job. Appeals reminded within the cooldown window are skipped.
        """
        now = self._clock()
        notifications = []
        errors = []
        appeals_processed = 0

        for item in await self.scan_open_appeals():
            try:
                last_sent = await self._last_reminder_at(item.appeal_id)
                if last_sent:
                    hours_since_last = (now - last_sent).total_seconds() / 3600
                    if hours_since_last < self._config.reminder_cooldown_hours:
                        continue

                notif_type, title, body = _reminder_text(item)
                recipients = await self._roles.users_with_role(
                    *RESPONSIBLE_ROLES.get(item.current_stage, _ADMINS)
                )

                for recipient_id in recipients:
                    notification = NotificationLog(
                        recipient_id=recipient_id,
                        appeal_id=item.appeal_id,
                        notification_type=notif_type.value,
                        status=NotificationStatus.PENDING,
                        channel=self._config.channel,
                        title=title,
                        body=body,
                        content={
                            "type": notif_type.value,
                            "appealId": str(item.appeal_id),
                            "stage": item.current_stage,
                            "deadline": item.deadline.isoformat(),
                            "hoursRemaining": round(item.hours_remaining, 1),
                        },
                        created_at=now,
                    )
                    self._session.add(notification)
                    notifications.append(notification)

                appeals_processed += 1

            except Exception as e:
                errors.append(f"Failed to process appeal {item.appeal_id}: {str(e)}")

        await self._session.flush()

        return NotificationBatch(
            notifications=notifications,
            appeals_processed=appeals_processed,
            errors=errors,
        )

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _open_appeals(self) -> Sequence[Appeal]:
        result = await self._session.execute(
            select(Appeal)
            .where(Appeal.status != AppealStatus.COMPLETED)
            .order_by(Appeal.submitted_at.asc())
        )
        return result.scalars().all()

    async def _last_reminder_at(self, appeal_id: UUID) -> datetime | None:
        result = await self._session.execute(
            select(func.max(NotificationLog.created_at)).where(
                NotificationLog.appeal_id == appeal_id,
                NotificationLog.notification_type.in_(REMINDER_TYPES),
            )
        )
        last = result.scalar_one_or_none()
        if last is not None and last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return last


def _reminder_text(item: FlaggedAppeal) -> tuple[NotificationType, str, str]:
    title = item.report_title
    if item.is_overdue:
        return (
            NotificationType.APPEAL_OVERDUE,
            "Appeal Overdue",
            f'The appeal for "{title}" has passed its 10-day deadline and is still at stage '
            f"{item.current_stage}. Please act on it immediately.",
        )
    if item.is_stage_overdue:
        return (
            NotificationType.APPEAL_STAGE_OVERDUE,
            "Appeal Stage Overdue",
            f'The appeal for "{title}" has exceeded the time allowed for stage '
            f"{item.current_stage}. Please review it as soon as possible.",
        )
    return (
        NotificationType.APPEAL_DEADLINE_APPROACHING,
        "Appeal Deadline Approaching",
        f'The appeal for "{title}" must be resolved within '
        f"{max(0, int(item.hours_remaining))} hours.",
    )
