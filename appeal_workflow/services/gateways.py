"""
Collaborator interfaces used by the appeal engine, with SQL implementations.

The engine only sees the abstract classes. The SQL implementations read and
write the shared campus database; other deployments can swap in HTTP
clients without touching the engine.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import NotificationLog, NotificationStatus, Report, User, utcnow

logger = logging.getLogger(__name__)


class TransientGatewayError(Exception):
    """A collaborator failed in a way that is worth retrying."""


@dataclass
class ReportInfo:
    """What the appeal workflow needs to know about a report."""
    id: str
    owner_id: str
    status: str
    title: str = "Untitled Report"


# =============================================================================
# INTERFACES
# =============================================================================


class ReportGateway(ABC):
    """Read report ownership/status and write appeal outcomes back."""

    @abstractmethod
    async def get_report(self, report_id: str) -> ReportInfo | None:
        pass

    @abstractmethod
    async def set_report_status(
        self,
        report_id: str,
        status: str | None,
        metadata: dict[str, Any],
    ) -> None:
        """Set ``status`` (unless None) and the given appeal fields."""
        pass


class RoleDirectory(ABC):
    """Resolve role names to user ids for notification fan-out."""

    @abstractmethod
    async def users_with_role(self, *roles: str) -> list[str]:
        pass


class NotificationDispatcher(ABC):
    """Enqueue a one-way message. Best-effort; delivery is not awaited."""

    @abstractmethod
    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        metadata: dict[str, Any],
    ) -> None:
        pass


# =============================================================================
# SQL IMPLEMENTATIONS
# =============================================================================


# Report columns the appeal workflow is allowed to write
_REPORT_WRITABLE_FIELDS = {
    "appeal_status",
    "appeal_id",
    "can_appeal",
    "appealed_at",
    "restored_by_appeal",
    "restored_at",
}


class SqlReportGateway(ReportGateway):
    """Report gateway backed by the ``reports`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_report(self, report_id: str) -> ReportInfo | None:
        try:
            async with self._session_factory() as session:
                report = await session.get(Report, report_id)
        except (OperationalError, DBAPIError) as e:
            raise TransientGatewayError(f"Report lookup failed: {e}") from e

        if not report:
            return None

        return ReportInfo(
            id=report.id,
            owner_id=report.user_id,
            status=report.status,
            title=report.title,
        )

    async def set_report_status(
        self,
        report_id: str,
        status: str | None,
        metadata: dict[str, Any],
    ) -> None:
        unknown = set(metadata) - _REPORT_WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot write report fields: {sorted(unknown)}")

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    report = await session.get(Report, report_id)
                    if not report:
                        logger.warning(f"Report {report_id} vanished before appeal write-back")
                        return

                    if status is not None:
                        report.status = status
                    for name, value in metadata.items():
                        if name.endswith("_at") and isinstance(value, str):
                            value = datetime.fromisoformat(value)
                        setattr(report, name, value)
                    report.updated_at = utcnow()
        except (OperationalError, DBAPIError) as e:
            raise TransientGatewayError(f"Report update failed: {e}") from e


class SqlRoleDirectory(RoleDirectory):
    """Role directory backed by the ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def users_with_role(self, *roles: str) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User.id).where(User.role.in_(roles)).order_by(User.id)
            )
            return list(result.scalars().all())


class NotificationLogDispatcher(NotificationDispatcher):
    """Enqueues notifications as pending NotificationLog rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: str = "in_app",
    ):
        self._session_factory = session_factory
        self._channel = channel

    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        metadata: dict[str, Any],
    ) -> None:
        appeal_id = metadata.get("appealId")

        async with self._session_factory() as session:
            async with session.begin():
                session.add(NotificationLog(
                    recipient_id=user_id,
                    appeal_id=UUID(appeal_id) if appeal_id else None,
                    notification_type=metadata.get("type", "general"),
                    status=NotificationStatus.PENDING,
                    channel=self._channel,
                    title=title,
                    body=body,
                    content=metadata,
                ))
