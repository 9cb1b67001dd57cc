"""
Notification Service: Handles delivery of queued appeal notifications.

This module is responsible for:
1. Marking in-app notifications as delivered (the mobile app reads them)
2. Delivering webhooks to the campus messaging integration
3. Updating notification status in the database
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import NotificationLog, NotificationStatus, User, utcnow


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class WebhookConfig:
    """Webhook delivery configuration."""
    url: str | None = None
    timeout_seconds: float = 30.0


# =============================================================================
# NOTIFICATION CHANNELS (Abstract)
# =============================================================================


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @abstractmethod
    async def send(
        self,
        recipient: User,
        notification: NotificationLog,
    ) -> tuple[bool, str | None]:
        """
        Send a notification.

        Returns:
            (success, error_message)
        """
        pass


class InAppChannel(NotificationChannel):
    """In-app notifications are stored rows; delivery only records them as sent."""

    async def send(
        self,
        recipient: User,
        notification: NotificationLog,
    ) -> tuple[bool, str | None]:
        logger.info(f"[IN_APP] To: {recipient.id}, Title: {notification.title}")
        return True, None


class WebhookChannel(NotificationChannel):
    """Posts notifications to an external messaging webhook."""

    def __init__(
        self,
        config: WebhookConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._transport = transport

    async def send(
        self,
        recipient: User,
        notification: NotificationLog,
    ) -> tuple[bool, str | None]:
        if not self._config.url:
            return False, "No webhook URL configured"

        payload = {
            "recipient_id": recipient.id,
            "recipient_email": recipient.email,
            "title": notification.title,
            "body": notification.body,
            "type": notification.notification_type,
            "data": notification.content,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(self._config.url, json=payload)
        except httpx.HTTPError as e:
            error_msg = f"Webhook request failed: {e}"
            logger.error(error_msg)
            return False, error_msg

        if response.status_code >= 400:
            return False, f"Webhook returned {response.status_code}"

        logger.info(f"[WEBHOOK] To: {recipient.email}, Title: {notification.title}")
        return True, None


# =============================================================================
# NOTIFICATION SERVICE
# =============================================================================


class NotificationService:
    """
    Main service for processing and delivering notifications.

    This service:
    1. Processes pending notifications from NotificationLog
    2. Sends via the row's channel (in_app, webhook)
    3. Updates delivery status
    """

    def __init__(
        self,
        session: AsyncSession,
        webhook_config: WebhookConfig | None = None,
    ):
        self._session = session
        self._channels: dict[str, NotificationChannel] = {
            "in_app": InAppChannel(),
            "webhook": WebhookChannel(webhook_config or WebhookConfig()),
        }

    async def process_pending_notifications(
        self,
        batch_size: int = 100,
    ) -> tuple[int, int, list[str]]:
        """
        Process pending notifications, oldest first.

        Returns:
            (sent_count, failed_count, errors)
        """
        query = (
            select(NotificationLog)
            .where(NotificationLog.status == NotificationStatus.PENDING)
            .order_by(NotificationLog.created_at.asc())
            .limit(batch_size)
        )

        result = await self._session.execute(query)
        notifications = result.scalars().all()

        sent_count = 0
        failed_count = 0
        errors = []

        for notification in notifications:
            recipient = await self._session.get(User, notification.recipient_id)
            if not recipient:
                notification.status = NotificationStatus.FAILED
                notification.error_message = "Recipient not found"
                failed_count += 1
                errors.append(f"Notification {notification.id}: Recipient not found")
                continue

            channel = self._channels.get(notification.channel)
            if channel is None:
                notification.status = NotificationStatus.FAILED
                notification.error_message = f"Unknown channel: {notification.channel}"
                failed_count += 1
                errors.append(f"Notification {notification.id}: Unknown channel {notification.channel}")
                continue

            success, error = await channel.send(recipient, notification)

            if success:
                notification.status = NotificationStatus.SENT
                notification.sent_at = utcnow()
                sent_count += 1
            else:
                notification.status = NotificationStatus.FAILED
                notification.error_message = error
                failed_count += 1
                errors.append(f"Notification {notification.id}: {error}")

        await self._session.flush()

        return sent_count, failed_count, errors

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationLog]:
        """A user's notifications, newest first."""
        query = select(NotificationLog).where(NotificationLog.recipient_id == user_id)
        if unread_only:
            query = query.where(NotificationLog.read.is_(False))
        query = query.order_by(NotificationLog.created_at.desc()).limit(limit)

        result = await self._session.execute(query)
        return list(result.scalars().all())
