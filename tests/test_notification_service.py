"""Tests for notification queueing and delivery."""

from datetime import timedelta
from uuid import uuid4

import httpx
import pytest_asyncio
from sqlalchemy import select

from appeal_workflow.models import NotificationLog, NotificationStatus, User
from appeal_workflow.services.gateways import NotificationLogDispatcher
from appeal_workflow.services.notification_service import (
    NotificationService,
    WebhookChannel,
    WebhookConfig,
)

from .conftest import T0


@pytest_asyncio.fixture
async def student(session_factory) -> User:
    user = User(id="student-1", name="Dana Reyes", email="dana@campus.edu", role="user")
    async with session_factory() as session:
        async with session.begin():
            session.add(user)
    return user


def queued(recipient_id: str = "student-1", channel: str = "in_app", **fields) -> NotificationLog:
    return NotificationLog(
        recipient_id=recipient_id,
        notification_type=fields.pop("notification_type", "appeal_submitted"),
        status=NotificationStatus.PENDING,
        channel=channel,
        title=fields.pop("title", "Appeal Submitted Successfully"),
        body="Your appeal has been submitted.",
        **fields,
    )


async def process(session_factory, webhook_config=None):
    async with session_factory() as session:
        async with session.begin():
            service = NotificationService(session, webhook_config=webhook_config)
            return await service.process_pending_notifications()


async def stored(session_factory) -> list[NotificationLog]:
    async with session_factory() as session:
        result = await session.execute(select(NotificationLog).order_by(NotificationLog.created_at))
        return list(result.scalars().all())


class TestProcessPending:
    async def test_in_app_notification_is_marked_sent(self, session_factory, student):
        async with session_factory() as session:
            async with session.begin():
                session.add(queued())

        sent, failed, errors = await process(session_factory)

        assert (sent, failed, errors) == (1, 0, [])
        (row,) = await stored(session_factory)
        assert row.status == NotificationStatus.SENT
        assert row.sent_at is not None

    async def test_missing_recipient_fails(self, session_factory):
        async with session_factory() as session:
            async with session.begin():
                session.add(queued(recipient_id="ghost"))

        sent, failed, errors = await process(session_factory)

        assert (sent, failed) == (0, 1)
        assert "Recipient not found" in errors[0]
        (row,) = await stored(session_factory)
        assert row.status == NotificationStatus.FAILED
        assert row.error_message == "Recipient not found"

    async def test_unknown_channel_fails(self, session_factory, student):
        async with session_factory() as session:
            async with session.begin():
                session.add(queued(channel="carrier_pigeon"))

        sent, failed, _ = await process(session_factory)

        assert (sent, failed) == (0, 1)
        (row,) = await stored(session_factory)
        assert row.error_message == "Unknown channel: carrier_pigeon"

    async def test_webhook_without_url_fails(self, session_factory, student):
        async with session_factory() as session:
            async with session.begin():
                session.add(queued(channel="webhook"))

        sent, failed, errors = await process(session_factory, WebhookConfig(url=None))

        assert (sent, failed) == (0, 1)
        assert "No webhook URL configured" in errors[0]

    async def test_already_sent_rows_are_skipped(self, session_factory, student):
        async with session_factory() as session:
            async with session.begin():
                row = queued()
                row.status = NotificationStatus.SENT
                session.add(row)

        assert await process(session_factory) == (0, 0, [])


class TestWebhookChannel:
    def _recipient(self):
        return User(id="student-1", name="Dana Reyes", email="dana@campus.edu", role="user")

    async def test_successful_post(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        channel = WebhookChannel(
            WebhookConfig(url="https://hooks.campus.edu/appeals"),
            transport=httpx.MockTransport(handler),
        )

        success, error = await channel.send(self._recipient(), queued(content={"appealId": "a-1"}))

        assert success is True
        assert error is None
        (request,) = requests
        assert request.url == "https://hooks.campus.edu/appeals"
        assert b"dana@campus.edu" in request.content

    async def test_server_error_is_a_failure(self):
        channel = WebhookChannel(
            WebhookConfig(url="https://hooks.campus.edu/appeals"),
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        success, error = await channel.send(self._recipient(), queued())

        assert success is False
        assert error == "Webhook returned 500"

    async def test_connection_error_is_a_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        channel = WebhookChannel(
            WebhookConfig(url="https://hooks.campus.edu/appeals"),
            transport=httpx.MockTransport(handler),
        )

        success, error = await channel.send(self._recipient(), queued())

        assert success is False
        assert error.startswith("Webhook request failed")


class TestQueueing:
    async def test_dispatcher_queues_pending_rows(self, session_factory):
        dispatcher = NotificationLogDispatcher(session_factory)

        await dispatcher.notify(
            "student-1",
            "Appeal Approved!",
            "Your appeal has been approved.",
            {"type": "appeal_approved", "reportId": "report-1"},
        )

        (row,) = await stored(session_factory)
        assert row.status == NotificationStatus.PENDING
        assert row.channel == "in_app"
        assert row.notification_type == "appeal_approved"
        assert row.appeal_id is None
        assert row.content["reportId"] == "report-1"

    async def test_list_for_user_newest_first(self, session_factory, student):
        async with session_factory() as session:
            async with session.begin():
                older = queued(title="Appeal Submitted Successfully", created_at=T0)
                newer = queued(title="Appeal Approved!", created_at=T0 + timedelta(days=3), read=True)
                other = queued(recipient_id="student-2", created_at=T0)
                session.add_all([older, newer, other])

        async with session_factory() as session:
            service = NotificationService(session)
            everything = await service.list_for_user("student-1")
            unread = await service.list_for_user("student-1", unread_only=True)

        assert [n.title for n in everything] == ["Appeal Approved!", "Appeal Submitted Successfully"]
        assert [n.title for n in unread] == ["Appeal Submitted Successfully"]

    async def test_dispatcher_links_appeal(self, session_factory):
        appeal_id = uuid4()
        dispatcher = NotificationLogDispatcher(session_factory, channel="webhook")

        await dispatcher.notify("admin-1", "New ISO Appeal Submitted", "", {
            "type": "new_appeal",
            "appealId": str(appeal_id),
        })

        (row,) = await stored(session_factory)
        assert row.appeal_id == appeal_id
        assert row.channel == "webhook"
