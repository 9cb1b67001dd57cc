"""Shared fixtures: a throwaway SQLite database and in-memory collaborators."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from appeal_workflow.core.database import build_engine, build_session_factory, init_db
from appeal_workflow.models import ReportStatus
from appeal_workflow.services.appeal_engine import AppealEngine, EngineConfig, SubmitAppealInput
from appeal_workflow.services.effects import DispatchConfig, EffectDispatcher
from appeal_workflow.services.gateways import (
    NotificationDispatcher,
    ReportGateway,
    ReportInfo,
    RoleDirectory,
    TransientGatewayError,
)


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

REASON = (
    "The broken ceiling light in room 204 was still unrepaired when I submitted "
    "photos, so the rejection was based on an outdated inspection."
)


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeReportGateway(ReportGateway):
    def __init__(self):
        self.reports: dict[str, ReportInfo] = {}
        self.updates: list[tuple[str, str | None, dict]] = []
        self.fail_updates = 0
        self.lookup_delay = 0.0
        self.on_update = None

    def add(self, report_id: str, owner_id: str, status: str = ReportStatus.REJECTED.value,
            title: str = "Broken ceiling light") -> ReportInfo:
        info = ReportInfo(id=report_id, owner_id=owner_id, status=status, title=title)
        self.reports[report_id] = info
        return info

    async def get_report(self, report_id: str) -> ReportInfo | None:
        if self.lookup_delay:
            await asyncio.sleep(self.lookup_delay)
        return self.reports.get(report_id)

    async def set_report_status(self, report_id: str, status: str | None, metadata: dict[str, Any]) -> None:
        if self.on_update is not None:
            await self.on_update()
        if self.fail_updates > 0:
            self.fail_updates -= 1
            raise TransientGatewayError("report store is down")

        self.updates.append((report_id, status, dict(metadata)))
        report = self.reports.get(report_id)
        if report is not None and status is not None:
            report.status = status


class FakeRoleDirectory(RoleDirectory):
    def __init__(self, members: dict[str, list[str]] | None = None):
        self.members = members or {
            "admin": ["admin-1"],
            "super_admin": ["super-1"],
            "department_head": ["dept-1", "dept-2"],
            "president": ["president-1"],
        }

    async def users_with_role(self, *roles: str) -> list[str]:
        return [user_id for role in roles for user_id in self.members.get(role, [])]


class FakeNotifier(NotificationDispatcher):
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def notify(self, user_id: str, title: str, body: str, metadata: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("push service unreachable")
        self.sent.append({"user_id": user_id, "title": title, "body": body, "metadata": metadata})

    def titles_for(self, user_id: str) -> list[str]:
        return [n["title"] for n in self.sent if n["user_id"] == user_id]


class CountingFeed:
    def __init__(self):
        self.changes = 0

    def notify_changed(self) -> None:
        self.changes += 1


# =============================================================================
# FIXTURES
# =============================================================================


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'appeals.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def reports() -> FakeReportGateway:
    gateway = FakeReportGateway()
    gateway.add("report-1", owner_id="student-1")
    return gateway


@pytest.fixture
def roles() -> FakeRoleDirectory:
    return FakeRoleDirectory()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def feed() -> CountingFeed:
    return CountingFeed()


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return DispatchConfig(timeout_seconds=2.0, max_retries=3, base_delay_seconds=0, max_delay_seconds=0)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def appeal_engine(session_factory, reports, roles, notifier, clock, feed,
                  dispatch_config, engine_config) -> AppealEngine:
    dispatcher = EffectDispatcher(reports, roles, notifier, dispatch_config)
    return AppealEngine(
        session_factory,
        dispatcher,
        reports,
        config=engine_config,
        clock=clock,
        feed=feed,
    )


@pytest.fixture
def submit_input() -> SubmitAppealInput:
    return SubmitAppealInput(
        reason=REASON,
        evidence=["https://files.campus.edu/photos/204-ceiling.jpg"],
        user_name="Dana Reyes",
        user_email="dana@campus.edu",
    )
