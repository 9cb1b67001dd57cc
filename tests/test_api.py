"""
Tests for the HTTP API.

These tests verify:
1. Authentication and role gating on every route
2. Engine errors map to the documented status codes
3. A full appeal runs from submission to the restored report over HTTP
"""

import httpx
import pytest
import pytest_asyncio

from appeal_workflow.api.appeals import _http_error
from appeal_workflow.core.config import get_settings
from appeal_workflow.core.database import get_session
from appeal_workflow.core.dependencies import build_appeal_engine, get_appeal_engine, get_appeal_feed
from appeal_workflow.core.security import create_access_token
from appeal_workflow.main import app
from appeal_workflow.models import Report, User
from appeal_workflow.services.appeal_feed import AppealFeed
from appeal_workflow.services.errors import AppealValidationError, UnavailableError

from .conftest import REASON

PREFIX = get_settings().api_prefix


def auth(user_id: str, role: str = "user", name: str | None = None) -> dict[str, str]:
    token = create_access_token(user_id, role=role, name=name, email=f"{user_id}@campus.edu")
    return {"Authorization": f"Bearer {token}"}


STUDENT = auth("student-1", name="Dana Reyes")
OTHER_STUDENT = auth("student-2", name="Sam Ortiz")
ADMIN = auth("admin-1", "admin", "Planning Officer")
DEPT_HEAD = auth("dept-1", "department_head", "Facilities Head")
PRESIDENT = auth("president-1", "president", "School President")


@pytest_asyncio.fixture
async def seeded(session_factory):
    async with session_factory() as session:
        async with session.begin():
            session.add_all([
                Report(id="report-1", user_id="student-1", title="Broken ceiling light", status="rejected"),
                Report(id="report-2", user_id="student-1", title="Leaking sink", status="resolved"),
                User(id="student-1", name="Dana Reyes", role="user"),
                User(id="admin-1", name="Planning Officer", role="admin"),
                User(id="dept-1", name="Facilities Head", role="department_head"),
                User(id="president-1", name="School President", role="president"),
            ])


@pytest_asyncio.fixture
async def client(session_factory, seeded):
    feed = AppealFeed(session_factory, poll_interval=60)
    engine = build_appeal_engine(session_factory, get_settings(), feed=feed)

    async def override_session():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_appeal_engine] = lambda: engine
    app.dependency_overrides[get_appeal_feed] = lambda: feed
    app.dependency_overrides[get_session] = override_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def submit(client: httpx.AsyncClient, report_id: str = "report-1", headers=STUDENT) -> httpx.Response:
    return await client.post(
        f"{PREFIX}/appeals",
        json={"report_id": report_id, "reason": REASON, "evidence": ["https://files.campus.edu/a.jpg"]},
        headers=headers,
    )


class TestSubmit:
    async def test_created(self, client):
        response = await submit(client)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "submitted"
        assert body["current_stage"] == 1
        assert body["user_name"] == "Dana Reyes"
        assert body["report_title"] == "Broken ceiling light"
        assert body["stage_timestamps"]["step1_submitted"] is not None

    async def test_requires_token(self, client):
        response = await client.post(f"{PREFIX}/appeals", json={"report_id": "report-1", "reason": REASON})

        assert response.status_code == 401

    async def test_rejects_bad_token(self, client):
        response = await submit(client, headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    async def test_short_reason(self, client):
        response = await client.post(
            f"{PREFIX}/appeals",
            json={"report_id": "report-1", "reason": "Please look again."},
            headers=STUDENT,
        )

        assert response.status_code == 422

    @pytest.mark.parametrize(
        "report_id,headers,status_code",
        [
            ("report-404", STUDENT, 404),
            ("report-1", OTHER_STUDENT, 403),
            ("report-2", STUDENT, 409),
        ],
    )
    async def test_report_preconditions(self, client, report_id, headers, status_code):
        response = await submit(client, report_id, headers)

        assert response.status_code == status_code

    async def test_duplicate(self, client):
        await submit(client)

        response = await submit(client)

        assert response.status_code == 409
        assert response.json()["detail"] == "An appeal has already been submitted for this report"


class TestRoleGating:
    async def test_student_cannot_review(self, client):
        appeal_id = (await submit(client)).json()["id"]

        response = await client.post(
            f"{PREFIX}/appeals/{appeal_id}/admin-review",
            json={"action": "forward"},
            headers=STUDENT,
        )

        assert response.status_code == 403

    async def test_admin_cannot_decide(self, client):
        appeal_id = (await submit(client)).json()["id"]

        response = await client.post(
            f"{PREFIX}/appeals/{appeal_id}/president-decision",
            json={"decision": "approve", "reasoning": "valid claim"},
            headers=ADMIN,
        )

        assert response.status_code == 403

    async def test_student_cannot_list_or_stream(self, client):
        assert (await client.get(f"{PREFIX}/appeals", headers=STUDENT)).status_code == 403
        assert (await client.get(f"{PREFIX}/appeals/feed", headers=STUDENT)).status_code == 403

    async def test_decision_out_of_order(self, client):
        appeal_id = (await submit(client)).json()["id"]

        response = await client.post(
            f"{PREFIX}/appeals/{appeal_id}/president-decision",
            json={"decision": "approve", "reasoning": "valid claim"},
            headers=PRESIDENT,
        )

        assert response.status_code == 409


class TestWorkflow:
    async def test_full_approval(self, client, session_factory):
        appeal_id = (await submit(client)).json()["id"]

        reviewed = await client.post(
            f"{PREFIX}/appeals/{appeal_id}/admin-review",
            json={"action": "forward", "notes": "valid grounds"},
            headers=ADMIN,
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["status"] == "with_department"
        assert reviewed.json()["current_stage"] == 4

        proposed = await client.post(
            f"{PREFIX}/appeals/{appeal_id}/department-review",
            json={"proposal": "repair requested"},
            headers=DEPT_HEAD,
        )
        assert proposed.json()["status"] == "with_president"

        decided = await client.post(
            f"{PREFIX}/appeals/{appeal_id}/president-decision",
            json={"decision": "approve", "reasoning": "valid claim"},
            headers=PRESIDENT,
        )
        assert decided.status_code == 200
        body = decided.json()
        assert body["status"] == "completed"
        assert body["current_stage"] == 10
        assert body["final_decision"] == "valid claim"

        async with session_factory() as session:
            report = await session.get(Report, "report-1")
        assert report.status == "pending"
        assert report.appeal_status == "approved"
        assert report.restored_by_appeal is True

        completed = await client.post(f"{PREFIX}/appeals/{appeal_id}/complete", headers=ADMIN)
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"

        inbox = await client.get(f"{PREFIX}/notifications/mine", headers=STUDENT)
        titles = [n["title"] for n in inbox.json()]
        assert "Appeal Approved!" in titles
        assert "Appeal Submitted Successfully" in titles

    async def test_hold_then_document(self, client):
        appeal_id = (await submit(client)).json()["id"]

        held = await client.post(
            f"{PREFIX}/appeals/{appeal_id}/admin-review",
            json={"action": "hold"},
            headers=ADMIN,
        )
        assert held.json()["status"] == "under_admin_review"

        documented = await client.post(f"{PREFIX}/appeals/{appeal_id}/document", headers=ADMIN)
        assert documented.json()["status"] == "with_department"
        assert documented.json()["documented_by"] == "admin-1"


class TestQueries:
    async def test_mine(self, client):
        appeal_id = (await submit(client)).json()["id"]

        mine = await client.get(f"{PREFIX}/appeals/mine", headers=STUDENT)
        theirs = await client.get(f"{PREFIX}/appeals/mine", headers=OTHER_STUDENT)

        assert [a["id"] for a in mine.json()] == [appeal_id]
        assert theirs.json() == []

    async def test_owner_and_reviewers_can_read(self, client):
        appeal_id = (await submit(client)).json()["id"]

        assert (await client.get(f"{PREFIX}/appeals/{appeal_id}", headers=STUDENT)).status_code == 200
        assert (await client.get(f"{PREFIX}/appeals/{appeal_id}", headers=DEPT_HEAD)).status_code == 200

        response = await client.get(f"{PREFIX}/appeals/{appeal_id}", headers=OTHER_STUDENT)
        assert response.status_code == 403
        assert response.json()["detail"] == "You can only view your own appeals"

    async def test_unknown_appeal(self, client):
        response = await client.get(
            f"{PREFIX}/appeals/00000000-0000-0000-0000-000000000000",
            headers=ADMIN,
        )

        assert response.status_code == 404

    async def test_reviewer_list_by_status(self, client):
        appeal_id = (await submit(client)).json()["id"]

        submitted = await client.get(f"{PREFIX}/appeals", params={"status": "submitted"}, headers=ADMIN)
        completed = await client.get(f"{PREFIX}/appeals", params={"status": "completed"}, headers=ADMIN)

        assert submitted.json()["total"] == 1
        assert submitted.json()["items"][0]["id"] == appeal_id
        assert completed.json() == {"items": [], "total": 0}

    async def test_timeline(self, client):
        appeal_id = (await submit(client)).json()["id"]

        response = await client.get(f"{PREFIX}/appeals/{appeal_id}/timeline", headers=STUDENT)

        assert response.status_code == 200
        body = response.json()
        assert body["current_stage"] == 1
        assert body["is_overdue"] is False
        assert body["hours_remaining"] == pytest.approx(240, abs=1)
        assert body["stage_timestamps"]["step1_submitted"] is not None


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.parametrize(
    "error,status_code,retry_after",
    [
        (AppealValidationError("Unknown decision 'maybe'. Use 'approve' or 'disapprove'."), 422, None),
        (UnavailableError("The appeal store is temporarily unavailable."), 503, "5"),
    ],
)
def test_error_status_mapping(error, status_code, retry_after):
    exc = _http_error(error)

    assert exc.status_code == status_code
    assert exc.detail == error.message
    assert (exc.headers or {}).get("Retry-After") == retry_after
