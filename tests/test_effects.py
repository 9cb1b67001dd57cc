"""Tests for effect dispatch and the retry helper."""

import pytest

from appeal_workflow.core.retry import call_with_backoff
from appeal_workflow.services.effects import EffectDispatcher, Notify, NotifyRoles, UpdateReport
from appeal_workflow.services.errors import UnavailableError
from appeal_workflow.services.gateways import TransientGatewayError


@pytest.fixture
def dispatcher(reports, roles, notifier, dispatch_config) -> EffectDispatcher:
    return EffectDispatcher(reports, roles, notifier, dispatch_config)


class TestDispatch:
    async def test_role_fan_out(self, dispatcher, notifier):
        await dispatcher.dispatch([
            NotifyRoles(("department_head",), "Appeal Forwarded to Department", "body", {"type": "x"}),
        ])

        assert [n["user_id"] for n in notifier.sent] == ["dept-1", "dept-2"]

    async def test_report_is_updated_before_notifications(self, dispatcher, reports, notifier):
        order = []

        async def record_update():
            order.append("report")

        reports.on_update = record_update
        original = notifier.notify

        async def record_notify(*args):
            order.append("notify")
            await original(*args)

        notifier.notify = record_notify

        await dispatcher.dispatch([
            Notify("student-1", "Appeal Approved!", "body"),
            UpdateReport("report-1", "pending", {"appeal_status": "approved"}),
        ])

        assert order == ["report", "notify"]

    async def test_optional_report_failure_is_swallowed(self, dispatcher, reports, notifier):
        reports.fail_updates = 10

        await dispatcher.dispatch([
            UpdateReport("report-1", None, {"appeal_status": "submitted"}),
            Notify("student-1", "Appeal Submitted Successfully", "body"),
        ])

        assert reports.updates == []
        assert notifier.titles_for("student-1") == ["Appeal Submitted Successfully"]

    async def test_notifier_failure_is_swallowed(self, dispatcher, notifier):
        notifier.fail = True

        await dispatcher.dispatch([Notify("student-1", "Appeal Approved!", "body")])

        assert notifier.sent == []


class TestRequired:
    async def test_required_update_retries_then_succeeds(self, dispatcher, reports):
        reports.fail_updates = 2

        await dispatcher.apply_required([UpdateReport("report-1", "pending", {}, required=True)])

        assert reports.reports["report-1"].status == "pending"

    async def test_required_update_exhausted(self, dispatcher, reports):
        reports.fail_updates = 3

        with pytest.raises(UnavailableError):
            await dispatcher.apply_required([UpdateReport("report-1", "pending", {}, required=True)])

    async def test_only_report_updates_can_be_required(self, dispatcher):
        with pytest.raises(TypeError):
            await dispatcher.apply_required([Notify("student-1", "t", "b")])


class TestBackoff:
    async def test_non_retryable_errors_propagate(self):
        calls = []

        async def operation():
            calls.append(1)
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await call_with_backoff(operation, retry_on=(TransientGatewayError,), base_delay=0)

        assert len(calls) == 1

    async def test_returns_first_success(self):
        attempts = iter([TransientGatewayError("down"), "ok"])

        async def operation():
            outcome = next(attempts)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await call_with_backoff(operation, retry_on=(TransientGatewayError,), base_delay=0)

        assert result == "ok"
