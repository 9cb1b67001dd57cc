"""
Appeal Engine: runs appeal transitions against the store.

Every transition is one read-check-write unit of work:
- The appeal is loaded in a fresh session
- The state machine checks the precondition and applies the change
- The write is committed with a compare-and-swap on ``version_id``
- Side effects are dispatched only after the commit

Clerical stages are advanced by an explicit dispatch loop (``advance``).
Each step commits on its own, so a failure leaves the appeal at the last
committed stage; calling the same operation again (or ``resume``) picks the
chain up where it stopped.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..core.retry import with_timeout
from ..models import (
    AdminAction,
    Appeal,
    AppealStatus,
    PresidentDecision,
    ReportStatus,
    StageKey,
    utcnow,
)
from . import state_machine as sm
from .effects import EffectDispatcher
from .errors import (
    AppealNotFoundError,
    AppealValidationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    ReportNotFoundError,
    UnavailableError,
)
from .gateways import ReportGateway, ReportInfo, TransientGatewayError
from .state_machine import Transition, TransitionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

Step = Callable[[Appeal, datetime], TransitionResult]


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class SubmitAppealInput:
    """Input for submitting an appeal."""
    reason: str
    evidence: list[str] = field(default_factory=list)
    user_name: str | None = None
    user_email: str | None = None


@dataclass
class EngineConfig:
    appeal_window_days: int = 10
    min_reason_length: int = 50
    allow_resubmission_after_disapproval: bool = False
    timeout_seconds: float = 10.0
    conflict_retries: int = 3

    @classmethod
    def from_settings(cls, settings: Any) -> "EngineConfig":
        return cls(
            appeal_window_days=settings.appeal_window_days,
            min_reason_length=settings.min_reason_length,
            allow_resubmission_after_disapproval=settings.allow_resubmission_after_disapproval,
            timeout_seconds=settings.collaborator_timeout_seconds,
            conflict_retries=settings.conflict_retries,
        )


# =============================================================================
# ENGINE
# =============================================================================


class AppealEngine:
    """
    Entry point for every appeal operation.

    The engine holds no per-appeal state; all of it lives in the appeal row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: EffectDispatcher,
        report_gateway: ReportGateway,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        feed: Any = None,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._reports = report_gateway
        self._config = config or EngineConfig()
        self._clock = clock
        self._feed = feed

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def submit(
        self,
        report_id: str,
        user_id: str,
        data: SubmitAppealInput,
    ) -> Appeal:
        """
        Open an appeal against a rejected report.

        Raises:
            AppealValidationError: reason is too short
            ReportNotFoundError: report does not exist
            ForbiddenError: caller does not own the report
            InvalidStateError: report is not rejected
            ConflictError: an appeal is already open (or was disapproved)
            UnavailableError: report service or store did not respond
        """
        reason = (data.reason or "").strip()
        if len(reason) < self._config.min_reason_length:
            raise AppealValidationError(
                f"Please provide a detailed reason for your appeal "
                f"(at least {self._config.min_reason_length} characters)"
            )

        report = await self._get_report(report_id)
        if report is None:
            raise ReportNotFoundError("Report not found")
        if report.owner_id != user_id:
            raise ForbiddenError("You can only appeal your own reports")
        if report.status != ReportStatus.REJECTED.value:
            raise InvalidStateError("Only rejected reports can be appealed")

        appeal, result = sm.open_appeal(
            report,
            user_id,
            reason,
            data.evidence or [],
            now=self._clock(),
            window_days=self._config.appeal_window_days,
            user_name=data.user_name,
            user_email=data.user_email,
        )

        try:
            await self._store(self._insert_appeal(appeal))
        except IntegrityError as e:
            # Lost a race with a concurrent submission for the same report
            raise ConflictError("An appeal has already been submitted for this report") from e

        logger.info(f"Appeal {appeal.id} submitted for report {report_id} by user {user_id}")
        await self._after_commit(appeal, result)
        return appeal

    # =========================================================================
    # HUMAN STEPS
    # =========================================================================

    async def admin_review(
        self,
        appeal_id: UUID,
        admin_id: str,
        action: AdminAction | str,
        notes: str = "",
    ) -> Appeal:
        """
        Stage 2. ``forward`` continues straight through to the department.

        Repeating the same review resumes the chain; a repeat with a
        different action or notes is refused rather than dropped.
        """
        try:
            action = AdminAction(action)
        except ValueError:
            raise AppealValidationError(
                f"Unknown admin action '{action}'. Use 'forward' or 'hold'."
            )
        notes = notes or ""

        def step(appeal: Appeal, now: datetime) -> TransitionResult:
            if appeal.assigned_admin == admin_id and appeal.stage_timestamp(StageKey.ADMIN_REVIEW):
                if appeal.admin_action == action and appeal.admin_notes == notes:
                    return TransitionResult(Transition.ADMIN_REVIEW, changed=False)
                hint = "; use /document to continue" if appeal.admin_action == AdminAction.HOLD else ""
                raise InvalidStateError(
                    f"This appeal was already reviewed with action "
                    f"'{appeal.admin_action.value}'{hint}"
                )
            return sm.admin_review(appeal, admin_id, action, notes, now)

        await self._run(appeal_id, step)
        return await self.advance(appeal_id)

    async def document(self, appeal_id: UUID, officer_id: str) -> Appeal:
        """Stage 3, for appeals the admin put on hold."""
        def step(appeal: Appeal, now: datetime) -> TransitionResult:
            if appeal.documented_by == officer_id and appeal.stage_timestamp(StageKey.DOCUMENTED):
                return TransitionResult(Transition.DOCUMENT, changed=False)
            return sm.document(appeal, officer_id, now)

        await self._run(appeal_id, step)
        return await self.advance(appeal_id)

    async def department_review(
        self,
        appeal_id: UUID,
        dept_head_id: str,
        proposal: str,
    ) -> Appeal:
        def step(appeal: Appeal, now: datetime) -> TransitionResult:
            if (
                appeal.assigned_dept_head == dept_head_id
                and appeal.stage_timestamp(StageKey.DEPT_REVIEW)
            ):
                if appeal.dept_proposal == proposal:
                    return TransitionResult(Transition.DEPARTMENT_REVIEW, changed=False)
                raise InvalidStateError(
                    f"A proposal was already recorded for this appeal: '{appeal.dept_proposal}'"
                )
            return sm.department_review(appeal, dept_head_id, proposal, now)

        await self._run(appeal_id, step)
        return await self.advance(appeal_id)

    async def president_decision(
        self,
        appeal_id: UUID,
        president_id: str,
        decision: PresidentDecision | str,
        reasoning: str,
    ) -> Appeal:
        """Final decision. Runs the report write-back and completion before returning."""
        try:
            decision = PresidentDecision(decision)
        except ValueError:
            raise AppealValidationError(
                f"Unknown decision '{decision}'. Use 'approve' or 'disapprove'."
            )

        def step(appeal: Appeal, now: datetime) -> TransitionResult:
            if appeal.assigned_president == president_id and appeal.president_decision:
                if (
                    appeal.president_decision == decision.value
                    and appeal.final_decision == reasoning
                ):
                    return TransitionResult(Transition.PRESIDENT_DECISION, changed=False)
                raise InvalidStateError(
                    f"This appeal was already decided ('{appeal.president_decision}'). "
                    f"The president's decision is final."
                )
            return sm.president_decision(appeal, president_id, decision, reasoning, now)

        await self._run(appeal_id, step)
        return await self.advance(appeal_id)

    # =========================================================================
    # AUTOMATIC STEPS
    # =========================================================================

    async def forward_to_department(self, appeal_id: UUID) -> Appeal:
        def step(appeal: Appeal, now: datetime) -> TransitionResult:
            if appeal.stage_timestamp(StageKey.FORWARDED_TO_DEPT):
                return TransitionResult(Transition.FORWARD_TO_DEPARTMENT, changed=False)
            return sm.forward_to_department(appeal, now)

        return await self._run(appeal_id, step)

    async def forward_to_president(self, appeal_id: UUID) -> Appeal:
        def step(appeal: Appeal, now: datetime) -> TransitionResult:
            if appeal.current_stage > 6:
                return TransitionResult(Transition.FORWARD_TO_PRESIDENT, changed=False)
            return sm.forward_to_president(appeal, now)

        return await self._run(appeal_id, step)

    async def complete(self, appeal_id: UUID) -> Appeal:
        """Finish a decided appeal. Completing a completed appeal is a no-op."""
        appeal = await self.get_by_id(appeal_id)
        if appeal.status == AppealStatus.COMPLETED:
            return appeal
        if appeal.status not in sm.DECIDED_STATUSES:
            raise InvalidStateError(
                f"Only decided appeals can be completed (currently {appeal.status.value})"
            )
        return await self.advance(appeal_id)

    async def advance(self, appeal_id: UUID) -> Appeal:
        """Run clerical steps until a human decision is needed or the appeal is complete."""
        appeal = await self.get_by_id(appeal_id)

        while (transition := sm.next_automatic_transition(appeal)) is not None:
            try:
                appeal = await self._run(appeal_id, self._automatic_step(transition))
            except (InvalidStateError, ConflictError):
                # Someone else may have moved the appeal on; only fail if we are stuck
                appeal = await self.get_by_id(appeal_id)
                if sm.next_automatic_transition(appeal) == transition:
                    raise

        return appeal

    async def resume(self, appeal_id: UUID) -> Appeal:
        """Continue an auto-chain that stopped after a failure."""
        return await self.advance(appeal_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_by_id(self, appeal_id: UUID) -> Appeal:
        async def load() -> Appeal | None:
            async with self._session_factory() as session:
                return await session.get(Appeal, appeal_id)

        appeal = await self._store(load())
        if not appeal:
            raise AppealNotFoundError("Appeal not found")
        return appeal

    async def list_by_user(self, user_id: str) -> Sequence[Appeal]:
        """All appeals filed by ``user_id``, newest submission first."""
        query = (
            select(Appeal)
            .where(Appeal.user_id == user_id)
            .order_by(Appeal.submitted_at.desc())
        )
        return await self._store(self._fetch_all(query))

    async def list_by_status(
        self,
        status: AppealStatus | None = None,
        limit: int | None = None,
    ) -> Sequence[Appeal]:
        """Appeals in ``status`` (all when None), newest submission first."""
        query = select(Appeal).order_by(Appeal.submitted_at.desc())
        if status is not None:
            query = query.where(Appeal.status == status)
        if limit:
            query = query.limit(limit)
        return await self._store(self._fetch_all(query))

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _automatic_step(self, transition: Transition) -> Step:
        if transition == Transition.DOCUMENT:
            # The forwarding admin is recorded as the documenting officer
            return lambda appeal, now: sm.document(appeal, appeal.assigned_admin, now)
        if transition == Transition.FORWARD_TO_DEPARTMENT:
            return sm.forward_to_department
        if transition == Transition.FORWARD_TO_PRESIDENT:
            return sm.forward_to_president
        if transition == Transition.SYNC_REPORT:
            return sm.sync_report
        if transition == Transition.COMPLETE:
            return sm.complete
        raise ValueError(f"{transition.value} is not an automatic transition")

    async def _run(self, appeal_id: UUID, step: Step) -> Appeal:
        appeal, result = await self._apply(appeal_id, step)
        if result.changed:
            logger.info(
                f"Appeal {appeal.id} {result.transition.value}: "
                f"{appeal.status.value} (stage {appeal.current_stage})"
            )
            await self._after_commit(appeal, result)
        return appeal

    async def _apply(self, appeal_id: UUID, step: Step) -> tuple[Appeal, TransitionResult]:
        """Read-check-write with retry on a lost compare-and-swap."""
        attempts = self._config.conflict_retries

        for attempt in range(attempts):
            try:
                return await self._apply_once(appeal_id, step)
            except StaleDataError:
                logger.warning(
                    f"Appeal {appeal_id} changed concurrently "
                    f"(attempt {attempt + 1}/{attempts}); re-reading"
                )
            except InvalidStateError as e:
                if attempt == 0:
                    raise
                # The concurrent writer moved the appeal past this step
                raise ConflictError(
                    f"The appeal was changed by someone else while you were acting on it: {e.message}"
                ) from e

        raise ConflictError(
            "The appeal is being modified by someone else. Reload it and try again."
        )

    async def _apply_once(self, appeal_id: UUID, step: Step) -> tuple[Appeal, TransitionResult]:
        async with self._session_factory() as session:
            appeal = await self._store(session.get(Appeal, appeal_id))
            if not appeal:
                raise AppealNotFoundError("Appeal not found")

            result = step(appeal, self._clock())
            if not result.changed:
                return appeal, result

            if result.required_effects:
                # Nothing is committed unless these succeed
                await self._dispatcher.apply_required(result.required_effects)

            await self._store(session.commit())
            return appeal, result

    async def _insert_appeal(self, appeal: Appeal) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                if not self._config.allow_resubmission_after_disapproval:
                    disapproved = await session.execute(
                        select(Appeal.id).where(
                            Appeal.report_id == appeal.report_id,
                            Appeal.president_decision == PresidentDecision.DISAPPROVE.value,
                        ).limit(1)
                    )
                    if disapproved.scalar_one_or_none():
                        raise ConflictError(
                            "An appeal for this report was already disapproved. "
                            "The president's decision is final."
                        )

                active = await session.execute(
                    select(Appeal.id).where(Appeal.active_report_id == appeal.report_id)
                )
                if active.scalar_one_or_none():
                    raise ConflictError("An appeal has already been submitted for this report")

                session.add(appeal)

    async def _fetch_all(self, query) -> Sequence[Appeal]:
        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalars().all()

    async def _get_report(self, report_id: str) -> ReportInfo | None:
        try:
            return await with_timeout(
                self._reports.get_report(report_id),
                self._config.timeout_seconds,
            )
        except (asyncio.TimeoutError, TransientGatewayError, ConnectionError) as e:
            logger.error(f"Report lookup for {report_id} failed: {e}")
            raise UnavailableError(
                "The report service is temporarily unavailable. Please retry shortly."
            ) from e

    async def _store(self, awaitable: Awaitable[T]) -> T:
        try:
            return await with_timeout(awaitable, self._config.timeout_seconds)
        except IntegrityError:
            # Constraint violations are conflicts, not outages
            raise
        except (asyncio.TimeoutError, DBAPIError) as e:
            logger.error(f"Appeal store call failed: {e}")
            raise UnavailableError(
                "The appeal store is temporarily unavailable. Please retry shortly."
            ) from e

    async def _after_commit(self, appeal: Appeal, result: TransitionResult) -> None:
        if self._feed is not None:
            self._feed.notify_changed()
        if result.effects:
            await self._dispatcher.dispatch(result.effects)
