"""
Appeal state machine: precondition checks and record updates per transition.

Transition functions mutate the Appeal they are given and return the side
effects the change must produce. They never perform I/O; the engine loads
the record, calls the transition inside a transaction and dispatches the
returned effects once the write has committed.

Stage flow:

    SUBMITTED (1) -> UNDER_ADMIN_REVIEW (2) -> DOCUMENTED (3)
        -> WITH_DEPARTMENT (4) -> WITH_DEPARTMENT (5) -> WITH_PRESIDENT (6)
        -> APPROVED | DISAPPROVED (6) -> COMPLETED (10)

Stages 3, 4, 6 and 10 have no human decision point. They are reached through
``next_automatic_transition``, which the engine calls in a loop after every
human step.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum as PyEnum
from uuid import uuid4

from ..models import (
    DECISION_STAGE,
    TERMINAL_STAGE,
    TOTAL_STAGES,
    AdminAction,
    Appeal,
    AppealStatus,
    NotificationType,
    PresidentDecision,
    ReportStatus,
    StageKey,
    UserRole,
    empty_stage_timestamps,
)
from .effects import Effect, Notify, NotifyRoles, UpdateReport
from .errors import AppealValidationError, InvalidStateError
from .gateways import ReportInfo


ADMIN_ROLES = (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)
DEPARTMENT_ROLES = (UserRole.DEPARTMENT_HEAD.value,)

DECIDED_STATUSES = (AppealStatus.APPROVED, AppealStatus.DISAPPROVED)


class Transition(str, PyEnum):
    SUBMIT = "submit"
    ADMIN_REVIEW = "admin_review"
    DOCUMENT = "document"
    FORWARD_TO_DEPARTMENT = "forward_to_department"
    DEPARTMENT_REVIEW = "department_review"
    FORWARD_TO_PRESIDENT = "forward_to_president"
    PRESIDENT_DECISION = "president_decision"
    SYNC_REPORT = "sync_report"
    COMPLETE = "complete"


@dataclass
class TransitionResult:
    """Outcome of one transition.

    ``required_effects`` must succeed before the state write commits;
    ``effects`` run after it. ``changed`` is False when the transition was
    already applied and nothing was written.
    """
    transition: Transition
    effects: list[Effect] = field(default_factory=list)
    required_effects: list[Effect] = field(default_factory=list)
    changed: bool = True


# =============================================================================
# SUBMISSION
# =============================================================================


def open_appeal(
    report: ReportInfo,
    user_id: str,
    reason: str,
    evidence: list[str],
    now: datetime,
    window_days: int = 10,
    user_name: str | None = None,
    user_email: str | None = None,
) -> tuple[Appeal, TransitionResult]:
    """Build a stage-1 appeal for ``report``. Ownership and status checks are the caller's."""
    appeal_id = uuid4()
    timestamps = empty_stage_timestamps()
    timestamps[StageKey.SUBMITTED.value] = now.isoformat()

    appeal = Appeal(
        id=appeal_id,
        report_id=report.id,
        user_id=user_id,
        user_name=user_name or "Unknown",
        user_email=user_email or "",
        report_title=report.title or "Untitled Report",
        reason=reason,
        evidence=list(evidence),
        status=AppealStatus.SUBMITTED,
        current_stage=1,
        total_stages=TOTAL_STAGES,
        submitted_at=now,
        deadline=now + timedelta(days=window_days),
        stage_timestamps=timestamps,
        active_report_id=report.id,
        created_at=now,
        updated_at=now,
    )

    metadata = {"appealId": str(appeal_id), "reportId": report.id}
    effects: list[Effect] = [
        UpdateReport(
            report_id=report.id,
            status=None,
            metadata={
                "appeal_status": AppealStatus.SUBMITTED.value,
                "appeal_id": str(appeal_id),
                "can_appeal": False,
                "appealed_at": now.isoformat(),
            },
        ),
        Notify(
            recipient_id=user_id,
            title="Appeal Submitted Successfully",
            body=(
                f'Your appeal for "{appeal.report_title}" has been submitted and will be '
                "reviewed according to ISO 21001:2018 standards."
            ),
            metadata={"type": NotificationType.APPEAL_SUBMITTED.value, **metadata},
        ),
        NotifyRoles(
            roles=ADMIN_ROLES,
            title="New ISO Appeal Submitted",
            body=(
                f'{appeal.user_name} submitted an appeal for "{appeal.report_title}". '
                "Please review within 1 hour."
            ),
            metadata={"type": NotificationType.NEW_APPEAL.value, **metadata},
        ),
    ]
    return appeal, TransitionResult(Transition.SUBMIT, effects=effects)


# =============================================================================
# HUMAN STEPS
# =============================================================================


def admin_review(
    appeal: Appeal,
    admin_id: str,
    action: AdminAction | str,
    notes: str,
    now: datetime,
) -> TransitionResult:
    """Stage 2. A ``forward`` action lets the dispatch loop document the appeal."""
    try:
        action = AdminAction(action)
    except ValueError:
        raise AppealValidationError(
            f"Unknown admin action '{action}'. Use 'forward' or 'hold'."
        )

    _require_status(appeal, (AppealStatus.SUBMITTED,), "Only submitted appeals can be reviewed by an admin")

    appeal.assigned_admin = admin_id
    appeal.admin_action = action
    appeal.admin_notes = notes or ""
    _move(appeal, AppealStatus.UNDER_ADMIN_REVIEW, 2, now, StageKey.ADMIN_REVIEW)
    return TransitionResult(Transition.ADMIN_REVIEW)


def document(appeal: Appeal, officer_id: str, now: datetime) -> TransitionResult:
    _require_status(
        appeal,
        (AppealStatus.UNDER_ADMIN_REVIEW,),
        "Only appeals under admin review can be documented",
    )

    appeal.documented_by = officer_id
    _move(appeal, AppealStatus.DOCUMENTED, 3, now, StageKey.DOCUMENTED)
    return TransitionResult(Transition.DOCUMENT)


def department_review(
    appeal: Appeal,
    dept_head_id: str,
    proposal: str,
    now: datetime,
) -> TransitionResult:
    """Stage 5. Status stays WITH_DEPARTMENT; only the stage advances."""
    if appeal.status != AppealStatus.WITH_DEPARTMENT or appeal.current_stage != 4:
        raise InvalidStateError(
            f"Department review requires an appeal forwarded to the department "
            f"(currently {appeal.status.value}, stage {appeal.current_stage})"
        )

    appeal.assigned_dept_head = dept_head_id
    appeal.dept_proposal = proposal
    _move(appeal, AppealStatus.WITH_DEPARTMENT, 5, now, StageKey.DEPT_REVIEW)
    return TransitionResult(Transition.DEPARTMENT_REVIEW)


def president_decision(
    appeal: Appeal,
    president_id: str,
    decision: PresidentDecision | str,
    reasoning: str,
    now: datetime,
) -> TransitionResult:
    """
    Record the final decision at stage 6.

    The report write-back and the appellant's notification happen in the
    following ``sync_report`` step so that they are retried independently of
    this write.
    """
    try:
        decision = PresidentDecision(decision)
    except ValueError:
        raise AppealValidationError(
            f"Unknown decision '{decision}'. Use 'approve' or 'disapprove'."
        )

    if appeal.status != AppealStatus.WITH_PRESIDENT or appeal.current_stage != DECISION_STAGE:
        raise InvalidStateError(
            f"The president can only decide appeals awaiting a decision "
            f"(currently {appeal.status.value}, stage {appeal.current_stage})"
        )

    appeal.assigned_president = president_id
    appeal.president_decision = decision.value
    appeal.final_decision = reasoning
    status = AppealStatus.APPROVED if decision == PresidentDecision.APPROVE else AppealStatus.DISAPPROVED
    _move(appeal, status, DECISION_STAGE, now, StageKey.PRESIDENT_DECISION)
    return TransitionResult(Transition.PRESIDENT_DECISION)


# =============================================================================
# AUTOMATIC STEPS
# =============================================================================


def forward_to_department(appeal: Appeal, now: datetime) -> TransitionResult:
    _require_status(
        appeal,
        (AppealStatus.DOCUMENTED,),
        "Only documented appeals can be forwarded to the department",
    )

    _move(appeal, AppealStatus.WITH_DEPARTMENT, 4, now, StageKey.FORWARDED_TO_DEPT)
    return TransitionResult(
        Transition.FORWARD_TO_DEPARTMENT,
        effects=[
            NotifyRoles(
                roles=DEPARTMENT_ROLES,
                title="Appeal Forwarded to Department",
                body=(
                    f'An appeal for "{appeal.report_title}" has been forwarded to your '
                    "department. Review deadline: 3 days."
                ),
                metadata={
                    "type": NotificationType.APPEAL_DEPARTMENT.value,
                    "appealId": str(appeal.id),
                    "reportId": appeal.report_id,
                },
            )
        ],
    )


def forward_to_president(appeal: Appeal, now: datetime) -> TransitionResult:
    """Stage 6. Calling it again once the appeal is with the president does nothing."""
    if appeal.status == AppealStatus.WITH_PRESIDENT and appeal.current_stage == DECISION_STAGE:
        return TransitionResult(Transition.FORWARD_TO_PRESIDENT, changed=False)

    if appeal.status != AppealStatus.WITH_DEPARTMENT or appeal.current_stage != 5:
        raise InvalidStateError(
            f"Only appeals reviewed by the department can be forwarded to the president "
            f"(currently {appeal.status.value}, stage {appeal.current_stage})"
        )

    # Stage 6 has no entry key; its SLA runs from the department review stamp
    _move(appeal, AppealStatus.WITH_PRESIDENT, DECISION_STAGE, now)
    return TransitionResult(Transition.FORWARD_TO_PRESIDENT)


def sync_report(appeal: Appeal, now: datetime) -> TransitionResult:
    """Write the decision back to the report, then tell the appellant."""
    if appeal.status not in DECIDED_STATUSES:
        raise InvalidStateError("Only decided appeals can be written back to the report")
    if appeal.report_synced_at is not None:
        return TransitionResult(Transition.SYNC_REPORT, changed=False)

    metadata = {"appealId": str(appeal.id), "reportId": appeal.report_id}

    if appeal.status == AppealStatus.APPROVED:
        update = UpdateReport(
            report_id=appeal.report_id,
            status=ReportStatus.PENDING.value,
            metadata={
                "appeal_status": AppealStatus.APPROVED.value,
                "restored_by_appeal": True,
                "restored_at": now.isoformat(),
            },
            required=True,
        )
        notice = Notify(
            recipient_id=appeal.user_id,
            title="Appeal Approved!",
            body=(
                f'Your appeal for "{appeal.report_title}" has been APPROVED by the '
                "President. Your report has been restored."
            ),
            metadata={"type": NotificationType.APPEAL_APPROVED.value, **metadata},
        )
    else:
        update = UpdateReport(
            report_id=appeal.report_id,
            status=None,
            metadata={"appeal_status": AppealStatus.DISAPPROVED.value},
            required=True,
        )
        notice = Notify(
            recipient_id=appeal.user_id,
            title="Appeal Disapproved",
            body=(
                f'Your appeal for "{appeal.report_title}" has been reviewed and '
                f"disapproved. Reason: {appeal.final_decision}"
            ),
            metadata={"type": NotificationType.APPEAL_DISAPPROVED.value, **metadata},
        )

    appeal.report_synced_at = now
    appeal.updated_at = now
    return TransitionResult(
        Transition.SYNC_REPORT,
        effects=[notice],
        required_effects=[update],
    )


def complete(appeal: Appeal, now: datetime) -> TransitionResult:
    """Steps 7-10. Terminal; completing a completed appeal does nothing."""
    if appeal.status == AppealStatus.COMPLETED:
        return TransitionResult(Transition.COMPLETE, changed=False)

    _require_status(appeal, DECIDED_STATUSES, "Only decided appeals can be completed")
    if appeal.report_synced_at is None:
        raise InvalidStateError(
            "The decision has not been written back to the report yet. Retry to resume processing."
        )

    appeal.stamp_stage(StageKey.PROCESSED, now)
    _move(appeal, AppealStatus.COMPLETED, TERMINAL_STAGE, now, StageKey.COMPLETED)
    appeal.completed_at = now
    appeal.active_report_id = None
    return TransitionResult(Transition.COMPLETE)


# =============================================================================
# DISPATCH RULES
# =============================================================================


def next_automatic_transition(appeal: Appeal) -> Transition | None:
    """The clerical step that follows the appeal's current state, or None if a human must act."""
    status = appeal.status

    if status == AppealStatus.UNDER_ADMIN_REVIEW and appeal.admin_action == AdminAction.FORWARD:
        return Transition.DOCUMENT
    if status == AppealStatus.DOCUMENTED:
        return Transition.FORWARD_TO_DEPARTMENT
    if status == AppealStatus.WITH_DEPARTMENT and appeal.current_stage == 5:
        return Transition.FORWARD_TO_PRESIDENT
    if status in DECIDED_STATUSES:
        if appeal.report_synced_at is None:
            return Transition.SYNC_REPORT
        return Transition.COMPLETE
    return None


# =============================================================================
# INTERNAL HELPERS
# =============================================================================


def _require_status(appeal: Appeal, allowed: tuple[AppealStatus, ...], message: str) -> None:
    if appeal.status not in allowed:
        raise InvalidStateError(f"{message} (currently {appeal.status.value})")


def _move(
    appeal: Appeal,
    status: AppealStatus,
    stage: int,
    now: datetime,
    key: StageKey | None = None,
) -> None:
    """Set status and stage together, stamping the stage entry when it has a key."""
    if key is not None:
        appeal.stamp_stage(key, now)
    appeal.status = status
    appeal.current_stage = stage
    appeal.updated_at = now
