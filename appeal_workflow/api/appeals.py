"""
Appeal API Routes.

Appellant endpoints:
1. POST /appeals - Appeal a rejected report
2. GET /appeals/mine - The caller's appeals, newest first

Reviewer endpoints (role-gated):
3. POST /appeals/{id}/admin-review, /document, /department-review,
   /president-decision, /complete, /resume
4. GET /appeals?status= and GET /appeals/feed (server-sent events)
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from ..core.dependencies import (
    AdminDep,
    CurrentActorDep,
    DepartmentHeadDep,
    EngineDep,
    FeedDep,
    PresidentDep,
    ReviewerDep,
)
from ..models import Appeal, AppealStatus
from ..schemas import (
    AdminReviewRequest,
    AppealCreate,
    AppealListResponse,
    AppealResponse,
    AppealSummary,
    AppealTimelineResponse,
    DepartmentReviewRequest,
    PresidentDecisionRequest,
)
from ..services import deadlines
from ..services.appeal_engine import SubmitAppealInput
from ..services.errors import (
    AppealError,
    AppealNotFoundError,
    AppealValidationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    ReportNotFoundError,
    UnavailableError,
)

router = APIRouter(prefix="/appeals", tags=["appeals"])


_ERROR_STATUS = {
    AppealNotFoundError: status.HTTP_404_NOT_FOUND,
    ReportNotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    InvalidStateError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    UnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AppealValidationError: status.HTTP_422_UNPROCESSABLE_CONTENT,
}


def _http_error(e: AppealError) -> HTTPException:
    code = _ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": "5"} if isinstance(e, UnavailableError) else None
    return HTTPException(status_code=code, detail=e.message, headers=headers)


# =============================================================================
# APPELLANT
# =============================================================================


@router.post(
    "",
    response_model=AppealResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Appeal a rejected report",
)
async def submit_appeal(
    request: AppealCreate,
    actor: CurrentActorDep,
    engine: EngineDep,
) -> Appeal:
    try:
        return await engine.submit(
            request.report_id,
            actor.id,
            SubmitAppealInput(
                reason=request.reason,
                evidence=request.evidence,
                user_name=actor.name,
                user_email=actor.email,
            ),
        )
    except AppealError as e:
        raise _http_error(e)


@router.get(
    "/mine",
    response_model=list[AppealResponse],
    summary="List my appeals",
)
async def list_my_appeals(actor: CurrentActorDep, engine: EngineDep):
    try:
        return await engine.list_by_user(actor.id)
    except AppealError as e:
        raise _http_error(e)


# =============================================================================
# REVIEWER QUERIES
# =============================================================================


@router.get(
    "",
    response_model=AppealListResponse,
    summary="List appeals by status",
)
async def list_appeals(
    actor: ReviewerDep,
    engine: EngineDep,
    status_filter: AppealStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
) -> AppealListResponse:
    try:
        appeals = await engine.list_by_status(status_filter, limit=limit)
    except AppealError as e:
        raise _http_error(e)

    return AppealListResponse(
        items=[AppealSummary.model_validate(a) for a in appeals],
        total=len(appeals),
    )


@router.get(
    "/feed",
    summary="Live appeal feed (server-sent events)",
    response_class=StreamingResponse,
)
async def appeal_feed(
    actor: ReviewerDep,
    feed: FeedDep,
    status_filter: AppealStatus | None = Query(default=None, alias="status"),
) -> StreamingResponse:
    async def events():
        async for appeals in feed.subscribe(status_filter):
            snapshot = AppealListResponse(
                items=[AppealSummary.model_validate(a) for a in appeals],
                total=len(appeals),
            )
            yield f"data: {snapshot.model_dump_json()}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get(
    "/{appeal_id}",
    response_model=AppealResponse,
    summary="Get an appeal",
)
async def get_appeal(appeal_id: UUID, actor: CurrentActorDep, engine: EngineDep) -> Appeal:
    try:
        appeal = await engine.get_by_id(appeal_id)
    except AppealError as e:
        raise _http_error(e)

    if appeal.user_id != actor.id and not actor.is_reviewer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own appeals",
        )
    return appeal


@router.get(
    "/{appeal_id}/timeline",
    response_model=AppealTimelineResponse,
    summary="Deadlines for an appeal",
)
async def get_appeal_timeline(
    appeal_id: UUID,
    actor: CurrentActorDep,
    engine: EngineDep,
) -> AppealTimelineResponse:
    try:
        appeal = await engine.get_by_id(appeal_id)
    except AppealError as e:
        raise _http_error(e)

    if appeal.user_id != actor.id and not actor.is_reviewer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own appeals",
        )

    stage = deadlines.stage_time_remaining(appeal) if not appeal.is_terminal else None
    return AppealTimelineResponse(
        appeal_id=appeal.id,
        status=appeal.status,
        current_stage=appeal.current_stage,
        deadline=appeal.deadline,
        hours_remaining=deadlines.hours_remaining(appeal),
        is_overdue=not appeal.is_terminal and deadlines.is_overdue(appeal),
        is_deadline_approaching=not appeal.is_terminal and deadlines.is_deadline_approaching(appeal),
        stage_deadline=stage.deadline if stage else None,
        stage_hours_remaining=stage.hours_remaining if stage else None,
        is_stage_overdue=stage.is_overdue if stage else False,
        stage_timestamps=appeal.stage_timestamps,
    )


# =============================================================================
# REVIEWER ACTIONS
# =============================================================================


@router.post(
    "/{appeal_id}/admin-review",
    response_model=AppealResponse,
    summary="Admin review (stage 2)",
)
async def admin_review(
    appeal_id: UUID,
    request: AdminReviewRequest,
    actor: AdminDep,
    engine: EngineDep,
) -> Appeal:
    try:
        return await engine.admin_review(appeal_id, actor.id, request.action, request.notes)
    except AppealError as e:
        raise _http_error(e)


@router.post(
    "/{appeal_id}/document",
    response_model=AppealResponse,
    summary="Document an appeal held at admin review (stage 3)",
)
async def document_appeal(appeal_id: UUID, actor: AdminDep, engine: EngineDep) -> Appeal:
    try:
        return await engine.document(appeal_id, actor.id)
    except AppealError as e:
        raise _http_error(e)


@router.post(
    "/{appeal_id}/department-review",
    response_model=AppealResponse,
    summary="Department proposal (stage 5)",
)
async def department_review(
    appeal_id: UUID,
    request: DepartmentReviewRequest,
    actor: DepartmentHeadDep,
    engine: EngineDep,
) -> Appeal:
    try:
        return await engine.department_review(appeal_id, actor.id, request.proposal)
    except AppealError as e:
        raise _http_error(e)


@router.post(
    "/{appeal_id}/president-decision",
    response_model=AppealResponse,
    summary="Final decision (stage 6)",
)
async def president_decision(
    appeal_id: UUID,
    request: PresidentDecisionRequest,
    actor: PresidentDep,
    engine: EngineDep,
) -> Appeal:
    try:
        return await engine.president_decision(
            appeal_id, actor.id, request.decision, request.reasoning
        )
    except AppealError as e:
        raise _http_error(e)


@router.post(
    "/{appeal_id}/complete",
    response_model=AppealResponse,
    summary="Complete a decided appeal",
)
async def complete_appeal(appeal_id: UUID, actor: AdminDep, engine: EngineDep) -> Appeal:
    try:
        return await engine.complete(appeal_id)
    except AppealError as e:
        raise _http_error(e)


@router.post(
    "/{appeal_id}/resume",
    response_model=AppealResponse,
    summary="Resume automatic processing after a failure",
)
async def resume_appeal(appeal_id: UUID, actor: AdminDep, engine: EngineDep) -> Appeal:
    try:
        return await engine.resume(appeal_id)
    except AppealError as e:
        raise _http_error(e)
