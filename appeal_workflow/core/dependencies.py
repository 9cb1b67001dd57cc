"""FastAPI dependencies for authentication, authorization, and services."""

import logging
from functools import lru_cache
from typing import Annotated, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import UserRole
from ..services.appeal_engine import AppealEngine, EngineConfig
from ..services.appeal_feed import AppealFeed
from ..services.effects import DispatchConfig, EffectDispatcher
from ..services.gateways import NotificationLogDispatcher, SqlReportGateway, SqlRoleDirectory
from .config import Settings, get_settings
from .database import async_session_factory, get_session
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLES = (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)
DEPARTMENT_ROLES = (UserRole.DEPARTMENT_HEAD.value, UserRole.SUPER_ADMIN.value)
PRESIDENT_ROLES = (UserRole.PRESIDENT.value, UserRole.SUPER_ADMIN.value)
REVIEWER_ROLES = (
    UserRole.ADMIN.value,
    UserRole.SUPER_ADMIN.value,
    UserRole.DEPARTMENT_HEAD.value,
    UserRole.PRESIDENT.value,
)


class CurrentActor:
    """The authenticated caller, as described by their access token."""

    def __init__(
        self,
        id: str,
        role: str = UserRole.USER.value,
        name: str | None = None,
        email: str | None = None,
    ):
        self.id = id
        self.role = role
        self.name = name
        self.email = email

    def has_role(self, *roles: str) -> bool:
        return self.role in roles

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES


async def get_current_actor(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> CurrentActor:
    """Dependency to get the caller from the bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentActor(
        id=payload.sub,
        role=payload.role,
        name=payload.name,
        email=payload.email,
    )


def require_roles(*roles: str) -> Callable[..., CurrentActor]:
    """Build a dependency that only admits callers holding one of ``roles``."""

    def dependency(
        actor: Annotated[CurrentActor, Depends(get_current_actor)],
    ) -> CurrentActor:
        if not actor.has_role(*roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This action requires one of the roles: {', '.join(roles)}",
            )
        return actor

    return dependency


# =============================================================================
# SERVICES
# =============================================================================


def build_appeal_engine(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    feed: AppealFeed | None = None,
) -> AppealEngine:
    """Wire the engine to the SQL-backed collaborators."""
    reports = SqlReportGateway(session_factory)
    dispatcher = EffectDispatcher(
        report_gateway=reports,
        role_directory=SqlRoleDirectory(session_factory),
        notifier=NotificationLogDispatcher(session_factory),
        config=DispatchConfig(
            timeout_seconds=settings.collaborator_timeout_seconds,
            max_retries=settings.report_sync_max_retries,
            base_delay_seconds=settings.report_sync_base_delay_seconds,
            max_delay_seconds=settings.report_sync_max_delay_seconds,
        ),
    )
    return AppealEngine(
        session_factory,
        dispatcher,
        reports,
        config=EngineConfig.from_settings(settings),
        feed=feed,
    )


@lru_cache
def get_appeal_feed() -> AppealFeed:
    settings = get_settings()
    return AppealFeed(
        async_session_factory,
        poll_interval=settings.feed_poll_interval_seconds,
        timeout_seconds=settings.collaborator_timeout_seconds,
    )


@lru_cache
def get_appeal_engine() -> AppealEngine:
    return build_appeal_engine(async_session_factory, get_settings(), feed=get_appeal_feed())


# Type aliases for cleaner dependency injection
CurrentActorDep = Annotated[CurrentActor, Depends(get_current_actor)]
AdminDep = Annotated[CurrentActor, Depends(require_roles(*ADMIN_ROLES))]
DepartmentHeadDep = Annotated[CurrentActor, Depends(require_roles(*DEPARTMENT_ROLES))]
PresidentDep = Annotated[CurrentActor, Depends(require_roles(*PRESIDENT_ROLES))]
ReviewerDep = Annotated[CurrentActor, Depends(require_roles(*REVIEWER_ROLES))]
EngineDep = Annotated[AppealEngine, Depends(get_appeal_engine)]
FeedDep = Annotated[AppealFeed, Depends(get_appeal_feed)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
