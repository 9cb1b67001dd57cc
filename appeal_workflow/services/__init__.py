"""Business logic services for the appeal workflow."""

from .appeal_engine import AppealEngine, EngineConfig, SubmitAppealInput
from .appeal_feed import AppealFeed
from .appeal_monitor import AppealMonitor, MonitorConfig
from .effects import DispatchConfig, EffectDispatcher, Notify, NotifyRoles, UpdateReport
from .errors import (
    AppealError,
    AppealNotFoundError,
    AppealValidationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    ReportNotFoundError,
    UnavailableError,
)
from .gateways import (
    NotificationDispatcher,
    NotificationLogDispatcher,
    ReportGateway,
    ReportInfo,
    RoleDirectory,
    SqlReportGateway,
    SqlRoleDirectory,
    TransientGatewayError,
)
from .notification_service import NotificationService, WebhookConfig

__all__ = [
    # Engine
    "AppealEngine",
    "EngineConfig",
    "SubmitAppealInput",
    "AppealFeed",
    "AppealMonitor",
    "MonitorConfig",
    # Effects
    "EffectDispatcher",
    "DispatchConfig",
    "Notify",
    "NotifyRoles",
    "UpdateReport",
    # Errors
    "AppealError",
    "AppealNotFoundError",
    "ReportNotFoundError",
    "ForbiddenError",
    "InvalidStateError",
    "ConflictError",
    "UnavailableError",
    "AppealValidationError",
    # Collaborators
    "ReportGateway",
    "RoleDirectory",
    "NotificationDispatcher",
    "ReportInfo",
    "TransientGatewayError",
    "SqlReportGateway",
    "SqlRoleDirectory",
    "NotificationLogDispatcher",
    # Delivery
    "NotificationService",
    "WebhookConfig",
]
