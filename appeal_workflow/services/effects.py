"""
Side effects produced by appeal transitions, and the dispatcher that runs them.

Transitions never talk to collaborators directly. They return effect
values; the engine hands them to EffectDispatcher once the state write has
committed (or, for required report write-backs, just before it commits).

- Notifications are fire-and-forget: failures are logged and swallowed.
- Report updates are retried with bounded backoff. A required update that
  still fails raises UnavailableError; an optional one is logged.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from ..core.retry import call_with_backoff, with_timeout
from .errors import UnavailableError
from .gateways import NotificationDispatcher, ReportGateway, RoleDirectory, TransientGatewayError

logger = logging.getLogger(__name__)


# =============================================================================
# EFFECTS
# =============================================================================


@dataclass(frozen=True)
class Notify:
    """One message to one user."""
    recipient_id: str
    title: str
    body: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class NotifyRoles:
    """Fan-out to every user holding one of ``roles``."""
    roles: tuple[str, ...]
    title: str
    body: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateReport:
    """Write appeal outcome fields back to the disputed report."""
    report_id: str
    status: str | None  # None keeps the report's current status
    metadata: dict = field(default_factory=dict)
    required: bool = False


Effect = Union[Notify, NotifyRoles, UpdateReport]


@dataclass
class DispatchConfig:
    timeout_seconds: float = 10.0
    max_retries: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0


# =============================================================================
# DISPATCHER
# =============================================================================


class EffectDispatcher:
    """Executes effects against the external collaborators."""

    def __init__(
        self,
        report_gateway: ReportGateway,
        role_directory: RoleDirectory,
        notifier: NotificationDispatcher,
        config: DispatchConfig | None = None,
    ):
        self._reports = report_gateway
        self._roles = role_directory
        self._notifier = notifier
        self._config = config or DispatchConfig()

    async def apply_required(self, effects: list[Effect]) -> None:
        """Run report write-backs that must succeed before the transition commits."""
        for effect in effects:
            if isinstance(effect, UpdateReport):
                await self._update_report(effect)
            else:
                raise TypeError(f"Only report updates can be required, got {effect!r}")

    async def dispatch(self, effects: list[Effect]) -> None:
        """Run post-commit effects. Never raises for notification failures."""
        # Report first so recipients never see an outcome the report does not show yet
        for effect in effects:
            if isinstance(effect, UpdateReport):
                try:
                    await self._update_report(effect)
                except UnavailableError as e:
                    logger.error(f"Report {effect.report_id} update skipped: {e}")

        for effect in effects:
            if isinstance(effect, Notify):
                await self._notify_safely(effect.recipient_id, effect.title, effect.body, effect.metadata)
            elif isinstance(effect, NotifyRoles):
                await self._notify_roles(effect)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _update_report(self, effect: UpdateReport) -> None:
        async def attempt() -> None:
            await with_timeout(
                self._reports.set_report_status(effect.report_id, effect.status, effect.metadata),
                self._config.timeout_seconds,
            )

        try:
            await call_with_backoff(
                attempt,
                retry_on=(TransientGatewayError, asyncio.TimeoutError, ConnectionError),
                max_retries=self._config.max_retries,
                base_delay=self._config.base_delay_seconds,
                max_delay=self._config.max_delay_seconds,
                description=f"Report {effect.report_id} update",
            )
        except (TransientGatewayError, asyncio.TimeoutError, ConnectionError) as e:
            raise UnavailableError(
                "The report service is temporarily unavailable. Please retry shortly."
            ) from e

    async def _notify_roles(self, effect: NotifyRoles) -> None:
        try:
            recipients = await with_timeout(
                self._roles.users_with_role(*effect.roles),
                self._config.timeout_seconds,
            )
        except Exception as e:
            logger.error(f"Could not resolve users for roles {effect.roles}: {e}")
            return

        for recipient_id in recipients:
            await self._notify_safely(recipient_id, effect.title, effect.body, effect.metadata)

    async def _notify_safely(
        self,
        recipient_id: str,
        title: str,
        body: str,
        metadata: dict[str, Any],
    ) -> None:
        try:
            await with_timeout(
                self._notifier.notify(recipient_id, title, body, metadata),
                self._config.timeout_seconds,
            )
            logger.info(f"Notification sent to user {recipient_id}: {title}")
        except Exception as e:
            logger.error(f"Failed to notify user {recipient_id} ({title}): {e}")
