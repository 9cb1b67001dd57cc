"""
Live appeal feed for reviewer dashboards.

Subscribers receive the full list of matching appeals, newest submission
first, whenever it changes. The engine wakes subscribers after each commit;
a poll interval catches changes made by other processes. Store failures
produce an empty snapshot instead of ending the stream.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.retry import with_timeout
from ..models import Appeal, AppealStatus

logger = logging.getLogger(__name__)


class AppealFeed:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval: float = 5.0,
        timeout_seconds: float = 10.0,
    ):
        self._session_factory = session_factory
        self._poll_interval = poll_interval
        self._timeout = timeout_seconds
        self._waiters: set[asyncio.Event] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._waiters)

    def notify_changed(self) -> None:
        """Wake every subscriber so it re-reads its snapshot."""
        for event in list(self._waiters):
            event.set()

    async def snapshot(self, status_filter: AppealStatus | str | None = None) -> list[Appeal]:
        """Current matching appeals, or an empty list if the store fails."""
        status = _parse_filter(status_filter)
        query = select(Appeal).order_by(Appeal.submitted_at.desc())
        if status is not None:
            query = query.where(Appeal.status == status)

        try:
            return list(await with_timeout(self._fetch(query), self._timeout))
        except (SQLAlchemyError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Error in appeals subscription: {e}")
            return []

    async def subscribe(
        self,
        status_filter: AppealStatus | str | None = None,
    ) -> AsyncIterator[list[Appeal]]:
        """Yield a snapshot now and again every time the matching set changes."""
        event = asyncio.Event()
        self._waiters.add(event)
        last_fingerprint: tuple | None = None

        try:
            while True:
                event.clear()
                appeals = await self.snapshot(status_filter)

                fingerprint = tuple((a.id, a.version_id) for a in appeals)
                if fingerprint != last_fingerprint:
                    last_fingerprint = fingerprint
                    yield appeals

                try:
                    await asyncio.wait_for(event.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._waiters.discard(event)

    async def _fetch(self, query) -> Sequence[Appeal]:
        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalars().all()


def _parse_filter(status_filter: AppealStatus | str | None) -> AppealStatus | None:
    if status_filter is None or status_filter == "all":
        return None
    return AppealStatus(status_filter)
