"""Mark-and-sweep staleness detection for markets that vanish from the feed.

The listings feed is a full snapshot, not a diff. Before the write loop every
active market is backdated to just before the pass started; every market the
loop upserts moves forward again. Whatever is still behind the pass start
when the loop finishes was absent from the snapshot and gets closed.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from marketsync.database.queries import deactivate_unsynced, mark_active_for_review

logger = get_logger(__name__)


class StalenessReconciler:
    """Brackets one full pass with a mark step and a sweep step."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        mark_offset: timedelta = timedelta(seconds=1),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if mark_offset <= timedelta(0):
            raise ValueError("mark_offset must be positive")
        self._session_factory = session_factory
        self.mark_offset = mark_offset
        self._clock = clock or (lambda: datetime.now(UTC))

    async def mark_for_review(self, pass_started_at: datetime) -> int:
        """Backdate every active market to strictly before the pass start."""

        marked_at = pass_started_at - self.mark_offset
        async with self._session_factory() as session:
            async with session.begin():
                count = await mark_active_for_review(session, marked_at=marked_at)
        logger.info("markets_marked_for_review", count=count, marked_at=marked_at.isoformat())
        return count

    async def sweep(self, pass_started_at: datetime) -> int:
        """Close active markets that were not upserted since the pass started."""

        async with self._session_factory() as session:
            async with session.begin():
                external_ids = await deactivate_unsynced(
                    session,
                    synced_before=pass_started_at,
                    updated_at=self._clock(),
                )
        if external_ids:
            logger.info(
                "stale_markets_deactivated",
                count=len(external_ids),
                sample=external_ids[:5],
            )
        return len(external_ids)


__all__ = ["StalenessReconciler"]
