"""Purge markets that ended long ago."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from marketsync.database.queries import delete_markets_ended_before

logger = get_logger(__name__)


class RetentionSweeper:
    """Deletes markets, with their tokens and reward, past the retention window."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        retention_window: timedelta = timedelta(days=30),
    ) -> None:
        self._session_factory = session_factory
        self.retention_window = retention_window

    async def purge(self, now: datetime) -> int:
        cutoff = now - self.retention_window
        async with self._session_factory() as session:
            async with session.begin():
                external_ids = await delete_markets_ended_before(session, cutoff=cutoff)
        if external_ids:
            logger.info(
                "expired_markets_purged",
                count=len(external_ids),
                cutoff=cutoff.isoformat(),
            )
        return len(external_ids)


__all__ = ["RetentionSweeper"]
