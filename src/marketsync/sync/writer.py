"""Transactional per-record upserts into the market store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from marketsync.database.queries import replace_tokens, upsert_market, upsert_reward
from marketsync.domain.markets import CanonicalMarket

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class Written:
    """Market, tokens and reward committed together."""

    external_id: str
    created: bool


@dataclass(slots=True, frozen=True)
class Skipped:
    """Record not written; nothing from it was committed."""

    external_id: str
    reason: str
    detail: str | None = None


WriteResult = Union[Written, Skipped]


class StoreWriter:
    """Upserts one canonical market per transaction and never raises on bad records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(UTC))

    def check_end_date(self, market: CanonicalMarket, now: datetime) -> str | None:
        """Write-time guard against stale records that slipped past the transformer."""

        if market.end_date is None:
            return None
        if market.end_date.year < now.year:
            return "end_date_previous_year"
        if market.end_date <= now:
            return "end_date_passed"
        return None

    async def upsert(self, market: CanonicalMarket) -> WriteResult:
        now = self._clock()
        reason = self.check_end_date(market, now)
        if reason is not None:
            logger.warning(
                "market_write_blocked",
                external_id=market.external_id,
                reason=reason,
                end_date=market.end_date.isoformat() if market.end_date else None,
            )
            return Skipped(market.external_id, reason)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    _, created = await upsert_market(session, market, synced_at=now)
                    await replace_tokens(
                        session,
                        external_id=market.external_id,
                        tokens=market.tokens,
                        synced_at=now,
                    )
                    await upsert_reward(
                        session,
                        external_id=market.external_id,
                        reward=market.reward,
                        synced_at=now,
                    )
        except (SQLAlchemyError, ValueError) as exc:
            logger.error(
                "market_write_failed",
                external_id=market.external_id,
                question=market.question[:100],
                error=str(exc),
            )
            return Skipped(market.external_id, "write_failed", str(exc))

        return Written(market.external_id, created)


__all__ = ["Skipped", "StoreWriter", "WriteResult", "Written"]
