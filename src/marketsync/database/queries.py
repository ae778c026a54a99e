"""High-level async helpers for interacting with the persistence layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketsync.domain.markets import CanonicalMarket, CanonicalReward, CanonicalToken
from marketsync.domain.sync import SyncKind, SyncRunStatus

from .models import Market, Reward, SyncRun, Token

_MARKET_FIELDS = (
    "question_id",
    "question",
    "slug",
    "category",
    "end_date",
    "event_start_date",
    "active",
    "closed",
    "minimum_order_size",
    "minimum_tick_size",
    "min_incentive_size",
    "max_incentive_spread",
    "settlement_delay_seconds",
    "icon",
    "market_maker_address",
    "liquidity",
    "volume",
)


async def upsert_market(
    session: AsyncSession,
    market: CanonicalMarket,
    *,
    synced_at: datetime,
) -> tuple[Market, bool]:
    """Insert or update a market keyed by external id.

    Returns the persisted row and whether it was newly created. Both
    ``last_synced_at`` and ``updated_at`` are set to ``synced_at``.
    """

    stmt = select(Market).where(Market.external_id == market.external_id)
    result = await session.execute(stmt)
    row = result.scalar_one_or_none()
    created = row is None
    if row is None:
        row = Market(external_id=market.external_id, created_at=synced_at)
        session.add(row)
    for name in _MARKET_FIELDS:
        setattr(row, name, getattr(market, name))
    row.last_synced_at = synced_at
    row.updated_at = synced_at
    await session.flush()
    return row, created


async def replace_tokens(
    session: AsyncSession,
    *,
    external_id: str,
    tokens: Iterable[CanonicalToken],
    synced_at: datetime,
) -> list[Token]:
    """Make the market's token rows exactly match ``tokens``, keyed by token id.

    Rows whose label or owning market changed are deleted and re-inserted so
    the per-market outcome uniqueness constraint holds at every flush.
    """

    wanted = {token.token_id: token.outcome_label for token in tokens}
    stmt = select(Token).where(
        or_(Token.external_id == external_id, Token.token_id.in_(list(wanted)))
    )
    existing = (await session.execute(stmt)).scalars().all()

    kept: dict[str, Token] = {}
    for token in existing:
        if token.external_id == external_id and wanted.get(token.token_id) == token.outcome_label:
            token.updated_at = synced_at
            kept[token.token_id] = token
        else:
            await session.delete(token)
    await session.flush()

    for token_id, label in wanted.items():
        if token_id in kept:
            continue
        token = Token(
            token_id=token_id,
            external_id=external_id,
            outcome_label=label,
            created_at=synced_at,
            updated_at=synced_at,
        )
        session.add(token)
        kept[token_id] = token
    await session.flush()
    return list(kept.values())


async def upsert_reward(
    session: AsyncSession,
    *,
    external_id: str,
    reward: CanonicalReward | None,
    synced_at: datetime,
) -> Reward | None:
    """Insert, update or remove the reward row for a market."""

    stmt = select(Reward).where(Reward.external_id == external_id)
    row = (await session.execute(stmt)).scalar_one_or_none()
    if reward is None:
        if row is not None:
            await session.delete(row)
            await session.flush()
        return None

    if row is None:
        row = Reward(external_id=external_id, created_at=synced_at)
        session.add(row)
    row.min_size = reward.min_size
    row.max_spread = reward.max_spread
    row.event_start_date = reward.event_start_date
    row.event_end_date = reward.event_end_date
    row.in_game_multiplier = reward.in_game_multiplier
    row.reward_epoch = reward.reward_epoch
    row.updated_at = synced_at
    await session.flush()
    return row


async def mark_active_for_review(session: AsyncSession, *, marked_at: datetime) -> int:
    """Backdate ``last_synced_at`` on every active market; flags are untouched."""

    stmt = (
        update(Market)
        .where(Market.active.is_(True))
        .values(last_synced_at=marked_at, updated_at=Market.updated_at)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount or 0


async def deactivate_unsynced(
    session: AsyncSession,
    *,
    synced_before: datetime,
    updated_at: datetime,
) -> list[str]:
    """Close every active market not synced since ``synced_before``.

    Returns the external ids that were flipped.
    """

    ids_stmt = select(Market.external_id).where(
        Market.active.is_(True),
        Market.last_synced_at < synced_before,
    )
    external_ids = list((await session.execute(ids_stmt)).scalars().all())
    if not external_ids:
        return []

    stmt = (
        update(Market)
        .where(Market.external_id.in_(external_ids))
        .values(active=False, closed=True, updated_at=updated_at)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
    return external_ids


async def delete_markets_ended_before(session: AsyncSession, *, cutoff: datetime) -> list[str]:
    """Delete markets whose end date precedes ``cutoff`` with their tokens and rewards."""

    ids_stmt = select(Market.external_id).where(
        Market.end_date.is_not(None),
        Market.end_date < cutoff,
    )
    external_ids = list((await session.execute(ids_stmt)).scalars().all())
    if not external_ids:
        return []

    # Children go first so the purge does not depend on the backend honouring ON DELETE CASCADE.
    await session.execute(
        delete(Token).where(Token.external_id.in_(external_ids)).execution_options(
            synchronize_session=False
        )
    )
    await session.execute(
        delete(Reward).where(Reward.external_id.in_(external_ids)).execution_options(
            synchronize_session=False
        )
    )
    await session.execute(
        delete(Market).where(Market.external_id.in_(external_ids)).execution_options(
            synchronize_session=False
        )
    )
    return external_ids


async def create_sync_run(
    session: AsyncSession,
    *,
    sync_kind: SyncKind,
    started_at: datetime,
    search_term: str | None = None,
    details: dict[str, Any] | None = None,
) -> SyncRun:
    """Persist a new sync run in the running state."""

    run = SyncRun(
        sync_kind=sync_kind,
        status=SyncRunStatus.RUNNING,
        search_term=search_term,
        started_at=started_at,
        details=details or {},
    )
    session.add(run)
    await session.flush()
    return run


async def finish_sync_run(
    session: AsyncSession,
    *,
    run_id: int,
    status: SyncRunStatus,
    finished_at: datetime,
    records_processed: int,
    error_message: str | None = None,
    details: dict[str, Any] | None = None,
) -> SyncRun | None:
    """Record the outcome of a sync run."""

    run = await session.get(SyncRun, run_id)
    if run is None:
        return None
    run.status = status
    run.finished_at = finished_at
    run.records_processed = records_processed
    run.error_message = error_message
    if details is not None:
        run.details = details
    await session.flush()
    return run


async def get_last_successful_run(session: AsyncSession) -> SyncRun | None:
    """Return the most recently finished successful run."""

    stmt = (
        select(SyncRun)
        .where(SyncRun.status == SyncRunStatus.SUCCESS)
        .order_by(SyncRun.finished_at.desc(), SyncRun.id.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_latest_run(session: AsyncSession) -> SyncRun | None:
    """Return the most recently started run regardless of outcome."""

    stmt = select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()


async def count_sync_runs(session: AsyncSession) -> int:
    """Return the number of recorded sync runs."""

    result = await session.execute(select(func.count()).select_from(SyncRun))
    return int(result.scalar_one())


async def get_market(session: AsyncSession, external_id: str) -> Market | None:
    """Return a market by its external identifier."""

    stmt = select(Market).where(Market.external_id == external_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def search_markets(session: AsyncSession, term: str, *, limit: int = 5) -> list[Market]:
    """Return open markets whose question, slug or category contains ``term``."""

    clean = term.replace('"', "").replace("'", "").strip().lower()
    if not clean:
        return []
    pattern = f"%{clean}%"
    stmt = (
        select(Market)
        .where(
            Market.active.is_(True),
            Market.closed.is_(False),
            or_(
                func.lower(Market.question).like(pattern),
                func.lower(Market.slug).like(pattern),
                func.lower(Market.category).like(pattern),
            ),
        )
        .order_by(Market.last_synced_at.desc(), Market.liquidity.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


__all__ = [
    "count_sync_runs",
    "create_sync_run",
    "deactivate_unsynced",
    "delete_markets_ended_before",
    "finish_sync_run",
    "get_last_successful_run",
    "get_latest_run",
    "get_market",
    "mark_active_for_review",
    "replace_tokens",
    "search_markets",
    "upsert_market",
    "upsert_reward",
]
