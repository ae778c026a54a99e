"""FastAPI application for the market sync service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from marketsync.config import get_settings
from marketsync.database import async_session_factory, dispose_engine, init_models
from marketsync.database.queries import get_market, search_markets
from marketsync.domain import PassStatus, PassSummary, SyncHealth, SyncKind
from marketsync.services.base import create_app
from marketsync.sync import SyncEngine, SyncScheduler

logger = get_logger(__name__)

sync_router = APIRouter(prefix="/sync", tags=["Sync"])
markets_router = APIRouter(prefix="/markets", tags=["Markets"])


class TriggerRequest(BaseModel):
    """Manual trigger body; an empty search term means a full pass."""

    search_term: Optional[str] = None


class TokenView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    token_id: str
    outcome_label: str


class MarketView(BaseModel):
    """Market as served to discovery and display features."""

    model_config = ConfigDict(from_attributes=True)

    external_id: str
    question: str
    slug: str
    category: Optional[str] = None
    end_date: Optional[datetime] = None
    active: bool
    closed: bool
    liquidity: float
    volume: float
    minimum_order_size: Optional[str] = None
    minimum_tick_size: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    tokens: list[TokenView] = []


def _scheduler(request: Request) -> SyncScheduler | None:
    return request.app.state.scheduler


def _session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    factory = request.app.state.session_factory
    if factory is None:
        raise HTTPException(status_code=503, detail="market store is not configured")
    return factory


@sync_router.post("/trigger")
async def trigger_sync(request: Request, body: TriggerRequest | None = None) -> PassSummary:
    """Run a manual pass and return its summary, including dropped or declined triggers."""

    search_term = body.search_term if body is not None else None
    scheduler = _scheduler(request)
    if scheduler is None:
        logger.warning("sync_unavailable", kind=SyncKind.MANUAL.value, reason="no_scheduler")
        return PassSummary(
            kind=SyncKind.MANUAL,
            status=PassStatus.UNAVAILABLE,
            search_term=search_term,
            error="market sync is not running",
        )
    return await scheduler.trigger(SyncKind.MANUAL, search_term)


@sync_router.get("/status")
async def sync_status(request: Request) -> SyncHealth:
    scheduler = _scheduler(request)
    if scheduler is None:
        return SyncHealth(running=False, interval_seconds=get_settings().sync.interval_seconds)
    return await scheduler.status()


@markets_router.get("/search")
async def search(
    request: Request,
    q: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=50),
) -> list[MarketView]:
    """Return open markets whose question, slug or category contains the term."""

    async with _session_factory(request)() as session:
        markets = await search_markets(session, q, limit=limit)
        return [MarketView.model_validate(market) for market in markets]


@markets_router.get("/{external_id}")
async def market_detail(request: Request, external_id: str) -> MarketView:
    async with _session_factory(request)() as session:
        market = await get_market(session, external_id)
        if market is None:
            raise HTTPException(status_code=404, detail="market not found")
        return MarketView.model_validate(market)


def build_app(
    *,
    scheduler: SyncScheduler | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Return configured FastAPI application.

    Without an injected scheduler the lifespan builds one from settings,
    creates missing tables and arms the startup and recurring timers. An
    unreachable store at startup is logged and left for the first pass to
    retry.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.scheduler is None
        engine: SyncEngine | None = None
        if owned:
            settings = get_settings()
            factory = async_session_factory()
            schema_hook = None
            try:
                await init_models()
            except (SQLAlchemyError, OSError) as exc:
                # Serve health anyway; the first pass retries schema creation.
                logger.warning("sync_store_unavailable", operation="init_models", error=str(exc))
                schema_hook = init_models
            engine = SyncEngine.from_settings(settings, factory, schema_hook=schema_hook)
            app.state.session_factory = factory
            app.state.scheduler = SyncScheduler.from_settings(engine, settings.sync)
            app.state.scheduler.start()
        try:
            yield
        finally:
            if owned:
                await app.state.scheduler.stop()
                if engine is not None:
                    await engine.source.close()
                await dispose_engine()
                app.state.scheduler = None
                app.state.session_factory = None

    app = create_app("sync", lifespan=lifespan)
    app.state.scheduler = scheduler
    if session_factory is None and scheduler is not None and scheduler.engine is not None:
        session_factory = scheduler.engine.session_factory
    app.state.session_factory = session_factory
    app.include_router(sync_router)
    app.include_router(markets_router)
    return app
