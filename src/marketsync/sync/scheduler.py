"""Startup, recurring and manual triggers behind a single-flight guard."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from structlog import get_logger

from marketsync.config.settings import SyncPolicySettings
from marketsync.database.queries import get_last_successful_run, get_latest_run
from marketsync.domain.sync import PassStatus, PassSummary, SyncHealth, SyncKind

from .engine import SyncEngine

logger = get_logger(__name__)


class SyncScheduler:
    """Owns the timers and guarantees at most one pass in flight.

    Triggers that arrive while a pass is running are dropped, not queued.
    """

    def __init__(
        self,
        engine: SyncEngine | None,
        *,
        interval: timedelta = timedelta(hours=24),
        startup_delay: timedelta = timedelta(seconds=5),
        run_on_startup: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.interval = interval
        self.startup_delay = startup_delay
        self.run_on_startup = run_on_startup
        self._clock = clock or (lambda: datetime.now(UTC))
        self._in_flight = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._next_run_at: datetime | None = None
        self.last_summary: PassSummary | None = None

    @classmethod
    def from_settings(
        cls, engine: SyncEngine | None, policy: SyncPolicySettings
    ) -> SyncScheduler:
        return cls(
            engine,
            interval=policy.interval,
            startup_delay=timedelta(seconds=policy.startup_delay_seconds),
            run_on_startup=policy.on_startup,
        )

    @property
    def is_running(self) -> bool:
        return self._in_flight

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    async def trigger(
        self, kind: SyncKind = SyncKind.MANUAL, search_term: str | None = None
    ) -> PassSummary:
        """Run a pass now unless one is already in flight."""

        if self.engine is None:
            logger.warning("sync_unavailable", kind=kind.value, reason="no_store_configured")
            return PassSummary(
                kind=kind,
                status=PassStatus.UNAVAILABLE,
                search_term=search_term,
                error="market store is not configured",
            )

        # Check-and-set with no await in between.
        if self._in_flight:
            logger.warning("sync_trigger_dropped", kind=kind.value, search=search_term)
            return PassSummary(
                kind=kind,
                status=PassStatus.SKIPPED,
                search_term=search_term,
                error="a sync pass is already running",
            )
        self._in_flight = True
        self._idle.clear()

        try:
            summary = await self.engine.run_pass(kind, search_term)
        except Exception as exc:
            logger.error("sync_trigger_failed", kind=kind.value, error=str(exc))
            summary = PassSummary(
                kind=kind,
                status=PassStatus.FAILED,
                search_term=search_term,
                error=str(exc) or type(exc).__name__,
            )
        finally:
            self._in_flight = False
            self._idle.set()

        self.last_summary = summary
        return summary

    async def _loop(self) -> None:
        if self.run_on_startup:
            self._next_run_at = self._clock() + self.startup_delay
            await asyncio.sleep(self.startup_delay.total_seconds())
            if self._stopping:
                return
            await self.trigger(SyncKind.STARTUP)

        while True:
            self._next_run_at = self._clock() + self.interval
            await asyncio.sleep(self.interval.total_seconds())
            if self._stopping:
                return
            await self.trigger(SyncKind.SCHEDULED)

    def start(self) -> None:
        """Arm the startup and recurring timers."""

        if self.engine is None:
            logger.warning("sync_scheduler_disabled", reason="no_store_configured")
            return
        if self.started:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name="market-sync-scheduler")
        logger.info(
            "sync_scheduler_started",
            interval_seconds=int(self.interval.total_seconds()),
            run_on_startup=self.run_on_startup,
        )

    async def stop(self) -> None:
        """Cancel pending timers after any in-flight pass has finished."""

        # The loop checks this after every sleep, so no new pass starts while draining.
        self._stopping = True
        await self._idle.wait()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._next_run_at = None
        logger.info("sync_scheduler_stopped")

    async def status(self) -> SyncHealth:
        health = SyncHealth(
            running=self._in_flight,
            interval_seconds=int(self.interval.total_seconds()),
            next_run_at=self._next_run_at,
        )
        if self.engine is None:
            return health

        try:
            async with self.engine.session_factory() as session:
                last_success = await get_last_successful_run(session)
                latest = await get_latest_run(session)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("sync_store_unavailable", operation="status", error=str(exc))
            return health

        if last_success is not None:
            health.last_success_at = last_success.finished_at
        if latest is not None:
            health.last_run_status = latest.status
            health.last_run_finished_at = latest.finished_at
            health.last_records_processed = latest.records_processed
        return health


__all__ = ["SyncScheduler"]
