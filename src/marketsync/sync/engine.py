"""One synchronization pass: fetch, transform, write, reconcile, purge."""

from __future__ import annotations

from collections import Counter
from dataclasses import replace
from datetime import UTC, datetime
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from marketsync.config.settings import Settings
from marketsync.database.queries import create_sync_run, finish_sync_run
from marketsync.domain.sync import PassStatus, PassSummary, SyncKind, SyncRunStatus
from marketsync.ingest.base import ListingSource, UpstreamFilters, UpstreamPage
from marketsync.ingest.gamma import GammaClient

from .reconciler import StalenessReconciler
from .retention import RetentionSweeper
from .transform import RecordTransformer, Rejection
from .writer import Skipped, StoreWriter

logger = get_logger(__name__)


class SyncConfigurationError(RuntimeError):
    """Raised when a pass is requested without a configured store."""


class SyncEngine:
    """Runs a single pass against the listings feed and the market store.

    Full passes (no search term) bracket the write loop with mark-for-review
    and sweep so markets missing from the snapshot are closed. Scoped passes
    only upsert what they fetch. Retention runs after every pass.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        source: ListingSource,
        *,
        transformer: RecordTransformer,
        writer: StoreWriter,
        reconciler: StalenessReconciler,
        retention: RetentionSweeper,
        filters: UpstreamFilters | None = None,
        clock: Callable[[], datetime] | None = None,
        schema_hook: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        if session_factory is None:
            raise SyncConfigurationError("a session factory is required to run sync passes")
        self.session_factory = session_factory
        self.source = source
        self.transformer = transformer
        self.writer = writer
        self.reconciler = reconciler
        self.retention = retention
        self.filters = filters or UpstreamFilters()
        self._clock = clock or (lambda: datetime.now(UTC))
        # Pending schema creation; cleared once it succeeds.
        self._schema_hook = schema_hook

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        source: ListingSource | None = None,
        clock: Callable[[], datetime] | None = None,
        schema_hook: Callable[[], Awaitable[None]] | None = None,
    ) -> SyncEngine:
        policy = settings.sync
        return cls(
            session_factory,
            source or GammaClient.from_settings(settings.upstream),
            transformer=RecordTransformer(
                acceptance_grace=policy.acceptance_grace,
                min_liquidity=settings.upstream.min_liquidity,
                clock=clock,
            ),
            writer=StoreWriter(session_factory, clock=clock),
            reconciler=StalenessReconciler(
                session_factory,
                mark_offset=policy.mark_offset,
                clock=clock,
            ),
            retention=RetentionSweeper(session_factory, retention_window=policy.retention_window),
            filters=UpstreamFilters(
                min_liquidity=settings.upstream.min_liquidity,
                min_volume=settings.upstream.min_volume,
            ),
            clock=clock,
            schema_hook=schema_hook,
        )

    def filters_for(self, now: datetime) -> UpstreamFilters:
        """Ask upstream only for markets the transformer could still accept."""

        return replace(self.filters, end_date_min=(now - self.transformer.acceptance_grace).date())

    async def run_pass(self, kind: SyncKind, search_term: str | None = None) -> PassSummary:
        """Execute one pass and return its summary.

        Upstream failures are reported through the summary status. Any other
        exception marks the sync run as failed and propagates.
        """
        search_term = (search_term or "").strip() or None
        started_at = self._clock()
        summary = PassSummary(
            kind=kind,
            status=PassStatus.SUCCESS,
            search_term=search_term,
            started_at=started_at,
        )
        await self._ensure_schema()
        summary.run_id = await self._open_run(kind, started_at, search_term)
        logger.info(
            "sync_pass_started",
            run_id=summary.run_id,
            kind=kind.value,
            search=search_term,
        )

        try:
            await self._fetch_and_write(summary, started_at)
            summary.purged = await self.retention.purge(self._clock())
        except Exception as exc:
            summary.status = PassStatus.FAILED
            summary.error = str(exc) or type(exc).__name__
            summary.finished_at = self._clock()
            logger.exception("sync_pass_failed", run_id=summary.run_id, kind=kind.value)
            await self._close_run(summary)
            raise

        summary.finished_at = self._clock()
        await self._close_run(summary)
        logger.info(
            "sync_pass_finished",
            run_id=summary.run_id,
            kind=kind.value,
            status=summary.status.value,
            fetched=summary.fetched,
            accepted=summary.accepted,
            rejected=summary.rejected,
            written=summary.written,
            skipped=summary.skipped,
            marked=summary.marked,
            deactivated=summary.deactivated,
            purged=summary.purged,
        )
        return summary

    async def _fetch_and_write(self, summary: PassSummary, started_at: datetime) -> None:
        reasons: Counter[str] = Counter()
        pages = self.source.iter_pages(self.filters_for(started_at), summary.search_term)
        try:
            # Nothing is marked until the first page proves the feed is reachable.
            page = await anext(pages, None)
            if page is not None and page.failed:
                summary.status = PassStatus.ABORTED
                summary.error = page.error
                logger.error("sync_pass_aborted", run_id=summary.run_id, error=page.error)
                return

            if not summary.scoped:
                summary.marked = await self.reconciler.mark_for_review(started_at)

            complete = True
            while page is not None:
                if page.failed:
                    complete = False
                    summary.error = page.error
                    logger.warning(
                        "sync_fetch_incomplete",
                        run_id=summary.run_id,
                        offset=page.offset,
                        error=page.error,
                    )
                    break
                await self._write_page(page, summary, reasons)
                page = await anext(pages, None)
        finally:
            await pages.aclose()
            summary.skip_reasons = dict(reasons)

        summary.fetch_complete = complete
        if not complete:
            summary.status = PassStatus.PARTIAL
        elif not summary.scoped:
            summary.deactivated = await self.reconciler.sweep(started_at)

    async def _write_page(
        self, page: UpstreamPage, summary: PassSummary, reasons: Counter[str]
    ) -> None:
        for raw in page.records:
            summary.fetched += 1
            result = self.transformer.transform(raw)
            if isinstance(result, Rejection):
                summary.rejected += 1
                reasons[result.reason] += 1
                logger.debug(
                    "market_rejected",
                    external_id=result.external_id,
                    reason=result.reason,
                    detail=result.detail,
                )
                continue

            summary.accepted += 1
            outcome = await self.writer.upsert(result)
            if isinstance(outcome, Skipped):
                summary.skipped += 1
                reasons[outcome.reason] += 1
            else:
                summary.written += 1

    async def _ensure_schema(self) -> None:
        if self._schema_hook is None:
            return
        await self._schema_hook()
        self._schema_hook = None
        logger.info("sync_store_schema_ready")

    async def _open_run(
        self, kind: SyncKind, started_at: datetime, search_term: str | None
    ) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                run = await create_sync_run(
                    session,
                    sync_kind=kind,
                    started_at=started_at,
                    search_term=search_term,
                )
                return run.id

    async def _close_run(self, summary: PassSummary) -> None:
        if summary.run_id is None:
            return
        status = SyncRunStatus.SUCCESS if summary.ok else SyncRunStatus.ERROR
        details = summary.model_dump(
            mode="json",
            include={
                "status",
                "fetched",
                "accepted",
                "rejected",
                "written",
                "skipped",
                "marked",
                "deactivated",
                "purged",
                "fetch_complete",
                "skip_reasons",
            },
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await finish_sync_run(
                        session,
                        run_id=summary.run_id,
                        status=status,
                        finished_at=summary.finished_at or self._clock(),
                        records_processed=summary.written,
                        error_message=summary.error,
                        details=details,
                    )
        except SQLAlchemyError as exc:
            logger.error("sync_run_update_failed", run_id=summary.run_id, error=str(exc))


__all__ = ["SyncConfigurationError", "SyncEngine"]
