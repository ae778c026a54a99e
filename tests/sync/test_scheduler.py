"""Tests for trigger handling and the single-flight guard."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from marketsync.database.models import SyncRun
from marketsync.database.queries import count_sync_runs
from marketsync.domain import PassStatus, SyncKind, SyncRunStatus
from marketsync.ingest.base import UpstreamPage
from marketsync.sync import SyncScheduler


class GatedSource:
    """Holds the first page until the test releases it."""

    def __init__(self, records) -> None:
        self.records = records
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def iter_pages(self, filters, search_term=None):
        self.started.set()
        await self.release.wait()
        yield UpstreamPage(records=self.records)

    async def close(self) -> None:
        pass


class ExplodingSource:
    async def iter_pages(self, filters, search_term=None):
        raise RuntimeError("listing source exploded")
        yield  # pragma: no cover

    async def close(self) -> None:
        pass


async def _run_count(session_factory) -> int:
    async with session_factory() as session:
        return await count_sync_runs(session)


@pytest.mark.asyncio
async def test_overlapping_trigger_is_dropped(session_factory, build_sync_engine, raw_market):
    source = GatedSource([raw_market("A")])
    scheduler = SyncScheduler(build_sync_engine(source))

    running = asyncio.create_task(scheduler.trigger(SyncKind.SCHEDULED))
    await asyncio.wait_for(source.started.wait(), timeout=5)
    assert scheduler.is_running
    runs_before = await _run_count(session_factory)

    dropped = await scheduler.trigger(SyncKind.MANUAL, "F1")

    assert dropped.status is PassStatus.SKIPPED
    assert dropped.search_term == "F1"
    assert await _run_count(session_factory) == runs_before

    source.release.set()
    finished = await asyncio.wait_for(running, timeout=5)

    assert finished.status is PassStatus.SUCCESS
    assert finished.written == 1
    assert not scheduler.is_running
    assert await _run_count(session_factory) == 1


@pytest.mark.asyncio
async def test_failed_pass_clears_guard(session_factory, build_sync_engine, fake_source, raw_market, listing_pages):
    scheduler = SyncScheduler(build_sync_engine(ExplodingSource()))

    summary = await scheduler.trigger(SyncKind.MANUAL)

    assert summary.status is PassStatus.FAILED
    assert "exploded" in summary.error
    assert not scheduler.is_running
    async with session_factory() as session:
        run = (await session.execute(select(SyncRun))).scalar_one()
    assert run.status is SyncRunStatus.ERROR
    assert "exploded" in run.error_message

    scheduler.engine = build_sync_engine(fake_source(listing_pages([raw_market("A")])))
    retry = await scheduler.trigger(SyncKind.MANUAL)
    assert retry.status is PassStatus.SUCCESS


@pytest.mark.asyncio
async def test_trigger_without_store_is_declined():
    scheduler = SyncScheduler(None)

    summary = await scheduler.trigger(SyncKind.MANUAL)

    assert summary.status is PassStatus.UNAVAILABLE
    assert not scheduler.is_running
    health = await scheduler.status()
    assert health.last_success_at is None


@pytest.mark.asyncio
async def test_status_reflects_last_run(build_sync_engine, fake_source, raw_market, listing_pages):
    scheduler = SyncScheduler(
        build_sync_engine(fake_source(listing_pages([raw_market("A"), raw_market("B")]))),
        interval=timedelta(hours=6),
    )

    summary = await scheduler.trigger(SyncKind.MANUAL)
    health = await scheduler.status()

    assert health.running is False
    assert health.interval_seconds == 6 * 3600
    assert health.last_run_status is SyncRunStatus.SUCCESS
    assert health.last_success_at == summary.finished_at
    assert health.last_records_processed == 2


@pytest.mark.asyncio
async def test_startup_pass_runs_after_delay(build_sync_engine, fake_source, raw_market, listing_pages):
    scheduler = SyncScheduler(
        build_sync_engine(fake_source(listing_pages([raw_market("A")]))),
        interval=timedelta(hours=24),
        startup_delay=timedelta(seconds=0),
    )

    scheduler.start()
    for _ in range(200):
        if scheduler.last_summary is not None:
            break
        await asyncio.sleep(0.01)
    health = await scheduler.status()
    await scheduler.stop()

    assert scheduler.last_summary is not None
    assert scheduler.last_summary.kind is SyncKind.STARTUP
    assert health.next_run_at is not None
    assert not scheduler.started


@pytest.mark.asyncio
async def test_stop_drains_in_flight_pass_without_starting_another(
    session_factory, build_sync_engine, raw_market
):
    source = GatedSource([raw_market("A")])
    scheduler = SyncScheduler(
        build_sync_engine(source),
        interval=timedelta(seconds=0),
        startup_delay=timedelta(seconds=0),
    )

    scheduler.start()
    await asyncio.wait_for(source.started.wait(), timeout=5)
    stopping = asyncio.create_task(scheduler.stop())
    await asyncio.sleep(0.01)
    assert not stopping.done()

    source.release.set()
    await asyncio.wait_for(stopping, timeout=5)

    assert scheduler.last_summary is not None
    assert scheduler.last_summary.kind is SyncKind.STARTUP
    assert scheduler.last_summary.status is PassStatus.SUCCESS
    assert not scheduler.started
    assert not scheduler.is_running
    assert await _run_count(session_factory) == 1
