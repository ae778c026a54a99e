"""Tests for chat-facing sync command glue."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from marketsync.chat import (
    SyncCommandHandler,
    format_pass_summary,
    format_sync_health,
    parse_sync_command,
)
from marketsync.domain import PassStatus, PassSummary, SyncHealth, SyncKind
from marketsync.sync import SyncScheduler


@pytest.mark.parametrize(
    "text,search_term",
    [
        ("sync F1 markets", "F1"),
        ("please sync nba playoff markets now", "nba playoff"),
        ("Sync all markets", None),
        ("refresh the market database", None),
        ("update markets", None),
    ],
)
def test_parse_sync_command(text, search_term):
    command = parse_sync_command(text)

    assert command is not None
    assert command.search_term == search_term


@pytest.mark.parametrize("text", ["what markets are trending?", "sync my wallet", ""])
def test_non_sync_messages_are_ignored(text):
    assert parse_sync_command(text) is None


def test_format_full_pass_summary():
    summary = PassSummary(
        kind=SyncKind.MANUAL,
        status=PassStatus.SUCCESS,
        fetched=120,
        accepted=100,
        written=98,
        deactivated=4,
        purged=2,
    )

    message = format_pass_summary(summary)

    assert message.startswith("✅ Synced market database!")
    assert "Fetched: `120`" in message
    assert "Written: `98`" in message
    assert "Deactivated: `4`" in message


def test_format_scoped_summary_omits_sweep_counts():
    summary = PassSummary(kind=SyncKind.MANUAL, status=PassStatus.SUCCESS, search_term="f1", written=3)

    message = format_pass_summary(summary)

    assert "**F1** markets" in message
    assert "Deactivated" not in message


@pytest.mark.parametrize(
    "status,fragment",
    [
        (PassStatus.SKIPPED, "already running"),
        (PassStatus.UNAVAILABLE, "not available"),
        (PassStatus.FAILED, "Failed to sync"),
        (PassStatus.ABORTED, "left untouched"),
        (PassStatus.PARTIAL, "Partially synced"),
    ],
)
def test_format_non_success_statuses(status, fragment):
    summary = PassSummary(kind=SyncKind.MANUAL, status=status, error="HTTP 502")

    assert fragment in format_pass_summary(summary)


def test_format_sync_health():
    health = SyncHealth(
        running=False,
        interval_seconds=86400,
        last_success_at=datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
        next_run_at=datetime(2026, 3, 2, 12, 0, tzinfo=UTC),
    )

    message = format_sync_health(health)

    assert "Last sync: `2026-03-01 12:00 UTC`" in message
    assert "Next automatic sync: `2026-03-02 12:00 UTC`" in message
    assert "Interval: `24h`" in message


@pytest.mark.asyncio
async def test_handler_runs_scoped_pass(build_sync_engine, fake_source, raw_market, listing_pages):
    source = fake_source(listing_pages([raw_market("0xf1")]))
    handler = SyncCommandHandler(SyncScheduler(build_sync_engine(source)))

    reply = await handler.handle("sync F1 markets")

    assert reply is not None
    assert reply.startswith("✅ Synced **F1** markets!")
    assert source.calls[0][1] == "F1"


@pytest.mark.asyncio
async def test_handler_full_pass_appends_status(build_sync_engine, fake_source, raw_market, listing_pages):
    handler = SyncCommandHandler(
        SyncScheduler(build_sync_engine(fake_source(listing_pages([raw_market("A")]))))
    )

    reply = await handler.handle("refresh the market database")

    assert "Market Sync Status" in reply
    assert "Last sync: `never`" not in reply


@pytest.mark.asyncio
async def test_handler_ignores_other_messages():
    handler = SyncCommandHandler(SyncScheduler(None))

    assert await handler.handle("show me trending markets") is None
