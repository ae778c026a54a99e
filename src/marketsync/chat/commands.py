"""Chat glue for manually triggering a market sync.

Recognises requests such as "sync F1 markets" or "refresh the market
database", runs the pass through the scheduler and renders the summary as a
chat message.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from structlog import get_logger

from marketsync.domain.sync import PassStatus, PassSummary, SyncHealth, SyncKind
from marketsync.sync.scheduler import SyncScheduler

logger = get_logger(__name__)

SYNC_KEYWORDS = ("sync", "update", "refresh", "fetch", "reload")
MARKET_KEYWORDS = ("market", "markets", "database")

_SEARCH_TERM = re.compile(r"sync\s+(.+?)\s+markets?\b", re.IGNORECASE)
# Words that describe the whole catalog rather than a topic.
_FULL_SYNC_TERMS = {"all", "the", "all the", "every", "full"}


@dataclass(slots=True, frozen=True)
class SyncCommand:
    """A recognised sync request; ``search_term`` is None for a full pass."""

    search_term: str | None = None

    @property
    def scoped(self) -> bool:
        return self.search_term is not None


def parse_sync_command(text: str) -> SyncCommand | None:
    """Return a command when ``text`` asks for a market sync, else None."""

    lowered = (text or "").lower()
    if not any(word in lowered for word in SYNC_KEYWORDS):
        return None
    if not any(word in lowered for word in MARKET_KEYWORDS):
        return None

    match = _SEARCH_TERM.search(text)
    if match is None:
        return SyncCommand()
    term = match.group(1).strip().strip("\"'")
    if not term or term.lower() in _FULL_SYNC_TERMS:
        return SyncCommand()
    return SyncCommand(search_term=term)


def format_pass_summary(summary: PassSummary) -> str:
    """Render a pass summary as a chat reply."""

    scope = f"**{summary.search_term.upper()}** markets" if summary.search_term else "market database"

    if summary.status is PassStatus.SKIPPED:
        return "⏳ A market sync is already running. Try again once it finishes."
    if summary.status is PassStatus.UNAVAILABLE:
        return "❌ Market sync is not available: the market store is not configured."
    if summary.status is PassStatus.FAILED:
        return f"❌ Failed to sync {scope}: {summary.error or 'unknown error'}"
    if summary.status is PassStatus.ABORTED:
        return (
            f"⚠️ Could not reach the listings API, so the {scope} was left untouched.\n"
            f"   Error: `{summary.error or 'unknown error'}`"
        )

    lines = [
        f"✅ Synced {scope}!" if summary.status is PassStatus.SUCCESS
        else f"⚠️ Partially synced {scope}: the listing feed stopped early.",
        f"   Fetched: `{summary.fetched}` | Accepted: `{summary.accepted}` | "
        f"Written: `{summary.written}`",
    ]
    if not summary.scoped:
        lines.append(
            f"   Deactivated: `{summary.deactivated}` | Purged: `{summary.purged}`"
        )
    return "\n".join(lines)


def format_sync_health(health: SyncHealth) -> str:
    lines = ["🔧 **Market Sync Status**"]
    lines.append(f"   Running: `{'yes' if health.running else 'no'}`")
    if health.last_success_at is not None:
        lines.append(f"   Last sync: `{health.last_success_at:%Y-%m-%d %H:%M} UTC`")
    else:
        lines.append("   Last sync: `never`")
    if health.next_run_at is not None:
        lines.append(f"   Next automatic sync: `{health.next_run_at:%Y-%m-%d %H:%M} UTC`")
    hours = health.interval_seconds / 3600
    lines.append(f"   Interval: `{hours:g}h`")
    return "\n".join(lines)


class SyncCommandHandler:
    """Answers chat messages that ask for a market sync."""

    def __init__(self, scheduler: SyncScheduler) -> None:
        self.scheduler = scheduler

    async def handle(self, text: str) -> str | None:
        """Run the requested pass and return the reply, or None when not a sync request."""

        command = parse_sync_command(text)
        if command is None:
            return None

        logger.info("chat_sync_requested", search=command.search_term)
        summary = await self.scheduler.trigger(SyncKind.MANUAL, command.search_term)
        reply = format_pass_summary(summary)
        if summary.ok and not command.scoped:
            health = await self.scheduler.status()
            reply = f"{reply}\n\n{format_sync_health(health)}"
        return reply


__all__ = [
    "SyncCommand",
    "SyncCommandHandler",
    "format_pass_summary",
    "format_sync_health",
    "parse_sync_command",
]
