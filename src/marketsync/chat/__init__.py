"""Chat-facing helpers for the market sync engine."""

from .commands import (
    SyncCommand,
    SyncCommandHandler,
    format_pass_summary,
    format_sync_health,
    parse_sync_command,
)

__all__ = [
    "SyncCommand",
    "SyncCommandHandler",
    "format_pass_summary",
    "format_sync_health",
    "parse_sync_command",
]
