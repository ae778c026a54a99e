"""Sync pass bookkeeping models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SyncKind(str, Enum):
    """What triggered a pass."""

    STARTUP = "startup"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class SyncRunStatus(str, Enum):
    """Lifecycle of a persisted sync run row."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class PassStatus(str, Enum):
    """Outcome of a trigger as reported to operators."""

    SUCCESS = "success"
    PARTIAL = "partial"  # a later page failed, sweep skipped
    ABORTED = "aborted"  # first page failed, nothing marked or swept
    FAILED = "failed"
    SKIPPED = "skipped"  # another pass was in flight
    UNAVAILABLE = "unavailable"  # no store configured


class PassSummary(BaseModel):
    """Per-outcome counts aggregated over one pass."""

    kind: SyncKind
    status: PassStatus
    search_term: Optional[str] = None
    run_id: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    fetched: int = 0
    accepted: int = 0
    rejected: int = 0
    written: int = 0
    skipped: int = 0
    marked: int = 0
    deactivated: int = 0
    purged: int = 0
    fetch_complete: bool = False
    error: Optional[str] = None
    skip_reasons: dict[str, int] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (PassStatus.SUCCESS, PassStatus.PARTIAL)

    @property
    def scoped(self) -> bool:
        return bool(self.search_term)


class SyncHealth(BaseModel):
    """Read-only view of scheduler state derived from sync run metadata."""

    running: bool
    interval_seconds: int
    last_success_at: Optional[datetime] = None
    last_run_status: Optional[SyncRunStatus] = None
    last_run_finished_at: Optional[datetime] = None
    last_records_processed: Optional[int] = None
    next_run_at: Optional[datetime] = None


__all__ = ["PassStatus", "PassSummary", "SyncHealth", "SyncKind", "SyncRunStatus"]
