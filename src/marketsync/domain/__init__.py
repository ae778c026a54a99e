"""Domain models shared across the sync engine and its readers."""

from .markets import CanonicalMarket, CanonicalReward, CanonicalToken
from .sync import PassStatus, PassSummary, SyncHealth, SyncKind, SyncRunStatus

__all__ = [
    "CanonicalMarket",
    "CanonicalReward",
    "CanonicalToken",
    "PassStatus",
    "PassSummary",
    "SyncHealth",
    "SyncKind",
    "SyncRunStatus",
]
