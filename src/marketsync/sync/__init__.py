"""Market synchronization pipeline."""

from .engine import SyncConfigurationError, SyncEngine
from .reconciler import StalenessReconciler
from .retention import RetentionSweeper
from .scheduler import SyncScheduler
from .transform import RecordTransformer, Rejection
from .writer import Skipped, StoreWriter, WriteResult, Written

__all__ = [
    "RecordTransformer",
    "Rejection",
    "RetentionSweeper",
    "Skipped",
    "StalenessReconciler",
    "StoreWriter",
    "SyncConfigurationError",
    "SyncEngine",
    "SyncScheduler",
    "WriteResult",
    "Written",
]
