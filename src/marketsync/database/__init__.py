"""Database utilities for the market sync engine."""

from .models import Base, Market, Reward, SyncRun, Token, UTCDateTime
from .session import (
    async_session_factory,
    create_engine,
    dispose_engine,
    get_engine,
    get_session,
    init_models,
)

__all__ = [
    "async_session_factory",
    "create_engine",
    "dispose_engine",
    "get_engine",
    "get_session",
    "init_models",
    "Base",
    "Market",
    "Reward",
    "SyncRun",
    "Token",
    "UTCDateTime",
]
