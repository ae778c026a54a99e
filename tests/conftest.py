"""Test configuration and fixtures."""

from __future__ import annotations

import json
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

# Ensure the src/ directory is on sys.path so `import marketsync` works without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if SRC_PATH.exists():
    sys.path.insert(0, str(SRC_PATH))

from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from marketsync.database.session import create_engine, init_models  # noqa: E402
from marketsync.ingest.base import UpstreamPage  # noqa: E402
from marketsync.sync import (  # noqa: E402
    RecordTransformer,
    RetentionSweeper,
    StalenessReconciler,
    StoreWriter,
    SyncEngine,
)


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketsync.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


def make_raw_market(
    condition_id: str,
    *,
    end_in: timedelta | None = timedelta(days=10),
    liquidity: float = 5000.0,
    volume: float = 2500.0,
    question: str | None = None,
    outcomes: Any = '["Yes", "No"]',
    now: datetime | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """Build a Gamma-shaped listing record."""

    now = now or datetime.now(UTC)
    record: dict[str, Any] = {
        "id": f"q-{condition_id}",
        "conditionId": condition_id,
        "question": question or f"Will {condition_id} happen?",
        "slug": f"will-{condition_id}-happen",
        "category": "Sports",
        "endDate": (now + end_in).isoformat().replace("+00:00", "Z") if end_in is not None else None,
        "active": True,
        "closed": False,
        "liquidityNum": liquidity,
        "volumeNum": volume,
        "clobTokenIds": json.dumps([f"{condition_id}-yes", f"{condition_id}-no"]),
        "outcomes": outcomes,
        "orderMinSize": 5,
        "orderPriceMinTickSize": 0.01,
    }
    record.update(overrides)
    return record


class FakeListingSource:
    """In-memory listing source that replays a fixed list of pages."""

    def __init__(self, pages: list[UpstreamPage]) -> None:
        self.pages = pages
        self.calls: list[tuple[Any, str | None]] = []
        self.closed = False

    async def iter_pages(self, filters, search_term=None):
        self.calls.append((filters, search_term))
        for page in self.pages:
            yield page
            if page.failed:
                return

    async def close(self) -> None:
        self.closed = True


def pages_of(*batches: list[dict[str, Any]]) -> list[UpstreamPage]:
    pages = []
    offset = 0
    for index, records in enumerate(batches):
        last = index == len(batches) - 1
        pages.append(
            UpstreamPage(
                records=records,
                offset=offset,
                next_offset=None if last else offset + len(records),
            )
        )
        offset += len(records)
    return pages


@pytest.fixture
def raw_market():
    return make_raw_market


@pytest.fixture
def listing_pages():
    return pages_of


@pytest.fixture
def build_sync_engine(session_factory):
    """Factory for a sync engine wired to the test store and a fake source."""

    def _build(source, *, clock=None, min_liquidity: float = 1000.0) -> SyncEngine:
        return SyncEngine(
            session_factory,
            source,
            transformer=RecordTransformer(min_liquidity=min_liquidity, clock=clock),
            writer=StoreWriter(session_factory, clock=clock),
            reconciler=StalenessReconciler(session_factory, clock=clock),
            retention=RetentionSweeper(session_factory, retention_window=timedelta(days=30)),
            clock=clock,
        )

    return _build


@pytest.fixture
def fake_source():
    return FakeListingSource
