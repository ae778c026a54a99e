"""Upstream listing abstractions shared by the sync engine and its clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Protocol


class IngestError(RuntimeError):
    """Raised when an upstream listing cannot be fetched or decoded."""


class UpstreamError(IngestError):
    """The listings API answered with a payload that is not a page of records."""


@dataclass(slots=True)
class UpstreamFilters:
    """Acceptance filter translated into listing query parameters."""

    active: bool | None = True
    closed: bool | None = False
    min_liquidity: float | None = None
    min_volume: float | None = None
    end_date_min: date | None = None

    def to_params(self) -> dict[str, str]:
        """Render the filter as upstream query parameters."""

        params: dict[str, str] = {}
        if self.active is not None:
            params["active"] = str(self.active).lower()
        if self.closed is not None:
            params["closed"] = str(self.closed).lower()
        if self.min_liquidity is not None:
            params["liquidity_num_min"] = f"{self.min_liquidity:g}"
        if self.min_volume is not None:
            params["volume_num_min"] = f"{self.min_volume:g}"
        if self.end_date_min is not None:
            params["end_date_min"] = self.end_date_min.isoformat()
        return params


@dataclass(slots=True)
class UpstreamPage:
    """One page of raw listing records plus its continuation."""

    records: list[dict[str, Any]] = field(default_factory=list)
    offset: int = 0
    next_offset: int | None = None
    next_cursor: str | None = None
    failed: bool = False
    error: str | None = None

    @property
    def has_more(self) -> bool:
        return not self.failed and (self.next_cursor is not None or self.next_offset is not None)


class ListingSource(Protocol):
    """Pages through the remote catalog."""

    def iter_pages(
        self, filters: UpstreamFilters, search_term: str | None = None
    ) -> AsyncIterator[UpstreamPage]:
        ...

    async def close(self) -> None:
        ...


__all__ = ["IngestError", "ListingSource", "UpstreamError", "UpstreamFilters", "UpstreamPage"]
