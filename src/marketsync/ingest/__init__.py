"""Upstream listing clients."""

from marketsync.ingest.base import (
    IngestError,
    ListingSource,
    UpstreamError,
    UpstreamFilters,
    UpstreamPage,
)
from marketsync.ingest.gamma import GammaClient

__all__ = [
    "GammaClient",
    "IngestError",
    "ListingSource",
    "UpstreamError",
    "UpstreamFilters",
    "UpstreamPage",
]
