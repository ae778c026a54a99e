"""Polymarket Gamma listings client with bounded pagination."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import httpx
from structlog import get_logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from marketsync.config.settings import UpstreamSettings
from marketsync.ingest.base import IngestError, UpstreamError, UpstreamFilters, UpstreamPage

logger = get_logger(__name__)

# Cursor value the CLOB listing uses to signal the final page.
END_CURSOR = "LTE="
UPSTREAM_PAGE_CAP = 500


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500 or exc.response.status_code == 429
    return False


def _extract_records(payload: Any) -> tuple[list[dict[str, Any]], str | None, bool]:
    """Return (records, next_cursor, cursor_mode) from either response shape."""

    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)], None, False
    if isinstance(payload, dict):
        for key in ("markets", "data", "results"):
            value = payload.get(key)
            if isinstance(value, list):
                records = [r for r in value if isinstance(r, dict)]
                if "next_cursor" not in payload:
                    return records, None, False
                cursor = payload.get("next_cursor")
                if not cursor or cursor == END_CURSOR:
                    cursor = None
                return records, str(cursor) if cursor is not None else None, True
    raise UpstreamError(f"unrecognised listing payload: {type(payload).__name__}")


class GammaClient:
    """Listings API client that never raises on a bad page."""

    BASE_URL = "https://gamma-api.polymarket.com"

    def __init__(
        self,
        base_url: str | None = None,
        *,
        page_size: int = 500,
        max_pages: int = 10,
        max_records: int = 5000,
        timeout: float = 15.0,
        retry_attempts: int = 3,
        retry_wait: float = 0.5,
        page_delay: float = 0.1,
    ) -> None:
        """Initialize the listings client.

        Args:
            base_url: Listings API root; defaults to the public Gamma host
            page_size: Records requested per page, capped at the upstream maximum
            max_pages: Hard ceiling on pages per pass
            max_records: Hard ceiling on records per pass
            timeout: Per-request timeout in seconds
            retry_attempts: Attempts per page for transient failures
            retry_wait: Multiplier for exponential backoff between attempts
            page_delay: Pause between consecutive page requests
        """
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.page_size = max(1, min(page_size, UPSTREAM_PAGE_CAP))
        self.max_pages = max_pages
        self.max_records = max_records
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait = retry_wait
        self.page_delay = page_delay
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: UpstreamSettings) -> GammaClient:
        return cls(
            settings.base_url,
            page_size=settings.page_size,
            max_pages=settings.max_pages,
            max_records=settings.max_records,
            timeout=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        return self._client

    async def _get_json(self, params: dict[str, str]) -> Any:
        client = await self._ensure_client()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=5.0),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                response = await client.get(f"{self.base_url}/markets", params=params)
                response.raise_for_status()
        return response.json()

    async def fetch_page(
        self,
        filters: UpstreamFilters,
        *,
        offset: int = 0,
        cursor: str | None = None,
        limit: int | None = None,
        search_term: str | None = None,
    ) -> UpstreamPage:
        """Fetch one page of listings.

        Returns a page flagged ``failed`` instead of raising when the request
        or the payload is unusable.
        """
        limit = min(limit or self.page_size, self.page_size)
        params = filters.to_params()
        params["limit"] = str(limit)
        if cursor is not None:
            params["next_cursor"] = cursor
        else:
            params["offset"] = str(offset)
        if search_term:
            params["search"] = search_term

        try:
            payload = await self._get_json(params)
            records, next_cursor, cursor_mode = _extract_records(payload)
        except (httpx.HTTPError, ValueError, IngestError) as exc:
            logger.warning(
                "listing_page_failed",
                offset=offset,
                cursor=cursor,
                search=search_term,
                error=str(exc),
            )
            return UpstreamPage(offset=offset, failed=True, error=str(exc) or type(exc).__name__)

        full = len(records) >= limit
        next_offset = None
        if not cursor_mode and full:
            next_offset = offset + len(records)
        if not full:
            next_cursor = None

        logger.debug(
            "listing_page_fetched",
            offset=offset,
            cursor=cursor,
            count=len(records),
            has_more=next_offset is not None or next_cursor is not None,
        )
        return UpstreamPage(
            records=records,
            offset=offset,
            next_offset=next_offset,
            next_cursor=next_cursor,
        )

    async def iter_pages(
        self, filters: UpstreamFilters, search_term: str | None = None
    ) -> AsyncIterator[UpstreamPage]:
        """Yield pages in order until the catalog, a failure, or a ceiling ends the loop.

        A failed page is yielded before stopping so callers can tell an
        upstream error from an empty catalog.
        """
        fetched = 0
        pages = 0
        offset = 0
        cursor: str | None = None

        while True:
            if pages >= self.max_pages or fetched >= self.max_records:
                logger.warning(
                    "pagination_ceiling_reached",
                    pages=pages,
                    fetched=fetched,
                    max_pages=self.max_pages,
                    max_records=self.max_records,
                )
                return

            limit = min(self.page_size, self.max_records - fetched)
            page = await self.fetch_page(
                filters,
                offset=offset,
                cursor=cursor,
                limit=limit,
                search_term=search_term,
            )
            pages += 1
            yield page

            if page.failed or not page.has_more:
                return

            fetched += len(page.records)
            if page.next_cursor is not None:
                cursor = page.next_cursor
            else:
                offset = page.next_offset or offset + len(page.records)

            if self.page_delay:
                await asyncio.sleep(self.page_delay)

    async def close(self) -> None:
        """Clean up HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("gamma_client_closed")


__all__ = ["END_CURSOR", "GammaClient"]
