"""Tests for the Gamma listings client."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock, patch

import httpx
import pytest

from marketsync.ingest import GammaClient, UpstreamFilters


def _response(payload=None, *, status_code: int = 200, json_error: Exception | None = None):
    response = MagicMock()
    response.status_code = status_code
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    if status_code >= 400:
        request = httpx.Request("GET", "https://gamma-api.polymarket.com/markets")
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"HTTP {status_code}",
            request=request,
            response=httpx.Response(status_code, request=request),
        )
    else:
        response.raise_for_status = MagicMock()
    return response


def _client(**kwargs) -> GammaClient:
    kwargs.setdefault("retry_attempts", 1)
    kwargs.setdefault("retry_wait", 0)
    kwargs.setdefault("page_delay", 0)
    return GammaClient(**kwargs)


async def _collect(client: GammaClient, filters=None, search_term=None):
    return [page async for page in client.iter_pages(filters or UpstreamFilters(), search_term)]


class TestGammaClient:
    """Pagination and failure handling against a mocked listings API."""

    @pytest.mark.asyncio
    async def test_offset_pagination_until_short_page(self):
        client = _client(page_size=2)

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.side_effect = [
                _response([{"conditionId": "a"}, {"conditionId": "b"}]),
                _response([{"conditionId": "c"}]),
            ]

            pages = await _collect(client)

            assert [len(p.records) for p in pages] == [2, 1]
            assert not any(p.failed for p in pages)
            offsets = [call.kwargs["params"]["offset"] for call in mock_get.call_args_list]
            assert offsets == ["0", "2"]

        await client.close()

    @pytest.mark.asyncio
    async def test_cursor_pagination_stops_at_terminal_cursor(self):
        client = _client(page_size=1)

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.side_effect = [
                _response({"data": [{"conditionId": "a"}], "next_cursor": "MQ=="}),
                _response({"data": [{"conditionId": "b"}], "next_cursor": "LTE="}),
            ]

            pages = await _collect(client)

            assert [p.records[0]["conditionId"] for p in pages] == ["a", "b"]
            second_params = mock_get.call_args_list[1].kwargs["params"]
            assert second_params["next_cursor"] == "MQ=="
            assert "offset" not in second_params

        await client.close()

    @pytest.mark.asyncio
    async def test_page_ceiling(self):
        client = _client(page_size=1, max_pages=2)

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.return_value = _response([{"conditionId": "x"}])

            pages = await _collect(client)

            assert len(pages) == 2
            assert mock_get.call_count == 2

        await client.close()

    @pytest.mark.asyncio
    async def test_record_ceiling_shrinks_last_request(self):
        client = _client(page_size=3, max_records=4)

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.side_effect = [
                _response([{"conditionId": str(i)} for i in range(3)]),
                _response([{"conditionId": "3"}]),
            ]

            pages = await _collect(client)

            assert sum(len(p.records) for p in pages) == 4
            assert mock_get.call_args_list[1].kwargs["params"]["limit"] == "1"

        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_yields_failed_page(self):
        client = _client()

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.side_effect = httpx.ConnectError("connection refused")

            pages = await _collect(client)

            assert len(pages) == 1
            assert pages[0].failed
            assert pages[0].records == []
            assert "connection refused" in pages[0].error

        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_is_retried_then_degrades(self):
        client = _client(retry_attempts=3)

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.return_value = _response(status_code=503)

            page = await client.fetch_page(UpstreamFilters())

            assert page.failed
            assert mock_get.call_count == 3

        await client.close()

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        client = _client(retry_attempts=3)

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.return_value = _response(status_code=404)

            page = await client.fetch_page(UpstreamFilters())

            assert page.failed
            assert mock_get.call_count == 1

        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_json_yields_failed_page(self):
        client = _client()

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.return_value = _response(json_error=ValueError("Expecting value"))

            page = await client.fetch_page(UpstreamFilters())

            assert page.failed

        await client.close()

    @pytest.mark.asyncio
    async def test_unrecognised_payload_yields_failed_page(self):
        client = _client()

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.return_value = _response({"error": "rate limited"})

            page = await client.fetch_page(UpstreamFilters())

            assert page.failed

        await client.close()

    @pytest.mark.asyncio
    async def test_filters_and_search_term_become_query_params(self):
        client = _client(page_size=50)
        filters = UpstreamFilters(
            min_liquidity=1000.0,
            min_volume=100.0,
            end_date_min=date(2026, 3, 1),
        )

        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.return_value = _response([])

            await client.fetch_page(filters, search_term="F1")

            params = mock_get.call_args.kwargs["params"]
            assert params == {
                "active": "true",
                "closed": "false",
                "liquidity_num_min": "1000",
                "volume_num_min": "100",
                "end_date_min": "2026-03-01",
                "limit": "50",
                "offset": "0",
                "search": "F1",
            }

        await client.close()


def test_page_size_is_capped_at_upstream_limit():
    assert GammaClient(page_size=2000).page_size == 500
