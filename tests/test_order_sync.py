"""
Tests for sending a single order (and batches) to IIKO.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from app.iiko.auth import TokenManager
from app.iiko.client import ACCESS_TOKEN_PATH, CREATE_DELIVERY_PATH
from app.iiko.exceptions import (
    IikoConfigInactiveError,
    IikoConfigNotFoundError,
    OrderNotFoundError,
)
from app.iiko.order_sync import OrderSyncClient, SyncResultKind


def delivery_ok(request):
    body = json.loads(request.content)
    return httpx.Response(200, json={
        "orderInfo": {
            "id": "remote-" + body["externalNumber"],
            "externalNumber": body["externalNumber"],
            "creationStatus": "InProgress",
        }
    })


class InstrumentedApi:
    """Считает, сколько запросов create_delivery одновременно в полете."""

    def __init__(self, delay=0.02):
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = 0

    async def create_delivery(self, api_url, token, payload):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return {"orderInfo": {"id": "r-" + payload["externalNumber"], "externalNumber": payload["externalNumber"]}}


class TestSyncOrder:

    @pytest.fixture
    def sync_client(self, session_maker, mock_api):
        token_manager = TokenManager(session_maker, mock_api.client)
        return OrderSyncClient(session_maker, mock_api.client, token_manager)

    @pytest.mark.asyncio
    async def test_success(self, sync_client, mock_api, make_config, make_order, valid_token_fields):
        mock_api.routes[CREATE_DELIVERY_PATH] = delivery_ok
        config = await make_config(**valid_token_fields)
        order = await make_order("1001")

        result = await sync_client.sync_order(order.id, config.id)

        assert result.kind == SyncResultKind.SUCCESS
        assert result.success is True
        assert result.remote_order_id == "remote-1001"
        assert result.remote_external_number == "1001"

        payload = json.loads(mock_api.calls(CREATE_DELIVERY_PATH)[0].content)
        assert payload["organizationId"] == "org-1"
        assert payload["order"]["items"][0]["productId"] == "iiko-prod-7"

    @pytest.mark.asyncio
    async def test_creation_status_error_is_business_rejection(
        self, sync_client, mock_api, make_config, make_order, valid_token_fields
    ):
        mock_api.routes[CREATE_DELIVERY_PATH] = lambda request: httpx.Response(200, json={
            "orderInfo": {
                "id": "remote-1",
                "creationStatus": "Error",
                "errorInfo": {"code": "ProductNotFound", "message": "Product not found"},
            }
        })
        config = await make_config(**valid_token_fields)
        order = await make_order("1001")

        result = await sync_client.sync_order(order.id, config.id)

        assert result.kind == SyncResultKind.BUSINESS_REJECTION
        assert result.success is False
        assert result.error_message == "Product not found"
        assert result.error_code == "ProductNotFound"

    @pytest.mark.asyncio
    async def test_http_error_is_transport_error(self, sync_client, mock_api, make_config, make_order, valid_token_fields):
        mock_api.routes[CREATE_DELIVERY_PATH] = lambda request: httpx.Response(502, text="Bad Gateway")
        config = await make_config(**valid_token_fields)
        order = await make_order("1001")

        result = await sync_client.sync_order(order.id, config.id)

        assert result.kind == SyncResultKind.TRANSPORT_ERROR
        assert result.error_code == "HTTP_502"
        assert "502" in result.error_message
        assert "Bad Gateway" in result.error_message

    @pytest.mark.asyncio
    async def test_no_token_is_transport_error(self, sync_client, mock_api, make_config, make_order):
        mock_api.routes[ACCESS_TOKEN_PATH] = lambda request: httpx.Response(500, text="down")
        config = await make_config()
        order = await make_order("1001")

        result = await sync_client.sync_order(order.id, config.id)

        assert result.kind == SyncResultKind.TRANSPORT_ERROR
        assert result.error_code == "AUTH_FAILED"
        assert mock_api.calls(CREATE_DELIVERY_PATH) == []

    @pytest.mark.asyncio
    async def test_missing_config_raises(self, sync_client, make_order):
        order = await make_order("1001")

        with pytest.raises(IikoConfigNotFoundError):
            await sync_client.sync_order(order.id, 999)

    @pytest.mark.asyncio
    async def test_inactive_config_raises(self, sync_client, make_config, make_order):
        config = await make_config(is_active=False)
        order = await make_order("1001")

        with pytest.raises(IikoConfigInactiveError):
            await sync_client.sync_order(order.id, config.id)

    @pytest.mark.asyncio
    async def test_missing_order_raises(self, sync_client, make_config, valid_token_fields):
        config = await make_config(**valid_token_fields)

        with pytest.raises(OrderNotFoundError):
            await sync_client.sync_order(12345, config.id)


class TestSyncOrdersBatch:

    @pytest.mark.asyncio
    async def test_never_more_than_limit_in_flight(self, session_maker, make_config, make_order, valid_token_fields):
        config = await make_config(**valid_token_fields)
        orders = [await make_order(str(2000 + i)) for i in range(7)]

        api = InstrumentedApi()
        token_manager = AsyncMock()
        token_manager.get_access_token.return_value = "t-1"
        sync_client = OrderSyncClient(session_maker, api, token_manager)

        results = await sync_client.sync_orders_batch([(o.id, config.id) for o in orders], concurrency=3)

        assert api.calls == 7
        assert api.max_in_flight <= 3
        assert [r.order_id for r in results] == [o.id for o in orders]
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_exceptions_are_reported_not_raised(self, session_maker, make_config, make_order, valid_token_fields):
        config = await make_config(**valid_token_fields)
        order = await make_order("3001")

        token_manager = AsyncMock()
        token_manager.get_access_token.return_value = "t-1"
        sync_client = OrderSyncClient(session_maker, InstrumentedApi(delay=0), token_manager)

        results = await sync_client.sync_orders_batch([(order.id, config.id), (order.id, 999)])

        assert results[0].success is True
        assert results[1].success is False
        assert "not found" in results[1].error_message
