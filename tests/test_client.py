"""
Tests for the IIKO HTTP client error mapping.
"""

import httpx
import pytest

from app.iiko.client import ACCESS_TOKEN_PATH, CREATE_DELIVERY_PATH, IikoApiClient
from app.iiko.exceptions import IikoHTTPError, IikoTransportError

from tests.conftest import API_URL


class TestIikoApiClient:

    @pytest.mark.asyncio
    async def test_token_exchange_sends_api_login_without_auth(self, mock_api):
        mock_api.routes[ACCESS_TOKEN_PATH] = lambda request: httpx.Response(
            200, json={"token": "t-1", "expiresIn": 3600}
        )

        data = await mock_api.client.request_access_token(API_URL, "login-123")

        assert data["token"] == "t-1"
        request = mock_api.calls(ACCESS_TOKEN_PATH)[0]
        assert b'"apiLogin"' in request.content
        assert "authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_bearer_token_on_other_calls(self, mock_api):
        mock_api.routes[CREATE_DELIVERY_PATH] = lambda request: httpx.Response(200, json={"orderInfo": {}})

        await mock_api.client.create_delivery(API_URL, "t-1", {"organizationId": "org-1"})

        assert mock_api.calls(CREATE_DELIVERY_PATH)[0].headers["authorization"] == "Bearer t-1"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_http_error_with_status_and_body(self, mock_api):
        mock_api.routes[CREATE_DELIVERY_PATH] = lambda request: httpx.Response(500, text="boom")

        with pytest.raises(IikoHTTPError) as exc_info:
            await mock_api.client.create_delivery(API_URL, "t-1", {})

        assert exc_info.value.status_code == 500
        assert exc_info.value.error_code == "HTTP_500"
        assert str(exc_info.value) == "IIKO API error: 500 boom"

    @pytest.mark.asyncio
    async def test_network_error_raises_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = IikoApiClient(transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(IikoTransportError):
                await client.request_access_token(API_URL, "login")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_timeout_raises_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = IikoApiClient(timeout=1, transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(IikoTransportError, match="timed out"):
                await client.create_delivery(API_URL, "t-1", {})
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_json_raises_transport_error(self, mock_api):
        mock_api.routes[ACCESS_TOKEN_PATH] = lambda request: httpx.Response(200, text="<html>")

        with pytest.raises(IikoTransportError):
            await mock_api.client.request_access_token(API_URL, "login")
