"""
Tests for the IIKO access token cache.
"""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest

from infrastructure.database.repositories import IikoConfigRepository
from app.iiko.auth import TokenManager
from app.iiko.client import ACCESS_TOKEN_PATH
from app.iiko.exceptions import IikoAuthenticationError, IikoConfigNotFoundError


def token_route(token="fresh-token", expires_in=3600):
    def route(request):
        body = {"token": token}
        if expires_in is not None:
            body["expiresIn"] = expires_in
        return httpx.Response(200, json=body)

    return route


async def load_config(session_maker, config_id):
    async with session_maker() as session:
        return await IikoConfigRepository(session).get_by_id(config_id)


class TestGetAccessToken:

    @pytest.fixture
    def token_manager(self, session_maker, mock_api):
        return TokenManager(session_maker, mock_api.client, safety_margin_seconds=300)

    @pytest.mark.asyncio
    async def test_valid_cached_token_needs_no_network(self, token_manager, mock_api, make_config, valid_token_fields):
        config = await make_config(**valid_token_fields)

        token = await token_manager.get_access_token(config.id)

        assert token == "cached-token"
        assert mock_api.requests == []

    @pytest.mark.asyncio
    async def test_two_calls_one_network_request(self, token_manager, mock_api, make_config):
        mock_api.routes[ACCESS_TOKEN_PATH] = token_route()
        config = await make_config()

        first = await token_manager.get_access_token(config.id)
        second = await token_manager.get_access_token(config.id)

        assert first == second == "fresh-token"
        assert len(mock_api.calls(ACCESS_TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_token_inside_safety_margin_is_refreshed(self, token_manager, mock_api, make_config):
        mock_api.routes[ACCESS_TOKEN_PATH] = token_route()
        old_expiry = datetime.utcnow() + timedelta(minutes=2)
        config = await make_config(access_token="old-token", token_expires_at=old_expiry)

        token = await token_manager.get_access_token(config.id)

        assert token == "fresh-token"
        assert len(mock_api.calls(ACCESS_TOKEN_PATH)) == 1

        stored = await load_config(token_manager.session_maker, config.id)
        assert stored.access_token == "fresh-token"
        assert stored.token_expires_at > old_expiry

    @pytest.mark.asyncio
    async def test_missing_expires_in_defaults_to_an_hour(self, token_manager, mock_api, make_config):
        mock_api.routes[ACCESS_TOKEN_PATH] = token_route(expires_in=None)
        config = await make_config()

        await token_manager.get_access_token(config.id)

        stored = await load_config(token_manager.session_maker, config.id)
        remaining = stored.token_expires_at - datetime.utcnow()
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_none(self, token_manager, mock_api, make_config):
        mock_api.routes[ACCESS_TOKEN_PATH] = lambda request: httpx.Response(401, text="bad login")
        config = await make_config()

        assert await token_manager.get_access_token(config.id) is None

        stored = await load_config(token_manager.session_maker, config.id)
        assert stored.access_token is None

    @pytest.mark.asyncio
    async def test_missing_config_raises(self, token_manager):
        with pytest.raises(IikoConfigNotFoundError):
            await token_manager.get_access_token(999)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, token_manager, mock_api, make_config):
        mock_api.routes[ACCESS_TOKEN_PATH] = token_route()
        config = await make_config()

        tokens = await asyncio.gather(*(token_manager.get_access_token(config.id) for _ in range(5)))

        assert set(tokens) == {"fresh-token"}
        assert len(mock_api.calls(ACCESS_TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_require_token_raises_when_unavailable(self, token_manager, mock_api, make_config):
        mock_api.routes[ACCESS_TOKEN_PATH] = lambda request: httpx.Response(503, text="down")
        config = await make_config()

        with pytest.raises(IikoAuthenticationError):
            await token_manager.require_token(config.id)

    @pytest.mark.asyncio
    async def test_invalidate_forgets_token(self, token_manager, make_config, valid_token_fields):
        config = await make_config(**valid_token_fields)

        updated = await token_manager.invalidate(config.id)

        assert updated.access_token is None
        assert updated.token_expires_at is None


class TestConnectionCheck:

    @pytest.mark.asyncio
    async def test_success(self, session_maker, mock_api):
        mock_api.routes[ACCESS_TOKEN_PATH] = token_route()
        token_manager = TokenManager(session_maker, mock_api.client)

        result = await token_manager.test_connection("https://iiko.test", "login-123")

        assert result == {"success": True, "message": "Connected"}

    @pytest.mark.asyncio
    async def test_failure_reports_message(self, session_maker, mock_api):
        mock_api.routes[ACCESS_TOKEN_PATH] = lambda request: httpx.Response(401, text="bad login")
        token_manager = TokenManager(session_maker, mock_api.client)

        result = await token_manager.test_connection("https://iiko.test", "wrong")

        assert result["success"] is False
        assert "401" in result["message"]
