"""
Общие фикстуры тестов.

Каждый тест получает свою SQLite базу во временной папке
(файл, а не :memory:, чтобы разные сессии видели одни данные).
"""

from datetime import datetime, timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from infrastructure.database.base import create_engine, create_session_maker, init_db, close_db
from infrastructure.database.repositories import (
    CategoryRepository,
    IikoConfigRepository,
    OrderQueueRepository,
    OrderRepository,
)
from app.iiko.client import IikoApiClient


API_URL = "https://iiko.test"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_maker(db_engine):
    return create_session_maker(db_engine)


@pytest.fixture
def make_config(session_maker):
    """Фабрика IikoConfig: await make_config(is_active=False)"""

    async def _make(**overrides):
        fields = {
            "config_name": "Main store",
            "store_id": 1,
            "api_url": API_URL,
            "api_login": "login-123",
            "organization_id": "org-1",
            "terminal_group_id": "tg-1",
            "is_active": True,
        }
        fields.update(overrides)

        async with session_maker() as session:
            return await IikoConfigRepository(session).create(**fields)

    return _make


@pytest.fixture
def valid_token_fields():
    return {
        "access_token": "cached-token",
        "token_expires_at": datetime.utcnow() + timedelta(hours=1),
    }


@pytest.fixture
def make_order(session_maker):
    """Фабрика заказа с одной позицией."""

    async def _make(order_no="1001", items=None, **fields):
        if items is None:
            items = [{
                "product_id": 7,
                "iiko_product_id": "iiko-prod-7",
                "product_name": "Taro milk tea",
                "quantity": 2,
                "price": Decimal("250.00"),
            }]
        fields.setdefault("customer_name", "Anna")
        fields.setdefault("customer_phone", "+79990000000")

        async with session_maker() as session:
            return await OrderRepository(session).create(order_no, items, **fields)

    return _make


@pytest.fixture
def enqueue(session_maker):
    async def _enqueue(order, config, priority=0):
        async with session_maker() as session:
            return await OrderQueueRepository(session).enqueue(
                order.id, order.order_no, config.id, priority=priority
            )

    return _enqueue


@pytest.fixture
def make_category(session_maker):
    async def _make(name="Milk tea", iiko_id=None):
        async with session_maker() as session:
            return await CategoryRepository(session).create(name, iiko_id=iiko_id)

    return _make


@pytest_asyncio.fixture
async def mock_api():
    """
    IikoApiClient поверх httpx.MockTransport.

    Тест задает ответы по пути запроса:
        mock_api.routes["/api/1/access_token"] = lambda request: httpx.Response(200, json={...})
    Все запросы складываются в mock_api.requests.
    """

    class MockIiko:
        def __init__(self):
            self.routes = {}
            self.requests = []

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            route = self.routes.get(request.url.path)
            if route is None:
                return httpx.Response(404, text="not mocked")
            return route(request)

        def calls(self, path):
            return [r for r in self.requests if r.url.path == path]

    mock = MockIiko()
    mock.client = IikoApiClient(timeout=5, transport=httpx.MockTransport(mock.handler))
    yield mock
    await mock.client.close()
