"""
Tests for pulling the IIKO nomenclature into the local catalog.
"""

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from infrastructure.database.repositories import (
    CategoryMappingRepository,
    IikoConfigRepository,
    MenuSyncRepository,
    ProductRepository,
)
from app.iiko.auth import TokenManager
from app.iiko.client import NOMENCLATURE_PATH, STOP_LISTS_PATH
from app.iiko.menu_sync import MenuSynchronizer, product_price, stop_listed_product_ids


def nomenclature(*products, revision=42):
    return {"revision": revision, "groups": [], "products": list(products)}


def iiko_product(product_id, name="Taro milk tea", price=250, group="grp-tea", **extra):
    product = {
        "id": product_id,
        "name": name,
        "description": "",
        "parentGroup": group,
        "isDeleted": False,
        "isIncludedInMenu": True,
        "sizePrices": [{"price": {"currentPrice": price}}],
    }
    product.update(extra)
    return product


def stop_lists(*product_ids, terminal_group_id="tg-1"):
    return {
        "terminalGroupStopLists": [{
            "organizationId": "org-1",
            "items": [{
                "terminalGroupId": terminal_group_id,
                "items": [{"productId": pid, "balance": 0} for pid in product_ids],
            }],
        }]
    }


async def get_product(session_maker, iiko_id):
    async with session_maker() as session:
        return await ProductRepository(session).get_by_iiko_id(iiko_id)


async def get_mapping(session_maker, config_id, iiko_id):
    async with session_maker() as session:
        return await MenuSyncRepository(session).get(config_id, iiko_id)


@pytest_asyncio.fixture
async def category(make_category):
    return await make_category("Default")


class TestHelpers:

    def test_price_from_size_prices(self):
        assert product_price(iiko_product("p", price=199.5)) == Decimal("199.5")

    def test_price_falls_back_to_flat_field(self):
        assert product_price({"price": 120}) == Decimal("120")

    def test_stop_list_filtered_by_terminal_group(self):
        data = stop_lists("p-1")
        data["terminalGroupStopLists"][0]["items"].append(
            {"terminalGroupId": "tg-other", "items": [{"productId": "p-2"}]}
        )

        assert stop_listed_product_ids(data, "tg-1") == {"p-1"}
        assert stop_listed_product_ids(data) == {"p-1", "p-2"}


class TestMenuSynchronizer:

    @pytest.fixture
    def synchronizer(self, session_maker, mock_api):
        token_manager = TokenManager(session_maker, mock_api.client)
        return MenuSynchronizer(session_maker, mock_api.client, token_manager, default_category_id=1)

    @pytest.mark.asyncio
    async def test_creates_products_and_mappings(
        self, synchronizer, mock_api, session_maker, make_config, make_category, valid_token_fields
    ):
        default = await make_category("Default")
        tea = await make_category("Tea")
        config = await make_config(**valid_token_fields)
        async with session_maker() as session:
            await CategoryMappingRepository(session).create("grp-tea", "Tea", tea.id, store_id=1)

        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(200, json=nomenclature(
            iiko_product("p-1", group="grp-tea"),
            iiko_product("p-2", name="Jasmine tea", group="grp-unknown", code="JT"),
        ))
        mock_api.routes[STOP_LISTS_PATH] = lambda request: httpx.Response(200, json=stop_lists("p-2"))

        result = await synchronizer.sync_menu_for_config(config)

        assert result.success is True
        assert (result.created, result.updated, result.errors) == (2, 0, 0)

        p1 = await get_product(session_maker, "p-1")
        assert p1.category_id == tea.id
        assert p1.base_price == Decimal("250.00")
        assert p1.code == "IIKO-p-1"

        p2 = await get_product(session_maker, "p-2")
        assert p2.category_id == default.id
        assert p2.code == "JT"

        mapping = await get_mapping(session_maker, config.id, "p-2")
        assert mapping.local_product_id == p2.id
        assert mapping.is_in_stop_list is True
        assert mapping.is_available is False

        async with session_maker() as session:
            stored = await IikoConfigRepository(session).get_by_id(config.id)
        assert stored.menu_revision == 42
        assert stored.last_menu_sync_at is not None

    @pytest.mark.asyncio
    async def test_second_run_updates(self, synchronizer, mock_api, session_maker, make_config, category, valid_token_fields):
        config = await make_config(**valid_token_fields)
        mock_api.routes[STOP_LISTS_PATH] = lambda request: httpx.Response(200, json=stop_lists())

        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(
            200, json=nomenclature(iiko_product("p-1", price=250))
        )
        await synchronizer.sync_menu_for_config(config)

        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(
            200, json=nomenclature(iiko_product("p-1", name="Taro tea XL", price=300))
        )
        result = await synchronizer.sync_menu_for_config(config)

        assert (result.created, result.updated) == (0, 1)
        product = await get_product(session_maker, "p-1")
        assert product.name == "Taro tea XL"
        assert product.base_price == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_deleted_product_is_deactivated(
        self, synchronizer, mock_api, session_maker, make_config, category, valid_token_fields
    ):
        config = await make_config(**valid_token_fields)
        mock_api.routes[STOP_LISTS_PATH] = lambda request: httpx.Response(200, json=stop_lists())
        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(
            200, json=nomenclature(iiko_product("p-1"))
        )
        await synchronizer.sync_menu_for_config(config)

        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(
            200, json=nomenclature(iiko_product("p-1", isDeleted=True))
        )
        result = await synchronizer.sync_menu_for_config(config)

        assert result.deactivated == 1
        assert (await get_product(session_maker, "p-1")).is_active is False
        assert (await get_mapping(session_maker, config.id, "p-1")).is_available is False

    @pytest.mark.asyncio
    async def test_stop_list_failure_keeps_availability(
        self, synchronizer, mock_api, session_maker, make_config, category, valid_token_fields
    ):
        config = await make_config(**valid_token_fields)
        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(
            200, json=nomenclature(iiko_product("p-1"))
        )
        mock_api.routes[STOP_LISTS_PATH] = lambda request: httpx.Response(500, text="down")

        result = await synchronizer.sync_menu_for_config(config)

        assert result.success is True
        mapping = await get_mapping(session_maker, config.id, "p-1")
        assert mapping.is_in_stop_list is False
        assert mapping.is_available is True

    @pytest.mark.asyncio
    async def test_nomenclature_failure_is_unsuccessful_result(
        self, synchronizer, mock_api, make_config, valid_token_fields
    ):
        config = await make_config(**valid_token_fields)
        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(500, text="down")

        result = await synchronizer.sync_menu_for_config(config)

        assert result.success is False
        assert result.error_message == "Failed to fetch menu data from IIKO"

    @pytest.mark.asyncio
    async def test_sync_all_menus_skips_inactive(
        self, synchronizer, mock_api, make_config, category, valid_token_fields
    ):
        active = await make_config(config_name="Active", **valid_token_fields)
        await make_config(config_name="Disabled", is_active=False, **valid_token_fields)
        mock_api.routes[NOMENCLATURE_PATH] = lambda request: httpx.Response(
            200, json=nomenclature(iiko_product("p-1"))
        )
        mock_api.routes[STOP_LISTS_PATH] = lambda request: httpx.Response(200, json=stop_lists())

        summary = await synchronizer.sync_all_menus()

        assert (summary.total, summary.succeeded, summary.failed) == (1, 1, 0)
        assert summary.results[0].config_id == active.id
        assert len(mock_api.calls(NOMENCLATURE_PATH)) == 1

    @pytest.mark.asyncio
    async def test_sync_all_menus_without_configs(self, synchronizer):
        summary = await synchronizer.sync_all_menus()

        assert summary.to_dict() == {"total": 0, "succeeded": 0, "failed": 0, "results": []}
