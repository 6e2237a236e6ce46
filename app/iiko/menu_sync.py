# app/iiko/menu_sync.py
"""
🍵 СИНХРОНИЗАЦИЯ МЕНЮ ИЗ IIKO

Для каждой активной конфигурации (по очереди, не параллельно):
1. Токен через TokenManager
2. POST /api/1/nomenclature → {revision, groups, products}
3. POST /api/1/stop_lists → что сейчас закончилось
4. Каждый товар:
   - удален / не в меню  → локальный товар выключаем, маппинг недоступен
   - иначе               → создаем или обновляем Product + маппинг IikoMenuSync
5. Сохраняем menu_revision и last_menu_sync_at

Ошибка одной конфигурации не мешает остальным.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config as settings
from infrastructure.database.models import IikoConfig
from infrastructure.database.repositories import (
    CategoryMappingRepository,
    IikoConfigRepository,
    MenuSyncRepository,
    ProductRepository,
)
from app.iiko.auth import TokenManager
from app.iiko.client import IikoApiClient
from app.iiko.exceptions import IikoTransportError

logger = structlog.get_logger()


@dataclass
class MenuSyncResult:
    config_id: int
    store_name: str
    success: bool
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    errors: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "config_id": self.config_id,
            "store_name": self.store_name,
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "deactivated": self.deactivated,
            "errors": self.errors,
        }
        if self.error_message:
            data["error_message"] = self.error_message
        return data


@dataclass
class MenuSyncSummary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[MenuSyncResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


def product_price(product: Dict[str, Any]) -> Decimal:
    """
    Цена товара из номенклатуры.

    Обычно лежит в sizePrices[0].price.currentPrice,
    у старых ответов встречается плоское поле price.
    """
    value = None

    size_prices = product.get("sizePrices") or []
    if size_prices:
        value = (size_prices[0].get("price") or {}).get("currentPrice")

    if value is None:
        value = product.get("price")

    try:
        return Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        return Decimal("0")


def is_in_menu(product: Dict[str, Any]) -> bool:
    return not product.get("isDeleted") and bool(product.get("isIncludedInMenu"))


def stop_listed_product_ids(data: Dict[str, Any], terminal_group_id: Optional[str] = None) -> Set[str]:
    """
    ID товаров в стоп-листе.

    Формат: terminalGroupStopLists[].items[] = {terminalGroupId, items: [{productId, balance}]}
    Если у конфигурации задана терминальная группа, смотрим только ее.
    """
    product_ids = set()

    for organization in data.get("terminalGroupStopLists") or []:
        for group in organization.get("items") or []:
            if terminal_group_id and group.get("terminalGroupId") != terminal_group_id:
                continue

            for entry in group.get("items") or []:
                if entry.get("productId"):
                    product_ids.add(entry["productId"])

    return product_ids


class MenuSynchronizer:
    """Тянет номенклатуру IIKO в локальный каталог."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        api_client: IikoApiClient,
        token_manager: TokenManager,
        default_category_id: Optional[int] = None
    ):
        self.session_maker = session_maker
        self.api_client = api_client
        self.token_manager = token_manager
        self.default_category_id = default_category_id or settings.iiko_default_category_id

    # ==========================================
    # ВСЕ КОНФИГУРАЦИИ
    # ==========================================

    async def sync_all_menus(self) -> MenuSyncSummary:
        summary = MenuSyncSummary()

        async with self.session_maker() as session:
            configs = await IikoConfigRepository(session).list_active()

        if not configs:
            logger.info("iiko_menu_sync_no_configs")
            return summary

        summary.total = len(configs)
        logger.info("iiko_menu_sync_started", configs=len(configs))

        for config in configs:
            result = await self.sync_menu_for_config(config)
            summary.results.append(result)

            if result.success:
                summary.succeeded += 1
            else:
                summary.failed += 1

        logger.info(
            "iiko_menu_sync_finished",
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed
        )

        return summary

    # ==========================================
    # ОДНА КОНФИГУРАЦИЯ
    # ==========================================

    async def sync_menu_for_config(self, config: IikoConfig) -> MenuSyncResult:
        """
        Синхронизировать меню одной точки.

        Никогда не бросает исключение: любая ошибка превращается
        в результат с success=False.
        """
        result = MenuSyncResult(config_id=config.id, store_name=config.config_name, success=False)

        try:
            menu = await self._fetch_menu(config)
            if menu is None:
                result.error_message = "Failed to fetch menu data from IIKO"
                return result

            stop_list = await self._fetch_stop_list(config)

            for product in menu.get("products") or []:
                try:
                    outcome = await self._apply_product(config, product, stop_list)
                except Exception as e:
                    logger.error(
                        "iiko_menu_product_failed",
                        config_id=config.id,
                        iiko_product_id=product.get("id"),
                        error=str(e)
                    )
                    result.errors += 1
                    continue

                if outcome == "created":
                    result.created += 1
                elif outcome == "updated":
                    result.updated += 1
                elif outcome == "deactivated":
                    result.deactivated += 1

            async with self.session_maker() as session:
                await IikoConfigRepository(session).update(
                    config.id,
                    menu_revision=int(menu.get("revision") or 0),
                    last_menu_sync_at=datetime.utcnow()
                )

            result.success = True

            logger.info(
                "iiko_menu_synced",
                config_id=config.id,
                revision=menu.get("revision"),
                created=result.created,
                updated=result.updated,
                deactivated=result.deactivated,
                errors=result.errors
            )

        except Exception as e:
            logger.error("iiko_menu_sync_failed", config_id=config.id, error=str(e))
            result.success = False
            result.error_message = str(e)

        return result

    async def _fetch_menu(self, config: IikoConfig) -> Optional[Dict[str, Any]]:
        token = await self.token_manager.get_access_token(config.id)
        if not token:
            logger.error("iiko_menu_sync_no_token", config_id=config.id)
            return None

        try:
            return await self.api_client.get_nomenclature(config.api_url, token, config.organization_id)
        except IikoTransportError as e:
            logger.error("iiko_menu_fetch_failed", config_id=config.id, error=str(e))
            return None

    async def _fetch_stop_list(self, config: IikoConfig) -> Optional[Set[str]]:
        """None = стоп-лист получить не удалось, доступность не трогаем."""
        token = await self.token_manager.get_access_token(config.id)
        if not token:
            return None

        try:
            data = await self.api_client.get_stop_lists(config.api_url, token, [config.organization_id])
        except IikoTransportError as e:
            logger.warning("iiko_stop_list_fetch_failed", config_id=config.id, error=str(e))
            return None

        return stop_listed_product_ids(data, config.terminal_group_id)

    async def _resolve_category(self, session: AsyncSession, config: IikoConfig, parent_group: Optional[str]) -> int:
        if parent_group:
            repo = CategoryMappingRepository(session)
            mapping = await repo.get_by_iiko_group_id(parent_group, store_id=config.store_id)
            if mapping is None and config.store_id is not None:
                mapping = await repo.get_by_iiko_group_id(parent_group)
            if mapping is not None:
                return mapping.local_category_id

        return self.default_category_id

    async def _apply_product(
        self,
        config: IikoConfig,
        product: Dict[str, Any],
        stop_list: Optional[Set[str]]
    ) -> Optional[str]:
        """
        Один товар номенклатуры → локальный каталог.

        Возвращает "created" / "updated" / "deactivated" / None.
        Каждый товар в своей транзакции.
        """
        iiko_id = product["id"]

        async with self.session_maker() as session:
            products = ProductRepository(session)
            mappings = MenuSyncRepository(session)

            if not is_in_menu(product):
                mapping = await mappings.get(config.id, iiko_id)
                if mapping is not None:
                    mapping.is_available = False
                    mapping.last_sync_at = datetime.utcnow()

                deactivated = await products.deactivate_by_iiko_id(iiko_id)
                await session.commit()

                return "deactivated" if deactivated else None

            name = product.get("name") or iiko_id
            price = product_price(product)
            local = await products.get_by_iiko_id(iiko_id)

            if local is None:
                category_id = await self._resolve_category(session, config, product.get("parentGroup"))
                local = await products.create_from_iiko(
                    iiko_id=iiko_id,
                    category_id=category_id,
                    name=name,
                    base_price=price,
                    code=product.get("code"),
                    description=product.get("description")
                )
                outcome = "created"
            else:
                await products.update_from_iiko(
                    local,
                    name=name,
                    base_price=price,
                    description=product.get("description")
                )
                outcome = "updated"

            existing = await mappings.get(config.id, iiko_id)
            if stop_list is None:
                in_stop_list = existing.is_in_stop_list if existing is not None else False
            else:
                in_stop_list = iiko_id in stop_list

            await mappings.upsert(
                config_id=config.id,
                iiko_product_id=iiko_id,
                iiko_product_name=name,
                store_id=config.store_id,
                iiko_category_id=product.get("parentGroup"),
                local_product_id=local.id,
                price=price,
                is_available=not in_stop_list,
                is_in_stop_list=in_stop_list,
                commit=False
            )

            await session.commit()

        return outcome
