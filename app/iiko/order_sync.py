# app/iiko/order_sync.py
"""
Отправка одного заказа в IIKO.

sync_order() проверяет по порядку:
1. конфигурация существует     → иначе IikoConfigNotFoundError
2. конфигурация активна        → иначе IikoConfigInactiveError
3. удалось получить токен      → иначе результат TRANSPORT_ERROR (AUTH_FAILED)
4. заказ существует            → иначе OrderNotFoundError

Ошибки 1, 2, 4 = проблема данных, их бросаем.
Все остальное возвращаем одним типом SyncResult:
- SUCCESS            = IIKO принял заказ
- BUSINESS_REJECTION = HTTP 200, но creationStatus == "Error"
- TRANSPORT_ERROR    = сеть, таймаут, HTTP не 2xx, нет токена
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from infrastructure.database.repositories import IikoConfigRepository, OrderRepository
from app.iiko.auth import TokenManager
from app.iiko.client import IikoApiClient
from app.iiko.exceptions import (
    IikoAuthenticationError,
    IikoConfigInactiveError,
    IikoConfigNotFoundError,
    IikoTransportError,
    OrderNotFoundError,
)
from app.iiko.translator import to_external_order

logger = structlog.get_logger()


class SyncResultKind(str, Enum):
    SUCCESS = "success"
    BUSINESS_REJECTION = "business_rejection"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class SyncResult:
    kind: SyncResultKind
    remote_order_id: Optional[str] = None
    remote_external_number: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.kind == SyncResultKind.SUCCESS

    @classmethod
    def ok(cls, remote_order_id: Optional[str], remote_external_number: Optional[str]) -> "SyncResult":
        return cls(
            SyncResultKind.SUCCESS,
            remote_order_id=remote_order_id,
            remote_external_number=remote_external_number
        )

    @classmethod
    def rejected(cls, message: str, code: Optional[str] = None) -> "SyncResult":
        return cls(SyncResultKind.BUSINESS_REJECTION, error_message=message, error_code=code)

    @classmethod
    def transport_error(cls, error: IikoTransportError) -> "SyncResult":
        return cls(
            SyncResultKind.TRANSPORT_ERROR,
            error_message=str(error),
            error_code=error.error_code
        )


@dataclass
class BatchSyncItem:
    """Строка результата sync_orders_batch()."""
    order_id: int
    success: bool
    remote_order_id: Optional[str] = None
    error_message: Optional[str] = None
    result: Optional[SyncResult] = field(default=None, repr=False)


class OrderSyncClient:
    """Создание заказов доставки в IIKO."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        api_client: IikoApiClient,
        token_manager: TokenManager
    ):
        self.session_maker = session_maker
        self.api_client = api_client
        self.token_manager = token_manager

    def _parse_response(self, order_id: int, data: Dict[str, Any]) -> SyncResult:
        order_info = data.get("orderInfo") or {}

        if order_info.get("creationStatus") == "Error":
            error_info = order_info.get("errorInfo") or {}
            result = SyncResult.rejected(
                error_info.get("message") or "Unknown error",
                error_info.get("code")
            )
            logger.warning(
                "iiko_order_rejected",
                order_id=order_id,
                error=result.error_message,
                error_code=result.error_code
            )
            return result

        return SyncResult.ok(order_info.get("id"), order_info.get("externalNumber"))

    async def sync_order(self, order_id: int, config_id: int) -> SyncResult:
        """
        Отправить заказ в IIKO.

        Raises:
            IikoConfigNotFoundError, IikoConfigInactiveError, OrderNotFoundError
        """
        async with self.session_maker() as session:
            config = await IikoConfigRepository(session).get_by_id(config_id)

        if config is None:
            raise IikoConfigNotFoundError(config_id)

        if not config.is_active:
            raise IikoConfigInactiveError(config_id)

        token = await self.token_manager.get_access_token(config_id)
        if not token:
            logger.warning("iiko_order_sync_no_token", order_id=order_id, config_id=config_id)
            return SyncResult.transport_error(IikoAuthenticationError())

        async with self.session_maker() as session:
            order = await OrderRepository(session).get_by_id_with_items(order_id)

        if order is None:
            raise OrderNotFoundError(order_id)

        payload = to_external_order(order, config)

        try:
            data = await self.api_client.create_delivery(config.api_url, token, payload)
        except IikoTransportError as e:
            logger.error("iiko_order_sync_failed", order_id=order_id, error=str(e))
            return SyncResult.transport_error(e)

        result = self._parse_response(order_id, data)

        if result.success:
            logger.info(
                "iiko_order_synced",
                order_id=order_id,
                iiko_order_id=result.remote_order_id,
                external_number=result.remote_external_number
            )

        return result

    async def sync_orders_batch(
        self,
        jobs: Sequence[Tuple[int, int]],
        concurrency: int = 3
    ) -> List[BatchSyncItem]:
        """
        Синхронизировать список (order_id, config_id) окнами по concurrency.

        Следующее окно стартует только когда предыдущее полностью
        завершилось. Исключения по отдельным заказам попадают в
        результат, наружу не летят.
        """
        results: List[BatchSyncItem] = []

        for start in range(0, len(jobs), concurrency):
            window = jobs[start:start + concurrency]

            outcomes = await asyncio.gather(
                *(self.sync_order(order_id, config_id) for order_id, config_id in window),
                return_exceptions=True
            )

            for (order_id, _), outcome in zip(window, outcomes):
                if isinstance(outcome, Exception):
                    results.append(BatchSyncItem(order_id, False, error_message=str(outcome)))
                else:
                    results.append(BatchSyncItem(
                        order_id,
                        outcome.success,
                        remote_order_id=outcome.remote_order_id,
                        error_message=outcome.error_message,
                        result=outcome
                    ))

        return results
