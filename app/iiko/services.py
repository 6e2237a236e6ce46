# app/iiko/services.py
"""
Сборка всех сервисов IIKO в одном месте.

Один HTTP клиент, один TokenManager (и его блокировки) и один
планировщик на процесс. main.py создает их при старте, API и бот
получают готовый объект:

    services = build_iiko_services(async_session_maker)
    services.scheduler.start()
    ...
    await services.close()
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.iiko.auth import TokenManager
from app.iiko.client import IikoApiClient
from app.iiko.menu_sync import MenuSynchronizer
from app.iiko.order_sync import OrderSyncClient
from app.iiko.queue_processor import QueueProcessor
from app.iiko.scheduler import SyncScheduler


@dataclass
class IikoServices:
    session_maker: async_sessionmaker[AsyncSession]
    api_client: IikoApiClient
    token_manager: TokenManager
    sync_client: OrderSyncClient
    queue_processor: QueueProcessor
    menu_synchronizer: MenuSynchronizer
    scheduler: SyncScheduler

    async def close(self):
        await self.scheduler.stop()
        await self.api_client.close()


def build_iiko_services(
    session_maker: async_sessionmaker[AsyncSession],
    api_client: Optional[IikoApiClient] = None
) -> IikoServices:
    api_client = api_client or IikoApiClient()

    token_manager = TokenManager(session_maker, api_client)
    sync_client = OrderSyncClient(session_maker, api_client, token_manager)
    queue_processor = QueueProcessor(session_maker, sync_client)
    menu_synchronizer = MenuSynchronizer(session_maker, api_client, token_manager)

    return IikoServices(
        session_maker=session_maker,
        api_client=api_client,
        token_manager=token_manager,
        sync_client=sync_client,
        queue_processor=queue_processor,
        menu_synchronizer=menu_synchronizer,
        scheduler=SyncScheduler(queue_processor, menu_synchronizer),
    )
