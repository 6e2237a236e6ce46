# app/api/iiko.py
"""
Админ API интеграции с IIKO.

Все маршруты под /api/iiko и требуют заголовок X-Admin-Token.

Пример:
    curl -X POST http://localhost:5000/api/iiko/sync/orders \\
         -H "X-Admin-Token: <ADMIN_API_TOKEN>"
"""

import hmac
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
import structlog

from config.settings import config
from infrastructure.database.repositories import (
    CategoryMappingRepository,
    IikoConfigRepository,
    MenuSyncRepository,
    OrderQueueRepository,
    OrderRepository,
)
from app.api.schemas import (
    CategoryMappingCreate,
    CategoryMappingOut,
    CategoryMappingUpdate,
    ConnectionCheckRequest,
    EnqueueRequest,
    IikoConfigCreate,
    IikoConfigOut,
    IikoConfigUpdate,
    MenuMappingOut,
    QueueItemOut,
)
from app.iiko.exceptions import IikoConfigNotFoundError, IikoTransportError
from app.iiko.services import IikoServices

logger = structlog.get_logger()


# ==========================================
# ЗАВИСИМОСТИ
# ==========================================

async def verify_admin_token(request: Request, x_admin_token: str = Header(default="")):
    # TIMING-SAFE сравнение
    if not hmac.compare_digest(x_admin_token.encode(), config.admin_api_token.encode()):
        logger.warning(
            "invalid_admin_token",
            path=request.url.path,
            remote_ip=request.client.host if request.client else "unknown"
        )
        raise HTTPException(403, "Invalid admin token")


def get_services(request: Request) -> IikoServices:
    return request.app.state.iiko


router = APIRouter(
    prefix="/api/iiko",
    tags=["iiko"],
    dependencies=[Depends(verify_admin_token)]
)


# ==========================================
# НАСТРОЙКИ ПОДКЛЮЧЕНИЯ
# ==========================================

@router.get("/configs", response_model=List[IikoConfigOut])
async def list_configs(services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        return await IikoConfigRepository(session).list_all()


@router.post("/configs", response_model=IikoConfigOut, status_code=201)
async def create_config(payload: IikoConfigCreate, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        return await IikoConfigRepository(session).create(**payload.model_dump())


@router.get("/configs/{config_id}", response_model=IikoConfigOut)
async def get_config(config_id: int, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        iiko_config = await IikoConfigRepository(session).get_by_id(config_id)

    if iiko_config is None:
        raise HTTPException(404, "Config not found")

    return iiko_config


@router.patch("/configs/{config_id}", response_model=IikoConfigOut)
async def update_config(
    config_id: int,
    payload: IikoConfigUpdate,
    services: IikoServices = Depends(get_services)
):
    patch = payload.model_dump(exclude_unset=True)

    async with services.session_maker() as session:
        iiko_config = await IikoConfigRepository(session).update(config_id, **patch)

    if iiko_config is None:
        raise HTTPException(404, "Config not found")

    # Сменили логин или адрес = старый токен больше не годится
    if "api_login" in patch or "api_url" in patch:
        iiko_config = await services.token_manager.invalidate(config_id)

    logger.info("iiko_config_updated", config_id=config_id, fields=sorted(patch))

    return iiko_config


@router.delete("/configs/{config_id}")
async def delete_config(config_id: int, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        if await IikoConfigRepository(session).get_by_id(config_id) is None:
            raise HTTPException(404, "Config not found")

        # На настройки ссылается очередь (внешний ключ)
        queued = await OrderQueueRepository(session).count_for_config(config_id)
        if queued:
            raise HTTPException(409, f"Config has {queued} queued orders, deactivate it instead")

        await IikoConfigRepository(session).delete(config_id)

    logger.info("iiko_config_deleted", config_id=config_id)

    return {"success": True}


@router.get("/configs/{config_id}/menu", response_model=List[MenuMappingOut])
async def list_menu_mappings(config_id: int, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        return await MenuSyncRepository(session).list_for_config(config_id)


# ==========================================
# ПРОВЕРКА ПОДКЛЮЧЕНИЯ / СПРАВОЧНИКИ IIKO
# ==========================================

@router.post("/test-connection")
async def test_connection(payload: ConnectionCheckRequest, services: IikoServices = Depends(get_services)):
    return await services.token_manager.test_connection(payload.api_url, payload.api_login)


@router.get("/configs/{config_id}/organizations")
async def get_organizations(config_id: int, services: IikoServices = Depends(get_services)):
    try:
        return await services.token_manager.get_organizations(config_id)
    except IikoConfigNotFoundError:
        raise HTTPException(404, "Config not found")
    except IikoTransportError as e:
        logger.error("iiko_organizations_failed", config_id=config_id, error=str(e))
        raise HTTPException(502, str(e))


@router.get("/configs/{config_id}/terminal-groups")
async def get_terminal_groups(config_id: int, services: IikoServices = Depends(get_services)):
    try:
        return await services.token_manager.get_terminal_groups(config_id)
    except IikoConfigNotFoundError:
        raise HTTPException(404, "Config not found")
    except IikoTransportError as e:
        logger.error("iiko_terminal_groups_failed", config_id=config_id, error=str(e))
        raise HTTPException(502, str(e))


# ==========================================
# ОЧЕРЕДЬ И РУЧНОЙ ЗАПУСК
# ==========================================

@router.post("/queue", response_model=QueueItemOut, status_code=201)
async def enqueue_order(payload: EnqueueRequest, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        order = await OrderRepository(session).get_by_id_with_items(payload.order_id)
        if order is None:
            raise HTTPException(404, "Order not found")

        iiko_config = await IikoConfigRepository(session).get_by_id(payload.config_id)
        if iiko_config is None:
            raise HTTPException(404, "Config not found")

        return await OrderQueueRepository(session).enqueue(
            order_id=order.id,
            order_no=order.order_no,
            config_id=iiko_config.id,
            priority=payload.priority
        )


@router.get("/queue/{queue_id}", response_model=QueueItemOut)
async def get_queue_item(queue_id: int, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        item = await OrderQueueRepository(session).get_by_id(queue_id)

    if item is None:
        raise HTTPException(404, "Queue item not found")

    return item


@router.post("/sync/orders")
async def trigger_order_sync(services: IikoServices = Depends(get_services)):
    try:
        result = await services.scheduler.trigger_order_sync()
    except Exception as e:
        raise HTTPException(500, f"Order sync failed: {e}")

    if result is None:
        return {"skipped": True}

    return result.to_dict()


@router.post("/sync/menu")
async def trigger_menu_sync(services: IikoServices = Depends(get_services)):
    try:
        summary = await services.scheduler.trigger_menu_sync()
    except Exception as e:
        raise HTTPException(500, f"Menu sync failed: {e}")

    if summary is None:
        return {"skipped": True}

    return summary.to_dict()


@router.get("/scheduler/status")
async def scheduler_status(services: IikoServices = Depends(get_services)):
    return services.scheduler.status()


# ==========================================
# МАППИНГ КАТЕГОРИЙ
# ==========================================

@router.get("/category-mappings", response_model=List[CategoryMappingOut])
async def list_category_mappings(store_id: Optional[int] = None, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        return await CategoryMappingRepository(session).list_all(store_id=store_id)


@router.post("/category-mappings", response_model=CategoryMappingOut, status_code=201)
async def create_category_mapping(
    payload: CategoryMappingCreate,
    services: IikoServices = Depends(get_services)
):
    async with services.session_maker() as session:
        return await CategoryMappingRepository(session).create(**payload.model_dump())


@router.patch("/category-mappings/{mapping_id}", response_model=CategoryMappingOut)
async def update_category_mapping(
    mapping_id: int,
    payload: CategoryMappingUpdate,
    services: IikoServices = Depends(get_services)
):
    async with services.session_maker() as session:
        mapping = await CategoryMappingRepository(session).update(
            mapping_id,
            **payload.model_dump(exclude_unset=True)
        )

    if mapping is None:
        raise HTTPException(404, "Category mapping not found")

    return mapping


@router.delete("/category-mappings/{mapping_id}")
async def delete_category_mapping(mapping_id: int, services: IikoServices = Depends(get_services)):
    async with services.session_maker() as session:
        deleted = await CategoryMappingRepository(session).delete(mapping_id)

    if not deleted:
        raise HTTPException(404, "Category mapping not found")

    return {"success": True}
