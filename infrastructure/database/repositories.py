# infrastructure/database/repositories.py
"""
Repository паттерн.

Вместо того чтобы писать:
    session.execute(select(...))
    session.commit()
везде в коде, мы создаем методы:
    repo.get_pending(10)
    repo.update_status(...)

Каждый репозиторий получает одну AsyncSession. Методы, которые
пишут в БД, сами делают commit (как и раньше).
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import structlog

from .models import (
    Category,
    IikoCategoryMapping,
    IikoConfig,
    IikoMenuSync,
    IikoOrderQueue,
    IikoOrderSync,
    Order,
    OrderItem,
    Product,
    QueueStatus,
    SyncStatus,
)

logger = structlog.get_logger()


# ==========================================
# REPOSITORY: Order (локальные заказы, только чтение для синхронизации)
# ==========================================

class OrderRepository:
    """Заказы витрины."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id_with_items(self, order_id: int) -> Optional[Order]:
        """
        Заказ вместе с позициями одним запросом (selectinload).

        Без selectinload обращение к order.items в async сессии
        упадет с MissingGreenlet.
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
        )
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def create(self, order_no: str, items: list, **fields) -> Order:
        """
        Создать заказ с позициями.

        items = [{"product_id": 7, "quantity": 2, "price": 250, ...}]
        """
        order = Order(order_no=order_no, **fields)
        order.items = [OrderItem(**item) for item in items]
        self.session.add(order)

        await self.session.commit()

        logger.info("order_created", order_id=order.id, order_no=order_no)

        return await self.get_by_id_with_items(order.id)

    async def set_iiko_order_id(self, order_id: int, iiko_order_id: str):
        stmt = update(Order).where(Order.id == order_id).values(iiko_order_id=iiko_order_id)
        await self.session.execute(stmt)
        await self.session.commit()


# ==========================================
# REPOSITORY: IikoConfig
# ==========================================

class IikoConfigRepository:
    """Настройки подключения к IIKO."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, config_id: int) -> Optional[IikoConfig]:
        stmt = select(IikoConfig).where(IikoConfig.id == config_id)
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def list_all(self) -> List[IikoConfig]:
        stmt = select(IikoConfig).order_by(IikoConfig.created_at.desc())
        result = await self.session.execute(stmt)

        return list(result.scalars().all())

    async def list_active(self) -> List[IikoConfig]:
        """Только активные (неактивные никогда не синхронизируем)."""
        stmt = (
            select(IikoConfig)
            .where(IikoConfig.is_active.is_(True))
            .order_by(IikoConfig.id)
        )
        result = await self.session.execute(stmt)

        return list(result.scalars().all())

    async def create(self, **fields) -> IikoConfig:
        config = IikoConfig(**fields)
        self.session.add(config)

        await self.session.commit()

        logger.info("iiko_config_created", config_id=config.id, config_name=config.config_name)

        return config

    async def update(self, config_id: int, **patch) -> Optional[IikoConfig]:
        """
        Частичное обновление.

        Пример:
            await repo.update(1, access_token="...", token_expires_at=...)
        """
        if patch:
            stmt = (
                update(IikoConfig)
                .where(IikoConfig.id == config_id)
                .values(updated_at=datetime.utcnow(), **patch)
            )
            await self.session.execute(stmt)
            await self.session.commit()

        # populate_existing = перечитываем поля, даже если объект уже в сессии
        stmt = (
            select(IikoConfig)
            .where(IikoConfig.id == config_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def delete(self, config_id: int) -> bool:
        """
        Удалить настройки вместе с маппингами меню.

        Элементы очереди не трогаем: проверка на них в API (409).
        """
        await self.session.execute(delete(IikoMenuSync).where(IikoMenuSync.config_id == config_id))

        stmt = delete(IikoConfig).where(IikoConfig.id == config_id)
        result = await self.session.execute(stmt)
        await self.session.commit()

        return result.rowcount > 0


# ==========================================
# REPOSITORY: IikoOrderQueue (очередь синхронизации)
# ==========================================

class OrderQueueRepository:
    """
    Очередь заказов на отправку в IIKO.

    ВАЖНО: статусы меняет только QueueProcessor.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(
        self,
        order_id: int,
        order_no: str,
        config_id: int,
        priority: int = 0
    ) -> IikoOrderQueue:
        """Поставить заказ в очередь (статус pending, retry_count 0)."""
        item = IikoOrderQueue(
            order_id=order_id,
            order_no=order_no,
            config_id=config_id,
            priority=priority,
            queue_status=QueueStatus.PENDING,
            retry_count=0
        )
        self.session.add(item)

        await self.session.commit()

        logger.info("iiko_order_enqueued", order_id=order_id, order_no=order_no, config_id=config_id)

        return item

    async def get_by_id(self, queue_id: int) -> Optional[IikoOrderQueue]:
        stmt = (
            select(IikoOrderQueue)
            .where(IikoOrderQueue.id == queue_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def get_pending(self, limit: int = 10) -> List[IikoOrderQueue]:
        """
        Ожидающие элементы: сначала высокий приоритет, затем старые.
        """
        stmt = (
            select(IikoOrderQueue)
            .where(IikoOrderQueue.queue_status == QueueStatus.PENDING)
            .order_by(IikoOrderQueue.priority.desc(), IikoOrderQueue.created_at, IikoOrderQueue.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)

        return list(result.scalars().all())

    async def count_by_status(self) -> dict:
        """{"pending": 3, "failed": 1, ...} для /iiko_status."""
        stmt = (
            select(IikoOrderQueue.queue_status, func.count(IikoOrderQueue.id))
            .group_by(IikoOrderQueue.queue_status)
        )
        result = await self.session.execute(stmt)

        counts = {status.value: 0 for status in QueueStatus}
        for status, count in result.all():
            counts[status.value] = count

        return counts

    async def count_for_config(self, config_id: int) -> int:
        stmt = select(func.count(IikoOrderQueue.id)).where(IikoOrderQueue.config_id == config_id)
        result = await self.session.execute(stmt)

        return result.scalar_one()

    async def release(self, queue_ids: List[int]) -> int:
        """
        Вернуть недообработанные элементы: processing → pending.

        retry_count не меняется: попытка не состоялась.
        Уже завершенные элементы (completed/pending/failed) не трогаем.
        """
        if not queue_ids:
            return 0

        stmt = (
            update(IikoOrderQueue)
            .where(
                IikoOrderQueue.id.in_(queue_ids),
                IikoOrderQueue.queue_status == QueueStatus.PROCESSING
            )
            .values(queue_status=QueueStatus.PENDING, updated_at=datetime.utcnow())
        )
        result = await self.session.execute(stmt)
        await self.session.commit()

        return result.rowcount

    async def claim(self, queue_id: int) -> bool:
        """
        Взять элемент в работу: pending → processing.

        Условный UPDATE (compare-and-swap по статусу): если элемент
        уже забрал другой процесс, обновится 0 строк и вернется False.
        """
        stmt = (
            update(IikoOrderQueue)
            .where(
                IikoOrderQueue.id == queue_id,
                IikoOrderQueue.queue_status == QueueStatus.PENDING
            )
            .values(
                queue_status=QueueStatus.PROCESSING,
                processed_at=datetime.utcnow(),
                updated_at=datetime.utcnow()
            )
        )
        result = await self.session.execute(stmt)
        await self.session.commit()

        return result.rowcount == 1

    async def update_status(
        self,
        queue_id: int,
        status: QueueStatus,
        error_message: Optional[str] = None,
        retry_count: Optional[int] = None
    ):
        """
        Обновить статус элемента очереди.

        Пример:
            await repo.update_status(5, QueueStatus.PENDING, "timeout", retry_count=1)
        """
        values = {
            "queue_status": status,
            "updated_at": datetime.utcnow()
        }

        if status == QueueStatus.COMPLETED:
            values["completed_at"] = datetime.utcnow()
            values["error_message"] = None
        elif error_message is not None:
            values["error_message"] = error_message

        if retry_count is not None:
            values["retry_count"] = retry_count

        stmt = update(IikoOrderQueue).where(IikoOrderQueue.id == queue_id).values(**values)

        await self.session.execute(stmt)
        await self.session.commit()


# ==========================================
# REPOSITORY: IikoOrderSync (журнал итогов)
# ==========================================

class SyncRecordRepository:
    """Журнал синхронизации: одна строка на заказ, upsert по order_id."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_order_id(self, order_id: int) -> Optional[IikoOrderSync]:
        stmt = (
            select(IikoOrderSync)
            .where(IikoOrderSync.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def create_or_update(
        self,
        order_id: int,
        order_no: str,
        sync_status: SyncStatus,
        sync_attempts: int = 1,
        iiko_order_id: Optional[str] = None,
        iiko_external_number: Optional[str] = None,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None
    ) -> IikoOrderSync:
        record = await self.get_by_order_id(order_id)

        if record is None:
            record = IikoOrderSync(order_id=order_id)
            self.session.add(record)

        record.order_no = order_no
        record.sync_status = sync_status
        record.sync_attempts = sync_attempts
        record.iiko_order_id = iiko_order_id
        record.iiko_external_number = iiko_external_number
        record.error_message = error_message
        record.error_code = error_code
        record.last_sync_at = datetime.utcnow()

        await self.session.commit()

        logger.info(
            "iiko_sync_record_saved",
            order_id=order_id,
            sync_status=sync_status.value
        )

        return record


# ==========================================
# REPOSITORY: IikoMenuSync (сопоставление товаров)
# ==========================================

class MenuSyncRepository:
    """Маппинг товаров IIKO ↔ локальные товары."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, config_id: int, iiko_product_id: str) -> Optional[IikoMenuSync]:
        stmt = select(IikoMenuSync).where(
            IikoMenuSync.config_id == config_id,
            IikoMenuSync.iiko_product_id == iiko_product_id
        )
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def list_for_config(self, config_id: int) -> List[IikoMenuSync]:
        stmt = (
            select(IikoMenuSync)
            .where(IikoMenuSync.config_id == config_id)
            .order_by(IikoMenuSync.id)
        )
        result = await self.session.execute(stmt)

        return list(result.scalars().all())

    async def upsert(
        self,
        config_id: int,
        iiko_product_id: str,
        iiko_product_name: str,
        store_id: Optional[int] = None,
        iiko_category_id: Optional[str] = None,
        local_product_id: Optional[int] = None,
        price: Optional[Decimal] = None,
        is_available: bool = True,
        is_in_stop_list: bool = False,
        commit: bool = True
    ) -> IikoMenuSync:
        """
        Создать или обновить маппинг.

        commit=False = синхронизация меню коммитит пачкой в конце.
        """
        mapping = await self.get(config_id, iiko_product_id)

        if mapping is None:
            mapping = IikoMenuSync(config_id=config_id, iiko_product_id=iiko_product_id)
            self.session.add(mapping)

        mapping.store_id = store_id
        mapping.iiko_product_name = iiko_product_name
        mapping.iiko_category_id = iiko_category_id
        if local_product_id is not None:
            mapping.local_product_id = local_product_id
        mapping.price = price
        mapping.is_available = is_available
        mapping.is_in_stop_list = is_in_stop_list
        mapping.last_sync_at = datetime.utcnow()

        if commit:
            await self.session.commit()
        else:
            await self.session.flush()

        return mapping


# ==========================================
# REPOSITORY: IikoCategoryMapping
# ==========================================

class CategoryMappingRepository:
    """Группы IIKO → локальные категории (CRUD для админки)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self, store_id: Optional[int] = None) -> List[IikoCategoryMapping]:
        stmt = select(IikoCategoryMapping).order_by(IikoCategoryMapping.id)

        if store_id is not None:
            stmt = stmt.where(IikoCategoryMapping.store_id == store_id)

        result = await self.session.execute(stmt)

        return list(result.scalars().all())

    async def get_by_id(self, mapping_id: int) -> Optional[IikoCategoryMapping]:
        stmt = select(IikoCategoryMapping).where(IikoCategoryMapping.id == mapping_id)
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def get_by_iiko_group_id(
        self,
        iiko_group_id: str,
        store_id: Optional[int] = None
    ) -> Optional[IikoCategoryMapping]:
        stmt = select(IikoCategoryMapping).where(IikoCategoryMapping.iiko_group_id == iiko_group_id)

        if store_id is not None:
            stmt = stmt.where(IikoCategoryMapping.store_id == store_id)

        result = await self.session.execute(stmt.limit(1))

        return result.scalars().first()

    async def create(
        self,
        iiko_group_id: str,
        iiko_group_name: str,
        local_category_id: int,
        store_id: Optional[int] = None
    ) -> IikoCategoryMapping:
        mapping = IikoCategoryMapping(
            iiko_group_id=iiko_group_id,
            iiko_group_name=iiko_group_name,
            local_category_id=local_category_id,
            store_id=store_id
        )
        self.session.add(mapping)

        await self.session.commit()

        logger.info("iiko_category_mapping_created", iiko_group_id=iiko_group_id)

        return mapping

    async def update(self, mapping_id: int, **patch) -> Optional[IikoCategoryMapping]:
        if patch:
            stmt = (
                update(IikoCategoryMapping)
                .where(IikoCategoryMapping.id == mapping_id)
                .values(updated_at=datetime.utcnow(), **patch)
            )
            await self.session.execute(stmt)
            await self.session.commit()

        stmt = (
            select(IikoCategoryMapping)
            .where(IikoCategoryMapping.id == mapping_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def delete(self, mapping_id: int) -> bool:
        stmt = delete(IikoCategoryMapping).where(IikoCategoryMapping.id == mapping_id)
        result = await self.session.execute(stmt)
        await self.session.commit()

        return result.rowcount > 0


# ==========================================
# REPOSITORY: Product / Category (цель синхронизации меню)
# ==========================================

class ProductRepository:
    """Локальные товары, которые обновляет синхронизация меню."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_iiko_id(self, iiko_id: str) -> Optional[Product]:
        stmt = select(Product).where(Product.iiko_id == iiko_id).limit(1)
        result = await self.session.execute(stmt)

        return result.scalars().first()

    async def create_from_iiko(
        self,
        iiko_id: str,
        category_id: int,
        name: str,
        base_price: Decimal,
        code: Optional[str] = None,
        description: Optional[str] = None,
        is_active: bool = True
    ) -> Product:
        product = Product(
            iiko_id=iiko_id,
            category_id=category_id,
            code=code or f"IIKO-{iiko_id}",
            name=name,
            description=description or "",
            base_price=base_price,
            stock=999,
            is_active=is_active
        )
        self.session.add(product)
        await self.session.flush()

        return product

    async def update_from_iiko(
        self,
        product: Product,
        name: str,
        base_price: Decimal,
        description: Optional[str] = None,
        is_active: bool = True
    ) -> Product:
        product.name = name
        product.description = description or ""
        product.base_price = base_price
        product.is_active = is_active
        await self.session.flush()

        return product

    async def deactivate_by_iiko_id(self, iiko_id: str) -> bool:
        stmt = (
            update(Product)
            .where(Product.iiko_id == iiko_id, Product.is_active.is_(True))
            .values(is_active=False, updated_at=datetime.utcnow())
        )
        result = await self.session.execute(stmt)

        return result.rowcount > 0


class CategoryRepository:
    """Категории меню (нужны админке и тестам)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, name: str, iiko_id: Optional[str] = None, sort_order: int = 0) -> Category:
        category = Category(name=name, iiko_id=iiko_id, sort_order=sort_order)
        self.session.add(category)

        await self.session.commit()

        return category
