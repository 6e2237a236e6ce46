# infrastructure/database/models.py
"""
Здесь мы описываем структуру таблиц в базе данных.
SQLAlchemy автоматически создаст эти таблицы при первом запуске.

Каждый класс = одна таблица в БД
Каждое поле класса = один столбец в таблице

Две группы таблиц:
- локальный каталог и заказы (categories, products, orders, order_items)
- интеграция с IIKO (iiko_config, iiko_order_queue, iiko_order_sync,
  iiko_menu_sync, iiko_category_mapping)
"""

from sqlalchemy import (
    Integer,       # Целые числа
    String,        # Текст фиксированной длины
    Text,          # Текст любой длины
    DateTime,      # Дата и время
    ForeignKey,    # Связь с другой таблицей
    Enum,          # Перечисление (выбор из нескольких вариантов)
    Boolean,       # Логическое значение (true/false)
    DECIMAL,       # Числа с фиксированной точкой (для денег!)
    Column,        # Определение столбца
    UniqueConstraint,
)

from sqlalchemy.orm import declarative_base, relationship

from datetime import datetime

from enum import Enum as PyEnum


# Base: базовый класс для всех моделей
Base = declarative_base()


# ==========================================
# ENUMS (Перечисления)
# ==========================================

class QueueStatus(str, PyEnum):
    """
    Статус элемента очереди синхронизации.

    pending → processing → completed
    pending → processing → pending (повтор)
    pending → processing → failed
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(str, PyEnum):
    """Итог синхронизации заказа (пишется только в конце)."""
    SUCCESS = "success"
    FAILED = "failed"


# ==========================================
# МОДЕЛЬ: Category (Таблица categories)
# ==========================================

class Category(Base):
    """Категория меню (чай, молочный чай, топпинги...)."""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)

    iiko_id = Column(String(64), nullable=True, index=True)
    # ID группы в IIKO (если категория пришла оттуда)

    name = Column(String(128), nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    products = relationship("Product", back_populates="category")


# ==========================================
# МОДЕЛЬ: Product (Таблица products)
# ==========================================

class Product(Base):
    """
    Товар в меню.

    Товары из IIKO находим по iiko_id: синхронизация меню
    обновляет существующие и создает новые.
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)

    iiko_id = Column(
        String(64),
        nullable=True,
        index=True  # ← INDEX (синхронизация меню ищет по нему)
    )
    # ID товара в IIKO (UUID)

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)

    code = Column(String(64), nullable=False, unique=True)
    # Артикул

    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)

    base_price = Column(DECIMAL(10, 2), nullable=False)
    stock = Column(Integer, default=999)

    is_active = Column(Boolean, default=True, nullable=False)
    # False = товар скрыт из меню (удален в IIKO или в стоп-листе)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="products")


# ==========================================
# МОДЕЛЬ: Order (Таблица orders)
# ==========================================

class Order(Base):
    """
    Таблица заказов.

    Заказ создается витриной / Mini App. Синхронизация с IIKO
    его только читает (и ничего в нем не меняет, кроме iiko_order_id).
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)

    order_no = Column(String(64), nullable=False, unique=True, index=True)
    # Человекочитаемый номер заказа (#1001)

    store_id = Column(Integer, nullable=True)

    customer_name = Column(String(128), nullable=True)
    customer_phone = Column(String(32), nullable=True)

    delivery_address = Column(Text, nullable=True)
    # Пусто = самовывоз
    delivery_notes = Column(Text, nullable=True)

    scheduled_time = Column(DateTime, nullable=True)
    # Ко скольки приготовить (если клиент выбрал время)

    notes = Column(Text, nullable=True)
    # Комментарий к заказу

    total_amount = Column(DECIMAL(12, 2), nullable=False, default=0)

    iiko_order_id = Column(String(64), nullable=True)
    # ID заказа в IIKO после успешной синхронизации

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id"
    )


class OrderItem(Base):
    """Позиция заказа."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    product_id = Column(Integer, nullable=False)
    # Локальный ID товара

    iiko_product_id = Column(String(64), nullable=True)
    # ID товара в IIKO (может отсутствовать, если товар не сопоставлен)

    product_name = Column(String(256), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(DECIMAL(10, 2), nullable=False)

    customization = Column(Text, nullable=True)
    # "50% сахара, без льда" = уходит в comment позиции

    order = relationship("Order", back_populates="items")


# ==========================================
# МОДЕЛЬ: IikoConfig (Таблица iiko_config)
# ==========================================

class IikoConfig(Base):
    """
    Настройки подключения к IIKO (одна запись на магазин / терминал).

    ВАЖНО: access_token и token_expires_at пишет только TokenManager.
    Все остальные поля меняет администратор через API.
    """
    __tablename__ = "iiko_config"

    id = Column(Integer, primary_key=True, autoincrement=True)

    config_name = Column(String(128), nullable=False)
    # Название для админки ("Магазин на Тверской")
    store_id = Column(Integer, nullable=True)

    # API
    api_url = Column(String(256), nullable=False, default="https://api-ru.iiko.services")
    api_login = Column(String(256), nullable=False)

    # Организация и терминал
    organization_id = Column(String(64), nullable=False)
    organization_name = Column(String(256), nullable=True)
    terminal_group_id = Column(String(64), nullable=True)
    terminal_group_name = Column(String(256), nullable=True)

    # Меню
    menu_revision = Column(Integer, default=0)
    # Ревизия номенклатуры при последней синхронизации
    last_menu_sync_at = Column(DateTime, nullable=True)

    is_active = Column(
        Boolean,
        default=True,
        nullable=False,
        index=True  # ← INDEX (синхронизация выбирает только активные)
    )

    # Кэш токена
    access_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ==========================================
# МОДЕЛЬ: IikoOrderQueue (Таблица iiko_order_queue)
# ==========================================

class IikoOrderQueue(Base):
    """
    Очередь заказов на отправку в IIKO.

    Запись создается когда заказ оформлен. Статус и retry_count
    меняет только QueueProcessor.
    """
    __tablename__ = "iiko_order_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)

    order_id = Column(Integer, nullable=False, index=True)
    order_no = Column(String(64), nullable=False)
    config_id = Column(Integer, ForeignKey("iiko_config.id"), nullable=False)

    queue_status = Column(
        Enum(QueueStatus),
        default=QueueStatus.PENDING,
        nullable=False,
        index=True  # ← INDEX (постоянно ищем pending)
    )

    priority = Column(Integer, default=0, nullable=False)
    # Больше = раньше

    retry_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    processed_at = Column(DateTime, nullable=True)
    # Когда взят в обработку последний раз
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ==========================================
# МОДЕЛЬ: IikoOrderSync (Таблица iiko_order_sync)
# ==========================================

class IikoOrderSync(Base):
    """
    Журнал синхронизации заказов (одна строка на заказ).

    Пишется только по итогу: success или окончательный failed.
    Промежуточные ретраи сюда не попадают.
    """
    __tablename__ = "iiko_order_sync"

    id = Column(Integer, primary_key=True, autoincrement=True)

    order_id = Column(Integer, nullable=False, unique=True, index=True)
    order_no = Column(String(64), nullable=False)

    iiko_order_id = Column(String(64), nullable=True)
    iiko_external_number = Column(String(64), nullable=True)

    sync_status = Column(Enum(SyncStatus), nullable=False)
    sync_attempts = Column(Integer, default=0, nullable=False)

    error_message = Column(Text, nullable=True)
    error_code = Column(String(128), nullable=True)

    last_sync_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ==========================================
# МОДЕЛЬ: IikoMenuSync (Таблица iiko_menu_sync)
# ==========================================

class IikoMenuSync(Base):
    """
    Сопоставление товара IIKO ↔ локальный товар.

    Ключ = (config_id, iiko_product_id). Цена и доступность
    зеркалируются из IIKO при каждой синхронизации меню.
    """
    __tablename__ = "iiko_menu_sync"
    __table_args__ = (
        UniqueConstraint("config_id", "iiko_product_id", name="uq_menu_sync_config_product"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    config_id = Column(Integer, ForeignKey("iiko_config.id"), nullable=False, index=True)
    store_id = Column(Integer, nullable=True)

    iiko_product_id = Column(String(64), nullable=False)
    iiko_product_name = Column(String(256), nullable=False)
    iiko_category_id = Column(String(64), nullable=True)

    local_product_id = Column(Integer, ForeignKey("products.id"), nullable=True)

    price = Column(DECIMAL(10, 2), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    is_in_stop_list = Column(Boolean, default=False, nullable=False)

    last_sync_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ==========================================
# МОДЕЛЬ: IikoCategoryMapping (Таблица iiko_category_mapping)
# ==========================================

class IikoCategoryMapping(Base):
    """
    Группа IIKO → локальная категория.

    Заполняет администратор. Синхронизация меню только читает:
    куда положить новый товар из этой группы.
    """
    __tablename__ = "iiko_category_mapping"

    id = Column(Integer, primary_key=True, autoincrement=True)

    iiko_group_id = Column(String(64), nullable=False, index=True)
    iiko_group_name = Column(String(256), nullable=False)
    local_category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    store_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
