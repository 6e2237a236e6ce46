# app/api/schemas.py
"""
Pydantic модели админ API IIKO.

FastAPI сам проверит типы входящего JSON и вернет 422,
если что-то не так.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from config.settings import config
from infrastructure.database.models import QueueStatus


# ==========================================
# НАСТРОЙКИ ПОДКЛЮЧЕНИЯ
# ==========================================

class IikoConfigCreate(BaseModel):
    config_name: str = Field(min_length=1, max_length=128)
    store_id: Optional[int] = None
    api_url: str = config.iiko_default_api_url
    api_login: str = Field(min_length=1)
    organization_id: str = Field(min_length=1)
    organization_name: Optional[str] = None
    terminal_group_id: Optional[str] = None
    terminal_group_name: Optional[str] = None
    is_active: bool = True


class IikoConfigUpdate(BaseModel):
    """Все поля необязательные. Токен через API не меняется."""
    config_name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    store_id: Optional[int] = None
    api_url: Optional[str] = None
    api_login: Optional[str] = None
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None
    terminal_group_id: Optional[str] = None
    terminal_group_name: Optional[str] = None
    is_active: Optional[bool] = None


class IikoConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    config_name: str
    store_id: Optional[int] = None
    api_url: str
    organization_id: str
    organization_name: Optional[str] = None
    terminal_group_id: Optional[str] = None
    terminal_group_name: Optional[str] = None
    menu_revision: Optional[int] = None
    last_menu_sync_at: Optional[datetime] = None
    is_active: bool
    token_expires_at: Optional[datetime] = None


class ConnectionCheckRequest(BaseModel):
    api_url: str = config.iiko_default_api_url
    api_login: str = Field(min_length=1)


# ==========================================
# ОЧЕРЕДЬ
# ==========================================

class EnqueueRequest(BaseModel):
    order_id: int
    config_id: int
    priority: int = 0


class QueueItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    order_no: str
    config_id: int
    queue_status: QueueStatus
    priority: int
    retry_count: int
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


# ==========================================
# МАППИНГ КАТЕГОРИЙ
# ==========================================

class CategoryMappingCreate(BaseModel):
    iiko_group_id: str = Field(min_length=1)
    iiko_group_name: str = Field(min_length=1)
    local_category_id: int
    store_id: Optional[int] = None


class CategoryMappingUpdate(BaseModel):
    iiko_group_name: Optional[str] = None
    local_category_id: Optional[int] = None
    store_id: Optional[int] = None


class CategoryMappingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    iiko_group_id: str
    iiko_group_name: str
    local_category_id: int
    store_id: Optional[int] = None


class MenuMappingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    iiko_product_id: str
    iiko_product_name: str
    local_product_id: Optional[int] = None
    price: Optional[Decimal] = None
    is_available: bool
    is_in_stop_list: bool
    last_sync_at: Optional[datetime] = None
