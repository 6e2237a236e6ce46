# app/iiko/translator.py
"""
Локальный заказ → заказ доставки IIKO.

Чистые функции: ни сети, ни БД. Одинаковый вход = одинаковый выход.

Пример результата:
{
    "organizationId": "org-uuid",
    "terminalGroupId": "tg-uuid",
    "externalNumber": "1001",
    "customer": {"name": "Guest", "phone": ""},
    "order": {
        "items": [{"productId": "uuid", "type": "Product", "amount": 2, "price": 250.0}]
    },
    "deliveryPoint": {"address": {"street": "ул. Ленина, 10"}},
    "completeBefore": "2026-10-17T09:30:00.000Z"
}
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger()


def _to_number(value) -> float:
    if isinstance(value, Decimal):
        return float(value)
    return float(value or 0)


def format_complete_before(value: datetime) -> str:
    """
    Абсолютное время в UTC: 2026-10-17T09:30:00.000Z

    Наивные datetime в БД хранятся в UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def missing_product_mappings(order) -> List[int]:
    """Локальные ID товаров без сопоставления с IIKO."""
    return [item.product_id for item in order.items if not item.iiko_product_id]


def to_external_item(item) -> Dict[str, Any]:
    external = {
        # Нет маппинга = отправляем локальный ID строкой
        "productId": item.iiko_product_id or str(item.product_id),
        "type": "Product",
        "amount": item.quantity,
        "price": _to_number(item.price),
    }
    if item.customization:
        external["comment"] = item.customization
    return external


def to_external_order(order, config) -> Dict[str, Any]:
    """
    Собрать тело запроса deliveries/create.

    order = Order с загруженными items
    config = IikoConfig
    """
    missing = missing_product_mappings(order)
    if missing:
        logger.warning(
            "iiko_product_mapping_missing",
            order_id=order.id,
            order_no=order.order_no,
            product_ids=missing
        )

    external_order: Dict[str, Any] = {
        "items": [to_external_item(item) for item in order.items],
    }
    if order.notes:
        external_order["comment"] = order.notes

    payload: Dict[str, Any] = {
        "organizationId": config.organization_id,
        "externalNumber": order.order_no,
        "customer": {
            "name": order.customer_name or "Guest",
            "phone": order.customer_phone or "",
        },
        "order": external_order,
    }

    if config.terminal_group_id:
        payload["terminalGroupId"] = config.terminal_group_id

    # Только для доставки
    if order.delivery_address:
        address = {"street": order.delivery_address}
        if order.delivery_notes:
            address["comment"] = order.delivery_notes
        payload["deliveryPoint"] = {"address": address}

    if order.scheduled_time:
        payload["completeBefore"] = format_complete_before(order.scheduled_time)

    return payload
