# app/iiko/__init__.py
"""
🔁 ИНТЕГРАЦИЯ С IIKO

Заказы витрины → IIKO (через очередь с повторами),
меню IIKO → локальный каталог.
"""

from app.iiko.services import IikoServices, build_iiko_services

__all__ = [
    "IikoServices",
    "build_iiko_services",
]
