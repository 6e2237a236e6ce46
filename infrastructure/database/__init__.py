# infrastructure/database/__init__.py
"""
🗄️ DATABASE ИНИЦИАЛИЗАЦИЯ

Экспортируем все нужные функции и объекты.
"""

from infrastructure.database.models import Base
from infrastructure.database.base import (
    create_engine,
    create_session_maker,
    engine,
    async_session_maker,
    get_db_session,
    init_db,
    close_db,
)

__all__ = [
    "Base",
    "create_engine",
    "create_session_maker",
    "engine",
    "async_session_maker",
    "get_db_session",
    "init_db",
    "close_db",
]
