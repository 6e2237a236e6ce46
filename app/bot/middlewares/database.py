# app/bot/middlewares/database.py
"""
Middleware для подачи БД сессии в каждый обработчик.

Логика:
1. Создаем сессию из фабрики
2. Передаем её обработчику (параметр session)
3. После обработчика закрываем сессию
"""

from aiogram import BaseMiddleware
from aiogram.types import Message, CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Callable, Any, Awaitable


class DatabaseMiddleware(BaseMiddleware):
    """Middleware который подает AsyncSession в контекст."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def __call__(
        self,
        handler: Callable[[Message | CallbackQuery, dict[str, Any]], Awaitable[Any]],
        event: Message | CallbackQuery,
        data: dict[str, Any]
    ) -> Any:
        async with self.session_maker() as session:
            data["session"] = session
            return await handler(event, data)
