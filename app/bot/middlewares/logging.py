# app/bot/middlewares/logging.py
"""
Middleware для логирования команд оператора.
"""

from aiogram import BaseMiddleware
from aiogram.types import Message, CallbackQuery
from typing import Callable, Any, Awaitable
import structlog

logger = structlog.get_logger()


class LoggingMiddleware(BaseMiddleware):
    """Пишет в лог каждое событие до обработчика."""

    async def __call__(
        self,
        handler: Callable[[Message | CallbackQuery, dict[str, Any]], Awaitable[Any]],
        event: Message | CallbackQuery,
        data: dict[str, Any]
    ) -> Any:
        if isinstance(event, Message):
            logger.info(
                "bot_command_received",
                user_id=event.from_user.id if event.from_user else None,
                command=(event.text or "").split(maxsplit=1)[0][:32] or None
            )
        elif isinstance(event, CallbackQuery):
            logger.info(
                "bot_callback_received",
                user_id=event.from_user.id,
                callback_data=event.data
            )

        return await handler(event, data)
