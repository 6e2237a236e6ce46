# app/bot/middlewares/__init__.py
"""
🔄 MIDDLEWARE (перехватчики)

Срабатывают для КАЖДОГО сообщения:
- LoggingMiddleware: пишем команду в лог
- DatabaseMiddleware: даем обработчику сессию БД
"""

from app.bot.middlewares.database import DatabaseMiddleware
from app.bot.middlewares.logging import LoggingMiddleware

__all__ = [
    "LoggingMiddleware",
    "DatabaseMiddleware",
]
