# infrastructure/redis_storage.py
"""
🔴 REDIS STORAGE

Redis хранит FSM состояния бота. Команды оператора пока без
состояний, но диспетчеру storage нужен всегда.

Если Redis не отвечает (локальный запуск без docker), работаем
на MemoryStorage: состояния потеряются при перезапуске, и всё.
"""

from typing import Optional

from aiogram.fsm.storage.base import BaseStorage
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.fsm.storage.redis import RedisStorage
from redis.asyncio.client import Redis
from redis.exceptions import RedisError
import structlog

from config.settings import config

logger = structlog.get_logger()


async def check_redis_connection(redis: Redis) -> bool:
    """Проверяет что Redis живой и отвечает."""
    try:
        await redis.ping()
        return True
    except (RedisError, OSError) as e:
        logger.warning("redis_connection_error", error=str(e))
        return False


async def create_fsm_storage(url: Optional[str] = None) -> BaseStorage:
    """
    RedisStorage если Redis доступен, иначе MemoryStorage.

    Пример:
        dp = Dispatcher(storage=await create_fsm_storage())
    """
    redis = Redis.from_url(url or config.redis_url)

    if await check_redis_connection(redis):
        logger.info("fsm_storage_ready", backend="redis")
        return RedisStorage(redis=redis)

    await redis.aclose()
    logger.warning("fsm_storage_fallback", backend="memory")
    return MemoryStorage()
