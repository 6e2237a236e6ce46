# infrastructure/database/base.py
"""
🗄️ ПОДКЛЮЧЕНИЕ К БД

Здесь создаются:
- engine (одно соединение-пул на всё приложение)
- async_session_maker (фабрика сессий)

Сервисы синхронизации получают фабрику сессий в конструктор
и открывают отдельную сессию на каждую операцию:

    async with async_session_maker() as session:
        repo = OrderQueueRepository(session)
        ...

Одну AsyncSession нельзя использовать из нескольких задач одновременно,
а очередь IIKO обрабатывает заказы параллельно.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import config
from infrastructure.database.models import Base


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Создать async engine (отдельная функция нужна тестам)."""
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Фабрика сессий.

    expire_on_commit=False = объекты остаются читаемыми после commit()
    (иначе любое обращение к полю после коммита = новый запрос к БД).
    """
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine = create_engine(config.async_database_url)
async_session_maker = create_session_maker(engine)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: одна сессия на запрос."""
    async with async_session_maker() as session:
        yield session


async def init_db(bind: AsyncEngine = engine):
    """Создаём таблицы в БД если их нет."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: AsyncEngine = engine):
    """Закрываем пул соединений."""
    await bind.dispose()
