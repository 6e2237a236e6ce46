# app/iiko/auth.py
"""
🔑 ТОКЕНЫ IIKO

IIKO выдает токен в обмен на apiLogin. Токен живет около часа.

Логика get_access_token():
1. Читаем токен и срок его жизни из iiko_config
2. Если до истечения больше 5 минут = возвращаем его (без сети)
3. Иначе запрашиваем новый, сохраняем token + expires_at, возвращаем
4. Сеть упала / IIKO ответил ошибкой = логируем и возвращаем None

None значит "сейчас синхронизировать нельзя", это не фатальная ошибка.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config as settings
from infrastructure.database.models import IikoConfig
from infrastructure.database.repositories import IikoConfigRepository
from app.iiko.client import IikoApiClient
from app.iiko.exceptions import (
    IikoAuthenticationError,
    IikoConfigNotFoundError,
    IikoTransportError,
)

logger = structlog.get_logger()


class TokenManager:
    """
    Кэш токенов по конфигурациям.

    Только этот класс пишет access_token / token_expires_at.
    Обновление токена одной конфигурации защищено asyncio.Lock:
    если две пачки очереди одновременно увидят протухший токен,
    в IIKO уйдет один запрос, вторая получит уже свежий токен.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        api_client: IikoApiClient,
        safety_margin_seconds: Optional[int] = None
    ):
        self.session_maker = session_maker
        self.api_client = api_client
        margin = (
            safety_margin_seconds
            if safety_margin_seconds is not None
            else settings.iiko_token_safety_margin_seconds
        )
        self.safety_margin = timedelta(seconds=margin)
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, config_id: int) -> asyncio.Lock:
        lock = self._locks.get(config_id)
        if lock is None:
            lock = self._locks[config_id] = asyncio.Lock()
        return lock

    def _cached_token(self, config: IikoConfig) -> Optional[str]:
        if not config.access_token or not config.token_expires_at:
            return None
        if config.token_expires_at - datetime.utcnow() > self.safety_margin:
            return config.access_token
        return None

    async def _load_config(self, config_id: int) -> IikoConfig:
        async with self.session_maker() as session:
            config = await IikoConfigRepository(session).get_by_id(config_id)

        if config is None:
            raise IikoConfigNotFoundError(config_id)

        return config

    # ==========================================
    # ПОЛУЧИТЬ ТОКЕН
    # ==========================================

    async def get_access_token(self, config_id: int) -> Optional[str]:
        """
        Валидный токен для конфигурации или None.

        Raises:
            IikoConfigNotFoundError: конфигурации нет (это ошибка вызывающего)
        """
        config = await self._load_config(config_id)

        token = self._cached_token(config)
        if token:
            return token

        async with self._lock_for(config_id):
            # Пока ждали блокировку, токен мог обновить кто-то другой
            config = await self._load_config(config_id)
            token = self._cached_token(config)
            if token:
                return token

            return await self._refresh_token(config)

    async def _refresh_token(self, config: IikoConfig) -> Optional[str]:
        try:
            data = await self.api_client.request_access_token(config.api_url, config.api_login)
        except IikoTransportError as e:
            logger.error("iiko_token_refresh_failed", config_id=config.id, error=str(e))
            return None

        token = data.get("token")
        if not token:
            logger.error("iiko_token_missing_in_response", config_id=config.id)
            return None

        expires_in = int(data.get("expiresIn") or settings.iiko_default_token_ttl_seconds)
        expires_at = datetime.utcnow() + timedelta(seconds=expires_in)

        async with self.session_maker() as session:
            await IikoConfigRepository(session).update(
                config.id,
                access_token=token,
                token_expires_at=expires_at
            )

        logger.info("iiko_token_refreshed", config_id=config.id, expires_at=expires_at.isoformat())

        return token

    async def invalidate(self, config_id: int) -> Optional[IikoConfig]:
        """Забыть токен (после смены apiLogin или адреса API)."""
        async with self._lock_for(config_id):
            async with self.session_maker() as session:
                config = await IikoConfigRepository(session).update(
                    config_id,
                    access_token=None,
                    token_expires_at=None
                )

        logger.info("iiko_token_invalidated", config_id=config_id)

        return config

    async def require_token(self, config_id: int) -> str:
        """То же что get_access_token, но None превращается в ошибку."""
        token = await self.get_access_token(config_id)
        if not token:
            raise IikoAuthenticationError()
        return token

    # ==========================================
    # ВСПОМОГАТЕЛЬНОЕ ДЛЯ АДМИНКИ
    # ==========================================

    async def test_connection(self, api_url: str, api_login: str) -> Dict[str, Any]:
        """
        Проверить apiLogin до сохранения конфигурации.

        Ничего не сохраняет, только пробует получить токен.
        """
        try:
            data = await self.api_client.request_access_token(api_url, api_login)
        except IikoTransportError as e:
            return {"success": False, "message": f"Connection failed: {e}"}

        if not data.get("token"):
            return {"success": False, "message": "IIKO did not return a token"}

        return {"success": True, "message": "Connected"}

    async def get_organizations(self, config_id: int) -> List[Dict[str, Any]]:
        token = await self.require_token(config_id)
        config = await self._load_config(config_id)

        return await self.api_client.get_organizations(config.api_url, token)

    async def get_terminal_groups(self, config_id: int) -> List[Dict[str, Any]]:
        token = await self.require_token(config_id)
        config = await self._load_config(config_id)

        return await self.api_client.get_terminal_groups(
            config.api_url,
            token,
            [config.organization_id]
        )
