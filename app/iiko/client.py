# app/iiko/client.py
"""
HTTP клиент IIKO Cloud API (https://api-ru.iiko.services).

JSON поверх HTTPS, токен в заголовке Authorization: Bearer <token>.
Клиент ничего не знает про БД: только запросы и разбор ответов.

Все ошибки приводятся к двум типам:
- IikoHTTPError (API ответил не 2xx, в сообщении код и тело ответа)
- IikoTransportError (сеть, таймаут, ответ не JSON)
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from config.settings import config as settings
from app.iiko.exceptions import IikoHTTPError, IikoTransportError

logger = structlog.get_logger()


ACCESS_TOKEN_PATH = "/api/1/access_token"
ORGANIZATIONS_PATH = "/api/1/organizations"
TERMINAL_GROUPS_PATH = "/api/1/terminal_groups"
CREATE_DELIVERY_PATH = "/api/1/deliveries/create"
NOMENCLATURE_PATH = "/api/1/nomenclature"
STOP_LISTS_PATH = "/api/1/stop_lists"


class IikoApiClient:
    """
    Тонкая обертка над httpx.AsyncClient.

    Один клиент (и пул соединений) на весь процесс. В тестах
    подменяем транспорт:

        client = IikoApiClient(transport=httpx.MockTransport(handler))
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout if timeout is not None else settings.iiko_http_timeout
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=transport,
            headers={"Content-Type": "application/json"}
        )

    async def close(self):
        await self._http.aclose()

    # ==========================================
    # БАЗОВЫЙ ЗАПРОС
    # ==========================================

    async def _post(
        self,
        api_url: str,
        path: str,
        payload: Dict[str, Any],
        token: Optional[str] = None
    ) -> Dict[str, Any]:
        url = f"{api_url.rstrip('/')}{path}"
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("iiko_request_timeout", path=path, timeout=self.timeout)
            raise IikoTransportError(f"IIKO request timed out: {path}") from e
        except httpx.HTTPError as e:
            logger.warning("iiko_request_failed", path=path, error=str(e))
            raise IikoTransportError(f"IIKO request failed: {e}") from e

        if response.is_error:
            raise IikoHTTPError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise IikoTransportError(f"IIKO returned invalid JSON: {path}") from e

    # ==========================================
    # ЭНДПОИНТЫ
    # ==========================================

    async def request_access_token(self, api_url: str, api_login: str) -> Dict[str, Any]:
        """
        Обмен apiLogin на токен.

        Ответ: {"token": "...", "expiresIn": 3600}
        (expiresIn может не прийти, тогда считаем час)
        """
        return await self._post(api_url, ACCESS_TOKEN_PATH, {"apiLogin": api_login})

    async def get_organizations(self, api_url: str, token: str) -> List[Dict[str, Any]]:
        data = await self._post(
            api_url,
            ORGANIZATIONS_PATH,
            {"organizationIds": None, "returnAdditionalInfo": True, "includeDisabled": False},
            token=token
        )
        return data.get("organizations") or []

    async def get_terminal_groups(
        self,
        api_url: str,
        token: str,
        organization_ids: List[str]
    ) -> List[Dict[str, Any]]:
        data = await self._post(
            api_url,
            TERMINAL_GROUPS_PATH,
            {"organizationIds": organization_ids, "includeDisabled": False},
            token=token
        )
        return data.get("terminalGroups") or []

    async def create_delivery(
        self,
        api_url: str,
        token: str,
        payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Создать заказ доставки.

        Внимание: HTTP 200 еще не значит успех. Смотри
        orderInfo.creationStatus ("Success" / "InProgress" / "Error").
        """
        return await self._post(api_url, CREATE_DELIVERY_PATH, payload, token=token)

    async def get_nomenclature(
        self,
        api_url: str,
        token: str,
        organization_id: str
    ) -> Dict[str, Any]:
        """Номенклатура: {"revision": 1, "groups": [...], "products": [...]}"""
        return await self._post(
            api_url,
            NOMENCLATURE_PATH,
            {"organizationId": organization_id},
            token=token
        )

    async def get_stop_lists(
        self,
        api_url: str,
        token: str,
        organization_ids: List[str]
    ) -> Dict[str, Any]:
        return await self._post(
            api_url,
            STOP_LISTS_PATH,
            {"organizationIds": organization_ids},
            token=token
        )
