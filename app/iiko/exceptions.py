# app/iiko/exceptions.py
"""
Ошибки интеграции с IIKO.

Две ветки:
- ошибки конфигурации/данных (нет настроек, настройки выключены,
  нет заказа) = повторять бессмысленно, элемент очереди сразу failed;
- транспортные ошибки (сеть, таймаут, HTTP не 2xx, не удалось
  получить токен) = временные, идут в политику повторов.
"""

from typing import Optional


class IikoSyncError(Exception):
    """Базовая ошибка синхронизации с IIKO."""


# ==========================================
# КОНФИГУРАЦИЯ / ДАННЫЕ
# ==========================================

class IikoConfigNotFoundError(IikoSyncError):
    def __init__(self, config_id: int):
        self.config_id = config_id
        super().__init__(f"IIKO config not found: {config_id}")


class IikoConfigInactiveError(IikoSyncError):
    def __init__(self, config_id: int):
        self.config_id = config_id
        super().__init__(f"IIKO config is not active: {config_id}")


class OrderNotFoundError(IikoSyncError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


# ==========================================
# ТРАНСПОРТ
# ==========================================

class IikoTransportError(IikoSyncError):
    """Сеть, таймаут или неожиданный ответ API."""

    error_code: Optional[str] = "TRANSPORT_ERROR"


class IikoHTTPError(IikoTransportError):
    """API ответил не 2xx."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        self.error_code = f"HTTP_{status_code}"
        super().__init__(f"IIKO API error: {status_code} {body}")


class IikoAuthenticationError(IikoTransportError):
    """Не удалось получить токен доступа."""

    error_code = "AUTH_FAILED"

    def __init__(self, message: str = "Failed to get IIKO access token"):
        super().__init__(message)
