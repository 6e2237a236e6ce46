# config/settings.py
"""
Settings файл - здесь живут все настройки приложения.

Логика: когда приложение запускается, оно читает .env файл
и создает объект 'config' со всеми необходимыми значениями.

Все константы синхронизации с IIKO (лимит ретраев, размер пачки,
интервалы планировщика) тоже живут здесь, а не в коде сервисов.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional


class Settings(BaseSettings):
    """
    Основной класс настроек.

    BaseSettings читает .env, валидирует типы и выдает ошибку
    если значение неправильного типа (IIKO_MAX_RETRY_COUNT=abc).
    """

    # ==========================================
    # TELEGRAM BOT (команды оператора)
    # ==========================================
    bot_token: str = ""
    bot_username: str = "bubbletea_bot"
    operator_telegram_id: Optional[int] = None

    # ==========================================
    # DATABASE
    # ==========================================
    database_url: str = "sqlite+aiosqlite:///./bubbletea.db"

    # ==========================================
    # REDIS (FSM storage бота)
    # ==========================================
    redis_url: str = "redis://localhost:6379/0"

    # ==========================================
    # API
    # ==========================================
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    admin_api_token: str = "default_admin_token"

    # ==========================================
    # IIKO
    # ==========================================
    iiko_default_api_url: str = "https://api-ru.iiko.services"
    iiko_http_timeout: float = 30.0
    # Токен обновляем заранее, за 5 минут до истечения
    iiko_token_safety_margin_seconds: int = 300
    iiko_default_token_ttl_seconds: int = 3600

    iiko_max_retry_count: int = 3
    iiko_queue_batch_size: int = 10
    iiko_concurrency_limit: int = 3

    iiko_scheduler_enabled: bool = True
    iiko_order_sync_interval_seconds: float = 60
    iiko_menu_sync_interval_seconds: float = 60 * 60

    # Категория для новых товаров без маппинга группы
    iiko_default_category_id: int = 1

    # ==========================================
    # ENVIRONMENT
    # ==========================================
    environment: Literal["development", "production"] = "development"
    debug: bool = True

    # Конфигурация Pydantic
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    @property
    def async_database_url(self) -> str:
        """Convert standard PostgreSQL URL to asyncpg format"""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if "sslmode=disable" in url:
            url = url.replace("?sslmode=disable", "")
        return url


config = Settings()
