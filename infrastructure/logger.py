# infrastructure/logger.py
"""
📝 ЛОГИРОВАНИЕ

Структурированные логи (structlog) в формате JSON.
Каждое событие синхронизации = имя события + контекст:

    logger.info("iiko_order_synced", order_id=1001, iiko_order_id="...")
"""

import logging
import sys

import structlog


# ==========================================
# ИНИЦИАЛИЗАЦИЯ STRUCTLOG
# ==========================================

def setup_logging(debug: bool = False):
    """
    Инициализирует логирование.

    Вызывается один раз при старте приложения (main.py).
    В debug режиме пишем и DEBUG сообщения (например про каждый
    пропущенный тик планировщика).
    """

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()  # Выводит как JSON
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Конфигурируем стандартный logging (structlog пишет через него)
    logging.basicConfig(
        format="[%(asctime)s] %(levelname)s: %(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )

    # httpx логирует каждый запрос на INFO, для IIKO это слишком шумно
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ==========================================
# ПОЛУЧЕНИЕ ЛОГГЕРА
# ==========================================

logger = structlog.get_logger()
