# main.py
"""
🚀 ГЛАВНЫЙ ФАЙЛ ЗАПУСКА

Это точка входа - отсюда всё начинается!

Запускает одновременно:
- FastAPI (админка IIKO + /health)
- планировщик синхронизации IIKO (живет вместе с API)
- Telegram бота с командами оператора (если задан BOT_TOKEN)
"""

import asyncio
from contextlib import asynccontextmanager

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from fastapi import FastAPI
import uvicorn

# Импортируем свои модули
from config.settings import config
from infrastructure.logger import setup_logging
from infrastructure.database.base import async_session_maker, init_db, close_db
from infrastructure.redis_storage import create_fsm_storage
from app.api.app import create_app
from app.bot.handlers import main_router
from app.bot.middlewares import DatabaseMiddleware, LoggingMiddleware
from app.iiko.services import IikoServices, build_iiko_services

import structlog

logger = structlog.get_logger()


# ==========================================
# 🔄 LIFESPAN (управление жизненным циклом API)
# ==========================================

def make_lifespan(services: IikoServices):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Планировщик стартует вместе с API и останавливается вместе с ним."""

        # ========== ЗАПУСК ==========
        if config.iiko_scheduler_enabled:
            services.scheduler.start()
        else:
            logger.warning("scheduler_disabled", message="⚠️ IIKO_SCHEDULER_ENABLED=false")

        try:
            yield  # ← Здесь приложение работает

        finally:
            # ========== ВЫКЛЮЧЕНИЕ ==========
            logger.info("app_shutdown", message="🔴 Выключение приложения")

            try:
                await services.close()
                logger.info("iiko_services_closed", message="✅ Планировщик остановлен")
            except Exception as e:
                logger.error("iiko_services_close_error", error=str(e))

            try:
                await close_db()
                logger.info("database_closed", message="✅ База данных закрыта")
            except Exception as e:
                logger.error("database_close_error", error=str(e))

    return lifespan


# ==========================================
# 🤖 BOT STARTUP & SHUTDOWN
# ==========================================

async def on_startup(bot: Bot):
    """Уведомляем оператора что бот живой (не блокируем запуск если не вышло)."""

    if not config.operator_telegram_id:
        logger.warning(
            "operator_id_not_set",
            message="⚠️ OPERATOR_TELEGRAM_ID не установлен в .env"
        )
        return

    try:
        await bot.send_message(
            chat_id=config.operator_telegram_id,
            text=(
                "✅ <b>Бот запустился!</b>\n\n"
                "Синхронизация с IIKO работает 🎉\n\n"
                "Используй /help для списка команд"
            )
        )
        logger.info("operator_notified", message="✅ Оператор уведомлен")
    except Exception as e:
        logger.error(
            "operator_notification_failed",
            error=str(e),
            message="⚠️ Не удалось уведомить оператора (но бот работает)"
        )


async def on_shutdown(bot: Bot):
    logger.info("bot_shutdown", message="🔴 Бот выключается...")

    try:
        await bot.session.close()
        logger.info("bot_session_closed", message="✅ Сессия бота закрыта")
    except Exception as e:
        logger.error("bot_shutdown_error", error=str(e))


async def build_dispatcher(bot: Bot, services: IikoServices) -> Dispatcher:
    dp = Dispatcher(storage=await create_fsm_storage(), bot=bot)

    # Обработчики получают планировщик параметром scheduler
    dp["scheduler"] = services.scheduler

    # Middleware добавляются в порядке FIFO: первый добавленный = первый в цепочке
    dp.message.middleware(LoggingMiddleware())
    dp.message.middleware(DatabaseMiddleware(services.session_maker))

    dp.include_router(main_router)

    return dp


# ==========================================
# 🚀 ГЛАВНАЯ ФУНКЦИЯ ЗАПУСКА
# ==========================================

async def main():
    # 1. Логирование
    setup_logging(debug=config.debug)
    logger.info("application_start", message="🟢 Приложение стартует")

    # 2. БД (ПЕРЕД использованием)
    try:
        await init_db()
        logger.info("database_ready", message="✅ База данных готова")
    except Exception as e:
        logger.error("database_init_failed", error=str(e))
        raise

    # 3. Сервисы IIKO (один HTTP клиент и один планировщик на процесс)
    services = build_iiko_services(async_session_maker)
    app = create_app(services, lifespan=make_lifespan(services))

    async def run_api():
        config_uvicorn = uvicorn.Config(
            app,
            host=config.api_host,
            port=config.api_port,
            log_level="info",
            access_log=True,
        )
        server = uvicorn.Server(config_uvicorn)
        logger.info(
            "fastapi_starting",
            message=f"🌐 FastAPI запускается на {config.api_host}:{config.api_port}"
        )
        await server.serve()

    if not config.bot_token:
        logger.warning("bot_token_missing", message="⚠️ BOT_TOKEN не задан, запускаем только API")
        await run_api()
        return

    # 4. Бот и диспетчер
    bot = Bot(
        token=config.bot_token,
        default=DefaultBotProperties(parse_mode="HTML")
    )
    dp = await build_dispatcher(bot, services)

    async def run_bot():
        await on_startup(bot)

        try:
            logger.info("polling_started", message="👂 Бот начинает слушать сообщения...")
            await dp.start_polling(bot, handle_signals=False)

        except asyncio.CancelledError:
            logger.info("polling_cancelled", message="⛔ Polling отменён")
            raise

        except Exception as e:
            logger.error("bot_polling_error", error=str(e), error_type=type(e).__name__)
            raise

        finally:
            await on_shutdown(bot)

    # 5. Запускаем оба одновременно (если один упадёт, упадут оба)
    logger.info("starting_services", message="🚀 Запуск бота и API...")

    try:
        await asyncio.gather(run_bot(), run_api())

    except Exception as e:
        logger.error("fatal_error", error=str(e), error_type=type(e).__name__)
        raise


# ==========================================
# 📌 ENTRY POINT (точка входа)
# ==========================================

if __name__ == "__main__":
    try:
        asyncio.run(main())

    except KeyboardInterrupt:
        logger.info("app_interrupted", message="⛔ Приложение остановлено пользователем (Ctrl+C)")

    finally:
        logger.info("app_final_shutdown", message="👋 Приложение полностью выключено")
