# app/bot/handlers/__init__.py
"""
🤖 BOT HANDLERS (обработчики команд)

Бот здесь только пульт оператора для синхронизации с IIKO.
"""

from aiogram import Router, types
from aiogram.filters import Command

from app.bot.handlers.operator import router as operator_router, operator_only

# ==========================================
# СОЗДАЁМ MAIN ROUTER
# ==========================================

main_router = Router()
main_router.include_router(operator_router)


@main_router.message(Command("help"), operator_only)
async def cmd_help(message: types.Message):
    """Обработчик команды /help"""
    await message.answer(
        "ℹ️ <b>Справка</b>\n\n"
        "/iiko_status - Состояние синхронизации\n"
        "/iiko_sync - Отправить очередь заказов\n"
        "/iiko_menu - Обновить меню из IIKO"
    )

# ==========================================
# ЭКСПОРТ
# ==========================================

__all__ = ["main_router"]
