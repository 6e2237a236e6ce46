# app/bot/handlers/operator.py
"""
Команды оператора для управления синхронизацией с IIKO.

Доступны ТОЛЬКО оператору (OPERATOR_TELEGRAM_ID из .env):
- /iiko_status  состояние планировщика и очереди
- /iiko_sync    отправить очередь заказов в IIKO прямо сейчас
- /iiko_menu    подтянуть меню из IIKO прямо сейчас

Планировщик приходит в обработчик из dp["scheduler"],
сессия БД из DatabaseMiddleware.
"""

from html import escape

from aiogram import F, Router, types
from aiogram.filters import Command
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import config
from infrastructure.database.repositories import OrderQueueRepository
from app.iiko.scheduler import SyncScheduler

import structlog

logger = structlog.get_logger()

router = Router()


# ==========================================
# ФИЛЬТР: только оператор
# ==========================================

operator_only = F.from_user.id == config.operator_telegram_id


def _job_line(name: str, job: dict) -> str:
    state = "🟢 работает" if job["running"] else "🔴 остановлен"
    busy = " (идет прогон)" if job["processing"] else ""
    return f"<b>{name}</b>: {state}{busy}, каждые {int(job['interval'])} сек"


# ==========================================
# КОМАНДА: /iiko_status
# ==========================================

@router.message(Command("iiko_status"), operator_only)
async def cmd_iiko_status(message: types.Message, scheduler: SyncScheduler, session: AsyncSession):
    status = scheduler.status()
    counts = await OrderQueueRepository(session).count_by_status()

    text = (
        "🔁 <b>Синхронизация IIKO</b>\n\n"
        f"{_job_line('Заказы', status['order_sync'])}\n"
        f"{_job_line('Меню', status['menu_sync'])}\n\n"
        "<b>Очередь:</b>\n"
        f"⏳ pending: {counts['pending']}\n"
        f"⚙️ processing: {counts['processing']}\n"
        f"✅ completed: {counts['completed']}\n"
        f"❌ failed: {counts['failed']}"
    )

    await message.answer(text)


# ==========================================
# КОМАНДА: /iiko_sync
# ==========================================

@router.message(Command("iiko_sync"), operator_only)
async def cmd_iiko_sync(message: types.Message, scheduler: SyncScheduler):
    """
    Ручной прогон очереди.

    Если прогон по таймеру еще идет, ручной пропускается.
    """
    logger.info("operator_manual_order_sync", user_id=message.from_user.id)

    try:
        result = await scheduler.trigger_order_sync()
    except Exception as e:
        await message.answer(f"❌ Синхронизация упала: {escape(str(e)[:200])}")
        return

    if result is None:
        await message.answer("⏳ Синхронизация уже идет, попробуй через минуту")
        return

    text = (
        "📤 <b>Очередь обработана</b>\n\n"
        f"Всего: {result.processed}\n"
        f"✅ Успешно: {result.succeeded}\n"
        f"❌ С ошибкой: {result.failed}"
    )

    if result.errors:
        lines = [f"• #{e['order_id']}: {escape(e['error'][:100])}" for e in result.errors[:5]]
        text += "\n\n<b>Ошибки:</b>\n" + "\n".join(lines)

    await message.answer(text)


# ==========================================
# КОМАНДА: /iiko_menu
# ==========================================

@router.message(Command("iiko_menu"), operator_only)
async def cmd_iiko_menu(message: types.Message, scheduler: SyncScheduler):
    logger.info("operator_manual_menu_sync", user_id=message.from_user.id)

    await message.answer("⏳ Загружаю меню из IIKO...")

    try:
        summary = await scheduler.trigger_menu_sync()
    except Exception as e:
        await message.answer(f"❌ Синхронизация меню упала: {escape(str(e)[:200])}")
        return

    if summary is None:
        await message.answer("⏳ Синхронизация меню уже идет")
        return

    lines = []
    for r in summary.results:
        if r.success:
            lines.append(f"✅ {r.store_name}: +{r.created}, обновлено {r.updated}, выключено {r.deactivated}")
        else:
            lines.append(f"❌ {r.store_name}: {r.error_message}")

    text = (
        "🍵 <b>Меню синхронизировано</b>\n\n"
        f"Точек: {summary.total} (успешно {summary.succeeded}, с ошибкой {summary.failed})"
    )
    if lines:
        text += "\n\n" + "\n".join(lines)

    await message.answer(text)
