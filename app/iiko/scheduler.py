# app/iiko/scheduler.py
"""
⏰ ПЛАНИРОВЩИК СИНХРОНИЗАЦИИ IIKO

Два независимых таймера:
- order_sync: очередь заказов, раз в минуту
- menu_sync:  меню, раз в час

У каждого свой флаг "сейчас работаю". Если прогон не успел
закончиться к следующему тику, тик пропускается (с записью в лог),
а не запускается второй параллельный прогон.

Ручной запуск (/iiko_sync, POST /api/iiko/sync/orders) идет через
тот же флаг: пока идет прогон по таймеру, ручной вернет None.
Упавший ручной прогон пробрасывает исключение вызывающему.

stop() отменяет идущие прогоны; обработчик очереди при отмене
возвращает захваченные элементы в pending.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

from config.settings import config as settings
from app.iiko.menu_sync import MenuSynchronizer
from app.iiko.queue_processor import QueueProcessor

logger = structlog.get_logger()


class PeriodicJob:
    """
    Одна периодическая задача с защитой от наложения.

    Пример:
        job = PeriodicJob("order_sync", processor.process_order_queue, 60)
        job.start()
        ...
        await job.stop()
    """

    def __init__(self, name: str, func: Callable[[], Awaitable[Any]], interval: float):
        self.name = name
        self.func = func
        self.interval = interval
        self.processing = False
        self._timer: Optional[asyncio.Task] = None
        self._runs: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None

    async def run_once(self, raise_errors: bool = False) -> Optional[Any]:
        """
        Запустить задачу, если она сейчас не выполняется.

        None = пропущено (уже идет прогон).
        Ошибка прогона логируется. По таймеру (raise_errors=False)
        она глотается и тик возвращает None; ручной запуск
        (raise_errors=True) получает исключение.
        """
        if self.processing:
            logger.warning("scheduler_run_skipped", job=self.name)
            return None

        self.processing = True

        try:
            return await self.func()

        except Exception as e:
            logger.error(
                "scheduler_run_failed",
                job=self.name,
                error=str(e),
                error_type=type(e).__name__
            )
            if raise_errors:
                raise
            return None

        finally:
            self.processing = False

    def _fire(self):
        # Тик не ждет окончания прогона: поэтому следующий тик может увидеть processing=True
        task = asyncio.create_task(self.run_once())
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    async def _loop(self):
        while True:
            self._fire()
            await asyncio.sleep(self.interval)

    def start(self) -> bool:
        if self._timer is not None:
            return False

        self._timer = asyncio.create_task(self._loop())
        logger.info("scheduler_job_started", job=self.name, interval=self.interval)
        return True

    async def stop(self):
        """Остановить таймер, отменить текущие прогоны и дождаться их."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        for task in list(self._runs):
            task.cancel()

        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)

        self._runs.clear()
        self.processing = False

        logger.info("scheduler_job_stopped", job=self.name)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "processing": self.processing,
            "interval": self.interval,
        }


class SyncScheduler:
    """
    Живет столько же, сколько процесс: создается в main.py,
    стартует вместе с API и останавливается при выключении.
    """

    def __init__(
        self,
        queue_processor: QueueProcessor,
        menu_synchronizer: MenuSynchronizer,
        order_interval: Optional[float] = None,
        menu_interval: Optional[float] = None
    ):
        self.queue_processor = queue_processor
        self.menu_synchronizer = menu_synchronizer

        self.order_job = PeriodicJob(
            "order_sync",
            self._run_order_sync,
            order_interval or settings.iiko_order_sync_interval_seconds
        )
        self.menu_job = PeriodicJob(
            "menu_sync",
            self._run_menu_sync,
            menu_interval or settings.iiko_menu_sync_interval_seconds
        )

    async def _run_order_sync(self):
        result = await self.queue_processor.process_order_queue()

        if result.processed > 0:
            logger.info(
                "scheduler_orders_processed",
                processed=result.processed,
                succeeded=result.succeeded,
                failed=result.failed
            )
            if result.errors:
                logger.error("scheduler_order_errors", errors=result.errors)

        return result

    async def _run_menu_sync(self):
        summary = await self.menu_synchronizer.sync_all_menus()

        logger.info(
            "scheduler_menus_synced",
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed
        )

        return summary

    def start(self):
        """Повторный вызов ничего не делает."""
        if self.order_job.running or self.menu_job.running:
            logger.warning("scheduler_already_running")
            return

        logger.info("scheduler_starting")
        self.order_job.start()
        self.menu_job.start()

    async def stop(self):
        await self.order_job.stop()
        await self.menu_job.stop()
        logger.info("scheduler_stopped")

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {
            "order_sync": self.order_job.status(),
            "menu_sync": self.menu_job.status(),
        }

    async def trigger_order_sync(self):
        logger.info("scheduler_manual_order_sync")
        return await self.order_job.run_once(raise_errors=True)

    async def trigger_menu_sync(self):
        logger.info("scheduler_manual_menu_sync")
        return await self.menu_job.run_once(raise_errors=True)
