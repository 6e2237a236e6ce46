# app/iiko/queue_processor.py
"""
🔄 ОБРАБОТЧИК ОЧЕРЕДИ ЗАКАЗОВ IIKO

Один прогон process_order_queue():
1. Берем до 10 элементов со статусом pending
2. Каждый переводим в processing (ДО любого запроса в IIKO)
3. Отправляем окнами по 3 штуки: следующее окно только после того,
   как предыдущее полностью завершилось
4. По итогу каждого элемента:
   - успех               → completed + запись success в журнал
   - ошибка, есть попытки → снова pending, retry_count + 1
   - ошибка, попыток нет  → failed + запись failed в журнал
5. Возвращаем сводку {processed, succeeded, failed, errors}

Ошибка одного заказа никогда не роняет весь прогон.
Отмена прогона (остановка планировщика) возвращает захваченные
элементы в pending с тем же retry_count.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config as settings
from infrastructure.database.models import IikoOrderQueue, QueueStatus, SyncStatus
from infrastructure.database.repositories import (
    OrderQueueRepository,
    OrderRepository,
    SyncRecordRepository,
)
from app.iiko.exceptions import IikoTransportError
from app.iiko.order_sync import OrderSyncClient
from app.iiko.queue_state import (
    Completed,
    Failed,
    Pending,
    Processing,
    QueueState,
    SyncFailed,
    SyncOutcome,
    SyncSucceeded,
    claim,
    next_state,
)

logger = structlog.get_logger()


@dataclass
class QueueProcessResult:
    """Сводка одного прогона очереди."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class QueueProcessor:
    """
    Владелец переходов статусов iiko_order_queue.

    Параметры политики берутся из настроек, но их можно
    переопределить в конструкторе (тесты).
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        sync_client: OrderSyncClient,
        max_retry_count: Optional[int] = None,
        batch_size: Optional[int] = None,
        concurrency_limit: Optional[int] = None
    ):
        self.session_maker = session_maker
        self.sync_client = sync_client
        self.max_retry_count = (
            max_retry_count if max_retry_count is not None else settings.iiko_max_retry_count
        )
        self.batch_size = batch_size or settings.iiko_queue_batch_size
        self.concurrency_limit = concurrency_limit or settings.iiko_concurrency_limit

    # ==========================================
    # ПРОГОН ОЧЕРЕДИ
    # ==========================================

    async def process_order_queue(self) -> QueueProcessResult:
        """
        Обработать одну пачку очереди.

        Ошибки доступа к БД на этапе выборки пробрасываются наружу:
        планировщик их залогирует и пропустит тик.
        """
        result = QueueProcessResult()

        async with self.session_maker() as session:
            queue_items = await OrderQueueRepository(session).get_pending(self.batch_size)

        if not queue_items:
            logger.debug("iiko_queue_empty")
            return result

        claimed: list = []

        try:
            await self._claim_items(queue_items, claimed)

            logger.info(
                "iiko_queue_processing",
                fetched=len(queue_items),
                claimed=len(claimed)
            )

            for start in range(0, len(claimed), self.concurrency_limit):
                window = claimed[start:start + self.concurrency_limit]

                outcomes = await asyncio.gather(
                    *(self._process_item(item, state) for item, state in window)
                )

                for (item, _), final_state in zip(window, outcomes):
                    result.processed += 1

                    if isinstance(final_state, Completed):
                        result.succeeded += 1
                    else:
                        result.failed += 1
                        result.errors.append({
                            "order_id": item.order_id,
                            "error": _error_text(final_state),
                        })

        except asyncio.CancelledError:
            # Остановка посреди прогона: захваченное возвращаем в pending
            await self._release_items(claimed)
            raise

        logger.info(
            "iiko_queue_processed",
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed
        )

        return result

    async def trigger_queue_processing(self) -> QueueProcessResult:
        """Ручной запуск из админки (тот же код, что и по таймеру)."""
        logger.info("iiko_queue_manual_trigger")
        return await self.process_order_queue()

    # ==========================================
    # ЗАХВАТ ЭЛЕМЕНТОВ
    # ==========================================

    async def _claim_items(self, queue_items: List[IikoOrderQueue], claimed: list) -> list:
        """
        pending → processing для всей пачки, в порядке выборки.

        Захваченные складываются в claimed по мере захвата, чтобы
        при отмене прогона их можно было вернуть.
        Элементы, которые успел забрать кто-то другой, пропускаем.
        """
        async with self.session_maker() as session:
            repo = OrderQueueRepository(session)

            for item in queue_items:
                state = claim(Pending(retries=item.retry_count or 0))

                if await repo.claim(item.id):
                    claimed.append((item, state))
                else:
                    logger.warning("iiko_queue_item_already_claimed", queue_id=item.id)

        return claimed

    async def _release_items(self, claimed: list):
        queue_ids = [item.id for item, _ in claimed]

        async with self.session_maker() as session:
            released = await OrderQueueRepository(session).release(queue_ids)

        logger.warning("iiko_queue_items_released", claimed=len(queue_ids), released=released)

    # ==========================================
    # ОДИН ЭЛЕМЕНТ
    # ==========================================

    async def _process_item(self, item: IikoOrderQueue, state: Processing) -> QueueState:
        """
        Отправить один заказ и записать новое состояние.

        Всё обернуто в try: любое исключение превращается в failed,
        остальные элементы окна продолжают работу.
        Исключение: IIKO заказ уже принял, значит элемент completed,
        даже если журнал записать не удалось.
        """
        outcome: Optional[SyncOutcome] = None

        try:
            outcome = await self._attempt_sync(item)
            new_state = next_state(state, outcome, self.max_retry_count)
            await self._apply_state(item, new_state, outcome)
            return new_state

        except Exception as e:
            logger.error(
                "iiko_queue_item_error",
                queue_id=item.id,
                order_id=item.order_id,
                error=str(e),
                error_type=type(e).__name__
            )

            if isinstance(outcome, SyncSucceeded):
                return await self._complete_after_persist_error(item)

            failed = Failed(reason=str(e), code=type(e).__name__, retries=state.retries)

            try:
                await self._apply_state(item, failed, SyncFailed(str(e), fatal=True))
            except Exception as persist_error:
                logger.error(
                    "iiko_queue_item_persist_failed",
                    queue_id=item.id,
                    error=str(persist_error)
                )

            return failed

    async def _complete_after_persist_error(self, item: IikoOrderQueue) -> Completed:
        try:
            async with self.session_maker() as session:
                await OrderQueueRepository(session).update_status(item.id, QueueStatus.COMPLETED)
        except Exception as persist_error:
            logger.error(
                "iiko_queue_item_persist_failed",
                queue_id=item.id,
                error=str(persist_error)
            )

        return Completed()

    async def _attempt_sync(self, item: IikoOrderQueue) -> SyncOutcome:
        """
        Вызов клиента, приведенный к исходу для state machine.

        Транспортные ошибки (брошенные или возвращенные) и отказ IIKO
        идут в повтор. Ошибки конфигурации/данных летят дальше в
        _process_item и сразу дают failed.
        """
        try:
            result = await self.sync_client.sync_order(item.order_id, item.config_id)
        except IikoTransportError as e:
            return SyncFailed(str(e), code=e.error_code)

        if result.success:
            return SyncSucceeded(result.remote_order_id, result.remote_external_number)

        # Отказ IIKO (creationStatus == "Error") тоже идет в повтор
        return SyncFailed(result.error_message or "Unknown error", code=result.error_code)

    async def _apply_state(self, item: IikoOrderQueue, new_state: QueueState, outcome: SyncOutcome):
        async with self.session_maker() as session:
            queue_repo = OrderQueueRepository(session)
            records = SyncRecordRepository(session)

            if isinstance(new_state, Completed):
                # Статус очереди пишем последним
                await records.create_or_update(
                    order_id=item.order_id,
                    order_no=item.order_no,
                    sync_status=SyncStatus.SUCCESS,
                    sync_attempts=(item.retry_count or 0) + 1,
                    iiko_order_id=outcome.remote_order_id,
                    iiko_external_number=outcome.remote_external_number
                )
                if outcome.remote_order_id:
                    await OrderRepository(session).set_iiko_order_id(item.order_id, outcome.remote_order_id)
                await queue_repo.update_status(item.id, QueueStatus.COMPLETED)

                logger.info("iiko_queue_item_completed", order_id=item.order_id, order_no=item.order_no)

            elif isinstance(new_state, Pending):
                await queue_repo.update_status(
                    item.id,
                    QueueStatus.PENDING,
                    error_message=new_state.last_error,
                    retry_count=new_state.retries
                )
                logger.warning(
                    "iiko_queue_item_retry",
                    order_id=item.order_id,
                    order_no=item.order_no,
                    attempt=new_state.retries,
                    max_retries=self.max_retry_count,
                    error=new_state.last_error
                )

            elif isinstance(new_state, Failed):
                await queue_repo.update_status(item.id, QueueStatus.FAILED, error_message=new_state.reason)
                await records.create_or_update(
                    order_id=item.order_id,
                    order_no=item.order_no,
                    sync_status=SyncStatus.FAILED,
                    sync_attempts=(item.retry_count or 0) + 1,
                    error_message=new_state.reason,
                    error_code=new_state.code
                )
                logger.error(
                    "iiko_queue_item_failed",
                    order_id=item.order_id,
                    order_no=item.order_no,
                    retries=new_state.retries,
                    error=new_state.reason
                )


def _error_text(state: QueueState) -> str:
    if isinstance(state, Pending):
        return state.last_error or "Unknown error"
    if isinstance(state, Failed):
        return state.reason or "Unknown error"
    return "Unknown error"
