# app/iiko/queue_state.py
"""
Состояния элемента очереди IIKO и переходы между ними.

    Pending(n) ──claim──▶ Processing(n)
    Processing(n) + успех                 ▶ Completed
    Processing(n) + ошибка, n < max       ▶ Pending(n + 1)
    Processing(n) + ошибка, n >= max      ▶ Failed
    Processing(n) + фатальная ошибка      ▶ Failed

Здесь нет ни БД, ни сети: QueueProcessor считает следующее
состояние через next_state() и только потом пишет его в БД.
"""

from dataclasses import dataclass
from typing import Optional, Union

from infrastructure.database.models import QueueStatus


# ==========================================
# СОСТОЯНИЯ
# ==========================================

@dataclass(frozen=True)
class Pending:
    retries: int = 0
    last_error: Optional[str] = None

    status = QueueStatus.PENDING


@dataclass(frozen=True)
class Processing:
    retries: int = 0

    status = QueueStatus.PROCESSING


@dataclass(frozen=True)
class Completed:
    status = QueueStatus.COMPLETED


@dataclass(frozen=True)
class Failed:
    reason: str
    code: Optional[str] = None
    retries: int = 0

    status = QueueStatus.FAILED


QueueState = Union[Pending, Processing, Completed, Failed]


# ==========================================
# ИСХОДЫ СИНХРОНИЗАЦИИ
# ==========================================

@dataclass(frozen=True)
class SyncSucceeded:
    remote_order_id: Optional[str] = None
    remote_external_number: Optional[str] = None


@dataclass(frozen=True)
class SyncFailed:
    message: str
    code: Optional[str] = None
    fatal: bool = False
    # fatal = ошибка данных/конфигурации, повторять бессмысленно


SyncOutcome = Union[SyncSucceeded, SyncFailed]


class InvalidTransitionError(Exception):
    def __init__(self, state, event):
        self.state = state
        self.event = event
        super().__init__(f"Invalid queue transition: {state!r} + {event!r}")


# ==========================================
# ПЕРЕХОДЫ
# ==========================================

def claim(state: QueueState) -> Processing:
    """pending → processing (до любого сетевого запроса)."""
    if not isinstance(state, Pending):
        raise InvalidTransitionError(state, "claim")
    return Processing(retries=state.retries)


def next_state(state: QueueState, outcome: SyncOutcome, max_retries: int) -> QueueState:
    """
    Следующее состояние после попытки синхронизации.

    Пример:
        next_state(Processing(0), SyncFailed("timeout"), 3)  → Pending(1, "timeout")
        next_state(Processing(3), SyncFailed("timeout"), 3)  → Failed("timeout", retries=3)
    """
    if not isinstance(state, Processing):
        raise InvalidTransitionError(state, outcome)

    if isinstance(outcome, SyncSucceeded):
        return Completed()

    if isinstance(outcome, SyncFailed):
        if outcome.fatal or state.retries >= max_retries:
            return Failed(reason=outcome.message, code=outcome.code, retries=state.retries)
        return Pending(retries=state.retries + 1, last_error=outcome.message)

    raise InvalidTransitionError(state, outcome)


def from_record(status: QueueStatus, retry_count: int) -> QueueState:
    """Состояние из строки iiko_order_queue (для pending / processing)."""
    if status == QueueStatus.PENDING:
        return Pending(retries=retry_count or 0)
    if status == QueueStatus.PROCESSING:
        return Processing(retries=retry_count or 0)
    if status == QueueStatus.COMPLETED:
        return Completed()
    return Failed(reason="", retries=retry_count or 0)
